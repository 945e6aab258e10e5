"""
SSO connection and login state models.

Stores SAML/OIDC configuration per organization and the short-lived state
records that correlate a login attempt with its callback.
"""

from datetime import datetime
from typing import Optional, Union
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sso_service.domain.sso import (
    AuthState,
    ConnectionStatus,
    OIDCConfig,
    SAMLConfig,
    SSOProtocol,
    parse_connection_config,
)
from sso_service.models.base import Base, as_utc, utc_now


class SSOConnection(Base):
    """
    SSO connection for an organization's identity provider.

    A connection routes one email domain to one IdP. Domains are unique
    across all organizations.
    """

    __tablename__ = "sso_connections"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid4)

    # Foreign key
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Provider details
    protocol: Mapped[str] = mapped_column(String(10), nullable=False)  # saml, oidc
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConnectionStatus.DRAFT.value
    )

    # Protocol configuration (SAMLConfig or OIDCConfig as JSON)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Service provider metadata, generated once at creation
    sp_entity_id: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    sp_acs_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    sp_metadata: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Behaviour
    default_role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    auto_provision: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    jit_provisioning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="sso_connections"
    )

    def __repr__(self) -> str:
        return f"<SSOConnection(id={self.id}, protocol={self.protocol}, domain={self.domain})>"

    @property
    def is_saml(self) -> bool:
        """Check if this is a SAML connection."""
        return self.protocol == SSOProtocol.SAML.value

    @property
    def is_oidc(self) -> bool:
        """Check if this is an OIDC connection."""
        return self.protocol == SSOProtocol.OIDC.value

    @property
    def is_active(self) -> bool:
        """Only active connections may be used for login."""
        return self.status == ConnectionStatus.ACTIVE.value

    @property
    def protocol_config(self) -> Optional[Union[SAMLConfig, OIDCConfig]]:
        """Stored configuration parsed into its protocol model."""
        return parse_connection_config(self.config)

    @property
    def saml_config(self) -> Optional[SAMLConfig]:
        config = self.protocol_config
        return config if isinstance(config, SAMLConfig) else None

    @property
    def oidc_config(self) -> Optional[OIDCConfig]:
        config = self.protocol_config
        return config if isinstance(config, OIDCConfig) else None


class SSOState(Base):
    """
    Transient SSO login state (CSRF and replay protection).

    One row per login attempt; deleted by the first callback that presents it.
    """

    __tablename__ = "sso_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    state: Mapped[str] = mapped_column(String(512), nullable=False, unique=True, index=True)
    connection_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sso_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    redirect_url: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    code_verifier: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    nonce: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<SSOState(id={self.id}, connection_id={self.connection_id})>"

    @classmethod
    def from_auth_state(cls, auth_state: AuthState) -> "SSOState":
        return cls(
            state=auth_state.state,
            connection_id=auth_state.connection_id,
            organization_id=auth_state.organization_id,
            redirect_url=auth_state.redirect_url,
            code_verifier=auth_state.code_verifier,
            nonce=auth_state.nonce,
            created_at=auth_state.created_at,
            expires_at=auth_state.expires_at,
        )

    def to_auth_state(self) -> AuthState:
        return AuthState(
            id=self.id,
            state=self.state,
            connection_id=self.connection_id,
            organization_id=self.organization_id,
            redirect_url=self.redirect_url or "",
            code_verifier=self.code_verifier or "",
            nonce=self.nonce or "",
            created_at=as_utc(self.created_at),
            expires_at=as_utc(self.expires_at),
        )
