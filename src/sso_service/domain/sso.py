"""SSO Domain Models

Purpose: Typed protocol configuration and flow records for SSO connections

Key Components:
- SAMLConfig / OIDCConfig: Protocol configuration, a tagged union keyed by
  ``protocol`` (``ConnectionConfig``)
- AuthState: Ephemeral single-use record for one login attempt
- SSOLoginResult: Outcome handed back to the caller after login completion
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

DEFAULT_OIDC_SCOPES = ["openid", "email", "profile"]


class SSOProtocol(str, Enum):
    """Supported SSO protocols"""
    SAML = "saml"
    OIDC = "oidc"


class ConnectionStatus(str, Enum):
    """Lifecycle of an SSO connection"""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class SAMLConfig(BaseModel):
    """SAML identity provider settings"""

    protocol: Literal["saml"] = "saml"
    entity_id: str = ""
    sso_url: str = ""
    slo_url: Optional[str] = None
    certificate: str = ""
    sign_authn_requests: bool = False
    want_assertion_signed: bool = True
    name_id_format: Optional[str] = None

    def missing_required_fields(self) -> list[str]:
        """Fields that must be set before a SAML connection can be used"""
        required = {
            "entity_id": self.entity_id,
            "sso_url": self.sso_url,
            "certificate": self.certificate,
        }
        return [name for name, value in required.items() if not value.strip()]


class OIDCConfig(BaseModel):
    """OpenID Connect provider settings"""

    protocol: Literal["oidc"] = "oidc"
    issuer: str = ""
    client_id: str = ""
    client_secret: str = ""
    auth_url: str = ""
    token_url: str = ""
    jwks_uri: str = ""
    user_info_url: str = ""
    use_discovery: bool = True
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_OIDC_SCOPES))
    pkce_enabled: bool = True
    email_claim: str = "email"

    @field_validator("email_claim")
    @classmethod
    def _default_email_claim(cls, value: str) -> str:
        return value.strip() or "email"

    @property
    def request_scopes(self) -> list[str]:
        """Scopes sent to the provider; ``openid`` is always requested"""
        scopes = [s for s in self.scopes if s] or list(DEFAULT_OIDC_SCOPES)
        if "openid" not in scopes:
            scopes.insert(0, "openid")
        return scopes

    @property
    def needs_discovery(self) -> bool:
        """Discovery is used when requested or when static endpoints are incomplete"""
        return self.use_discovery or not self.auth_url or not self.token_url

    def missing_required_fields(self) -> list[str]:
        """Fields that must be set before an OIDC connection can be activated"""
        required = {"issuer": self.issuer, "client_id": self.client_id}
        return [name for name, value in required.items() if not value.strip()]


ConnectionConfig = Annotated[Union[SAMLConfig, OIDCConfig], Field(discriminator="protocol")]

_config_adapter: TypeAdapter = TypeAdapter(ConnectionConfig)


def parse_connection_config(raw: Optional[dict]) -> Optional[Union[SAMLConfig, OIDCConfig]]:
    """Load a stored JSON config into its protocol model"""
    if raw is None:
        return None
    return _config_adapter.validate_python(raw)


class AuthState(BaseModel):
    """One in-flight login attempt

    Attributes:
        state: Random correlation token (state / RelayState)
        connection_id: SSO connection the attempt was started for
        organization_id: Organization owning the connection
        redirect_url: Post-login destination
        nonce: OIDC nonce bound into the ID token
        code_verifier: OIDC PKCE verifier
        expires_at: Hard expiry; expired states are treated as missing
    """

    id: Optional[int] = None
    state: str
    connection_id: int
    organization_id: UUID
    redirect_url: str = ""
    nonce: str = ""
    code_verifier: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime

    @classmethod
    def new(
        cls,
        state: str,
        connection_id: int,
        organization_id: UUID,
        redirect_url: str = "",
        ttl: timedelta = timedelta(minutes=10),
        now: Optional[datetime] = None,
    ) -> "AuthState":
        """Create a state expiring ``ttl`` after ``now``"""
        created = now or datetime.now(timezone.utc)
        return cls(
            state=state,
            connection_id=connection_id,
            organization_id=organization_id,
            redirect_url=redirect_url,
            created_at=created,
            expires_at=created + ttl,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the state has expired"""
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at


class IssuedTokens(BaseModel):
    """Session tokens minted for a user"""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class OrganizationSummary(BaseModel):
    """Organization returned with a successful login"""

    id: UUID
    name: str
    slug: str


class UserSummary(BaseModel):
    """Account returned with a successful login"""

    id: UUID
    email: str
    full_name: str


class SSOLoginResult(BaseModel):
    """Result of a completed SSO login"""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserSummary
    organization: OrganizationSummary
    is_new_user: bool = False
    redirect_url: str = ""
