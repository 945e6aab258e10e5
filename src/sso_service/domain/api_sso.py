"""API Models for SSO

Purpose: Request and response models for the SSO HTTP surface

Response models never carry the OIDC client secret or the IdP certificate
body; they expose ``has_client_secret`` / ``has_certificate`` instead.
"""

from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from sso_service.domain.sso import (
    ConnectionStatus,
    OIDCConfig,
    SAMLConfig,
    SSOProtocol,
)


class ConnectionCreate(BaseModel):
    """Schema for creating an SSO connection."""

    protocol: SSOProtocol
    name: str = Field(..., min_length=1, max_length=255)
    domain: str = Field(..., max_length=255)
    config: Optional[dict[str, Any]] = None  # SAMLConfig or OIDCConfig fields
    auto_provision: bool = False
    default_role: str = Field("member", pattern=r"^(admin|member)$")
    jit_provisioning: bool = False


class ConnectionUpdate(BaseModel):
    """Schema for updating an SSO connection (protocol is immutable)."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    domain: Optional[str] = Field(None, max_length=255)
    config: Optional[dict[str, Any]] = None  # SAMLConfig or OIDCConfig fields
    auto_provision: Optional[bool] = None
    default_role: Optional[str] = Field(None, pattern=r"^(admin|member)$")
    jit_provisioning: Optional[bool] = None
    status: Optional[ConnectionStatus] = None


class SAMLConfigResponse(BaseModel):
    """SAML settings without the certificate body."""

    entity_id: str
    sso_url: str
    slo_url: Optional[str] = None
    has_certificate: bool
    sign_authn_requests: bool
    want_assertion_signed: bool
    name_id_format: Optional[str] = None


class OIDCConfigResponse(BaseModel):
    """OIDC settings without the client secret."""

    issuer: str
    client_id: str
    has_client_secret: bool
    auth_url: str
    token_url: str
    jwks_uri: str
    scopes: list[str]
    use_discovery: bool
    pkce_enabled: bool
    email_claim: str


class ConnectionResponse(BaseModel):
    """Schema for SSO connection responses."""

    id: int
    uuid: UUID
    organization_id: UUID
    protocol: str
    name: str
    domain: str
    status: str
    sp_entity_id: str
    sp_acs_url: str
    auto_provision: bool
    default_role: str
    jit_provisioning: bool
    created_at: datetime
    updated_at: datetime
    saml_config: Optional[SAMLConfigResponse] = None
    oidc_config: Optional[OIDCConfigResponse] = None

    @classmethod
    def from_connection(cls, conn) -> "ConnectionResponse":
        response = cls(
            id=conn.id,
            uuid=conn.uuid,
            organization_id=conn.organization_id,
            protocol=conn.protocol,
            name=conn.name,
            domain=conn.domain,
            status=conn.status,
            sp_entity_id=conn.sp_entity_id,
            sp_acs_url=conn.sp_acs_url,
            auto_provision=conn.auto_provision,
            default_role=conn.default_role,
            jit_provisioning=conn.jit_provisioning,
            created_at=conn.created_at,
            updated_at=conn.updated_at,
        )

        config: Union[SAMLConfig, OIDCConfig, None] = conn.protocol_config
        if isinstance(config, SAMLConfig):
            response.saml_config = SAMLConfigResponse(
                entity_id=config.entity_id,
                sso_url=config.sso_url,
                slo_url=config.slo_url,
                has_certificate=bool(config.certificate.strip()),
                sign_authn_requests=config.sign_authn_requests,
                want_assertion_signed=config.want_assertion_signed,
                name_id_format=config.name_id_format,
            )
        elif isinstance(config, OIDCConfig):
            response.oidc_config = OIDCConfigResponse(
                issuer=config.issuer,
                client_id=config.client_id,
                has_client_secret=bool(config.client_secret),
                auth_url=config.auth_url,
                token_url=config.token_url,
                jwks_uri=config.jwks_uri,
                scopes=config.request_scopes,
                use_discovery=config.use_discovery,
                pkce_enabled=config.pkce_enabled,
                email_claim=config.email_claim,
            )
        return response


class InitiateLoginRequest(BaseModel):
    """Schema for starting an SSO login."""

    domain: str = Field(..., min_length=1, max_length=320)  # domain or full email
    redirect_url: str = Field("", max_length=2048)


class InitiateLoginResponse(BaseModel):
    """Where to send the browser next."""

    redirect_url: str
