"""Domain models for the SSO service"""

from sso_service.domain.sso import (
    AuthState,
    ConnectionConfig,
    ConnectionStatus,
    IssuedTokens,
    OIDCConfig,
    OrganizationSummary,
    SAMLConfig,
    SSOLoginResult,
    SSOProtocol,
    UserSummary,
    parse_connection_config,
)

__all__ = [
    "AuthState",
    "ConnectionConfig",
    "ConnectionStatus",
    "IssuedTokens",
    "OIDCConfig",
    "OrganizationSummary",
    "SAMLConfig",
    "SSOLoginResult",
    "SSOProtocol",
    "UserSummary",
    "parse_connection_config",
]
