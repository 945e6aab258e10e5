"""
SSO protocol engines.

Supports:
- SAML 2.0 (redirect binding, POSTed responses)
- OIDC (authorization code flow with PKCE)
"""

from sso_service.auth.oidc import OIDCProvider, ProviderEndpoints, extract_oidc_email, verify_nonce
from sso_service.auth.pkce import generate_pkce_pair, generate_state_token, pkce_challenge
from sso_service.auth.saml import (
    SAMLResponseData,
    SAMLResponseValidator,
    build_login_redirect,
    build_sp_metadata,
    decode_saml_response,
    extract_saml_email,
    parse_saml_response,
)

__all__ = [
    "OIDCProvider",
    "ProviderEndpoints",
    "extract_oidc_email",
    "verify_nonce",
    "generate_pkce_pair",
    "generate_state_token",
    "pkce_challenge",
    "SAMLResponseData",
    "SAMLResponseValidator",
    "build_login_redirect",
    "build_sp_metadata",
    "decode_saml_response",
    "extract_saml_email",
    "parse_saml_response",
]
