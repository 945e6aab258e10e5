"""
FaultMaven SSO Service

Organization single sign-on for the FaultMaven authentication stack:
- Per-organization SSO connections (SAML 2.0 and OIDC)
- OIDC authorization code flow with PKCE
- SAML 2.0 redirect binding with POSTed responses
- Single-use login state with lazy expiry
- Login completion against existing accounts and memberships
"""

__version__ = "1.0.0"
