"""SSO Login Routes

Purpose: Public endpoints that drive SAML and OIDC logins

Key Endpoints:
- POST /sso/initiate, GET /sso/initiate: Resolve domain and return the IdP URL
- GET /sso/oidc/callback: OIDC authorization code callback
- POST /sso/saml/acs: SAML assertion consumer service
- GET /sso/metadata/{connection_id}: SAML SP metadata

Errors are raised as SSOError and rendered by the application's handler.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Response

from sso_service.api.dependencies import get_sso_service
from sso_service.domain.api_sso import InitiateLoginRequest, InitiateLoginResponse
from sso_service.domain.sso import SSOLoginResult
from sso_service.services.sso_service import SSOService

router = APIRouter(prefix="/api/v1/sso", tags=["sso"])


@router.post("/initiate", response_model=InitiateLoginResponse)
async def initiate_sso_login(
    request: InitiateLoginRequest,
    sso: SSOService = Depends(get_sso_service),
):
    """
    Start an SSO login.

    Args:
        request: Email domain (or address) and optional post-login redirect

    Returns:
        URL of the identity provider to send the browser to
    """
    url = await sso.initiate_login(request.domain, request.redirect_url)
    return InitiateLoginResponse(redirect_url=url)


@router.get("/initiate", response_model=InitiateLoginResponse)
async def initiate_sso_login_get(
    domain: str = Query(..., min_length=1, max_length=320),
    redirect_url: str = Query("", max_length=2048),
    sso: SSOService = Depends(get_sso_service),
):
    """Start an SSO login from query parameters."""
    url = await sso.initiate_login(domain, redirect_url)
    return InitiateLoginResponse(redirect_url=url)


@router.get("/oidc/callback", response_model=SSOLoginResult)
async def oidc_callback(
    state: Optional[str] = Query(None),
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    sso: SSOService = Depends(get_sso_service),
):
    """
    OIDC authorization callback.

    The provider redirects here with ``state`` and ``code``, or with
    ``error`` when the user cancelled or the provider refused the login.
    """
    if error:
        await sso.handle_oidc_error(state, error, error_description or "")

    return await sso.handle_oidc_callback(state or "", code or "")


@router.post("/saml/acs", response_model=SSOLoginResult)
async def saml_acs(
    relay_state: str = Form("", alias="RelayState"),
    saml_response: str = Form("", alias="SAMLResponse"),
    sso: SSOService = Depends(get_sso_service),
):
    """SAML Assertion Consumer Service (HTTP-POST binding)."""
    return await sso.handle_saml_callback(relay_state, saml_response)


@router.get("/metadata/{connection_id}")
async def sp_metadata(
    connection_id: int,
    sso: SSOService = Depends(get_sso_service),
):
    """SAML Service Provider metadata for one connection."""
    metadata = await sso.get_sp_metadata(connection_id)
    return Response(content=metadata, media_type="application/xml")
