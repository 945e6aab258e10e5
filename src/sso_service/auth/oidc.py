"""OpenID Connect (OIDC) flow engine.

Implements the authorization code flow (with PKCE) for organization SSO
connections:
- Discovery document loading (.well-known/openid-configuration)
- Authorization URL generation with state, nonce and code challenge
- Code exchange at the token endpoint
- ID token verification against the provider's JWKS
- Email extraction from verified claims

Works with any standard OIDC provider (Google Workspace, Microsoft Entra ID,
Okta, Auth0, Keycloak).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

from sso_service.domain.sso import OIDCConfig
from sso_service.errors import IdentityProviderError, OIDCAuthenticationError

logger = logging.getLogger(__name__)

# Algorithms accepted for ID token signatures. Symmetric algorithms are
# excluded: the client secret must never double as a verification key here.
ASYMMETRIC_ALGORITHMS = {
    "RS256", "RS384", "RS512",
    "PS256", "PS384", "PS512",
    "ES256", "ES384", "ES512",
}
DEFAULT_ID_TOKEN_ALGORITHMS = ["RS256"]


@dataclass
class ProviderEndpoints:
    """Resolved OAuth2/OIDC endpoints for one connection"""

    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str = ""
    algorithms: Optional[list[str]] = None


class OIDCProvider:
    """OpenID Connect client for one SSO connection.

    Example:
        provider = OIDCProvider(conn.oidc_config, http_client, redirect_uri)
        endpoints = await provider.resolve_endpoints()
        url = provider.build_authorization_url(endpoints, state, nonce, challenge)
    """

    def __init__(self, config: OIDCConfig, http_client: httpx.AsyncClient, redirect_uri: str):
        """Initialize OIDC provider.

        Args:
            config: OIDC configuration of the connection
            http_client: Shared async HTTP client (carries timeouts)
            redirect_uri: Callback URL registered at the provider
        """
        self.config = config
        self.issuer = config.issuer.rstrip("/")
        self.http = http_client
        self.redirect_uri = redirect_uri

        # Discovery document (lazy-loaded)
        self._discovery: Optional[dict] = None

    async def _get_discovery(self) -> dict:
        """Fetch OIDC discovery document (.well-known/openid-configuration)."""
        if self._discovery is None:
            discovery_url = f"{self.issuer}/.well-known/openid-configuration"
            document = await self._get_json(discovery_url)

            advertised = str(document.get("issuer", "")).rstrip("/")
            if advertised and advertised != self.issuer:
                raise IdentityProviderError(
                    f"discovery issuer {advertised!r} does not match configured issuer {self.issuer!r}"
                )

            self._discovery = document
            logger.info(f"OIDC discovery loaded from {discovery_url}")
        return self._discovery

    async def _get_json(self, url: str) -> dict:
        try:
            response = await self.http.get(url)
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"request to {url} failed: {e}") from e
        except ValueError as e:
            raise IdentityProviderError(f"response from {url} is not JSON") from e

        if not isinstance(document, dict):
            raise IdentityProviderError(f"response from {url} is not a JSON object")
        return document

    async def resolve_endpoints(self) -> ProviderEndpoints:
        """Resolve authorization, token and JWKS endpoints.

        Discovery is used when the connection asks for it or when the static
        endpoints are incomplete. Otherwise the configured endpoints are used.
        """
        if self.config.needs_discovery:
            discovery = await self._get_discovery()
            try:
                endpoints = ProviderEndpoints(
                    authorization_endpoint=discovery["authorization_endpoint"],
                    token_endpoint=discovery["token_endpoint"],
                    jwks_uri=self.config.jwks_uri or discovery.get("jwks_uri", ""),
                )
            except KeyError as e:
                raise IdentityProviderError(f"discovery document is missing {e}") from e
            endpoints.algorithms = self._signing_algorithms(discovery)
            return endpoints

        return ProviderEndpoints(
            authorization_endpoint=self.config.auth_url,
            token_endpoint=self.config.token_url,
            jwks_uri=self.config.jwks_uri,
        )

    def build_authorization_url(
        self,
        endpoints: ProviderEndpoints,
        state: str,
        nonce: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        """Generate OIDC authorization URL.

        Args:
            endpoints: Resolved provider endpoints
            state: Correlation token stored in the state store
            nonce: Replay protection value bound into the ID token
            code_challenge: PKCE S256 challenge, when PKCE is enabled

        Returns:
            Authorization URL to redirect the user to
        """
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.config.request_scopes),
            "state": state,
            "nonce": nonce,
        }

        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"

        separator = "&" if "?" in endpoints.authorization_endpoint else "?"
        return f"{endpoints.authorization_endpoint}{separator}{urlencode(params)}"

    async def exchange_code(
        self,
        endpoints: ProviderEndpoints,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> dict:
        """Exchange authorization code for tokens.

        Args:
            endpoints: Resolved provider endpoints
            code: Authorization code from the callback
            code_verifier: PKCE verifier stored with the login state

        Returns:
            Token response dict (must contain id_token)

        Raises:
            OIDCAuthenticationError: If the provider rejects the code
            IdentityProviderError: If the provider cannot be reached
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }

        if code_verifier:
            data["code_verifier"] = code_verifier

        try:
            response = await self.http.post(
                endpoints.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"token request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"OIDC token exchange failed ({response.status_code}): {response.text[:200]}")
            raise OIDCAuthenticationError(f"token exchange failed: {response.status_code}")

        try:
            tokens = response.json()
        except ValueError as e:
            raise IdentityProviderError("token response is not JSON") from e

        if not isinstance(tokens, dict) or not tokens.get("id_token"):
            raise OIDCAuthenticationError("token response did not include id_token")
        return tokens

    async def verify_id_token(self, id_token: str, endpoints: ProviderEndpoints) -> dict:
        """Verify ID token signature, issuer, audience and expiry.

        Args:
            id_token: JWT ID token from the token response
            endpoints: Resolved provider endpoints (JWKS location)

        Returns:
            Verified claims

        Raises:
            OIDCAuthenticationError: If the token does not verify
        """
        jwks = await self._get_jwks(endpoints)
        algorithms = endpoints.algorithms or DEFAULT_ID_TOKEN_ALGORITHMS

        # iss must match the provider's own spelling, trailing slash included
        expected_issuer = self.config.issuer
        if self._discovery and self._discovery.get("issuer"):
            expected_issuer = self._discovery["issuer"]

        try:
            claims = jwt.decode(
                id_token,
                jwks,
                algorithms=algorithms,
                issuer=expected_issuer,
                audience=self.config.client_id,
                options={"verify_at_hash": False},  # access token hash is not used
            )
        except ExpiredSignatureError as e:
            raise OIDCAuthenticationError(f"id_token expired: {e}") from e
        except JWTClaimsError as e:
            raise OIDCAuthenticationError(f"id_token claims invalid: {e}") from e
        except JWTError as e:
            raise OIDCAuthenticationError(f"id_token verification failed: {e}") from e

        return claims

    async def _get_jwks(self, endpoints: ProviderEndpoints) -> dict:
        """Fetch JSON Web Key Set for token validation."""
        jwks_uri = endpoints.jwks_uri
        if not jwks_uri:
            discovery = await self._get_discovery()
            jwks_uri = discovery.get("jwks_uri", "")
            if endpoints.algorithms is None:
                endpoints.algorithms = self._signing_algorithms(discovery)
        if not jwks_uri:
            raise IdentityProviderError("provider does not publish a jwks_uri")

        jwks = await self._get_json(jwks_uri)
        if not isinstance(jwks.get("keys"), list) or not jwks["keys"]:
            raise IdentityProviderError(f"JWKS at {jwks_uri} has no keys")
        return jwks

    @staticmethod
    def _signing_algorithms(discovery: dict) -> list[str]:
        advertised = discovery.get("id_token_signing_alg_values_supported") or []
        algorithms = [alg for alg in advertised if alg in ASYMMETRIC_ALGORITHMS]
        return algorithms or list(DEFAULT_ID_TOKEN_ALGORITHMS)


def verify_nonce(claims: dict, expected_nonce: str) -> None:
    """Require the ID token nonce to match the stored nonce exactly."""
    if not expected_nonce:
        return
    nonce = claims.get("nonce")
    if not isinstance(nonce, str) or nonce != expected_nonce:
        raise OIDCAuthenticationError("id_token nonce does not match login state")


def extract_oidc_email(claims: dict[str, Any], email_claim: str = "email") -> str:
    """Extract the asserted email from verified ID token claims.

    The configured claim must hold a string containing ``@``. An explicit
    ``email_verified: false`` from the provider is never trusted.

    Returns:
        Lower-cased email address
    """
    value = claims.get(email_claim or "email")
    email = value.strip().lower() if isinstance(value, str) else ""
    if not email or "@" not in email:
        raise OIDCAuthenticationError(f"claim {email_claim!r} is missing or not an email")

    if "email_verified" in claims:
        verified = claims["email_verified"]
        if verified is False or (isinstance(verified, str) and verified.strip().lower() == "false"):
            raise OIDCAuthenticationError("email is not verified by identity provider")

    return email
