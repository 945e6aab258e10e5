"""SSO Service

Purpose: Orchestrates organization SSO logins across both protocols

Flow:
1. initiate_login: domain -> active connection -> stored AuthState -> IdP URL
2. handle_oidc_callback / handle_saml_callback: consume the state first, then
   validate the IdP response for the state's connection
3. LoginCompletion maps the verified email to an account and membership

Failures are raised as ``SSOError`` subclasses. The specific reason is logged
here with the connection id; callers only ever see the generic message.
"""

import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import urlsplit

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from sso_service.auth.oidc import OIDCProvider, extract_oidc_email, verify_nonce
from sso_service.auth.pkce import generate_pkce_pair, generate_state_token
from sso_service.auth.saml import (
    SAMLResponseValidator,
    build_login_redirect,
    decode_saml_response,
    extract_saml_email,
    parse_saml_response,
    verify_xml_signature,
)
from sso_service.config.settings import Settings
from sso_service.domain.sso import AuthState, OIDCConfig, SAMLConfig, SSOLoginResult, SSOProtocol
from sso_service.errors import (
    ConnectionInactiveError,
    ConnectionValidationError,
    DomainMismatchError,
    InvalidDomainError,
    InvalidRedirectError,
    InvalidSAMLResponseError,
    InvalidStateError,
    OIDCAuthenticationError,
    ProtocolMismatchError,
    SSOError,
)
from sso_service.models import SSOConnection
from sso_service.security import TokenIssuer
from sso_service.services.connection_registry import ConnectionRegistry, normalize_domain
from sso_service.services.login_completion import LoginCompletion
from sso_service.services.state_store import StateStore

logger = logging.getLogger(__name__)


def domain_from_login_input(value: str) -> str:
    """Accept either ``acme.com`` or ``alice@acme.com`` and return the domain."""
    candidate = (value or "").strip()
    if "@" in candidate:
        candidate = candidate.rsplit("@", 1)[1]
    domain = normalize_domain(candidate)

    if not domain or "." not in domain or domain.startswith(".") or domain.endswith("."):
        raise InvalidDomainError(f"invalid login domain {value!r}")
    if any(ch.isspace() or ch in "/\\:?#" for ch in domain):
        raise InvalidDomainError(f"invalid login domain {value!r}")
    return domain


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower() if "@" in email else ""


class SSOService:
    """Entry point for SSO login flows

    Example:
        service = SSOService(db, settings, state_store, http_client, token_issuer)
        url = await service.initiate_login("acme.com", "/dashboard")
        result = await service.handle_oidc_callback(state, code)
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        state_store: StateStore,
        http_client: httpx.AsyncClient,
        token_issuer: TokenIssuer,
    ):
        self.settings = settings
        self.state_store = state_store
        self.http = http_client
        self.registry = ConnectionRegistry(db, settings)
        self.login_completion = LoginCompletion(db, token_issuer)

    @property
    def oidc_redirect_uri(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/api/v1/sso/oidc/callback"

    @property
    def state_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.sso_state_ttl_minutes)

    async def initiate_login(self, domain: str, redirect_url: str = "") -> str:
        """Start an SSO login for an email domain.

        Args:
            domain: Email domain, or a full email address
            redirect_url: Where to send the user after login

        Returns:
            URL of the identity provider to redirect the browser to

        Raises:
            InvalidDomainError: Malformed domain
            InvalidRedirectError: Redirect target is not allowed
            ConnectionNotFoundError / ConnectionInactiveError: No usable connection
        """
        login_domain = domain_from_login_input(domain)
        self.validate_redirect_url(redirect_url)

        connection = await self.registry.get_by_domain(login_domain)
        if not connection.is_active:
            raise ConnectionInactiveError(f"connection {connection.id} is {connection.status}")

        config = self._protocol_config(connection)
        if isinstance(config, OIDCConfig):
            return await self._initiate_oidc(connection, config, redirect_url)
        return await self._initiate_saml(connection, config, redirect_url)

    async def _initiate_oidc(
        self, connection: SSOConnection, config: OIDCConfig, redirect_url: str
    ) -> str:
        auth_state = AuthState.new(
            state=generate_state_token(),
            connection_id=connection.id,
            organization_id=connection.organization_id,
            redirect_url=redirect_url,
            ttl=self.state_ttl,
        )
        auth_state.nonce = generate_state_token()

        code_challenge = None
        if config.pkce_enabled:
            auth_state.code_verifier, code_challenge = generate_pkce_pair()

        await self.state_store.create(auth_state)

        provider = OIDCProvider(config, self.http, self.oidc_redirect_uri)
        endpoints = await provider.resolve_endpoints()
        url = provider.build_authorization_url(
            endpoints, auth_state.state, auth_state.nonce, code_challenge
        )

        logger.info(f"OIDC login initiated: connection={connection.id} pkce={config.pkce_enabled}")
        return url

    async def _initiate_saml(
        self, connection: SSOConnection, config: SAMLConfig, redirect_url: str
    ) -> str:
        auth_state = AuthState.new(
            state=generate_state_token(),
            connection_id=connection.id,
            organization_id=connection.organization_id,
            redirect_url=redirect_url,
            ttl=self.state_ttl,
        )

        try:
            url = build_login_redirect(config.sso_url, auth_state.state)
        except ValueError as e:
            logger.error(f"SAML connection {connection.id} has an unusable sso_url: {e}")
            raise ConnectionValidationError(str(e)) from e

        await self.state_store.create(auth_state)

        logger.info(f"SAML login initiated: connection={connection.id}")
        return url

    def validate_redirect_url(self, redirect_url: str) -> None:
        """Allow relative paths and absolute URLs on configured hosts only."""
        if not redirect_url:
            return

        if "\\" in redirect_url or any(ord(ch) < 32 for ch in redirect_url):
            raise InvalidRedirectError(f"redirect_url {redirect_url!r} contains illegal characters")

        if redirect_url.startswith("/") and not redirect_url.startswith("//"):
            return

        parts = urlsplit(redirect_url)
        if parts.scheme in ("http", "https") and parts.netloc.lower() in self.settings.redirect_hosts:
            return

        raise InvalidRedirectError(f"redirect_url {redirect_url!r} is not on an allowed host")

    async def handle_oidc_callback(self, state: str, code: str) -> SSOLoginResult:
        """Complete an OIDC login from the authorization callback.

        Raises:
            InvalidStateError: Unknown, used or expired state
            OIDCAuthenticationError: Code exchange or ID token validation failed
            DomainMismatchError: Email domain differs from the connection domain
        """
        auth_state = await self.state_store.consume(state)
        connection = await self._load_callback_connection(auth_state, SSOProtocol.OIDC)

        try:
            if not code:
                raise OIDCAuthenticationError("callback carried no authorization code")

            config = connection.oidc_config
            provider = OIDCProvider(config, self.http, self.oidc_redirect_uri)
            endpoints = await provider.resolve_endpoints()
            tokens = await provider.exchange_code(endpoints, code, auth_state.code_verifier or None)
            claims = await provider.verify_id_token(tokens["id_token"], endpoints)
            verify_nonce(claims, auth_state.nonce)
            email = extract_oidc_email(claims, config.email_claim)
            self._check_email_domain(connection, email)

            return await self.login_completion.complete(connection, email, auth_state.redirect_url)
        except SSOError as e:
            logger.warning(f"OIDC login failed: connection={connection.id} code={e.code} reason={e.reason}")
            raise

    async def handle_oidc_error(
        self, state: Optional[str], error: str, description: str = ""
    ) -> None:
        """Handle an IdP redirect that carries ``error`` instead of a code.

        The state is consumed when present so it cannot be replayed.

        Raises:
            OIDCAuthenticationError: Always
        """
        connection_id = None
        if state:
            try:
                auth_state = await self.state_store.consume(state)
                connection_id = auth_state.connection_id
            except InvalidStateError:
                pass

        logger.warning(
            f"OIDC provider returned error: connection={connection_id} "
            f"error={error!r} description={description[:200]!r}"
        )
        raise OIDCAuthenticationError(f"identity provider returned {error}")

    async def handle_saml_callback(self, relay_state: str, saml_response: str) -> SSOLoginResult:
        """Complete a SAML login from a POST to the ACS endpoint.

        Raises:
            InvalidSAMLResponseError: Missing fields or failed validation
            InvalidStateError: Unknown, used or expired RelayState
            DomainMismatchError: Email domain differs from the connection domain
        """
        if not relay_state:
            raise InvalidSAMLResponseError("RelayState is required")

        auth_state = await self.state_store.consume(relay_state)
        if not saml_response:
            raise InvalidSAMLResponseError("SAMLResponse is required")

        connection = await self._load_callback_connection(auth_state, SSOProtocol.SAML)

        try:
            config = connection.saml_config
            xml_bytes = decode_saml_response(saml_response)
            data = parse_saml_response(xml_bytes)

            validator = SAMLResponseValidator(
                config,
                sp_entity_id=connection.sp_entity_id,
                sp_acs_url=connection.sp_acs_url,
                clock_skew=timedelta(seconds=self.settings.saml_clock_skew_seconds),
            )
            validator.validate(data)
            if self.settings.saml_verify_xml_signature:
                verify_xml_signature(xml_bytes, config.certificate)

            email = extract_saml_email(data)
            self._check_email_domain(connection, email)

            return await self.login_completion.complete(connection, email, auth_state.redirect_url)
        except SSOError as e:
            logger.warning(f"SAML login failed: connection={connection.id} code={e.code} reason={e.reason}")
            raise

    async def get_sp_metadata(self, connection_id: int) -> str:
        return await self.registry.get_sp_metadata(connection_id)

    async def _load_callback_connection(
        self, auth_state: AuthState, protocol: SSOProtocol
    ) -> SSOConnection:
        connection = await self.registry.get(auth_state.connection_id)
        if not connection.is_active:
            logger.warning(f"SSO callback for inactive connection {connection.id}")
            raise ConnectionInactiveError(f"connection {connection.id} is {connection.status}")

        if connection.protocol != protocol.value:
            logger.error(
                f"Server misconfiguration: {protocol.value} callback for "
                f"{connection.protocol} connection {connection.id}"
            )
            raise ProtocolMismatchError(f"connection {connection.id} is not {protocol.value}")

        self._protocol_config(connection)
        return connection

    def _protocol_config(self, connection: SSOConnection):
        """Stored config, checked against the connection protocol."""
        try:
            config = connection.protocol_config
        except ValueError as e:
            logger.error(f"Server misconfiguration: connection {connection.id} has an invalid config: {e}")
            raise ProtocolMismatchError(f"connection {connection.id} config does not parse") from e

        if isinstance(config, OIDCConfig) and connection.is_oidc:
            return config
        if isinstance(config, SAMLConfig) and connection.is_saml:
            return config

        logger.error(
            f"Server misconfiguration: connection {connection.id} is {connection.protocol} "
            f"but carries {type(config).__name__}"
        )
        raise ProtocolMismatchError(f"connection {connection.id} has no {connection.protocol} config")

    @staticmethod
    def _check_email_domain(connection: SSOConnection, email: str) -> None:
        domain = email_domain(email)
        if domain != normalize_domain(connection.domain):
            raise DomainMismatchError(
                f"email domain {domain!r} does not match connection domain {connection.domain!r}"
            )
