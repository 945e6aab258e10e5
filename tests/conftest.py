"""
Pytest configuration and fixtures for SSO service tests.

Provides fixtures for:
- Database session (file-based SQLite per test)
- Organizations, users and memberships
- A fake OIDC identity provider served through httpx.MockTransport
- SAML response builders and an xmlsec-backed SAML signer
- Test client with dependency overrides
"""

import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from httpx import ASGITransport, AsyncClient
from jose import jwk, jwt
from onelogin.saml2.utils import OneLogin_Saml2_Utils
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from sso_service.api.dependencies import get_http_client
from sso_service.config.settings import Settings, get_settings
from sso_service.database import get_db
from sso_service.domain.api_sso import ConnectionCreate
from sso_service.domain.sso import SSOProtocol
from sso_service.main import app
from sso_service.models import (
    Base,
    MemberRole,
    MemberStatus,
    Organization,
    OrganizationMember,
    User,
)
from sso_service.security import JWTTokenIssuer
from sso_service.services.connection_registry import ConnectionRegistry
from sso_service.services.sso_service import SSOService
from sso_service.services.state_store import DatabaseStateStore

IDP_ISSUER = "https://idp.example.com"
IDP_CLIENT_ID = "fm-sso-client"
IDP_CLIENT_SECRET = "fm-sso-secret"
IDP_KEY_ID = "test-key-1"

SAML_IDP_ENTITY_ID = "https://saml.idp.example.com/metadata"
SAML_IDP_SSO_URL = "https://saml.idp.example.com/sso?tenant=acme"
SAML_IDP_CERT = "MIIC+test+certificate+body"


@pytest.fixture
def test_settings() -> Settings:
    """Settings used by services and the test app."""
    return Settings(
        base_url="https://sso.example.com",
        database_url="sqlite+aiosqlite://",
        jwt_secret_key="test-secret-key",
        allowed_redirect_hosts=["app.example.com"],
        state_backend="database",
    )


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create test database engine."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test_db.sqlite'}", poolclass=NullPool, echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def test_organization(test_db: AsyncSession) -> Organization:
    """Create test organization."""
    org = Organization(name="Acme Corp", slug="acme", is_active=True)
    test_db.add(org)
    await test_db.commit()
    await test_db.refresh(org)
    return org


@pytest_asyncio.fixture
async def other_organization(test_db: AsyncSession) -> Organization:
    """Create a second organization for isolation tests."""
    org = Organization(name="Globex", slug="globex", is_active=True)
    test_db.add(org)
    await test_db.commit()
    await test_db.refresh(org)
    return org


async def add_user(
    db: AsyncSession,
    email: str,
    organization: Optional[Organization] = None,
    role: MemberRole = MemberRole.MEMBER,
    status: MemberStatus = MemberStatus.CONFIRMED,
    is_active: bool = True,
) -> User:
    """Create a user, optionally with a membership in ``organization``."""
    user = User(email=email, full_name=email.split("@")[0].title(), is_active=is_active)
    db.add(user)
    await db.flush()

    if organization is not None:
        db.add(
            OrganizationMember(
                organization_id=organization.id,
                user_id=user.id,
                role=role.value,
                status=status.value,
            )
        )

    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def alice(test_db: AsyncSession, test_organization: Organization) -> User:
    """Confirmed member of the test organization."""
    return await add_user(test_db, "alice@acme.com", test_organization)


@pytest_asyncio.fixture
async def org_admin(test_db: AsyncSession, test_organization: Organization) -> User:
    """Admin of the test organization."""
    return await add_user(
        test_db, "admin@acme.com", test_organization, role=MemberRole.ADMIN, status=MemberStatus.ACCEPTED
    )


@pytest.fixture
def admin_access_token(org_admin: User, test_organization: Organization, test_settings: Settings) -> str:
    """Create access token for the organization admin."""
    return JWTTokenIssuer(test_settings).create_access_token(
        user_id=org_admin.id, organization_id=test_organization.id, email=org_admin.email
    )


@pytest.fixture
def registry(test_db: AsyncSession, test_settings: Settings) -> ConnectionRegistry:
    return ConnectionRegistry(test_db, test_settings)


def oidc_config(**overrides) -> dict:
    config = {
        "issuer": IDP_ISSUER,
        "client_id": IDP_CLIENT_ID,
        "client_secret": IDP_CLIENT_SECRET,
        "use_discovery": True,
        "pkce_enabled": True,
    }
    config.update(overrides)
    return config


def saml_config(**overrides) -> dict:
    config = {
        "entity_id": SAML_IDP_ENTITY_ID,
        "sso_url": SAML_IDP_SSO_URL,
        "certificate": SAML_IDP_CERT,
        "want_assertion_signed": True,
    }
    config.update(overrides)
    return config


@pytest_asyncio.fixture
async def oidc_connection(registry: ConnectionRegistry, test_organization: Organization):
    """Active OIDC connection for acme.com."""
    connection = await registry.create(
        test_organization.id,
        ConnectionCreate(protocol=SSOProtocol.OIDC, name="Acme IdP", domain="acme.com", config=oidc_config()),
    )
    return await registry.activate(connection.id)


@pytest_asyncio.fixture
async def saml_connection(registry: ConnectionRegistry, test_organization: Organization):
    """Active SAML connection for acme.com."""
    connection = await registry.create(
        test_organization.id,
        ConnectionCreate(protocol=SSOProtocol.SAML, name="Acme SAML", domain="acme.com", config=saml_config()),
    )
    return await registry.activate(connection.id)


class FakeOIDCProvider:
    """In-memory OIDC provider: discovery, JWKS, authorize and token endpoints.

    ``authorize(url, email)`` plays the user's browser at the provider and
    returns the ``(state, code)`` the provider would redirect back with.
    """

    def __init__(self, issuer: str = IDP_ISSUER, client_id: str = IDP_CLIENT_ID):
        self.issuer = issuer
        self.client_id = client_id
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.discovery_issuer = issuer
        self._grants: dict[str, dict] = {}

        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        public_pem = key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        self.jwk = jwk.construct(public_pem, "RS256").to_dict()
        self.jwk.update({"kid": IDP_KEY_ID, "use": "sig"})

    def authorize(self, authorization_url: str, email: str, **claims) -> tuple[str, str]:
        params = {k: v[0] for k, v in parse_qs(urlsplit(authorization_url).query).items()}
        code = secrets.token_urlsafe(16)
        self._grants[code] = {
            "nonce": params.get("nonce"),
            "code_challenge": params.get("code_challenge"),
            "redirect_uri": params.get("redirect_uri"),
            "claims": {"email": email, "email_verified": True, **claims},
        }
        return params["state"], code

    def id_token(self, claims: dict, nonce: Optional[str] = None, **overrides) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "aud": self.client_id,
            "sub": "idp-user-123",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
            **claims,
        }
        if nonce is not None:
            payload["nonce"] = nonce
        payload.update(overrides)
        return jwt.encode(payload, self.private_pem, algorithm="RS256", headers={"kid": IDP_KEY_ID})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/.well-known/openid-configuration":
            return httpx.Response(
                200,
                json={
                    "issuer": self.discovery_issuer,
                    "authorization_endpoint": f"{self.issuer}/authorize",
                    "token_endpoint": f"{self.issuer}/token",
                    "jwks_uri": f"{self.issuer}/jwks",
                    "id_token_signing_alg_values_supported": ["RS256", "HS256"],
                },
            )

        if path == "/jwks":
            return httpx.Response(200, json={"keys": [self.jwk]})

        if path == "/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "server_error"})

            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            grant = self._grants.pop(form.get("code", ""), None)
            if grant is None or form.get("client_secret") != IDP_CLIENT_SECRET:
                return httpx.Response(400, json={"error": "invalid_grant"})

            if grant["code_challenge"]:
                digest = hashlib.sha256(form.get("code_verifier", "").encode()).digest()
                challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
                if challenge != grant["code_challenge"]:
                    return httpx.Response(400, json={"error": "invalid_grant"})

            return httpx.Response(
                200,
                json={
                    "access_token": "idp-access-token",
                    "token_type": "Bearer",
                    "id_token": self.id_token(grant["claims"], nonce=grant["nonce"]),
                },
            )

        return httpx.Response(404)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def fake_idp() -> FakeOIDCProvider:
    return FakeOIDCProvider()


@pytest_asyncio.fixture
async def http_client(fake_idp: FakeOIDCProvider) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_idp.handler)) as client:
        yield client


@pytest.fixture
def state_store(test_db: AsyncSession) -> DatabaseStateStore:
    return DatabaseStateStore(test_db)


@pytest.fixture
def sso_service(test_db, test_settings, state_store, http_client) -> SSOService:
    return SSOService(test_db, test_settings, state_store, http_client, JWTTokenIssuer(test_settings))


def saml_time(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).strftime("%Y-%m-%dT%H:%M:%SZ")


PLACEHOLDER_SIGNATURE = (
    '<ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#">'
    "<ds:SignedInfo/><ds:SignatureValue>c2ln</ds:SignatureValue></ds:Signature>"
)


def saml_assertion_xml(
    email: Optional[str] = "alice@acme.com",
    issuer: str = SAML_IDP_ENTITY_ID,
    recipient: str = "https://sso.example.com/api/v1/sso/saml/acs",
    audience: str = "",
    not_before: Optional[str] = None,
    not_on_or_after: Optional[str] = None,
    name_id: Optional[str] = None,
    email_attribute: str = "email",
    assertion_id: str = "_assert1",
    signature: str = "",
) -> str:
    """Build a standalone saml:Assertion element (declares its own namespace)."""
    not_before = not_before or saml_time(timedelta(minutes=-1))
    not_on_or_after = not_on_or_after or saml_time(timedelta(minutes=5))
    attributes = ""
    if email:
        attributes = (
            "<saml:AttributeStatement>"
            f'<saml:Attribute Name="{email_attribute}"><saml:AttributeValue>{email}</saml:AttributeValue></saml:Attribute>'
            "</saml:AttributeStatement>"
        )
    audience_xml = (
        f"<saml:AudienceRestriction><saml:Audience>{audience}</saml:Audience></saml:AudienceRestriction>"
        if audience
        else ""
    )

    return (
        '<saml:Assertion xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" '
        f'ID="{assertion_id}" Version="2.0" IssueInstant="{saml_time(timedelta(0))}">'
        f"<saml:Issuer>{issuer}</saml:Issuer>"
        f"{signature}"
        "<saml:Subject>"
        f"<saml:NameID>{name_id or 'idp-user-123'}</saml:NameID>"
        "<saml:SubjectConfirmation>"
        f'<saml:SubjectConfirmationData Recipient="{recipient}"/>'
        "</saml:SubjectConfirmation>"
        "</saml:Subject>"
        f'<saml:Conditions NotBefore="{not_before}" NotOnOrAfter="{not_on_or_after}">{audience_xml}</saml:Conditions>'
        f"{attributes}"
        "</saml:Assertion>"
    )


def saml_response_xml(assertions: str, issuer: str = SAML_IDP_ENTITY_ID, extensions: str = "") -> str:
    """Wrap assertion XML in a samlp:Response."""
    extensions_xml = f"<samlp:Extensions>{extensions}</samlp:Extensions>" if extensions else ""
    return (
        '<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol" '
        'xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" '
        f'ID="_resp1" Version="2.0" IssueInstant="{saml_time(timedelta(0))}">'
        f"<saml:Issuer>{issuer}</saml:Issuer>"
        f"{extensions_xml}"
        f"{assertions}"
        "</samlp:Response>"
    )


def build_saml_response(
    email: Optional[str] = "alice@acme.com",
    issuer: str = SAML_IDP_ENTITY_ID,
    recipient: str = "https://sso.example.com/api/v1/sso/saml/acs",
    audience: str = "",
    not_before: Optional[str] = None,
    not_on_or_after: Optional[str] = None,
    signed: bool = True,
    name_id: Optional[str] = None,
    email_attribute: str = "email",
) -> str:
    """Build a base64-encoded SAML Response as an IdP would POST it.

    ``signed`` adds a placeholder Signature element; use SAMLSigner for a
    cryptographically valid one.
    """
    assertion = saml_assertion_xml(
        email=email,
        issuer=issuer,
        recipient=recipient,
        audience=audience,
        not_before=not_before,
        not_on_or_after=not_on_or_after,
        name_id=name_id,
        email_attribute=email_attribute,
        signature=PLACEHOLDER_SIGNATURE if signed else "",
    )
    return base64.b64encode(saml_response_xml(assertion, issuer).encode()).decode()


class SAMLSigner:
    """IdP signing identity: RSA key plus a self-signed certificate."""

    def __init__(self, common_name: str = "saml.idp.example.com"):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.now(timezone.utc)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=30))
            .sign(key, hashes.SHA256())
        )

        self.key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        self.cert_pem = certificate.public_bytes(serialization.Encoding.PEM).decode()

    def sign(self, xml: str) -> str:
        """Sign the element that owns the first saml:Issuer in ``xml``."""
        signed = OneLogin_Saml2_Utils.add_sign(xml, self.key_pem, self.cert_pem)
        return signed.decode() if isinstance(signed, bytes) else signed


@pytest.fixture(scope="session")
def saml_signer() -> SAMLSigner:
    return SAMLSigner()


@pytest_asyncio.fixture
async def client(
    test_db: AsyncSession, test_settings: Settings, http_client: httpx.AsyncClient
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database, settings and IdP overrides."""

    async def override_get_db():
        yield test_db

    async def override_get_http_client():
        yield http_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_http_client] = override_get_http_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
