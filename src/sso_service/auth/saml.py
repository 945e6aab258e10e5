"""
SAML 2.0 flow engine for enterprise SSO.

Handles the redirect binding used by organization connections:
- IdP redirect URL generation (RelayState carries the login state)
- Parsing of POSTed SAML responses into a typed structure
- Response validation (signature, issuer, time window, recipient, audience)
- Email extraction from attributes or NameID
- Service Provider metadata generation

Works with Okta, Azure AD / Entra ID, OneLogin, Google Workspace and other
SAML 2.0 providers.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from xml.etree import ElementTree

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring as safe_fromstring
from onelogin.saml2.constants import OneLogin_Saml2_Constants
from onelogin.saml2.errors import OneLogin_Saml2_Error
from onelogin.saml2.settings import OneLogin_Saml2_Settings
from onelogin.saml2.utils import OneLogin_Saml2_Utils

from sso_service.domain.sso import SAMLConfig
from sso_service.errors import InvalidSAMLResponseError

logger = logging.getLogger(__name__)

DS_NS = "http://www.w3.org/2000/09/xmldsig#"

# Attribute names (lower-cased) that carry the user's email address
EMAIL_ATTRIBUTE_NAMES = (
    "email",
    "mail",
    "emailaddress",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress",
    "urn:oid:0.9.2342.19200300.100.1.3",
)

DEFAULT_CLOCK_SKEW = timedelta(minutes=2)


@dataclass
class SAMLAttribute:
    """One attribute from the assertion's AttributeStatement"""

    name: str
    values: list[str] = field(default_factory=list)


@dataclass
class SAMLResponseData:
    """The parts of a SAML Response this service validates and reads"""

    response_issuer: str = ""
    assertion_issuer: str = ""
    response_signed: bool = False
    assertion_signed: bool = False
    name_id: str = ""
    recipient: str = ""
    not_before: str = ""
    not_on_or_after: str = ""
    audience: str = ""
    attributes: list[SAMLAttribute] = field(default_factory=list)

    @property
    def issuer(self) -> str:
        """Assertion issuer, falling back to the Response issuer"""
        return self.assertion_issuer or self.response_issuer

    @property
    def has_signature(self) -> bool:
        return self.response_signed or self.assertion_signed


def build_login_redirect(sso_url: str, relay_state: str) -> str:
    """Append ``RelayState`` to the IdP SSO URL, keeping its existing query."""
    parts = urlsplit(sso_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"invalid SAML SSO URL: {sso_url!r}")

    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "RelayState"]
    query.append(("RelayState", relay_state))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def decode_saml_response(saml_response: str) -> bytes:
    """Base64-decode a POSTed SAMLResponse.

    Standard encoding is tried first, then unpadded encoding. Line breaks
    inserted by some IdPs are ignored.
    """
    compact = "".join(saml_response.split())
    if not compact:
        raise InvalidSAMLResponseError("empty SAMLResponse")

    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        pass

    try:
        return base64.b64decode(compact + "=" * (-len(compact) % 4), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSAMLResponseError("SAMLResponse is not valid base64") from e


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _text(element: Optional[ElementTree.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def _parse_response_root(xml_bytes: bytes) -> ElementTree.Element:
    try:
        root = safe_fromstring(xml_bytes)
    except DefusedXmlException as e:
        raise InvalidSAMLResponseError(f"unsafe XML construct in SAML response: {e}") from e
    except ElementTree.ParseError as e:
        raise InvalidSAMLResponseError(f"malformed SAML XML: {e}") from e

    if _local_name(root.tag) != "Response":
        raise InvalidSAMLResponseError(f"unexpected root element {_local_name(root.tag)!r}")
    return root


def _single_assertion(root: ElementTree.Element) -> ElementTree.Element:
    assertions = root.findall("{*}Assertion")
    if not assertions:
        raise InvalidSAMLResponseError("SAML response has no Assertion")
    if len(assertions) > 1:
        raise InvalidSAMLResponseError(f"SAML response carries {len(assertions)} assertions")
    return assertions[0]


def parse_saml_response(xml_bytes: bytes) -> SAMLResponseData:
    """Parse a decoded SAML Response into ``SAMLResponseData``.

    Elements are matched by local name so any namespace prefix is accepted.
    The Response must carry exactly one Assertion directly under it; encrypted
    assertions are not supported.

    Raises:
        InvalidSAMLResponseError: If the XML is malformed, unsafe, or does not
            carry exactly one assertion
    """
    root = _parse_response_root(xml_bytes)
    assertion = _single_assertion(root)

    data = SAMLResponseData(
        response_issuer=_text(root.find("{*}Issuer")),
        assertion_issuer=_text(assertion.find("{*}Issuer")),
        response_signed=root.find("{*}Signature") is not None,
        assertion_signed=assertion.find("{*}Signature") is not None,
        name_id=_text(assertion.find("{*}Subject/{*}NameID")),
    )

    confirmation_data = assertion.find("{*}Subject/{*}SubjectConfirmation/{*}SubjectConfirmationData")
    if confirmation_data is not None:
        data.recipient = (confirmation_data.get("Recipient") or "").strip()

    conditions = assertion.find("{*}Conditions")
    if conditions is not None:
        data.not_before = (conditions.get("NotBefore") or "").strip()
        data.not_on_or_after = (conditions.get("NotOnOrAfter") or "").strip()
        data.audience = _text(conditions.find("{*}AudienceRestriction/{*}Audience"))

    for attribute in assertion.findall("{*}AttributeStatement/{*}Attribute"):
        data.attributes.append(
            SAMLAttribute(
                name=(attribute.get("Name") or "").strip(),
                values=[_text(value) for value in attribute.findall("{*}AttributeValue")],
            )
        )

    return data


def parse_saml_time(raw: str) -> datetime:
    """Parse an xs:dateTime value (``2024-01-01T00:00:00Z``, optional fraction)."""
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    # IdPs may send nanosecond fractions; keep microsecond precision
    if "." in value:
        head, _, tail = value.partition(".")
        digits = "".join(ch for ch in tail if ch.isdigit())
        offset = tail[len(digits):]
        value = f"{head}.{digits[:6].ljust(6, '0')}{offset}"

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_url(url: str) -> str:
    """Normalize a URL for comparison: trailing slash ignored, scheme/host lower-cased."""
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def urls_match(a: str, b: str) -> bool:
    if not a.strip() or not b.strip():
        return False
    return normalize_url(a) == normalize_url(b)


class SAMLResponseValidator:
    """
    Validates a parsed SAML response for one connection.

    Checks run in a fixed order and stop at the first failure; each failure
    raises ``InvalidSAMLResponseError`` with the specific reason for logging.
    """

    def __init__(
        self,
        config: SAMLConfig,
        sp_entity_id: str,
        sp_acs_url: str,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
    ):
        self.config = config
        self.sp_entity_id = sp_entity_id
        self.sp_acs_url = sp_acs_url
        self.clock_skew = clock_skew

    def validate(self, data: SAMLResponseData, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)
        self._check_signature_present(data)
        self._check_issuer(data)
        self._check_time_window(data, now)
        self._check_recipient(data)
        self._check_audience(data)

    def _check_signature_present(self, data: SAMLResponseData) -> None:
        # Presence only; cryptographic verification is verify_xml_signature()
        if self.config.want_assertion_signed and not data.has_signature:
            raise InvalidSAMLResponseError("SAML response/assertion is not signed")

    def _check_issuer(self, data: SAMLResponseData) -> None:
        expected = self.config.entity_id.strip()
        if not expected:
            return
        if data.issuer != expected:
            raise InvalidSAMLResponseError(
                f"SAML issuer mismatch: got {data.issuer!r}, expected {expected!r}"
            )

    def _check_time_window(self, data: SAMLResponseData, now: datetime) -> None:
        try:
            if data.not_before:
                not_before = parse_saml_time(data.not_before)
                if now < not_before - self.clock_skew:
                    raise InvalidSAMLResponseError(f"SAML assertion not valid before {data.not_before}")
            if data.not_on_or_after:
                not_on_or_after = parse_saml_time(data.not_on_or_after)
                if now >= not_on_or_after + self.clock_skew:
                    raise InvalidSAMLResponseError(f"SAML assertion expired at {data.not_on_or_after}")
        except ValueError as e:
            raise InvalidSAMLResponseError(f"unparsable SAML condition timestamp: {e}") from e

    def _check_recipient(self, data: SAMLResponseData) -> None:
        if data.recipient and not urls_match(data.recipient, self.sp_acs_url):
            raise InvalidSAMLResponseError(
                f"SAML recipient mismatch: got {data.recipient!r}, expected {self.sp_acs_url!r}"
            )

    def _check_audience(self, data: SAMLResponseData) -> None:
        if data.audience and not urls_match(data.audience, self.sp_entity_id):
            raise InvalidSAMLResponseError(
                f"SAML audience mismatch: got {data.audience!r}, expected {self.sp_entity_id!r}"
            )


def _check_signature_reference(
    root: ElementTree.Element, signed: ElementTree.Element, signature: ElementTree.Element
) -> None:
    element_id = signed.get("ID", "")
    references = signature.findall(f"{{{DS_NS}}}SignedInfo/{{{DS_NS}}}Reference")
    if not element_id or len(references) != 1:
        raise InvalidSAMLResponseError("SAML signature must carry one Reference to an element with an ID")

    uri = references[0].get("URI", "")
    if uri not in ("", f"#{element_id}"):
        raise InvalidSAMLResponseError(
            f"SAML signature references {uri!r}, not the enclosing {_local_name(signed.tag)} {element_id!r}"
        )

    if sum(1 for element in root.iter() if element.get("ID") == element_id) != 1:
        raise InvalidSAMLResponseError(f"SAML response repeats the ID {element_id!r}")


def verify_xml_signature(xml_bytes: bytes, certificate: str) -> None:
    """Cryptographically verify the XML-DSig signature of a SAML response.

    The Response signature is checked when present, otherwise the signature
    of the single Assertion. The signature's Reference must point at the
    element that carries it, so a signed element relocated elsewhere in the
    document cannot vouch for the assertion that is read.

    Raises:
        InvalidSAMLResponseError: Missing, misplaced or invalid signature
    """
    if not certificate.strip():
        raise InvalidSAMLResponseError("connection has no IdP certificate to verify against")

    root = _parse_response_root(xml_bytes)
    assertion = _single_assertion(root)

    signed = root
    signature = root.find(f"{{{DS_NS}}}Signature")
    if signature is None:
        signed = assertion
        signature = assertion.find(f"{{{DS_NS}}}Signature")
    if signature is None:
        raise InvalidSAMLResponseError("SAML response carries no signature to verify")

    _check_signature_reference(root, signed, signature)

    cert = OneLogin_Saml2_Utils.format_cert(certificate)
    if not OneLogin_Saml2_Utils.validate_sign(xml_bytes, cert=cert, raise_exceptions=False):
        raise InvalidSAMLResponseError("SAML signature verification failed")



def extract_saml_email(data: SAMLResponseData) -> str:
    """Extract the asserted email address.

    Known email attributes are scanned first (first value containing ``@``),
    then the Subject NameID.

    Returns:
        Lower-cased email address
    """
    for attribute in data.attributes:
        if attribute.name.lower() not in EMAIL_ATTRIBUTE_NAMES:
            continue
        for value in attribute.values:
            if "@" in value:
                return value.strip().lower()

    if "@" in data.name_id:
        return data.name_id.strip().lower()

    raise InvalidSAMLResponseError("email is missing in SAML assertion")




def build_sp_metadata(sp_entity_id: str, sp_acs_url: str, want_assertions_signed: bool = True) -> str:
    """
    Generate SAML Service Provider metadata XML.

    Returns:
        SAML metadata XML string

    Raises:
        ValueError: If the SP settings or the generated metadata are invalid
    """
    settings = {
        "strict": True,
        "sp": {
            "entityId": sp_entity_id,
            "assertionConsumerService": {
                "url": sp_acs_url,
                "binding": OneLogin_Saml2_Constants.BINDING_HTTP_POST,
            },
            "NameIDFormat": OneLogin_Saml2_Constants.NAMEID_EMAIL_ADDRESS,
        },
        "security": {
            "authnRequestsSigned": False,
            "wantAssertionsSigned": want_assertions_signed,
        },
    }

    try:
        saml_settings = OneLogin_Saml2_Settings(settings, sp_validation_only=True)
    except OneLogin_Saml2_Error as e:
        raise ValueError(f"Invalid SAML SP settings: {e}") from e

    metadata = saml_settings.get_sp_metadata()
    errors = saml_settings.validate_metadata(metadata)
    if errors:
        raise ValueError(f"Invalid SAML metadata: {errors}")

    if isinstance(metadata, bytes):
        metadata = metadata.decode("utf-8")
    return metadata
