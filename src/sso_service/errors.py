"""
SSO error taxonomy.

Every error carries a stable ``code``, the HTTP status it maps to, a generic
``public_message`` that is safe to return to the caller, and an internal
``reason`` that is only ever logged.
"""

from typing import Optional


class SSOError(Exception):
    """Base class for all SSO failures."""

    code = "sso_error"
    status_code = 400
    public_message = "SSO authentication failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.public_message
        super().__init__(self.reason)


class ConnectionNotFoundError(SSOError):
    """No SSO connection exists for the requested domain or id."""

    code = "sso_not_available"
    status_code = 404
    public_message = "SSO is not available for this domain"


class ConnectionInactiveError(SSOError):
    """The SSO connection exists but is not active."""

    code = "sso_not_available"
    status_code = 404
    public_message = "SSO is not available for this domain"


class InvalidStateError(SSOError):
    """Unknown, expired or already used state token."""

    code = "invalid_state"
    status_code = 400
    public_message = "Invalid or expired SSO state"


class DomainMismatchError(SSOError):
    """Asserted email domain does not match the connection domain."""

    code = "domain_mismatch"
    status_code = 403
    public_message = "Email domain does not match the SSO connection"


class ProtocolMismatchError(SSOError):
    """Connection protocol and its configuration disagree."""

    code = "protocol_mismatch"
    status_code = 400
    public_message = "Protocol configuration missing for connection type"


class ProvisioningBlockedError(SSOError):
    """Membership is missing and automatic provisioning was requested."""

    code = "provisioning_blocked"
    status_code = 403
    public_message = (
        "Automatic provisioning requires organization key exchange and is blocked"
    )


class InvalidSAMLResponseError(SSOError):
    """Malformed SAML response or a failed SAML validation check."""

    code = "invalid_saml_response"
    status_code = 401
    public_message = "Invalid SAML response"


class OIDCAuthenticationError(SSOError):
    """Token exchange or ID token validation failed."""

    code = "oidc_authentication_failed"
    status_code = 401
    public_message = "OIDC authentication failed"


class IdentityProviderError(SSOError):
    """Identity provider could not be reached or returned garbage."""

    code = "identity_provider_unavailable"
    status_code = 502
    public_message = "Identity provider is unavailable"


class UserNotExistError(SSOError):
    """No account exists for the asserted email."""

    code = "user_not_exist"
    status_code = 403
    public_message = "User does not exist; create an account first"


class AccountDisabledError(SSOError):
    """The account exists but has been disabled."""

    code = "account_disabled"
    status_code = 403
    public_message = "User account is disabled"


class NotAMemberError(SSOError):
    """The account is not a member of the connection's organization."""

    code = "not_a_member"
    status_code = 403
    public_message = "User is not a member of this organization"


class MembershipInactiveError(SSOError):
    """Membership exists but is not accepted or confirmed."""

    code = "membership_inactive"
    status_code = 403
    public_message = "Organization membership is not active"


class OrganizationNotFoundError(SSOError):
    """The organization does not exist."""

    code = "organization_not_found"
    status_code = 404
    public_message = "Organization not found"


class ConnectionValidationError(SSOError):
    """Connection configuration is incomplete or invalid."""

    code = "invalid_connection"
    status_code = 400
    public_message = "Invalid SSO connection configuration"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason)
        # Admin-facing: the reason names the missing fields, not a secret.
        if reason:
            self.public_message = reason


class DomainConflictError(SSOError):
    """Domain is already routed to another connection."""

    code = "domain_conflict"
    status_code = 409
    public_message = "Domain is already configured for another organization"


class InvalidRedirectError(SSOError):
    """Post-login redirect target is not allowed."""

    code = "invalid_redirect"
    status_code = 400
    public_message = "Redirect URL is not allowed"


class InvalidDomainError(SSOError):
    """Login domain is empty or malformed."""

    code = "invalid_domain"
    status_code = 400
    public_message = "A valid email domain is required"
