"""
Database models for the SSO service.

- Organizations, users and memberships (read by login completion)
- SSO connections (per-organization IdP configuration)
- SSO states (single-use login attempt records)
"""

from sso_service.models.base import Base
from sso_service.models.membership import MemberRole, MemberStatus, OrganizationMember
from sso_service.models.organization import Organization
from sso_service.models.sso import SSOConnection, SSOState
from sso_service.models.user import User

__all__ = [
    "Base",
    "Organization",
    "User",
    "OrganizationMember",
    "MemberRole",
    "MemberStatus",
    "SSOConnection",
    "SSOState",
]
