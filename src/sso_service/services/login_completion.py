"""Login completion for SSO.

Maps a verified external identity (an email asserted by the IdP and already
checked against the connection domain) to an existing account and an active
organization membership, then hands off to session issuance.

This step never creates accounts or memberships. Just-in-time provisioning
stays disabled until new members can be given an encrypted copy of the
organization's data key; until then a missing membership on an
``auto_provision`` connection fails with ``ProvisioningBlockedError``.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sso_service.domain.sso import OrganizationSummary, SSOLoginResult, UserSummary
from sso_service.errors import (
    AccountDisabledError,
    MembershipInactiveError,
    NotAMemberError,
    OrganizationNotFoundError,
    ProvisioningBlockedError,
    UserNotExistError,
)
from sso_service.models import Organization, OrganizationMember, SSOConnection, User
from sso_service.security import TokenIssuer

logger = logging.getLogger(__name__)


class LoginCompletion:
    """Resolves account and membership and issues the session."""

    def __init__(self, db: AsyncSession, token_issuer: TokenIssuer):
        self.db = db
        self.token_issuer = token_issuer

    async def complete(
        self, connection: SSOConnection, email: str, redirect_url: str = ""
    ) -> SSOLoginResult:
        """Finish an SSO login for a verified email.

        Args:
            connection: Connection the login came through
            email: Verified, domain-checked email address
            redirect_url: Post-login destination from the login state

        Returns:
            SSOLoginResult with session tokens (is_new_user is always False)
        """
        email = email.strip().lower()

        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email, User.deleted_at.is_(None))
        )
        users = result.scalars().all()
        if len(users) > 1:
            logger.warning(
                f"SSO login refused: {len(users)} accounts match {email} case-insensitively "
                f"(ids={sorted(str(u.id) for u in users)})"
            )
            raise UserNotExistError(f"ambiguous account for {email}")
        if not users:
            raise UserNotExistError(f"no account for {email}")
        user = users[0]
        if not user.is_active:
            raise AccountDisabledError(f"account {user.id} is disabled")

        result = await self.db.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == connection.organization_id,
                OrganizationMember.user_id == user.id,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            if connection.auto_provision:
                logger.warning(
                    f"SSO login for user {user.id} blocked: connection {connection.id} requests "
                    f"auto-provisioning, which requires organization key exchange"
                )
                raise ProvisioningBlockedError(
                    f"user {user.id} has no membership in organization {connection.organization_id}"
                )
            raise NotAMemberError(
                f"user {user.id} is not a member of organization {connection.organization_id}"
            )

        if not membership.is_active:
            raise MembershipInactiveError(f"membership status is {membership.status!r}")

        result = await self.db.execute(
            select(Organization).where(
                Organization.id == connection.organization_id, Organization.deleted_at.is_(None)
            )
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            raise OrganizationNotFoundError(f"organization {connection.organization_id} not found")

        tokens = await self.token_issuer.issue_token_for_user(user, organization, method="sso")

        logger.info(
            f"SSO login completed: user={user.id} org={organization.id} "
            f"connection={connection.id} protocol={connection.protocol}"
        )

        return SSOLoginResult(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
            user=UserSummary(id=user.id, email=user.email, full_name=user.full_name),
            organization=OrganizationSummary(id=organization.id, name=organization.name, slug=organization.slug),
            is_new_user=False,
            redirect_url=redirect_url,
        )
