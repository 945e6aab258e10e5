"""Unit tests for LoginCompletion: account and membership resolution"""

import pytest
from jose import jwt
from sqlalchemy import func, select

from conftest import add_user
from sso_service.errors import (
    AccountDisabledError,
    MembershipInactiveError,
    NotAMemberError,
    ProvisioningBlockedError,
    UserNotExistError,
)
from sso_service.models import MemberStatus, OrganizationMember, User
from sso_service.security import JWTTokenIssuer
from sso_service.services.login_completion import LoginCompletion


@pytest.fixture
def completion(test_db, test_settings) -> LoginCompletion:
    return LoginCompletion(test_db, JWTTokenIssuer(test_settings))


async def count_rows(db, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


@pytest.mark.unit
class TestLoginCompletion:
    """Mapping a verified email to a session"""

    @pytest.mark.asyncio
    async def test_member_gets_session(self, completion, oidc_connection, alice, test_settings):
        result = await completion.complete(oidc_connection, "ALICE@acme.com", "/dashboard")

        assert result.user.id == alice.id
        assert result.organization.id == oidc_connection.organization_id
        assert result.is_new_user is False
        assert result.redirect_url == "/dashboard"
        assert result.token_type == "bearer"
        assert result.expires_in == test_settings.access_token_expire_minutes * 60

        claims = jwt.decode(
            result.access_token, test_settings.jwt_secret_key, algorithms=[test_settings.jwt_algorithm]
        )
        assert claims["sub"] == str(alice.id)
        assert claims["org_id"] == str(oidc_connection.organization_id)
        assert claims["amr"] == ["sso"]

    @pytest.mark.asyncio
    async def test_unknown_user_is_not_created(self, completion, oidc_connection, test_db):
        users_before = await count_rows(test_db, User)

        with pytest.raises(UserNotExistError):
            await completion.complete(oidc_connection, "stranger@acme.com")

        assert await count_rows(test_db, User) == users_before

    @pytest.mark.asyncio
    async def test_disabled_account(self, completion, oidc_connection, test_db, test_organization):
        await add_user(test_db, "disabled@acme.com", test_organization, is_active=False)

        with pytest.raises(AccountDisabledError):
            await completion.complete(oidc_connection, "disabled@acme.com")

    @pytest.mark.asyncio
    async def test_non_member(self, completion, oidc_connection, test_db):
        await add_user(test_db, "outsider@acme.com")

        with pytest.raises(NotAMemberError):
            await completion.complete(oidc_connection, "outsider@acme.com")

    @pytest.mark.asyncio
    async def test_auto_provision_is_blocked_not_performed(
        self, completion, oidc_connection, test_db
    ):
        await add_user(test_db, "newhire@acme.com")
        oidc_connection.auto_provision = True
        await test_db.commit()
        members_before = await count_rows(test_db, OrganizationMember)

        with pytest.raises(ProvisioningBlockedError):
            await completion.complete(oidc_connection, "newhire@acme.com")

        assert await count_rows(test_db, OrganizationMember) == members_before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [MemberStatus.INVITED, MemberStatus.SUSPENDED])
    async def test_inactive_membership(self, completion, oidc_connection, test_db, test_organization, status):
        await add_user(test_db, "pending@acme.com", test_organization, status=status)

        with pytest.raises(MembershipInactiveError):
            await completion.complete(oidc_connection, "pending@acme.com")

    @pytest.mark.asyncio
    async def test_accepted_membership_signs_in(self, completion, oidc_connection, test_db, test_organization):
        await add_user(test_db, "accepted@acme.com", test_organization, status=MemberStatus.ACCEPTED)

        result = await completion.complete(oidc_connection, "accepted@acme.com")

        assert result.user.email == "accepted@acme.com"

    @pytest.mark.asyncio
    async def test_case_variant_accounts_fail_closed(
        self, completion, oidc_connection, alice, test_db
    ):
        await add_user(test_db, "Alice@acme.com")

        with pytest.raises(UserNotExistError):
            await completion.complete(oidc_connection, "alice@acme.com")
