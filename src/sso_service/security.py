"""
Session issuance for SSO logins.

The SSO flows hand a resolved user to a ``TokenIssuer``; the default
implementation mints JWT access/refresh tokens with python-jose, the same
way the enterprise auth service does for password logins.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import jwt

from sso_service.config.settings import Settings, get_settings
from sso_service.domain.sso import IssuedTokens
from sso_service.models import Organization, User


class TokenIssuer(ABC):
    """Mints a host-application session for an authenticated user."""

    @abstractmethod
    async def issue_token_for_user(
        self, user: User, organization: Organization, method: str = "sso"
    ) -> IssuedTokens:
        """Issue access and refresh tokens for ``user``.

        Args:
            user: Resolved account
            organization: Organization the login was scoped to
            method: Authentication method recorded in the token ("sso")

        Returns:
            IssuedTokens
        """


class JWTTokenIssuer(TokenIssuer):
    """HS256 JWT session tokens."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def issue_token_for_user(
        self, user: User, organization: Organization, method: str = "sso"
    ) -> IssuedTokens:
        access_token = self.create_access_token(
            user_id=user.id, organization_id=organization.id, email=user.email, method=method
        )
        refresh_token = self.create_refresh_token(user_id=user.id)
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.settings.access_token_expire_minutes * 60,
        )

    def create_access_token(
        self,
        user_id: UUID,
        organization_id: UUID,
        email: str,
        method: str = "sso",
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """
        Create a JWT access token.

        Args:
            user_id: User UUID
            organization_id: Organization UUID
            email: User email
            method: Authentication method ("sso" or "password")
            expires_delta: Optional custom expiration time

        Returns:
            Encoded JWT token string
        """
        now = datetime.now(timezone.utc)
        if expires_delta:
            expire = now + expires_delta
        else:
            expire = now + timedelta(minutes=self.settings.access_token_expire_minutes)

        to_encode = {
            "sub": str(user_id),  # Subject (user ID)
            "email": email,
            "org_id": str(organization_id),
            "amr": [method],  # Authentication method reference
            "exp": expire,
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }

        return jwt.encode(to_encode, self.settings.jwt_secret_key, algorithm=self.settings.jwt_algorithm)

    def create_refresh_token(self, user_id: UUID, expires_delta: Optional[timedelta] = None) -> str:
        """
        Create a JWT refresh token.

        Args:
            user_id: User UUID
            expires_delta: Optional custom expiration time

        Returns:
            Encoded JWT token string
        """
        now = datetime.now(timezone.utc)
        if expires_delta:
            expire = now + expires_delta
        else:
            expire = now + timedelta(days=self.settings.refresh_token_expire_days)

        to_encode = {
            "sub": str(user_id),
            "exp": expire,
            "iat": now,
            "type": "refresh",
            "jti": str(uuid.uuid4()),  # Unique token ID for rotation
        }

        return jwt.encode(to_encode, self.settings.jwt_secret_key, algorithm=self.settings.jwt_algorithm)

    def verify_token(self, token: str, token_type: str = "access") -> dict:
        """
        Verify and decode a JWT token.

        Raises:
            JWTError: If token is invalid or expired
            ValueError: If token type doesn't match
        """
        payload = jwt.decode(token, self.settings.jwt_secret_key, algorithms=[self.settings.jwt_algorithm])

        if payload.get("type") != token_type:
            raise ValueError(f"Invalid token type. Expected {token_type}, got {payload.get('type')}")

        return payload
