"""
JWT authentication and organization authorization for admin routes.

Provides FastAPI dependencies for:
- Bearer token validation
- User authentication
- Organization admin access control
"""

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sso_service.config.settings import Settings, get_settings
from sso_service.database import get_db
from sso_service.models import OrganizationMember, User
from sso_service.security import JWTTokenIssuer

# HTTP Bearer token scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Validate JWT token and return current user.

    Args:
        credentials: HTTP Authorization header with Bearer token
        db: Database session
        settings: Application settings (JWT secret)

    Returns:
        Authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = JWTTokenIssuer(settings).verify_token(credentials.credentials)
        user_id = UUID(payload["sub"])
    except (JWTError, ValueError, KeyError):
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """
    Get current user and verify they are active.

    Raises:
        HTTPException: If user is inactive
    """
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return current_user


async def require_org_admin(
    organization_id: UUID,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Require user to be an owner or admin of the organization in the path.

    Args:
        organization_id: Organization ID from path parameter
        current_user: Authenticated user
        db: Database session

    Returns:
        User (if they are org admin)

    Raises:
        HTTPException: If user is not an active admin of the organization
    """
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == current_user.id,
        )
    )
    membership = result.scalar_one_or_none()

    if membership is None or not membership.is_active or not membership.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organization admin access required",
        )

    return current_user
