"""Dependency injection functions for the SSO routes."""

from typing import AsyncGenerator

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sso_service.config.settings import Settings, get_settings
from sso_service.database import get_db
from sso_service.infrastructure.redis.client import get_redis_client
from sso_service.security import JWTTokenIssuer, TokenIssuer
from sso_service.services.connection_registry import ConnectionRegistry
from sso_service.services.sso_service import SSOService
from sso_service.services.state_store import DatabaseStateStore, RedisStateStore, StateStore


async def get_http_client(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for identity provider calls, closed after the request"""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


async def get_state_store(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> StateStore:
    """State store for the configured backend"""
    if settings.state_backend == "redis":
        redis_client = await get_redis_client()
        return RedisStateStore(redis_client.get_client())
    return DatabaseStateStore(db)


def get_token_issuer(settings: Settings = Depends(get_settings)) -> TokenIssuer:
    """Get token issuer instance"""
    return JWTTokenIssuer(settings)


def get_connection_registry(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ConnectionRegistry:
    """Get connection registry instance"""
    return ConnectionRegistry(db, settings)


def get_sso_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    state_store: StateStore = Depends(get_state_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
) -> SSOService:
    """Get SSO service instance"""
    return SSOService(db, settings, state_store, http_client, token_issuer)
