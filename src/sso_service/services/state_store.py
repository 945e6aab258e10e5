"""SSO State Store

Purpose: Persist short-lived, single-use records for in-flight SSO logins

A state is created when a login starts and consumed by the first callback
that presents its token, whether that callback succeeds or not. Expiry is
enforced lazily on read; ``purge_expired`` is available for an optional
periodic reaper but correctness does not depend on it.

Backends:
- DatabaseStateStore: ``sso_states`` table, consumed with DELETE ... RETURNING
- RedisStateStore: ``sso:state:{token}`` keys with TTL, consumed with GETDEL
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from redis.asyncio import Redis
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sso_service.domain.sso import AuthState
from sso_service.errors import InvalidStateError
from sso_service.models.sso import SSOState

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Storage contract for SSO login state"""

    @abstractmethod
    async def create(self, auth_state: AuthState) -> AuthState:
        """Persist a new state; it must exist before the user is redirected"""

    @abstractmethod
    async def get_by_state(self, token: str) -> Optional[AuthState]:
        """Look up a state without consuming it

        Expired states are deleted and reported as missing.
        """

    @abstractmethod
    async def delete(self, token: str) -> None:
        """Delete a state by its token (no-op if already gone)"""

    @abstractmethod
    async def consume(self, token: str) -> AuthState:
        """Atomically fetch and delete a state

        Raises:
            InvalidStateError: If the state is unknown, already used or expired
        """

    @abstractmethod
    async def purge_expired(self) -> int:
        """Remove expired states, returning how many were removed"""


class DatabaseStateStore(StateStore):
    """SQL-backed state store

    ``consume`` issues a single DELETE ... RETURNING so that two concurrent
    callbacks with the same token cannot both observe the row.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, auth_state: AuthState) -> AuthState:
        row = SSOState.from_auth_state(auth_state)
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)
        return row.to_auth_state()

    async def get_by_state(self, token: str) -> Optional[AuthState]:
        if not token:
            return None

        result = await self.db.execute(select(SSOState).where(SSOState.state == token))
        row = result.scalar_one_or_none()
        if row is None:
            return None

        auth_state = row.to_auth_state()
        if auth_state.is_expired():
            await self.delete(token)
            return None
        return auth_state

    async def delete(self, token: str) -> None:
        await self.db.execute(delete(SSOState).where(SSOState.state == token))
        await self.db.commit()

    async def consume(self, token: str) -> AuthState:
        if not token:
            raise InvalidStateError("empty state token")

        stmt = (
            delete(SSOState)
            .where(SSOState.state == token)
            .returning(SSOState)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.scalars(stmt)
        row = result.first()
        auth_state = row.to_auth_state() if row is not None else None
        await self.db.commit()

        if auth_state is None:
            raise InvalidStateError("state not found or already used")
        if auth_state.is_expired():
            raise InvalidStateError(f"state expired at {auth_state.expires_at.isoformat()}")
        return auth_state

    async def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            delete(SSOState)
            .where(SSOState.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Purged {removed} expired SSO states")
        return removed


class RedisStateStore(StateStore):
    """Redis-backed state store

    Storage Schema:
    - sso:state:{token} -> {auth_state_json}, TTL = time left until expires_at

    Redis expiry already removes stale keys; the expiry check on read guards
    against clock drift between the service and Redis.
    """

    def __init__(self, redis_client: Redis):
        self.redis = redis_client
        self.state_key_pattern = "sso:state:{}"

    async def create(self, auth_state: AuthState) -> AuthState:
        ttl_seconds = int((auth_state.expires_at - datetime.now(timezone.utc)).total_seconds())
        if ttl_seconds <= 0:
            raise ValueError("cannot store an already expired SSO state")

        key = self.state_key_pattern.format(auth_state.state)
        stored = await self.redis.set(key, auth_state.model_dump_json(), ex=ttl_seconds, nx=True)
        if not stored:
            raise ValueError(f"SSO state key {key} already exists")
        return auth_state

    async def get_by_state(self, token: str) -> Optional[AuthState]:
        if not token:
            return None

        raw = await self.redis.get(self.state_key_pattern.format(token))
        if not raw:
            return None

        auth_state = AuthState.model_validate(json.loads(raw))
        if auth_state.is_expired():
            await self.delete(token)
            return None
        return auth_state

    async def delete(self, token: str) -> None:
        await self.redis.delete(self.state_key_pattern.format(token))

    async def consume(self, token: str) -> AuthState:
        if not token:
            raise InvalidStateError("empty state token")

        raw = await self.redis.getdel(self.state_key_pattern.format(token))
        if not raw:
            raise InvalidStateError("state not found or already used")

        auth_state = AuthState.model_validate(json.loads(raw))
        if auth_state.is_expired():
            raise InvalidStateError(f"state expired at {auth_state.expires_at.isoformat()}")
        return auth_state

    async def purge_expired(self) -> int:
        # Keys carry their own TTL
        return 0
