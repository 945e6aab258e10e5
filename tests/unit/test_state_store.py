"""Unit tests for the SSO state stores

DatabaseStateStore runs against SQLite; RedisStateStore uses a mocked
Redis client (unittest.mock) so no Redis server is needed.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from sso_service.domain.sso import AuthState
from sso_service.errors import InvalidStateError
from sso_service.models import SSOState
from sso_service.services.state_store import DatabaseStateStore, RedisStateStore


def make_state(connection_id: int = 1, age: timedelta = timedelta(0), **fields) -> AuthState:
    state = AuthState.new(
        state=f"state-{uuid4().hex}",
        connection_id=connection_id,
        organization_id=uuid4(),
        redirect_url="/dashboard",
        now=datetime.now(timezone.utc) - age,
    )
    return state.model_copy(update=fields)


@pytest.mark.unit
class TestDatabaseStateStore:
    """State persistence in the sso_states table"""

    @pytest.mark.asyncio
    async def test_create_and_get(self, state_store: DatabaseStateStore, oidc_connection):
        state = make_state(oidc_connection.id, nonce="n-1", code_verifier="v-1")

        await state_store.create(state)
        loaded = await state_store.get_by_state(state.state)

        assert loaded is not None
        assert loaded.connection_id == oidc_connection.id
        assert loaded.nonce == "n-1"
        assert loaded.code_verifier == "v-1"
        assert loaded.redirect_url == "/dashboard"
        assert loaded.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_consume_is_single_use(self, state_store: DatabaseStateStore, oidc_connection):
        state = make_state(oidc_connection.id)
        await state_store.create(state)

        consumed = await state_store.consume(state.state)
        assert consumed.state == state.state

        with pytest.raises(InvalidStateError):
            await state_store.consume(state.state)
        assert await state_store.get_by_state(state.state) is None

    @pytest.mark.asyncio
    async def test_expired_state_is_invalid_and_removed(
        self, state_store: DatabaseStateStore, oidc_connection, test_db
    ):
        state = make_state(oidc_connection.id, age=timedelta(minutes=11))
        await state_store.create(state)

        with pytest.raises(InvalidStateError):
            await state_store.consume(state.state)

        count = await test_db.scalar(select(func.count()).select_from(SSOState))
        assert count == 0

    @pytest.mark.asyncio
    async def test_get_expired_state_returns_none(self, state_store: DatabaseStateStore, oidc_connection):
        state = make_state(oidc_connection.id, age=timedelta(minutes=11))
        await state_store.create(state)

        assert await state_store.get_by_state(state.state) is None

    @pytest.mark.asyncio
    async def test_consume_unknown_or_empty_token(self, state_store: DatabaseStateStore):
        with pytest.raises(InvalidStateError):
            await state_store.consume("never-issued")
        with pytest.raises(InvalidStateError):
            await state_store.consume("")

    @pytest.mark.asyncio
    async def test_purge_expired(self, state_store: DatabaseStateStore, oidc_connection):
        fresh = make_state(oidc_connection.id)
        stale = make_state(oidc_connection.id, age=timedelta(hours=1))
        await state_store.create(fresh)
        await state_store.create(stale)

        removed = await state_store.purge_expired()

        assert removed == 1
        assert await state_store.get_by_state(fresh.state) is not None

    @pytest.mark.asyncio
    async def test_concurrent_consume_has_one_winner(self, test_engine, state_store, oidc_connection):
        state = make_state(oidc_connection.id)
        await state_store.create(state)
        session_factory = async_sessionmaker(test_engine, expire_on_commit=False)

        async def consume_in_own_session():
            async with session_factory() as session:
                return await DatabaseStateStore(session).consume(state.state)

        results = await asyncio.gather(
            consume_in_own_session(), consume_in_own_session(), return_exceptions=True
        )

        winners = [r for r in results if isinstance(r, AuthState)]
        losers = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert winners[0].state == state.state


@pytest.fixture
def mock_redis():
    """Mock Redis client"""
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.get = AsyncMock(return_value=None)
    redis.getdel = AsyncMock(return_value=None)
    redis.delete = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def redis_store(mock_redis):
    return RedisStateStore(mock_redis)


@pytest.mark.unit
class TestRedisStateStore:
    """State persistence in Redis keys with TTL"""

    @pytest.mark.asyncio
    async def test_create_sets_key_with_ttl(self, redis_store, mock_redis):
        state = make_state()

        await redis_store.create(state)

        mock_redis.set.assert_called_once()
        args, kwargs = mock_redis.set.call_args
        assert args[0] == f"sso:state:{state.state}"
        assert json.loads(args[1])["state"] == state.state
        assert 0 < kwargs["ex"] <= 600
        assert kwargs["nx"] is True

    @pytest.mark.asyncio
    async def test_create_rejects_expired_state(self, redis_store, mock_redis):
        with pytest.raises(ValueError):
            await redis_store.create(make_state(age=timedelta(minutes=11)))
        mock_redis.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_fails_when_key_not_written(self, redis_store, mock_redis):
        mock_redis.set.return_value = None

        with pytest.raises(ValueError):
            await redis_store.create(make_state())

    @pytest.mark.asyncio
    async def test_consume_uses_getdel(self, redis_store, mock_redis):
        state = make_state(nonce="abc")
        mock_redis.getdel.return_value = state.model_dump_json()

        consumed = await redis_store.consume(state.state)

        assert consumed.nonce == "abc"
        mock_redis.getdel.assert_called_once_with(f"sso:state:{state.state}")

    @pytest.mark.asyncio
    async def test_consume_missing_key(self, redis_store, mock_redis):
        mock_redis.getdel.return_value = None

        with pytest.raises(InvalidStateError):
            await redis_store.consume("used-or-unknown")

    @pytest.mark.asyncio
    async def test_consume_expired_payload(self, redis_store, mock_redis):
        mock_redis.getdel.return_value = make_state(age=timedelta(minutes=30)).model_dump_json()

        with pytest.raises(InvalidStateError):
            await redis_store.consume("stale")

    @pytest.mark.asyncio
    async def test_get_by_state_deletes_expired(self, redis_store, mock_redis):
        state = make_state(age=timedelta(minutes=30))
        mock_redis.get.return_value = state.model_dump_json()

        assert await redis_store.get_by_state(state.state) is None
        mock_redis.delete.assert_called_once_with(f"sso:state:{state.state}")
