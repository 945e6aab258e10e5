"""SSO services: connection registry, state store, login completion and flow orchestration."""

from sso_service.services.connection_registry import ConnectionRegistry
from sso_service.services.login_completion import LoginCompletion
from sso_service.services.sso_service import SSOService
from sso_service.services.state_store import DatabaseStateStore, RedisStateStore, StateStore

__all__ = [
    "ConnectionRegistry",
    "LoginCompletion",
    "SSOService",
    "StateStore",
    "DatabaseStateStore",
    "RedisStateStore",
]
