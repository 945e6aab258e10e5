"""Request authentication and authorization dependencies."""

from sso_service.middleware.auth import get_current_active_user, get_current_user, require_org_admin

__all__ = ["get_current_user", "get_current_active_user", "require_org_admin"]
