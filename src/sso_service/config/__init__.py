"""SSO service configuration."""

from sso_service.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
