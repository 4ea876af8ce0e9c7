"""Credential providers and the refreshing credentials cache."""

from .assume_role import AssumeRoleProvider, new_assume_role
from .base import DEFAULT_EXPIRY_WINDOW, Credentials, Expiry, Provider
from .env import EnvProvider, new_env
from .static import StaticProvider, new_anonymous, new_static_v4

__all__ = [
    "AssumeRoleProvider",
    "Credentials",
    "DEFAULT_EXPIRY_WINDOW",
    "EnvProvider",
    "Expiry",
    "Provider",
    "StaticProvider",
    "new_anonymous",
    "new_assume_role",
    "new_env",
    "new_static_v4",
]
