"""
Permission checks for route handlers.

Route handlers guarding catalog management call ``require_permission``
before acting; templates use ``has_permission`` to decide what to show.
"""

from enum import Enum
from typing import Iterable, Union

from loguru import logger

from .errors import PermissionDeniedError
from .models import User
from .resolver import GrantResolver


class WellKnownPermission(str, Enum):
    """
    Permission names the catalog application checks for.
    """
    ADMIN = "admin"                 # Administration area, user and grant management
    LABEL_OWNER = "label_owner"     # Edit the label, artists, releases, tracks and pages


PermissionName = Union[str, WellKnownPermission]


def _name(permission: PermissionName) -> str:
    if isinstance(permission, WellKnownPermission):
        return permission.value
    return permission


class PermissionChecker:
    """
    Checks if a user has permission to perform an action.

    Every check recomputes the user's effective permissions from the
    current grants.
    """

    def __init__(self, resolver: GrantResolver):
        self.resolver = resolver

    def has_permission(self, user: User, permission: PermissionName) -> bool:
        """
        Check if a user holds a permission through a role or directly.

        Args:
            user: Resolved principal
            permission: Permission name

        Returns:
            bool: True if the user holds the permission, False otherwise
        """
        return self.resolver.has_permission(user.id, _name(permission))

    def has_any(self, user: User, permissions: Iterable[PermissionName]) -> bool:
        """Check if a user holds at least one of the permissions."""
        held = self.resolver.effective_permissions(user.id)
        return any(_name(p) in held for p in permissions)

    def require_permission(self, user: User, permission: PermissionName) -> None:
        """
        Require a permission, raising PermissionDeniedError if not authorized.

        Raises:
            PermissionDeniedError: If the user doesn't have the permission
        """
        name = _name(permission)
        if not self.resolver.has_permission(user.id, name):
            logger.warning(f"User {user.username} denied: requires {name}")
            raise PermissionDeniedError(user_id=user.id, required_permission=name)

    def require_any(self, user: User, permissions: Iterable[PermissionName]) -> None:
        """
        Require at least one of the permissions.

        Raises:
            PermissionDeniedError: If the user holds none of them
        """
        names = [_name(p) for p in permissions]
        if not self.has_any(user, names):
            logger.warning(f"User {user.username} denied: requires one of {', '.join(names)}")
            raise PermissionDeniedError(user_id=user.id, required_permission=" | ".join(names))
