"""
Effective-permission computation.

A user's effective permissions are the union of every permission reachable
through a held role and every permission granted directly. There is no deny:
adding a grant can only add permissions, and revoking a role only removes
what no other role or direct grant still confers.
"""

from typing import FrozenSet, List

from loguru import logger

from .database import AuthDatabase


EFFECTIVE_PERMISSIONS_SQL = """
    SELECT p.name
    FROM permissions p
    JOIN role_permissions rp ON p.id = rp.permission_id
    JOIN user_roles ur ON rp.role_id = ur.role_id
    WHERE ur.user_id = ?
    UNION
    SELECT p.name
    FROM permissions p
    JOIN user_permissions up ON p.id = up.permission_id
    WHERE up.user_id = ?
"""

PERMISSION_SOURCES_SQL = """
    SELECT 'role:' || r.name AS source
    FROM roles r
    JOIN user_roles ur ON r.id = ur.role_id
    JOIN role_permissions rp ON r.id = rp.role_id
    JOIN permissions p ON p.id = rp.permission_id
    WHERE ur.user_id = ? AND p.name = ?
    UNION
    SELECT 'direct' AS source
    FROM user_permissions up
    JOIN permissions p ON p.id = up.permission_id
    WHERE up.user_id = ? AND p.name = ?
    ORDER BY source
"""


class GrantResolver:
    """
    Computes effective permission sets.

    Nothing is cached: each call reads the current grant state inside one
    read transaction.
    """

    def __init__(self, db: AuthDatabase):
        self.db = db

    def effective_permissions(self, user_id: int) -> FrozenSet[str]:
        """
        Get all permissions for user, through roles and direct grants.

        Args:
            user_id: User ID

        Returns:
            De-duplicated set of permission names (e.g., {"catalog.write"})
        """
        with self.db.transaction() as conn:
            rows = conn.execute(EFFECTIVE_PERMISSIONS_SQL, (user_id, user_id)).fetchall()

        permissions = frozenset(row[0] for row in rows)
        logger.debug(f"User {user_id} holds {len(permissions)} permissions")
        return permissions

    def has_permission(self, user_id: int, permission: str) -> bool:
        """Check if a user holds a permission through any role or directly."""
        return permission in self.effective_permissions(user_id)

    def explain(self, user_id: int, permission: str) -> List[str]:
        """
        List what confers ``permission`` on a user.

        Returns:
            Sources such as ["direct", "role:editor"]; empty when the user
            does not hold the permission
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                PERMISSION_SOURCES_SQL, (user_id, permission, user_id, permission)
            ).fetchall()
        return [row["source"] for row in rows]
