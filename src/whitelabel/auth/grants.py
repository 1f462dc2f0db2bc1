"""
Grant graph.

Three independent relations confer capabilities:

- user_roles:        user -> role
- role_permissions:  role -> permission
- user_permissions:  user -> permission (direct, bypassing roles)

Each pair is unique. Granting an existing pair raises AlreadyGranted and
revoking a missing pair raises NotFound; callers wanting idempotence catch
those.
"""

import sqlite3
from typing import List

from loguru import logger

from .database import AuthDatabase, from_db, to_db, unique_violation, utcnow
from .errors import AlreadyGranted, NotFound
from .models import Permission, Role, RolePermission, User, UserPermission, UserRole
from .users import USER_COLUMNS, row_to_user


def _require_user(conn: sqlite3.Connection, user_id: int) -> None:
    row = conn.execute(
        "SELECT 1 FROM users WHERE id = ? AND deleted_at IS NULL", (user_id,)
    ).fetchone()
    if row is None:
        raise NotFound("user", user_id)


def _require_role(conn: sqlite3.Connection, role_id: int) -> None:
    if conn.execute("SELECT 1 FROM roles WHERE id = ?", (role_id,)).fetchone() is None:
        raise NotFound("role", role_id)


def _require_permission(conn: sqlite3.Connection, permission_id: int) -> None:
    if conn.execute("SELECT 1 FROM permissions WHERE id = ?", (permission_id,)).fetchone() is None:
        raise NotFound("permission", permission_id)


def _insert_pair(
    conn: sqlite3.Connection,
    relation: str,
    columns: tuple,
    left: int,
    right: int,
) -> int:
    try:
        cursor = conn.execute(
            f"INSERT INTO {relation} ({columns[0]}, {columns[1]}, created_at) VALUES (?, ?, ?)",
            (left, right, to_db(utcnow())),
        )
    except sqlite3.IntegrityError as e:
        if unique_violation(e) is not None:
            raise AlreadyGranted(relation, left, right) from e
        raise
    return cursor.lastrowid


def _delete_pair(
    conn: sqlite3.Connection,
    relation: str,
    columns: tuple,
    left: int,
    right: int,
) -> None:
    cursor = conn.execute(
        f"DELETE FROM {relation} WHERE {columns[0]} = ? AND {columns[1]} = ?",
        (left, right),
    )
    if cursor.rowcount == 0:
        raise NotFound(relation, (left, right))


class GrantGraph:
    """Grant and revoke operations over the three relations."""

    def __init__(self, db: AuthDatabase):
        self.db = db

    # ========================================================================
    # user -> role
    # ========================================================================

    def grant_role(self, user_id: int, role_id: int) -> UserRole:
        """
        Give a role to a user.

        Raises:
            NotFound: If the user (live) or role does not exist
            AlreadyGranted: If the user already holds the role
        """
        with self.db.transaction(write=True) as conn:
            _require_user(conn, user_id)
            _require_role(conn, role_id)
            grant_id = _insert_pair(conn, "user_roles", ("user_id", "role_id"), user_id, role_id)
            row = conn.execute("SELECT * FROM user_roles WHERE id = ?", (grant_id,)).fetchone()

        logger.info(f"Role {role_id} granted to user {user_id}")
        return UserRole(
            id=row["id"],
            user_id=row["user_id"],
            role_id=row["role_id"],
            created_at=from_db(row["created_at"]),
        )

    def revoke_role(self, user_id: int, role_id: int) -> None:
        """
        Take a role away from a user.

        Raises:
            NotFound: If the user does not hold the role
        """
        with self.db.transaction(write=True) as conn:
            _delete_pair(conn, "user_roles", ("user_id", "role_id"), user_id, role_id)
        logger.info(f"Role {role_id} revoked from user {user_id}")

    def roles_of_user(self, user_id: int) -> List[Role]:
        """
        Get roles held by a user.

        Returns:
            List of Role objects, ordered by name
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT r.id, r.name, r.description, r.created_at
                FROM roles r
                JOIN user_roles ur ON r.id = ur.role_id
                WHERE ur.user_id = ?
                ORDER BY r.name
                """,
                (user_id,),
            ).fetchall()
        return [
            Role(id=r["id"], name=r["name"], description=r["description"],
                 created_at=from_db(r["created_at"]))
            for r in rows
        ]

    def users_with_role(self, role_id: int) -> List[User]:
        """Live users holding a role."""
        columns = ", ".join(
            f"u.{name} AS {name}" for name in (c.strip() for c in USER_COLUMNS.split(","))
        )
        with self.db.transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {columns}
                FROM users u
                JOIN user_roles ur ON u.id = ur.user_id
                WHERE ur.role_id = ? AND u.deleted_at IS NULL
                ORDER BY u.username
                """,
                (role_id,),
            ).fetchall()
        return [row_to_user(row) for row in rows]

    # ========================================================================
    # role -> permission
    # ========================================================================

    def grant_permission_to_role(self, role_id: int, permission_id: int) -> RolePermission:
        """
        Add a permission to a role.

        Raises:
            NotFound: If the role or permission does not exist
            AlreadyGranted: If the role already carries the permission
        """
        with self.db.transaction(write=True) as conn:
            _require_role(conn, role_id)
            _require_permission(conn, permission_id)
            grant_id = _insert_pair(
                conn, "role_permissions", ("role_id", "permission_id"), role_id, permission_id
            )
            row = conn.execute("SELECT * FROM role_permissions WHERE id = ?", (grant_id,)).fetchone()

        logger.info(f"Permission {permission_id} granted to role {role_id}")
        return RolePermission(
            id=row["id"],
            role_id=row["role_id"],
            permission_id=row["permission_id"],
            created_at=from_db(row["created_at"]),
        )

    def revoke_permission_from_role(self, role_id: int, permission_id: int) -> None:
        """
        Remove a permission from a role.

        Raises:
            NotFound: If the role does not carry the permission
        """
        with self.db.transaction(write=True) as conn:
            _delete_pair(
                conn, "role_permissions", ("role_id", "permission_id"), role_id, permission_id
            )
        logger.info(f"Permission {permission_id} revoked from role {role_id}")

    def permissions_of_role(self, role_id: int) -> List[Permission]:
        """
        Get permissions carried by a role.

        Returns:
            List of Permission objects, ordered by name
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.name, p.description, p.created_at
                FROM permissions p
                JOIN role_permissions rp ON p.id = rp.permission_id
                WHERE rp.role_id = ?
                ORDER BY p.name
                """,
                (role_id,),
            ).fetchall()
        return [
            Permission(id=r["id"], name=r["name"], description=r["description"],
                       created_at=from_db(r["created_at"]))
            for r in rows
        ]

    # ========================================================================
    # user -> permission (direct)
    # ========================================================================

    def grant_permission_to_user(self, user_id: int, permission_id: int) -> UserPermission:
        """
        Grant a permission directly to a user.

        Raises:
            NotFound: If the user (live) or permission does not exist
            AlreadyGranted: If the user already holds it directly
        """
        with self.db.transaction(write=True) as conn:
            _require_user(conn, user_id)
            _require_permission(conn, permission_id)
            grant_id = _insert_pair(
                conn, "user_permissions", ("user_id", "permission_id"), user_id, permission_id
            )
            row = conn.execute("SELECT * FROM user_permissions WHERE id = ?", (grant_id,)).fetchone()

        logger.info(f"Permission {permission_id} granted directly to user {user_id}")
        return UserPermission(
            id=row["id"],
            user_id=row["user_id"],
            permission_id=row["permission_id"],
            created_at=from_db(row["created_at"]),
        )

    def revoke_permission_from_user(self, user_id: int, permission_id: int) -> None:
        """
        Remove a direct grant from a user.

        Raises:
            NotFound: If the user does not hold the permission directly
        """
        with self.db.transaction(write=True) as conn:
            _delete_pair(
                conn, "user_permissions", ("user_id", "permission_id"), user_id, permission_id
            )
        logger.info(f"Permission {permission_id} revoked directly from user {user_id}")

    def direct_permissions_of_user(self, user_id: int) -> List[Permission]:
        """
        Get permissions granted to a user directly, ignoring roles.

        Returns:
            List of Permission objects, ordered by name
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.name, p.description, p.created_at
                FROM permissions p
                JOIN user_permissions up ON p.id = up.permission_id
                WHERE up.user_id = ?
                ORDER BY p.name
                """,
                (user_id,),
            ).fetchall()
        return [
            Permission(id=r["id"], name=r["name"], description=r["description"],
                       created_at=from_db(r["created_at"]))
            for r in rows
        ]
