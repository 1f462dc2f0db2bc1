"""
Identity store.

Owns user records: credentials, profile fields and soft-delete state. Hard
deletion is the only operation here that cascades, and it does so
explicitly inside one transaction.
"""

import sqlite3
from typing import List, Optional

from loguru import logger

from .database import AuthDatabase, from_db, to_db, unique_violation, utcnow
from .errors import DuplicateIdentity, InvalidInput, NotFound
from .models import User


USER_COLUMNS = (
    "id, username, email, first_name, last_name, description, avatar, "
    "created_at, updated_at, deleted_at"
)

PROFILE_FIELDS = ("username", "email", "first_name", "last_name", "description", "avatar")

# Dependents of a user row, in deletion order.
USER_DEPENDENTS = ("user_roles", "user_permissions", "user_tokens", "user_sessions")


def row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        description=row["description"],
        avatar=row["avatar"],
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
        deleted_at=from_db(row["deleted_at"]),
    )


def _duplicate(error: sqlite3.IntegrityError, username: str, email: str) -> DuplicateIdentity:
    column = unique_violation(error)
    if column == "email":
        return DuplicateIdentity("email", email)
    return DuplicateIdentity("username", username)


class IdentityStore:
    """User records backed by the ``users`` table."""

    def __init__(self, db: AuthDatabase):
        self.db = db

    # ========================================================================
    # Creation and lookup
    # ========================================================================

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> User:
        """
        Create a user with an already hashed password.

        Args:
            username: Unique username
            email: Unique email address
            password_hash: Opaque hash from passwords.hash_password
            first_name: Optional first name
            last_name: Optional last name
            description: Optional profile description

        Returns:
            Created User object

        Raises:
            DuplicateIdentity: If username or email already exists
        """
        now = utcnow()
        with self.db.transaction(write=True) as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (username, email, password_hash, first_name,
                                       last_name, description, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (username, email, password_hash, first_name, last_name,
                     description, to_db(now), to_db(now)),
                )
            except sqlite3.IntegrityError as e:
                raise _duplicate(e, username, email) from e
            user_id = cursor.lastrowid

        logger.info(f"User created: {username} ({user_id})")
        return User(
            id=user_id,
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            description=description,
            created_at=now,
            updated_at=now,
        )

    def _fetch_one(self, column: str, value, include_deleted: bool) -> User:
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE {column} = ?", (value,)
            ).fetchone()
        if row is None or (row["deleted_at"] is not None and not include_deleted):
            raise NotFound("user", value)
        return row_to_user(row)

    def get_user(self, user_id: int, include_deleted: bool = False) -> User:
        """
        Get user by ID.

        Raises:
            NotFound: If absent, or soft-deleted and include_deleted is False
        """
        return self._fetch_one("id", user_id, include_deleted)

    def get_user_by_username(self, username: str, include_deleted: bool = False) -> User:
        """
        Get user by username.

        Args:
            username: Username to look up
            include_deleted: Also return a soft-deleted user

        Raises:
            NotFound: If absent, or soft-deleted and include_deleted is False
        """
        return self._fetch_one("username", username, include_deleted)

    def get_user_by_email(self, email: str) -> User:
        """
        Get a live user by email.

        Raises:
            NotFound: If absent or soft-deleted
        """
        return self._fetch_one("email", email, False)

    def get_user_by_login(self, login: str) -> User:
        """Look a user up by username, falling back to email."""
        try:
            return self.get_user_by_username(login)
        except NotFound:
            if "@" not in login:
                raise
        return self.get_user_by_email(login)

    def get_password_hash(self, user_id: int) -> str:
        """
        Get the stored bcrypt hash of a live user.

        Raises:
            NotFound: If absent or soft-deleted
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE id = ? AND deleted_at IS NULL",
                (user_id,),
            ).fetchone()
        if row is None:
            raise NotFound("user", user_id)
        return row["password_hash"]

    def list_users(self, include_deleted: bool = False) -> List[User]:
        """
        Get all users.

        Returns:
            Users ordered by username
        """
        query = f"SELECT {USER_COLUMNS} FROM users"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        query += " ORDER BY username"

        with self.db.transaction() as conn:
            rows = conn.execute(query).fetchall()
        return [row_to_user(row) for row in rows]

    # ========================================================================
    # Mutation
    # ========================================================================

    def update_profile(self, user_id: int, **changes: Optional[str]) -> User:
        """
        Update profile fields of a live user.

        Only the keyword arguments given are changed; passing None clears an
        optional field.

        Args:
            user_id: User to update
            **changes: Any of username, email, first_name, last_name,
                description, avatar

        Returns:
            The updated User

        Raises:
            InvalidInput: On unknown fields or an empty username/email
            NotFound: If the user is absent or soft-deleted
            DuplicateIdentity: If the new username or email is taken
        """
        unknown = sorted(set(changes) - set(PROFILE_FIELDS))
        if unknown:
            raise InvalidInput([f"Unknown profile field: {name}" for name in unknown])
        for required in ("username", "email"):
            if required in changes and not changes[required]:
                raise InvalidInput([f"{required.capitalize()} is required."])

        current = self.get_user(user_id)
        if not changes:
            return current

        now = utcnow()
        assignments = ", ".join(f"{name} = ?" for name in changes)
        with self.db.transaction(write=True) as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE users SET {assignments}, updated_at = ? "
                    "WHERE id = ? AND deleted_at IS NULL",
                    (*changes.values(), to_db(now), user_id),
                )
            except sqlite3.IntegrityError as e:
                raise _duplicate(
                    e,
                    changes.get("username", current.username),
                    changes.get("email", current.email),
                ) from e
            if cursor.rowcount == 0:
                raise NotFound("user", user_id)

        logger.info(f"User updated: {current.username} ({user_id}): {', '.join(changes)}")
        return self.get_user(user_id)

    def set_password_hash(self, user_id: int, password_hash: str) -> None:
        """Rotate the stored credential secret of a live user."""
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? "
                "WHERE id = ? AND deleted_at IS NULL",
                (password_hash, to_db(utcnow()), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("user", user_id)

        logger.info(f"Password rotated for user {user_id}")

    def soft_delete_user(self, user_id: int) -> User:
        """
        Mark a user deleted.

        Grants, sessions and tokens are left in place; revoking credentials
        is the caller's job (see UserManager.deactivate_user).
        """
        now = utcnow()
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute(
                "UPDATE users SET deleted_at = ?, updated_at = ? "
                "WHERE id = ? AND deleted_at IS NULL",
                (to_db(now), to_db(now), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("user", user_id)

        logger.info(f"User soft-deleted: {user_id}")
        return self.get_user(user_id, include_deleted=True)

    def restore_user(self, user_id: int) -> User:
        """
        Clear the soft-delete marker.

        Returns:
            The restored User

        Raises:
            NotFound: If no soft-deleted user has this id
        """
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute(
                "UPDATE users SET deleted_at = NULL, updated_at = ? "
                "WHERE id = ? AND deleted_at IS NOT NULL",
                (to_db(utcnow()), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("user", user_id)

        logger.info(f"User restored: {user_id}")
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> None:
        """
        Delete user and all associated data.

        Role memberships, direct permission grants, tokens and sessions are
        removed in the same transaction as the user row; a failure at any
        step rolls all of them back.

        Raises:
            NotFound: If no user row exists (soft-deleted rows included)
            StorageUnavailable: If the transaction cannot complete
        """
        removed = {}
        with self.db.transaction(write=True) as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise NotFound("user", user_id)
            for table in USER_DEPENDENTS:
                cursor = conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
                removed[table] = cursor.rowcount
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

        summary = ", ".join(f"{table}={count}" for table, count in removed.items())
        logger.info(f"User deleted: {user_id} ({summary})")
