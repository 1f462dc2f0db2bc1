"""
Role and permission registries.

The two registries behave identically apart from their table and the grant
relations that reference them.
"""

import sqlite3
from typing import Generic, List, Optional, Tuple, Type, TypeVar

from loguru import logger

from .database import AuthDatabase, from_db, to_db, utcnow
from .errors import DuplicateName, InvalidInput, NotFound
from .models import Permission, Role


MAX_NAME_LENGTH = 255

T = TypeVar("T", Role, Permission)


def normalize_name(kind: str, name: str) -> str:
    """Strip a role/permission name and check it is usable."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInput([f"{kind.capitalize()} name is required."])
    if len(cleaned) > MAX_NAME_LENGTH:
        raise InvalidInput(
            [f"{kind.capitalize()} name must be less than {MAX_NAME_LENGTH} characters."]
        )
    return cleaned


class NamedRegistry(Generic[T]):
    """
    Registry of uniquely named rows.

    Subclasses set ``kind``, ``table``, ``model`` and ``dependents``: the
    grant tables holding a foreign key to this table, paired with the name
    of that column.
    """

    kind: str
    table: str
    model: Type[T]
    dependents: Tuple[Tuple[str, str], ...]

    def __init__(self, db: AuthDatabase):
        self.db = db

    def _row_to_model(self, row: sqlite3.Row) -> T:
        return self.model(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=from_db(row["created_at"]),
        )

    def create(self, name: str, description: Optional[str] = None) -> T:
        """
        Create a new entry.

        Raises:
            InvalidInput: If the name is blank or too long
            DuplicateName: If the name is already taken
        """
        name = normalize_name(self.kind, name)
        now = utcnow()
        with self.db.transaction(write=True) as conn:
            try:
                cursor = conn.execute(
                    f"INSERT INTO {self.table} (name, description, created_at) VALUES (?, ?, ?)",
                    (name, description, to_db(now)),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateName(self.kind, name) from e
            item_id = cursor.lastrowid

        logger.info(f"{self.kind.capitalize()} created: {name} ({item_id})")
        return self.model(id=item_id, name=name, description=description, created_at=now)

    def ensure(self, name: str, description: Optional[str] = None) -> T:
        """Return the entry called ``name``, creating it if needed."""
        try:
            return self.get_by_name(name)
        except NotFound:
            pass
        try:
            return self.create(name, description)
        except DuplicateName:
            # Lost a race with a concurrent create.
            return self.get_by_name(name)

    def get(self, item_id: int) -> T:
        """
        Get entry by ID.

        Raises:
            NotFound: If no entry has this id
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE id = ?", (item_id,)
            ).fetchone()
        if row is None:
            raise NotFound(self.kind, item_id)
        return self._row_to_model(row)

    def get_by_name(self, name: str) -> T:
        """
        Get entry by name (surrounding whitespace ignored).

        Raises:
            NotFound: If no entry has this name
        """
        name = (name or "").strip()
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            raise NotFound(self.kind, name)
        return self._row_to_model(row)

    def list(self) -> List[T]:
        """
        List all entries.

        Returns:
            Entries ordered by name
        """
        with self.db.transaction() as conn:
            rows = conn.execute(f"SELECT * FROM {self.table} ORDER BY name").fetchall()
        return [self._row_to_model(row) for row in rows]

    def rename(self, item_id: int, new_name: str) -> T:
        """
        Rename an entry.

        Raises:
            NotFound: If no entry has this id
            DuplicateName: If another entry already uses ``new_name``
        """
        new_name = normalize_name(self.kind, new_name)
        with self.db.transaction(write=True) as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE {self.table} SET name = ? WHERE id = ?", (new_name, item_id)
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateName(self.kind, new_name) from e
            if cursor.rowcount == 0:
                raise NotFound(self.kind, item_id)

        logger.info(f"{self.kind.capitalize()} {item_id} renamed to {new_name}")
        return self.get(item_id)

    def delete(self, item_id: int) -> None:
        """
        Delete an entry together with every grant that references it.

        All rows go in one transaction; nothing is removed if any step fails.

        Raises:
            NotFound: If no entry has this id
        """
        removed = {}
        with self.db.transaction(write=True) as conn:
            row = conn.execute(
                f"SELECT name FROM {self.table} WHERE id = ?", (item_id,)
            ).fetchone()
            if row is None:
                raise NotFound(self.kind, item_id)
            for table, column in self.dependents:
                cursor = conn.execute(f"DELETE FROM {table} WHERE {column} = ?", (item_id,))
                removed[table] = cursor.rowcount
            conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (item_id,))

        summary = ", ".join(f"{table}={count}" for table, count in removed.items())
        logger.info(f"{self.kind.capitalize()} deleted: {row['name']} ({item_id}; {summary})")


class RoleRegistry(NamedRegistry[Role]):
    kind = "role"
    table = "roles"
    model = Role
    dependents = (("user_roles", "role_id"), ("role_permissions", "role_id"))


class PermissionRegistry(NamedRegistry[Permission]):
    kind = "permission"
    table = "permissions"
    model = Permission
    dependents = (
        ("role_permissions", "permission_id"),
        ("user_permissions", "permission_id"),
    )
