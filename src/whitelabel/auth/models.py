"""
Access-control data models.

Data classes for users, roles, permissions, the three grant relations,
and the two credential kinds (sessions and tokens).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """
    User account.

    The password hash is deliberately not part of this class; it is only
    read through IdentityStore.get_password_hash.

    Attributes:
        id: Surrogate identifier
        username: Unique username
        email: Unique email address
        first_name: Optional first name
        last_name: Optional last name
        description: Optional profile description
        avatar: Optional avatar file name
        created_at: Account creation timestamp
        updated_at: Last profile or credential change
        deleted_at: Soft-delete marker (None while the account is live)
    """
    id: int
    username: str
    email: str
    created_at: datetime
    updated_at: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    description: Optional[str] = None
    avatar: Optional[str] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def display_name(self) -> str:
        names = [n for n in (self.first_name, self.last_name) if n]
        return " ".join(names) if names else self.username


@dataclass
class Role:
    """
    Named capability bundle.

    Attributes:
        id: Surrogate identifier
        name: Unique role name (e.g., "editor")
        description: Human-readable description
        created_at: Creation timestamp
    """
    id: int
    name: str
    created_at: datetime
    description: Optional[str] = None


@dataclass
class Permission:
    """
    Named atomic capability.

    Attributes:
        id: Surrogate identifier
        name: Unique permission name (e.g., "catalog.write")
        description: Human-readable description
        created_at: Creation timestamp
    """
    id: int
    name: str
    created_at: datetime
    description: Optional[str] = None


@dataclass
class UserRole:
    """Grant of a role to a user."""
    id: int
    user_id: int
    role_id: int
    created_at: datetime


@dataclass
class RolePermission:
    """Grant of a permission to a role."""
    id: int
    role_id: int
    permission_id: int
    created_at: datetime


@dataclass
class UserPermission:
    """Direct grant of a permission to a user, bypassing roles."""
    id: int
    user_id: int
    permission_id: int
    created_at: datetime


@dataclass
class UserSession:
    """
    Active login.

    Attributes:
        id: Surrogate identifier
        user_id: User who owns this session
        session_id: Opaque session identifier handed to the client
        created_at: Session creation timestamp
        last_activity: Last successful resolution
        expires_at: Expiry timestamp (None for sessions that never expire)
    """
    id: int
    user_id: int
    session_id: str
    created_at: datetime
    last_activity: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class UserToken:
    """
    Long-lived credential held by an automated client.

    Attributes:
        id: Surrogate identifier
        user_id: User who owns this token
        token: Opaque token value
        label: Optional client application name
        created_at: Issue timestamp
        last_used_at: Last successful resolution, if any
    """
    id: int
    user_id: int
    token: str
    created_at: datetime
    label: Optional[str] = None
    last_used_at: Optional[datetime] = None
