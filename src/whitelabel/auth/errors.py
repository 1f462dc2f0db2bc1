"""
Exceptions raised by the access-control core.

Administrative operations raise the specific kinds below. Credential
resolution collapses every failure into AuthenticationFailure so that
external callers cannot tell an unknown session from an unknown user.
"""

from typing import Any, Optional


class AuthError(Exception):
    """Base class for every access-control error."""


class NotFound(AuthError):
    """
    Raised when a lookup by key finds nothing (or a soft-deleted user).

    Attributes:
        kind: Entity kind (e.g., "user", "role", "session")
        key: The key that was looked up
    """

    def __init__(self, kind: str, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key!r} not found")


class DuplicateIdentity(AuthError):
    """
    Raised when a username or email is already taken.

    Attributes:
        field: "username" or "email"
        value: The colliding value
    """

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"{field} {value!r} is already taken")


class DuplicateName(AuthError):
    """Raised when a role or permission name collides on create/rename."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} named {name!r} already exists")


class AlreadyGranted(AuthError):
    """
    Raised on a duplicate grant insert.

    Attributes:
        relation: "user_roles", "role_permissions" or "user_permissions"
        left: Identifier of the grantee (user or role)
        right: Identifier of the granted role or permission
    """

    def __init__(self, relation: str, left: int, right: int):
        self.relation = relation
        self.left = left
        self.right = right
        super().__init__(f"{relation} ({left}, {right}) already granted")


class AuthenticationFailure(AuthError):
    """Raised when a credential cannot be resolved to a live user."""

    def __init__(self):
        super().__init__("authentication failed")


class StorageUnavailable(AuthError):
    """Raised when the store cannot be reached or a transaction cannot commit."""


class InvalidInput(AuthError):
    """
    Raised when submitted data fails validation.

    Attributes:
        errors: Human-readable messages, one per failed rule
    """

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class PermissionDeniedError(AuthError):
    """
    Raised when a user attempts an action they don't have permission for.

    Attributes:
        user_id: The user who was denied
        required_permission: The permission that was required
    """

    def __init__(self, user_id: int, required_permission: Optional[str] = None):
        self.user_id = user_id
        self.required_permission = required_permission

        message = f"User {user_id} denied permission"
        if required_permission:
            message += f" (requires: {required_permission})"

        super().__init__(message)
