"""
Access-control module for the white-label catalog.

Users, roles and permissions, the grants between them, session and token
credentials, and effective-permission resolution.
"""

from .models import (
    User,
    Role,
    Permission,
    UserRole,
    RolePermission,
    UserPermission,
    UserSession,
    UserToken,
)
from .database import AuthDatabase
from .errors import (
    AuthError,
    NotFound,
    DuplicateIdentity,
    DuplicateName,
    AlreadyGranted,
    AuthenticationFailure,
    StorageUnavailable,
    InvalidInput,
    PermissionDeniedError,
)
from .users import IdentityStore
from .registry import RoleRegistry, PermissionRegistry
from .grants import GrantGraph
from .resolver import GrantResolver
from .credentials import SessionManager, TokenManager, CredentialResolver
from .permissions import PermissionChecker, WellKnownPermission
from .forms import RegisterUserForm, UpdateUserForm, ChangePasswordForm, parse_form
from .passwords import hash_password, verify_password
from .user_manager import UserManager

__all__ = [
    # Models
    "User",
    "Role",
    "Permission",
    "UserRole",
    "RolePermission",
    "UserPermission",
    "UserSession",
    "UserToken",
    # Storage and components
    "AuthDatabase",
    "IdentityStore",
    "RoleRegistry",
    "PermissionRegistry",
    "GrantGraph",
    "GrantResolver",
    "SessionManager",
    "TokenManager",
    "CredentialResolver",
    "PermissionChecker",
    "WellKnownPermission",
    "UserManager",
    # Forms and passwords
    "RegisterUserForm",
    "UpdateUserForm",
    "ChangePasswordForm",
    "parse_form",
    "hash_password",
    "verify_password",
    # Errors
    "AuthError",
    "NotFound",
    "DuplicateIdentity",
    "DuplicateName",
    "AlreadyGranted",
    "AuthenticationFailure",
    "StorageUnavailable",
    "InvalidInput",
    "PermissionDeniedError",
]
