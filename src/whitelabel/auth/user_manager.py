"""
User account manager.

Wires the storage handle and every access-control component together and
implements the account workflows: registration, login/logout, profile and
password changes, token issue and account deactivation.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from loguru import logger

from ..config import AuthSettings
from .credentials import CredentialResolver, SessionManager, TokenManager, new_identifier
from .database import AuthDatabase, utcnow
from .errors import AuthenticationFailure, InvalidInput, NotFound, StorageUnavailable
from .forms import ChangePasswordForm, RegisterUserForm, UpdateUserForm
from .grants import GrantGraph
from .models import Role, User, UserSession, UserToken
from .passwords import hash_password, verify_password
from .permissions import PermissionChecker, PermissionName, WellKnownPermission
from .registry import PermissionRegistry, RoleRegistry
from .resolver import GrantResolver
from .users import IdentityStore


ADMIN_ROLE = "admin"


class UserManager:
    """
    User authentication and authorization manager.

    Provides:
    - Registration, login and logout
    - Profile and password changes
    - Token issue and revocation
    - Credential resolution and permission checks
    """

    def __init__(
        self,
        db: AuthDatabase,
        settings: Optional[AuthSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize manager.

        Args:
            db: Storage handle shared by all components
            settings: Session lifetime, bcrypt cost and token size
            clock: Source of the current UTC time
        """
        self.settings = settings or AuthSettings()
        self.db = db

        lifetime = None
        if self.settings.session_lifetime_hours:
            lifetime = timedelta(hours=self.settings.session_lifetime_hours)

        self.users = IdentityStore(db)
        self.roles = RoleRegistry(db)
        self.permissions = PermissionRegistry(db)
        self.grants = GrantGraph(db)
        self.resolver = GrantResolver(db)
        self.checker = PermissionChecker(self.resolver)
        self.sessions = SessionManager(
            db, lifetime=lifetime, identifier_bytes=self.settings.token_bytes, clock=clock
        )
        self.tokens = TokenManager(db, identifier_bytes=self.settings.token_bytes, clock=clock)
        self.credentials = CredentialResolver(self.users, self.sessions, self.tokens)
        self._dummy_hash: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "UserManager":
        """
        Open the configured database and build a manager on it.

        Raises:
            StorageUnavailable: If the database directory cannot be created
        """
        try:
            settings.database_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create database directory {settings.database_path.parent}: {e}")
            raise StorageUnavailable(f"cannot create database directory: {e}") from e
        db = AuthDatabase(settings.database_path, busy_timeout=settings.busy_timeout_seconds)
        return cls(db, settings)

    def bootstrap(self) -> Role:
        """
        Make sure the well-known permissions exist and that the admin role
        carries all of them.

        Returns:
            The admin role
        """
        role = self.roles.ensure(ADMIN_ROLE, "Full access to the administration area")
        held = {p.name for p in self.grants.permissions_of_role(role.id)}
        for name in WellKnownPermission:
            permission = self.permissions.ensure(name.value)
            if permission.name not in held:
                self.grants.grant_permission_to_role(role.id, permission.id)
        return role

    # ========================================================================
    # Registration and login
    # ========================================================================

    def register(self, form: RegisterUserForm) -> User:
        """
        Register a user from a validated form.

        Raises:
            DuplicateIdentity: If username or email is already taken
        """
        password_hash = hash_password(form.password, rounds=self.settings.bcrypt_rounds)
        return self.users.create_user(form.username, form.email, password_hash)

    def login(self, login: str, password: str) -> Tuple[User, UserSession]:
        """
        Authenticate user and start a session.

        Args:
            login: Username or email
            password: Plain text password

        Returns:
            (user, session) tuple

        Raises:
            AuthenticationFailure: For any unknown user or wrong password
        """
        if not login or not password:
            logger.warning("Login failed: username and password are required")
            raise AuthenticationFailure()

        try:
            user = self.users.get_user_by_login(login)
            password_hash = self.users.get_password_hash(user.id)
        except NotFound:
            # Same bcrypt cost as a wrong password
            verify_password(password, self._get_dummy_hash())
            logger.warning(f"Login failed: user '{login}' not found")
            raise AuthenticationFailure() from None

        if not verify_password(password, password_hash):
            logger.warning(f"Login failed: invalid password for '{login}'")
            raise AuthenticationFailure()

        session = self.sessions.create_session(user.id)
        logger.info(f"User logged in: {user.username}")
        return user, session

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = hash_password(
                new_identifier(), rounds=self.settings.bcrypt_rounds
            )
        return self._dummy_hash

    def logout(self, session_id: str) -> None:
        """
        Logout by destroying the session.

        Raises:
            AuthenticationFailure: If the session is unknown
        """
        try:
            self.sessions.destroy_session(session_id)
        except NotFound:
            logger.warning("Logout failed: unknown session")
            raise AuthenticationFailure() from None

    # ========================================================================
    # Profile and password
    # ========================================================================

    def update_profile(self, actor: User, user_id: int, form: UpdateUserForm) -> User:
        """
        Update a user's profile.

        Users may edit their own profile; editing someone else's requires the
        admin permission.

        Raises:
            PermissionDeniedError: If the actor may not edit this user
            DuplicateIdentity: If the new username or email is taken
        """
        if actor.id != user_id:
            self.checker.require_permission(actor, WellKnownPermission.ADMIN)
        return self.users.update_profile(user_id, **form.model_dump())

    def change_password(
        self,
        user: User,
        form: ChangePasswordForm,
        keep_session: Optional[str] = None,
    ) -> None:
        """
        Rotate a user's password.

        Every session of the user except ``keep_session`` is destroyed.

        Raises:
            InvalidInput: If the current password does not match
        """
        if not verify_password(form.password, self.users.get_password_hash(user.id)):
            logger.warning(f"Password change refused for {user.username}: wrong password")
            raise InvalidInput(["Password does not match."])

        self.users.set_password_hash(
            user.id, hash_password(form.new_password, rounds=self.settings.bcrypt_rounds)
        )
        self.sessions.destroy_user_sessions(user.id, keep=keep_session)

    def deactivate_user(self, user_id: int) -> User:
        """
        Soft-delete a user and revoke every session and token it holds.

        Grants are kept so that a restored account gets its access back.
        """
        user = self.users.soft_delete_user(user_id)
        sessions = self.sessions.destroy_user_sessions(user_id)
        tokens = self.tokens.revoke_user_tokens(user_id)
        logger.info(
            f"User deactivated: {user.username} ({sessions} sessions, {tokens} tokens revoked)"
        )
        return user

    # ========================================================================
    # Tokens, resolution and permissions
    # ========================================================================

    def issue_token(self, user: User, label: Optional[str] = None) -> UserToken:
        """
        Issue a long-lived token.

        Args:
            user: Owner of the token
            label: Optional client application name
        """
        return self.tokens.issue_token(user.id, label=label)

    def revoke_token(self, token: str) -> None:
        """
        Revoke a token.

        Raises:
            AuthenticationFailure: If the token is unknown
        """
        try:
            self.tokens.revoke_token(token)
        except NotFound:
            logger.warning("Token revocation failed: unknown token")
            raise AuthenticationFailure() from None

    def resolve(self, credential: str) -> User:
        """
        Resolve a session identifier or token to its user.

        Raises:
            AuthenticationFailure: If the credential is unknown or expired
        """
        return self.credentials.resolve(credential, touch=True)

    def has_permission(self, user: User, permission: PermissionName) -> bool:
        """Check if a user holds a permission."""
        return self.checker.has_permission(user, permission)

    def require_permission(self, user: User, permission: PermissionName) -> None:
        """
        Raises:
            PermissionDeniedError: If the user doesn't have the permission
        """
        self.checker.require_permission(user, permission)
