"""
Credential managers.

Sessions are short-lived identifiers created at login; tokens are
long-lived values held by automated clients. Both map an opaque string to a
user, unique per (user, value). CredentialResolver accepts either and
reports every failure the same way.
"""

import secrets
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger

from .database import AuthDatabase, from_db, to_db, utcnow
from .errors import AuthenticationFailure, NotFound
from .models import User, UserSession, UserToken
from .users import IdentityStore


DEFAULT_IDENTIFIER_BYTES = 32


def new_identifier(nbytes: int = DEFAULT_IDENTIFIER_BYTES) -> str:
    """Opaque, URL-safe random identifier."""
    return secrets.token_urlsafe(nbytes)


def _require_live_user(conn: sqlite3.Connection, user_id: int) -> None:
    row = conn.execute(
        "SELECT 1 FROM users WHERE id = ? AND deleted_at IS NULL", (user_id,)
    ).fetchone()
    if row is None:
        raise NotFound("user", user_id)


def _row_to_session(row: sqlite3.Row) -> UserSession:
    return UserSession(
        id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        created_at=from_db(row["created_at"]),
        last_activity=from_db(row["last_activity"]),
        expires_at=from_db(row["expires_at"]),
    )


def _row_to_token(row: sqlite3.Row) -> UserToken:
    return UserToken(
        id=row["id"],
        user_id=row["user_id"],
        token=row["token"],
        label=row["label"],
        created_at=from_db(row["created_at"]),
        last_used_at=from_db(row["last_used_at"]),
    )


class SessionManager:
    """
    Server-issued session identifiers.

    Sessions expire ``lifetime`` after creation; a lifetime of None means
    they live until destroyed. Expired rows fail resolution and are removed
    by ``cleanup_expired_sessions``.
    """

    def __init__(
        self,
        db: AuthDatabase,
        lifetime: Optional[timedelta] = None,
        identifier_bytes: int = DEFAULT_IDENTIFIER_BYTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.lifetime = lifetime
        self.identifier_bytes = identifier_bytes
        self.clock = clock

    def create_session(self, user_id: int) -> UserSession:
        """
        Start a session for a live user.

        Raises:
            NotFound: If the user is absent or soft-deleted
        """
        now = self.clock()
        expires_at = now + self.lifetime if self.lifetime else None
        session_id = new_identifier(self.identifier_bytes)

        with self.db.transaction(write=True) as conn:
            _require_live_user(conn, user_id)
            cursor = conn.execute(
                """
                INSERT INTO user_sessions (user_id, session_id, created_at, last_activity, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, session_id, to_db(now), to_db(now), to_db(expires_at)),
            )
            row_id = cursor.lastrowid

        logger.info(f"Session created for user {user_id}")
        return UserSession(
            id=row_id,
            user_id=user_id,
            session_id=session_id,
            created_at=now,
            last_activity=now,
            expires_at=expires_at,
        )

    def get_session(self, session_id: str) -> UserSession:
        """
        Get session by identifier, expired or not.

        Raises:
            NotFound: If the identifier does not match exactly one session
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM user_sessions WHERE session_id = ?", (session_id,)
            ).fetchall()
        if len(rows) != 1:
            if rows:
                logger.warning(f"Session identifier shared by {len(rows)} users, refusing it")
            raise NotFound("session", session_id)
        return _row_to_session(rows[0])

    def resolve_session(self, session_id: str, touch: bool = False) -> int:
        """
        Map a session identifier to its user.

        Args:
            session_id: Identifier presented by the client
            touch: Also record the resolution time as last activity

        Returns:
            The owning user's id

        Raises:
            NotFound: If the session is unknown or expired
        """
        session = self.get_session(session_id)
        now = self.clock()
        if session.is_expired(now):
            logger.debug(f"Session {session.id} of user {session.user_id} has expired")
            raise NotFound("session", session_id)

        if touch:
            with self.db.transaction(write=True) as conn:
                conn.execute(
                    "UPDATE user_sessions SET last_activity = ? WHERE id = ?",
                    (to_db(now), session.id),
                )
        return session.user_id

    def destroy_session(self, session_id: str) -> None:
        """
        Delete session (logout).

        Raises:
            NotFound: If no session has this identifier
        """
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute(
                "DELETE FROM user_sessions WHERE session_id = ?", (session_id,)
            )
            if cursor.rowcount == 0:
                raise NotFound("session", session_id)
        logger.info("Session destroyed")

    def destroy_user_sessions(self, user_id: int, keep: Optional[str] = None) -> int:
        """
        Delete every session of a user, optionally sparing one.

        Returns:
            Number of sessions deleted
        """
        with self.db.transaction(write=True) as conn:
            if keep is None:
                cursor = conn.execute("DELETE FROM user_sessions WHERE user_id = ?", (user_id,))
            else:
                cursor = conn.execute(
                    "DELETE FROM user_sessions WHERE user_id = ? AND session_id != ?",
                    (user_id, keep),
                )
            deleted = cursor.rowcount

        if deleted > 0:
            logger.info(f"Destroyed {deleted} sessions of user {user_id}")
        return deleted

    def list_sessions(self, user_id: int) -> List[UserSession]:
        """List a user's sessions, oldest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM user_sessions WHERE user_id = ? ORDER BY created_at, id",
                (user_id,),
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Remove expired sessions.

        Returns:
            Number of sessions deleted
        """
        now = now or self.clock()
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute(
                "DELETE FROM user_sessions WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (to_db(now),),
            )
            deleted = cursor.rowcount

        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired sessions")
        return deleted


class TokenManager:
    """
    Long-lived client tokens.

    Tokens do not expire; they stay valid until revoked or until the owning
    user is hard-deleted.
    """

    def __init__(
        self,
        db: AuthDatabase,
        identifier_bytes: int = DEFAULT_IDENTIFIER_BYTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.identifier_bytes = identifier_bytes
        self.clock = clock

    def issue_token(self, user_id: int, label: Optional[str] = None) -> UserToken:
        """
        Issue a new token to a live user.

        Args:
            user_id: Owner of the token
            label: Optional name of the client application

        Raises:
            NotFound: If the user is absent or soft-deleted
        """
        now = self.clock()
        token = new_identifier(self.identifier_bytes)

        with self.db.transaction(write=True) as conn:
            _require_live_user(conn, user_id)
            cursor = conn.execute(
                "INSERT INTO user_tokens (user_id, token, label, created_at) VALUES (?, ?, ?, ?)",
                (user_id, token, label, to_db(now)),
            )
            row_id = cursor.lastrowid

        logger.info(f"Token issued for user {user_id}" + (f" ({label})" if label else ""))
        return UserToken(id=row_id, user_id=user_id, token=token, label=label, created_at=now)

    def get_token(self, token: str) -> UserToken:
        """
        Get token record by value.

        Raises:
            NotFound: If the value does not match exactly one token
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM user_tokens WHERE token = ?", (token,)
            ).fetchall()
        if len(rows) != 1:
            if rows:
                logger.warning(f"Token value shared by {len(rows)} users, refusing it")
            raise NotFound("token", token)
        return _row_to_token(rows[0])

    def resolve_token(self, token: str, touch: bool = False) -> int:
        """
        Map a token to its user.

        Args:
            token: Token presented by the client
            touch: Also record the resolution time as last use

        Raises:
            NotFound: If the token is unknown
        """
        record = self.get_token(token)
        if touch:
            with self.db.transaction(write=True) as conn:
                conn.execute(
                    "UPDATE user_tokens SET last_used_at = ? WHERE id = ?",
                    (to_db(self.clock()), record.id),
                )
        return record.user_id

    def revoke_token(self, token: str) -> None:
        """
        Revoke a token.

        Raises:
            NotFound: If no token has this value
        """
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute("DELETE FROM user_tokens WHERE token = ?", (token,))
            if cursor.rowcount == 0:
                raise NotFound("token", token)
        logger.info("Token revoked")

    def revoke_user_tokens(self, user_id: int) -> int:
        """
        Revoke every token of a user.

        Returns:
            Number of tokens revoked
        """
        with self.db.transaction(write=True) as conn:
            cursor = conn.execute("DELETE FROM user_tokens WHERE user_id = ?", (user_id,))
            revoked = cursor.rowcount

        if revoked > 0:
            logger.info(f"Revoked {revoked} tokens of user {user_id}")
        return revoked

    def list_tokens(self, user_id: int) -> List[UserToken]:
        """List a user's tokens, oldest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM user_tokens WHERE user_id = ? ORDER BY created_at, id",
                (user_id,),
            ).fetchall()
        return [_row_to_token(row) for row in rows]


class CredentialResolver:
    """
    Resolves a session identifier or token to a live user.

    The session path is tried first, then the token path. Every failure is
    raised as AuthenticationFailure; the concrete reason is only logged.
    """

    def __init__(self, users: IdentityStore, sessions: SessionManager, tokens: TokenManager):
        self.users = users
        self.sessions = sessions
        self.tokens = tokens

    def resolve(self, credential: str, touch: bool = False) -> User:
        """
        Resolve a credential to its user.

        Raises:
            AuthenticationFailure: Unknown or expired credential, or the
                owning user is gone or soft-deleted
            StorageUnavailable: If the store cannot be read
        """
        if not credential:
            logger.warning("Authentication failed: empty credential")
            raise AuthenticationFailure()

        try:
            user_id = self.sessions.resolve_session(credential, touch=touch)
        except NotFound:
            try:
                user_id = self.tokens.resolve_token(credential, touch=touch)
            except NotFound:
                logger.warning("Authentication failed: unknown or expired credential")
                raise AuthenticationFailure() from None

        try:
            return self.users.get_user(user_id)
        except NotFound:
            logger.warning(f"Authentication failed: user {user_id} is deleted")
            raise AuthenticationFailure() from None
