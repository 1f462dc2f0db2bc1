"""
Shared fixtures: a fresh database per test and the components built on it.
"""

from datetime import datetime, timedelta, timezone

import pytest

from whitelabel.auth import (
    AuthDatabase,
    GrantGraph,
    GrantResolver,
    IdentityStore,
    PermissionRegistry,
    RoleRegistry,
    SessionManager,
    TokenManager,
    UserManager,
)
from whitelabel.config import AuthSettings


class FakeClock:
    """Controllable replacement for utcnow."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db(tmp_path):
    return AuthDatabase(tmp_path / "auth.db")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users(db):
    return IdentityStore(db)


@pytest.fixture
def roles(db):
    return RoleRegistry(db)


@pytest.fixture
def permissions(db):
    return PermissionRegistry(db)


@pytest.fixture
def grants(db):
    return GrantGraph(db)


@pytest.fixture
def resolver(db):
    return GrantResolver(db)


@pytest.fixture
def sessions(db, clock):
    return SessionManager(db, lifetime=timedelta(hours=1), clock=clock)


@pytest.fixture
def tokens(db, clock):
    return TokenManager(db, clock=clock)


@pytest.fixture
def settings(tmp_path):
    return AuthSettings(database_path=tmp_path / "auth.db", bcrypt_rounds=4)


@pytest.fixture
def manager(db, settings, clock):
    return UserManager(db, settings, clock=clock)


@pytest.fixture
def make_user(users):
    """Create a user with a placeholder hash."""
    def _make(username: str):
        return users.create_user(username, f"{username}@example.com", "not-a-real-hash")
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")
