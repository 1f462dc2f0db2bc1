"""
Tests for sessions, tokens and credential resolution.
"""

from datetime import datetime, timedelta, timezone

import pytest

from whitelabel.auth import AuthenticationFailure, CredentialResolver, NotFound


@pytest.fixture
def credentials(users, sessions, tokens):
    return CredentialResolver(users, sessions, tokens)


class TestSessions:
    """Test session lifecycle."""

    def test_create_and_resolve(self, sessions, alice):
        """A new session resolves to its user."""
        session = sessions.create_session(alice.id)
        assert session.user_id == alice.id
        assert session.expires_at == session.created_at + sessions.lifetime
        assert sessions.resolve_session(session.session_id) == alice.id

    def test_identifiers_are_unique(self, sessions, alice):
        """Each login gets its own identifier."""
        first = sessions.create_session(alice.id)
        second = sessions.create_session(alice.id)
        assert first.session_id != second.session_id
        assert len(sessions.list_sessions(alice.id)) == 2

    def test_destroy(self, sessions, alice):
        """A destroyed session no longer resolves."""
        session = sessions.create_session(alice.id)
        sessions.destroy_session(session.session_id)
        with pytest.raises(NotFound):
            sessions.resolve_session(session.session_id)
        with pytest.raises(NotFound):
            sessions.destroy_session(session.session_id)

    def test_expiry(self, sessions, clock, alice):
        """Sessions stop resolving once their lifetime has passed."""
        session = sessions.create_session(alice.id)
        clock.advance(minutes=59)
        assert sessions.resolve_session(session.session_id) == alice.id

        clock.advance(hours=2)
        with pytest.raises(NotFound):
            sessions.resolve_session(session.session_id)

    def test_cleanup_expired(self, db, sessions, clock, alice, bob):
        """Only expired sessions are swept."""
        sessions.create_session(alice.id)
        clock.advance(minutes=30)
        fresh = sessions.create_session(bob.id)
        clock.advance(minutes=45)

        assert sessions.cleanup_expired_sessions() == 1
        assert db.count("user_sessions") == 1
        assert sessions.resolve_session(fresh.session_id) == bob.id

    def test_cleanup_compares_instants(self, sessions, alice):
        """The sweep cutoff is compared in UTC whatever its offset."""
        sessions.create_session(alice.id)
        # Session expires at 01:00 UTC; 02:30+02:00 is 00:30 UTC
        ahead = timezone(timedelta(hours=2))
        assert sessions.cleanup_expired_sessions(datetime(2025, 1, 1, 2, 30, tzinfo=ahead)) == 0

        # Naive cutoffs are taken as UTC
        assert sessions.cleanup_expired_sessions(datetime(2025, 1, 1, 1, 0)) == 1

    def test_touch_records_activity(self, sessions, clock, alice):
        """Resolution is read-only unless touch is requested."""
        session = sessions.create_session(alice.id)
        clock.advance(minutes=10)

        sessions.resolve_session(session.session_id)
        assert sessions.get_session(session.session_id).last_activity == session.created_at

        sessions.resolve_session(session.session_id, touch=True)
        assert sessions.get_session(session.session_id).last_activity == clock()

    def test_destroy_user_sessions_keeps_one(self, sessions, alice, bob):
        """destroy_user_sessions can spare the caller's session."""
        keep = sessions.create_session(alice.id)
        sessions.create_session(alice.id)
        other = sessions.create_session(bob.id)

        assert sessions.destroy_user_sessions(alice.id, keep=keep.session_id) == 1
        assert [s.session_id for s in sessions.list_sessions(alice.id)] == [keep.session_id]
        assert sessions.resolve_session(other.session_id) == bob.id

    def test_soft_deleted_user_cannot_log_in(self, users, sessions, alice):
        """Sessions are only created for live users."""
        users.soft_delete_user(alice.id)
        with pytest.raises(NotFound):
            sessions.create_session(alice.id)


class TestTokens:
    """Test token lifecycle."""

    def test_issue_and_resolve(self, tokens, alice):
        """Tokens resolve to their owner and keep their label."""
        token = tokens.issue_token(alice.id, label="ingest-bot")
        assert tokens.resolve_token(token.token) == alice.id
        assert tokens.get_token(token.token).label == "ingest-bot"

    def test_tokens_do_not_expire(self, tokens, clock, alice):
        """Tokens outlive any session lifetime."""
        token = tokens.issue_token(alice.id)
        clock.advance(days=365)
        assert tokens.resolve_token(token.token) == alice.id

    def test_touch_records_use(self, tokens, clock, alice):
        """last_used_at is set only on touching resolutions."""
        token = tokens.issue_token(alice.id)
        tokens.resolve_token(token.token)
        assert tokens.get_token(token.token).last_used_at is None

        clock.advance(seconds=5)
        tokens.resolve_token(token.token, touch=True)
        assert tokens.get_token(token.token).last_used_at == clock()

    def test_revoke(self, tokens, alice):
        """A revoked token no longer resolves."""
        token = tokens.issue_token(alice.id)
        tokens.revoke_token(token.token)
        with pytest.raises(NotFound):
            tokens.resolve_token(token.token)
        with pytest.raises(NotFound):
            tokens.revoke_token(token.token)

    def test_revoke_user_tokens(self, tokens, alice, bob):
        """Revoking a user's tokens leaves other users' tokens alone."""
        tokens.issue_token(alice.id, label="a")
        tokens.issue_token(alice.id, label="b")
        kept = tokens.issue_token(bob.id)

        assert [t.label for t in tokens.list_tokens(alice.id)] == ["a", "b"]
        assert tokens.revoke_user_tokens(alice.id) == 2
        assert tokens.list_tokens(alice.id) == []
        assert tokens.resolve_token(kept.token) == bob.id


class TestCredentialResolver:
    """Test resolution of either credential kind."""

    def test_resolves_session_and_token(self, credentials, sessions, tokens, alice):
        """Both kinds resolve to the same user."""
        session = sessions.create_session(alice.id)
        token = tokens.issue_token(alice.id)
        assert credentials.resolve(session.session_id).id == alice.id
        assert credentials.resolve(token.token).id == alice.id

    def test_unknown_and_empty(self, credentials):
        """Unknown and empty credentials fail alike."""
        for credential in ("", "no-such-credential"):
            with pytest.raises(AuthenticationFailure) as exc_info:
                credentials.resolve(credential)
            assert str(exc_info.value) == "authentication failed"

    def test_destroyed_session(self, credentials, sessions, alice):
        """A destroyed session fails resolution."""
        session = sessions.create_session(alice.id)
        sessions.destroy_session(session.session_id)
        with pytest.raises(AuthenticationFailure):
            credentials.resolve(session.session_id)

    def test_expired_session(self, credentials, sessions, clock, alice):
        """An expired session fails resolution."""
        session = sessions.create_session(alice.id)
        clock.advance(hours=2)
        with pytest.raises(AuthenticationFailure):
            credentials.resolve(session.session_id)

    def test_soft_deleted_user(self, credentials, users, sessions, tokens, alice):
        """Credentials of a soft-deleted user stop resolving."""
        session = sessions.create_session(alice.id)
        token = tokens.issue_token(alice.id)
        users.soft_delete_user(alice.id)

        for credential in (session.session_id, token.token):
            with pytest.raises(AuthenticationFailure):
                credentials.resolve(credential)

        users.restore_user(alice.id)
        assert credentials.resolve(token.token).id == alice.id

    def test_hard_deleted_user(self, credentials, users, tokens, alice):
        """Hard deletion removes the user's tokens with it."""
        token = tokens.issue_token(alice.id)
        users.delete_user(alice.id)
        with pytest.raises(AuthenticationFailure):
            credentials.resolve(token.token)
