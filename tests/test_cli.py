"""
Tests for the administration command line.
"""

import pytest

from whitelabel.cli import main
from whitelabel.config import get_settings


@pytest.fixture
def run(tmp_path, monkeypatch, capsys):
    """Run the CLI against a temporary database and return (code, out, err)."""
    monkeypatch.setenv("WHITELABEL_BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    db_path = tmp_path / "cli" / "auth.db"

    def _run(*argv):
        code = main(["--db", str(db_path), "--log-level", "WARNING", *argv])
        out, err = capsys.readouterr()
        return code, out, err

    yield _run
    get_settings.cache_clear()


class TestCommands:
    """Test the grant workflow end to end."""

    def test_grant_workflow(self, run):
        """A role grant shows up in the user's effective permissions."""
        assert run("init-db")[0] == 0
        assert run("create-user", "alice", "alice@example.com", "--password", "secret")[0] == 0
        assert run("create-role", "editor")[0] == 0
        assert run("create-permission", "catalog.write")[0] == 0
        assert run("grant-permission", "catalog.write", "--role", "editor")[0] == 0
        assert run("grant-role", "alice", "editor")[0] == 0

        code, out, _ = run("permissions", "alice")
        assert code == 0
        assert "catalog.write" in out
        assert "role:editor" in out

        assert run("revoke-role", "alice", "editor")[0] == 0
        assert run("permissions", "alice")[1] == ""

    def test_admin_user(self, run):
        """--admin grants the admin role."""
        run("create-user", "root", "root@example.com", "--password", "secret", "--admin")
        code, out, _ = run("list-users")
        assert code == 0
        assert "root" in out
        assert "admin" in out

    def test_direct_grant_and_token(self, run):
        """Permissions can be granted to a user directly."""
        run("create-user", "bot", "bot@example.com", "--password", "secret")
        run("create-permission", "catalog.read")
        assert run("grant-permission", "catalog.read", "--user", "bot")[0] == 0
        assert "direct" in run("permissions", "bot")[1]

        code, out, _ = run("issue-token", "bot", "--label", "ingest")
        assert code == 0
        assert out.strip()

    def test_delete_user(self, run):
        """Deactivated users are hidden unless --all is given."""
        run("create-user", "alice", "alice@example.com", "--password", "secret")
        assert run("delete-user", "alice")[0] == 0
        assert "alice" not in run("list-users")[1]
        assert "[deleted]" in run("list-users", "--all")[1]

        assert run("delete-user", "alice", "--hard")[0] == 0
        assert "alice" not in run("list-users", "--all")[1]


class TestErrors:
    """Test error reporting."""

    def test_unknown_user(self, run):
        """Domain errors exit with status 1 and a message on stderr."""
        code, _, err = run("grant-role", "nobody", "editor")
        assert code == 1
        assert "not found" in err

    def test_duplicate_grant(self, run):
        """A repeated grant is reported, not ignored."""
        run("create-user", "alice", "alice@example.com", "--password", "secret")
        run("create-role", "editor")
        run("grant-role", "alice", "editor")
        code, _, err = run("grant-role", "alice", "editor")
        assert code == 1
        assert "already granted" in err

    def test_invalid_email(self, run):
        """Form validation messages reach the user."""
        code, _, err = run("create-user", "alice", "not-an-email", "--password", "secret")
        assert code == 1
        assert "Email must be valid." in err

    def test_unusable_database_path(self, tmp_path, monkeypatch, capsys):
        """A database directory that cannot be created is reported, not raised."""
        monkeypatch.setenv("WHITELABEL_BCRYPT_ROUNDS", "4")
        get_settings.cache_clear()
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        code = main(["--db", str(blocker / "data" / "auth.db"), "init-db"])

        assert code == 1
        assert "error:" in capsys.readouterr().err
        get_settings.cache_clear()
