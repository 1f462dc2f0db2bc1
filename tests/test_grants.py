"""
Tests for the grant graph.
"""

import pytest

from whitelabel.auth import AlreadyGranted, NotFound


@pytest.fixture
def editor(roles):
    return roles.create("editor")


@pytest.fixture
def write(permissions):
    return permissions.create("catalog.write")


class TestUserRoles:
    """Test user -> role grants."""

    def test_grant_and_revoke(self, grants, alice, editor):
        """A granted role is listed until revoked."""
        grant = grants.grant_role(alice.id, editor.id)
        assert (grant.user_id, grant.role_id) == (alice.id, editor.id)
        assert [r.name for r in grants.roles_of_user(alice.id)] == ["editor"]
        assert [u.username for u in grants.users_with_role(editor.id)] == ["alice"]

        grants.revoke_role(alice.id, editor.id)
        assert grants.roles_of_user(alice.id) == []

    def test_duplicate_grant(self, db, grants, alice, editor):
        """Granting the same pair twice fails and leaves one row."""
        grants.grant_role(alice.id, editor.id)
        with pytest.raises(AlreadyGranted) as exc_info:
            grants.grant_role(alice.id, editor.id)

        assert exc_info.value.relation == "user_roles"
        assert db.count("user_roles") == 1

    def test_revoke_missing(self, grants, alice, editor):
        """Revoking a role the user does not hold raises NotFound."""
        with pytest.raises(NotFound):
            grants.revoke_role(alice.id, editor.id)

    def test_unknown_endpoints(self, grants, users, alice, editor):
        """Both ends of the grant must exist."""
        with pytest.raises(NotFound) as exc_info:
            grants.grant_role(999, editor.id)
        assert exc_info.value.kind == "user"

        with pytest.raises(NotFound) as exc_info:
            grants.grant_role(alice.id, 999)
        assert exc_info.value.kind == "role"

    def test_soft_deleted_user_cannot_receive_grants(self, grants, users, alice, editor):
        """Grants go to live users only."""
        users.soft_delete_user(alice.id)
        with pytest.raises(NotFound):
            grants.grant_role(alice.id, editor.id)

    def test_users_with_role_skips_soft_deleted(self, grants, users, alice, bob, editor):
        """Soft-deleted members are not listed."""
        grants.grant_role(alice.id, editor.id)
        grants.grant_role(bob.id, editor.id)
        users.soft_delete_user(alice.id)
        assert [u.username for u in grants.users_with_role(editor.id)] == ["bob"]


class TestRolePermissions:
    """Test role -> permission grants."""

    def test_grant_and_revoke(self, grants, editor, write):
        """A permission added to a role is listed until revoked."""
        grants.grant_permission_to_role(editor.id, write.id)
        assert [p.name for p in grants.permissions_of_role(editor.id)] == ["catalog.write"]

        grants.revoke_permission_from_role(editor.id, write.id)
        assert grants.permissions_of_role(editor.id) == []

    def test_duplicate_grant(self, grants, editor, write):
        """The (role, permission) pair is unique."""
        grants.grant_permission_to_role(editor.id, write.id)
        with pytest.raises(AlreadyGranted):
            grants.grant_permission_to_role(editor.id, write.id)

    def test_unknown_permission(self, grants, editor):
        """Granting an unknown permission raises NotFound."""
        with pytest.raises(NotFound):
            grants.grant_permission_to_role(editor.id, 999)

    def test_revoke_missing(self, grants, editor, write):
        """Revoking an absent pair raises NotFound."""
        with pytest.raises(NotFound):
            grants.revoke_permission_from_role(editor.id, write.id)


class TestUserPermissions:
    """Test direct user -> permission grants."""

    def test_grant_and_revoke(self, grants, alice, write):
        """Direct grants need no role."""
        grants.grant_permission_to_user(alice.id, write.id)
        assert [p.name for p in grants.direct_permissions_of_user(alice.id)] == ["catalog.write"]

        grants.revoke_permission_from_user(alice.id, write.id)
        assert grants.direct_permissions_of_user(alice.id) == []

    def test_duplicate_grant(self, grants, alice, write):
        """The (user, permission) pair is unique."""
        grants.grant_permission_to_user(alice.id, write.id)
        with pytest.raises(AlreadyGranted):
            grants.grant_permission_to_user(alice.id, write.id)

    def test_catch_already_granted_for_idempotence(self, db, grants, alice, write):
        """Callers can ignore AlreadyGranted to get idempotent grants."""
        for _ in range(3):
            try:
                grants.grant_permission_to_user(alice.id, write.id)
            except AlreadyGranted:
                pass
        assert db.count("user_permissions") == 1

    def test_revoke_missing(self, grants, alice, write):
        """Revoking an absent direct grant raises NotFound."""
        with pytest.raises(NotFound):
            grants.revoke_permission_from_user(alice.id, write.id)
