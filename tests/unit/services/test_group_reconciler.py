"""Unit tests for group and user reconciliation."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from keycloak_config_sync.errors import ImportProcessingError, InvalidImportError
from keycloak_config_sync.models.keycloak_api import (
    GroupRepresentation,
    RoleRepresentation,
    UserRepresentation,
)
from keycloak_config_sync.models.realm_import import RealmImport
from keycloak_config_sync.services.base_reconciler import ReconcileContext
from keycloak_config_sync.services.entity_sync import ManagedMode
from keycloak_config_sync.services.group_reconciler import (
    GroupReconciler,
    group_differs,
    normalize_path,
)
from keycloak_config_sync.services.user_reconciler import UserReconciler
from keycloak_config_sync.utils.keycloak_admin import KeycloakAdminError


def realm_import(document: dict) -> RealmImport:
    return RealmImport.from_document("test.json", json.dumps(document), {"realm": "test", **document})


@pytest.fixture
def admin_mock() -> MagicMock:
    """Mock Keycloak admin client with group and user methods."""
    mock = MagicMock()

    mock.get_groups = AsyncMock(return_value=[])
    mock.get_group_children = AsyncMock(return_value=[])
    mock.get_group_by_path = AsyncMock(return_value=None)
    mock.create_group = AsyncMock(return_value="new-group-id")
    mock.create_subgroup = AsyncMock(return_value="new-subgroup-id")
    mock.update_group = AsyncMock(return_value=None)
    mock.delete_group = AsyncMock(return_value=None)

    mock.get_default_groups = AsyncMock(return_value=[])
    mock.add_default_group = AsyncMock(return_value=None)
    mock.remove_default_group = AsyncMock(return_value=None)

    mock.get_realm_roles = AsyncMock(return_value=[])
    mock.get_clients = AsyncMock(return_value=[])
    mock.get_role_mappings = AsyncMock(return_value=[])
    mock.add_role_mappings = AsyncMock(return_value=None)
    mock.remove_role_mappings = AsyncMock(return_value=None)

    mock.get_user_by_username = AsyncMock(return_value=None)
    mock.create_user = AsyncMock(return_value="new-user-id")
    mock.update_user = AsyncMock(return_value=None)
    mock.get_user_groups = AsyncMock(return_value=[])
    mock.join_group = AsyncMock(return_value=None)
    mock.leave_group = AsyncMock(return_value=None)

    return mock


@pytest.fixture
def context() -> ReconcileContext:
    return ReconcileContext(realm_name="test", mode=ManagedMode.FULL)


# =============================================================================
# Groups
# =============================================================================


class TestGroupReconciler:
    """Tests for GroupReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_creates_tree_top_down(self, admin_mock, context):
        """Should create a sub-group under the id of its new parent."""
        document = {"groups": [{"name": "a", "subGroups": [{"name": "b"}]}]}

        result = await GroupReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.created == ["/a", "/a/b"]
        payload, _ = admin_mock.create_group.call_args.args
        assert payload == {"name": "a"}
        parent_id, payload, _ = admin_mock.create_subgroup.call_args.args
        assert parent_id == "new-group-id"
        assert payload == {"name": "b"}
        admin_mock.get_group_children.assert_not_called()

    @pytest.mark.asyncio
    async def test_deletes_unlisted_sub_group_only(self, admin_mock, context):
        """Should delete a removed leaf while keeping its parent."""
        admin_mock.get_groups.return_value = [GroupRepresentation(id="a-id", name="a")]
        admin_mock.get_group_children.return_value = [
            GroupRepresentation(id="b-id", name="b"),
            GroupRepresentation(id="c-id", name="c"),
        ]
        document = {"groups": [{"name": "a", "subGroups": [{"name": "b"}]}]}

        result = await GroupReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.deleted == ["/a/c"]
        admin_mock.delete_group.assert_awaited_once_with("c-id", "test")
        admin_mock.get_group_children.assert_awaited_once_with("a-id", "test")

    @pytest.mark.asyncio
    async def test_deleted_group_children_not_visited(self, admin_mock, context):
        """Should rely on the server cascade for children of deleted groups."""
        admin_mock.get_groups.return_value = [GroupRepresentation(id="old-id", name="old")]

        await GroupReconciler(admin_mock).reconcile(realm_import({"groups": []}), context)

        admin_mock.delete_group.assert_awaited_once_with("old-id", "test")
        admin_mock.get_group_children.assert_not_called()

    @pytest.mark.asyncio
    async def test_unlisted_sub_groups_left_alone(self, admin_mock, context):
        """Should not manage children of a group whose subGroups are absent."""
        admin_mock.get_groups.return_value = [GroupRepresentation(id="a-id", name="a")]

        await GroupReconciler(admin_mock).reconcile(
            realm_import({"groups": [{"name": "a"}]}), context
        )

        admin_mock.get_group_children.assert_not_called()
        admin_mock.delete_group.assert_not_called()

    @pytest.mark.asyncio
    async def test_attributes_replaced_as_a_whole(self, admin_mock, context):
        """Should drop attribute keys missing from the document."""
        admin_mock.get_groups.return_value = [
            GroupRepresentation(id="a-id", name="a", attributes={"x": ["1"], "y": ["2"]})
        ]
        document = {"groups": [{"name": "a", "attributes": {"x": ["1"]}}]}

        result = await GroupReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.updated == ["/a"]
        group_id, payload, _ = admin_mock.update_group.call_args.args
        assert group_id == "a-id"
        assert payload["attributes"] == {"x": ["1"]}

    @pytest.mark.asyncio
    async def test_role_mappings_of_existing_group(self, admin_mock, context):
        """Should map listed realm roles onto the group."""
        admin_mock.get_groups.return_value = [GroupRepresentation(id="a-id", name="a")]
        admin_mock.get_realm_roles.return_value = [RoleRepresentation(id="r1", name="user")]
        document = {"groups": [{"name": "a", "realmRoles": ["user"]}]}

        result = await GroupReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.updated == ["/a"]
        owner, roles, _ = admin_mock.add_role_mappings.call_args.args
        assert owner == "groups/a-id"
        assert [r.name for r in roles] == ["user"]

    @pytest.mark.asyncio
    async def test_role_mapping_rejected_by_server(self, admin_mock, context):
        """Should report which group the failed mapping belonged to."""
        admin_mock.get_groups.return_value = [GroupRepresentation(id="a-id", name="a")]
        admin_mock.get_realm_roles.return_value = [RoleRepresentation(id="r1", name="user")]
        admin_mock.add_role_mappings.side_effect = KeycloakAdminError(
            "bad", status_code=400, response_body="nope"
        )

        with pytest.raises(ImportProcessingError, match="group '/a'"):
            await GroupReconciler(admin_mock).reconcile(
                realm_import({"groups": [{"name": "a", "realmRoles": ["user"]}]}), context
            )

    @pytest.mark.asyncio
    async def test_default_groups(self, admin_mock, context):
        """Should add listed default groups and remove unlisted ones."""
        admin_mock.get_default_groups.return_value = [
            GroupRepresentation(id="old-id", name="old", path="/old")
        ]
        admin_mock.get_group_by_path.return_value = GroupRepresentation(
            id="new-id", name="new", path="/new"
        )

        result = await GroupReconciler(admin_mock).reconcile(
            realm_import({"defaultGroups": ["new"]}), context
        )

        assert result.created == ["default /new"]
        assert result.deleted == ["default /old"]
        admin_mock.add_default_group.assert_awaited_once_with("new-id", "test")
        admin_mock.remove_default_group.assert_awaited_once_with("old-id", "test")
        admin_mock.get_groups.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_default_group(self, admin_mock, context):
        """Should fail before changing any default group."""
        with pytest.raises(InvalidImportError, match="Cannot find group '/ghost'"):
            await GroupReconciler(admin_mock).reconcile(
                realm_import({"defaultGroups": ["/ghost"]}), context
            )

        admin_mock.add_default_group.assert_not_called()

    def test_group_differs_ignores_nested_fields(self):
        """Should compare only the group's own fields."""
        desired = GroupRepresentation.model_validate(
            {"name": "a", "subGroups": [{"name": "b"}], "realmRoles": ["user"]}
        )
        remote = GroupRepresentation(id="a-id", name="a", path="/a", sub_group_count=3)

        assert not group_differs(desired, remote)

    def test_normalize_path(self):
        assert normalize_path("a/b/") == "/a/b"
        assert normalize_path("/a") == "/a"


# =============================================================================
# Users
# =============================================================================


class TestUserReconciler:
    """Tests for UserReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_creates_user_with_credentials(self, admin_mock, context):
        """Should send credentials with a new user but no associations."""
        document = {
            "users": [
                {
                    "username": "Alice",
                    "credentials": [{"type": "password", "value": "secret"}],
                    "groups": [],
                }
            ]
        }

        result = await UserReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.created == ["alice"]
        payload, _ = admin_mock.create_user.call_args.args
        assert payload["credentials"][0]["value"] == "secret"
        assert "groups" not in payload
        admin_mock.get_user_by_username.assert_awaited_once_with("alice", "test")

    @pytest.mark.asyncio
    async def test_existing_credentials_not_resent(self, admin_mock, context):
        """Should leave passwords of existing users alone."""
        admin_mock.get_user_by_username.return_value = UserRepresentation(
            id="u1", username="alice", enabled=True
        )
        document = {
            "users": [
                {
                    "username": "alice",
                    "enabled": False,
                    "credentials": [{"type": "password", "value": "secret"}],
                }
            ]
        }

        result = await UserReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.updated == ["alice"]
        user_id, payload, _ = admin_mock.update_user.call_args.args
        assert user_id == "u1"
        assert payload["enabled"] is False
        assert "credentials" not in payload

    @pytest.mark.asyncio
    async def test_users_never_deleted(self, admin_mock, context):
        """Should not delete users even under full management."""
        admin_mock.get_user_by_username.return_value = UserRepresentation(
            id="u1", username="alice"
        )

        result = await UserReconciler(admin_mock).reconcile(
            realm_import({"users": [{"username": "alice"}]}), context
        )

        assert not result.changed

    @pytest.mark.asyncio
    async def test_group_membership_converges(self, admin_mock, context):
        """Should join listed groups and leave unlisted ones."""
        admin_mock.get_user_by_username.return_value = UserRepresentation(
            id="u1", username="alice"
        )
        admin_mock.get_group_by_path.return_value = GroupRepresentation(
            id="g-new", name="new", path="/new"
        )
        admin_mock.get_user_groups.return_value = [
            GroupRepresentation(id="g-old", name="old", path="/old")
        ]

        result = await UserReconciler(admin_mock).reconcile(
            realm_import({"users": [{"username": "alice", "groups": ["/new"]}]}), context
        )

        assert result.updated == ["alice"]
        admin_mock.join_group.assert_awaited_once_with("u1", "g-new", "test")
        admin_mock.leave_group.assert_awaited_once_with("u1", "g-old", "test")

    @pytest.mark.asyncio
    async def test_created_user_id_looked_up_when_missing(self, admin_mock, context):
        """Should find a new user's id by username when creation returned none."""
        admin_mock.create_user.return_value = None
        admin_mock.get_user_by_username.side_effect = [
            None,
            UserRepresentation(id="u9", username="bob"),
        ]
        admin_mock.get_realm_roles.return_value = [RoleRepresentation(id="r1", name="user")]

        await UserReconciler(admin_mock).reconcile(
            realm_import({"users": [{"username": "bob", "realmRoles": ["user"]}]}), context
        )

        owner, _, _ = admin_mock.add_role_mappings.call_args.args
        assert owner == "users/u9"
