"""Unit tests for component tree reconciliation."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from keycloak_config_sync.errors import ImportProcessingError
from keycloak_config_sync.models.keycloak_api import (
    ComponentExportRepresentation,
    ComponentRepresentation,
    RealmRepresentation,
)
from keycloak_config_sync.models.realm_import import RealmImport
from keycloak_config_sync.services.base_reconciler import ReconcileContext
from keycloak_config_sync.services.component_reconciler import (
    ComponentReconciler,
    flatten_component_tree,
)
from keycloak_config_sync.services.entity_sync import ManagedMode

USER_STORAGE = "org.keycloak.storage.UserStorageProvider"
LDAP_MAPPER = "org.keycloak.storage.ldap.mappers.LDAPStorageMapper"
KEY_PROVIDER = "org.keycloak.keys.KeyProvider"
NESTED = "org.example.NestedProvider"


def realm_import(document: dict) -> RealmImport:
    return RealmImport.from_document("test.json", json.dumps(document), {"realm": "test", **document})


def exported(components: dict | None = None, **fields) -> RealmRepresentation:
    return RealmRepresentation.model_validate(
        {"id": "realm-id", "realm": "test", "components": components, **fields}
    )


LDAP_TREE = {
    USER_STORAGE: [
        {
            "id": "ldap-id",
            "name": "ldap",
            "providerId": "ldap",
            "subComponents": {
                LDAP_MAPPER: [
                    {"id": "m1", "name": "email", "providerId": "user-attribute-ldap-mapper"},
                    {"id": "m2", "name": "username", "providerId": "user-attribute-ldap-mapper"},
                ]
            },
        }
    ],
    KEY_PROVIDER: [{"id": "k1", "name": "rsa-generated", "providerId": "rsa-generated"}],
}


@pytest.fixture
def admin_mock() -> MagicMock:
    """Mock Keycloak admin client with component methods."""
    mock = MagicMock()

    mock.partial_export = AsyncMock(return_value=exported())
    mock.create_component = AsyncMock(return_value="new-component-id")
    mock.update_component = AsyncMock(return_value=None)
    mock.delete_component = AsyncMock(return_value=None)

    mock.get_components = AsyncMock(return_value=[])

    return mock


@pytest.fixture
def context() -> ReconcileContext:
    return ReconcileContext(realm_name="test", mode=ManagedMode.FULL)


# =============================================================================
# Components
# =============================================================================


class TestComponentReconciler:
    """Tests for ComponentReconciler.reconcile."""

    def test_flatten_records_parents(self):
        """Should give each exported node the id of its parent."""
        tree = {
            ptype: [ComponentExportRepresentation.model_validate(c) for c in items]
            for ptype, items in LDAP_TREE.items()
        }

        flat = {c.id: c for c in flatten_component_tree(tree, "realm-id")}

        assert flat["ldap-id"].parent_id == "realm-id"
        assert flat["m1"].parent_id == "ldap-id"
        assert flat["m1"].provider_type == LDAP_MAPPER
        assert flat["k1"].provider_type == KEY_PROVIDER

    @pytest.mark.asyncio
    async def test_removing_leaf_deletes_only_that_leaf(self, admin_mock, context):
        """Should delete a removed mapper and keep its parent and other types."""
        admin_mock.partial_export.return_value = exported(LDAP_TREE)
        document = {
            "components": {
                USER_STORAGE: [
                    {
                        "name": "ldap",
                        "providerId": "ldap",
                        "subComponents": {
                            LDAP_MAPPER: [
                                {"name": "email", "providerId": "user-attribute-ldap-mapper"}
                            ]
                        },
                    }
                ]
            }
        }

        result = await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.deleted == [f"{LDAP_MAPPER}/username"]
        assert result.created == []
        assert result.updated == []
        admin_mock.delete_component.assert_awaited_once_with("m2", "test")

    @pytest.mark.asyncio
    async def test_nested_create_uses_new_parent_id(self, admin_mock, context):
        """Should create children under the id returned for their parent."""
        document = {
            "components": {
                USER_STORAGE: [
                    {
                        "name": "ldap",
                        "providerId": "ldap",
                        "subComponents": {LDAP_MAPPER: [{"name": "email"}]},
                    }
                ]
            }
        }
        admin_mock.create_component.side_effect = ["ldap-new", "mapper-new"]

        result = await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)

        assert len(result.created) == 2
        parent, _ = admin_mock.create_component.call_args_list[0].args
        child, _ = admin_mock.create_component.call_args_list[1].args
        assert parent.parent_id == "realm-id"
        assert parent.provider_type == USER_STORAGE
        assert child.parent_id == "ldap-new"
        assert child.provider_type == LDAP_MAPPER

    @pytest.mark.asyncio
    async def test_changed_config_updates_component(self, admin_mock, context):
        """Should patch a component whose config differs."""
        admin_mock.partial_export.return_value = exported(
            {KEY_PROVIDER: [{"id": "k1", "name": "rsa", "config": {"priority": ["100"]}}]}
        )
        document = {"components": {KEY_PROVIDER: [{"name": "rsa", "config": {"priority": ["200"]}}]}}

        result = await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.updated == [f"{KEY_PROVIDER}/rsa"]
        component_id, payload, _ = admin_mock.update_component.call_args.args
        assert component_id == "k1"
        assert payload["config"] == {"priority": ["200"]}
        assert payload["parentId"] == "realm-id"


    @pytest.mark.asyncio
    async def test_two_level_create_chains_new_ids(self, admin_mock, context):
        """Should create each level under the id returned for the level above."""
        document = {
            "components": {
                USER_STORAGE: [
                    {
                        "name": "ldap",
                        "providerId": "ldap",
                        "subComponents": {
                            LDAP_MAPPER: [
                                {
                                    "name": "email",
                                    "subComponents": {NESTED: [{"name": "leaf"}]},
                                }
                            ]
                        },
                    }
                ]
            }
        }
        admin_mock.create_component.side_effect = ["ldap-new", "mapper-new", "leaf-new"]

        result = await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)

        assert result.created == [
            f"{USER_STORAGE}/ldap",
            f"{LDAP_MAPPER}/email",
            f"{NESTED}/leaf",
        ]
        created = [call.args[0] for call in admin_mock.create_component.call_args_list]
        assert [c.parent_id for c in created] == ["realm-id", "ldap-new", "mapper-new"]
        assert [c.provider_type for c in created] == [USER_STORAGE, LDAP_MAPPER, NESTED]

    @pytest.mark.asyncio
    async def test_no_delete_keeps_unlisted_child_and_updates_grandchild(self, admin_mock):
        """Should leave unlisted children alone while still converging deeper levels."""
        tree = json.loads(json.dumps(LDAP_TREE))
        email = tree[USER_STORAGE][0]["subComponents"][LDAP_MAPPER][0]
        email["subComponents"] = {NESTED: [{"id": "g1", "name": "g", "config": {"a": ["1"]}}]}
        admin_mock.partial_export.return_value = exported(tree)
        document = {
            "components": {
                USER_STORAGE: [
                    {
                        "name": "ldap",
                        "providerId": "ldap",
                        "subComponents": {
                            LDAP_MAPPER: [
                                {
                                    "name": "email",
                                    "providerId": "user-attribute-ldap-mapper",
                                    "subComponents": {
                                        NESTED: [{"name": "g", "config": {"a": ["2"]}}]
                                    },
                                }
                            ]
                        },
                    }
                ]
            }
        }
        context = ReconcileContext(realm_name="test", mode=ManagedMode.NO_DELETE)

        result = await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)

        admin_mock.delete_component.assert_not_called()
        assert result.deleted == []
        assert result.updated == [f"{NESTED}/g"]
        component_id, payload, _ = admin_mock.update_component.call_args.args
        assert component_id == "g1"
        assert payload["config"] == {"a": ["2"]}
        assert payload["parentId"] == "m1"

    @pytest.mark.asyncio
    async def test_missing_id_looks_up_created_component(self, admin_mock, context):
        """Should find a created component by key when the server returns no id."""
        document = {
            "components": {
                USER_STORAGE: [
                    {
                        "name": "ldap",
                        "providerId": "ldap",
                        "subComponents": {LDAP_MAPPER: [{"name": "email"}]},
                    }
                ]
            }
        }
        admin_mock.create_component.side_effect = [None, "mapper-new"]
        admin_mock.get_components.return_value = [
            ComponentRepresentation(
                id="ldap-found", name="ldap", provider_type=USER_STORAGE, parent_id="realm-id"
            )
        ]

        result = await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)

        assert len(result.created) == 2
        admin_mock.get_components.assert_awaited_once_with(
            "test", parent_id="realm-id", provider_type=USER_STORAGE, name="ldap"
        )
        child, _ = admin_mock.create_component.call_args_list[1].args
        assert child.parent_id == "ldap-found"

    @pytest.mark.asyncio
    async def test_created_component_not_found_raises(self, admin_mock, context):
        admin_mock.create_component.return_value = None
        document = {"components": {KEY_PROVIDER: [{"name": "rsa", "providerId": "rsa"}]}}

        with pytest.raises(ImportProcessingError, match="Cannot find created component 'rsa'"):
            await ComponentReconciler(admin_mock).reconcile(realm_import(document), context)
