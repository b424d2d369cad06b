"""Unit tests for customImport options."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from keycloak_config_sync.errors import ImportProcessingError
from keycloak_config_sync.models.keycloak_api import ClientRepresentation
from keycloak_config_sync.models.realm_import import RealmImport
from keycloak_config_sync.services.base_reconciler import ReconcileContext
from keycloak_config_sync.services.custom_import_reconciler import CustomImportReconciler
from keycloak_config_sync.services.entity_sync import ManagedMode
from keycloak_config_sync.services.realm_import_service import RealmImportService
from keycloak_config_sync.utils.keycloak_admin import KeycloakAdminError


def realm_import(document: dict) -> RealmImport:
    return RealmImport.from_document("test.json", json.dumps(document), {"realm": "test", **document})


@pytest.fixture
def admin_mock() -> MagicMock:
    """Mock Keycloak admin client holding the realm's management client in master."""
    mock = MagicMock()
    mock.get_client_by_client_id = AsyncMock(
        return_value=ClientRepresentation(id="mgmt-uuid", client_id="test-realm")
    )
    mock.delete_client_role = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def context() -> ReconcileContext:
    return ReconcileContext(realm_name="test", mode=ManagedMode.NO_DELETE)


class TestCustomImportReconciler:
    """Tests for CustomImportReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_remove_impersonation(self, admin_mock, context):
        """Should delete the impersonation role of the management client in master."""
        document = {"customImport": {"removeImpersonation": True}}

        result = await CustomImportReconciler(admin_mock).reconcile(
            realm_import(document), context
        )

        admin_mock.get_client_by_client_id.assert_awaited_once_with("test-realm", "master")
        admin_mock.delete_client_role.assert_awaited_once_with(
            "mgmt-uuid", "impersonation", "master"
        )
        assert result.deleted == ["test-realm/impersonation"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "document",
        [{}, {"customImport": {}}, {"customImport": {"removeImpersonation": False}}],
    )
    async def test_option_not_set(self, admin_mock, context, document):
        result = await CustomImportReconciler(admin_mock).reconcile(
            realm_import(document), context
        )

        assert not result.changed
        admin_mock.get_client_by_client_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_management_client(self, admin_mock, context):
        """Should do nothing when master holds no client for the realm."""
        admin_mock.get_client_by_client_id.return_value = None

        result = await CustomImportReconciler(admin_mock).reconcile(
            realm_import({"customImport": {"removeImpersonation": True}}), context
        )

        assert not result.changed
        admin_mock.delete_client_role.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_delete_is_processing_error(self, admin_mock, context):
        admin_mock.delete_client_role.side_effect = KeycloakAdminError(
            "forbidden", status_code=403, response_body="denied"
        )

        with pytest.raises(ImportProcessingError, match="test-realm/impersonation"):
            await CustomImportReconciler(admin_mock).reconcile(
                realm_import({"customImport": {"removeImpersonation": True}}), context
            )

    def test_option_not_sent_with_realm_settings(self):
        document = realm_import({"customImport": {"removeImpersonation": True}})

        assert document.realm.custom_import.remove_impersonation is True
        assert "customImport" not in RealmImportService._scalar_fields(document.realm)

