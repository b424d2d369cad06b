"""Unit tests for the error hierarchy."""

from keycloak_config_sync.errors import (
    BuiltInFlowError,
    ConfigSyncError,
    ImportProcessingError,
    InvalidImportError,
)


class TestErrors:
    def test_user_action_appended_to_message(self):
        error = BuiltInFlowError("browser", "test")

        assert str(error).startswith(
            "Unable to recreate flow 'browser' in realm 'test': "
            "Deletion or creation of built-in flows is not possible"
        )
        assert "Action required:" in str(error)
        assert error.retryable is False

    def test_input_errors_are_validation_category(self):
        error = InvalidImportError("Unknown client 'app'", realm_name="test")

        assert isinstance(error, ConfigSyncError)
        assert error.category == "validation"
        assert error.realm_name == "test"

    def test_processing_error_keeps_cause(self):
        cause = RuntimeError("boom")

        error = ImportProcessingError(
            "Cannot create client 'app' in realm 'test': boom",
            entity_type="client",
            entity_key="app",
            realm_name="test",
            cause=cause,
        )

        assert error.category == "reconciliation"
        assert error.cause is cause
        assert error.entity_key == "app"
