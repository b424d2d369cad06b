"""
Error hierarchy with categorization and user guidance.

This module defines the error types used throughout keycloak-config-sync,
separating input problems (fatal for one realm) from remote processing
failures (fatal for the whole run).
"""


class ConfigSyncError(Exception):
    """
    Base error class for all keycloak-config-sync exceptions.

    Provides categorization, retry hints, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = False,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error description
            category: Error category (validation, reconciliation, configuration, ...)
            retryable: Whether re-running the import may succeed without changes
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(ConfigSyncError):
    """Error in an import document."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        action = user_action or "Check the import document and fix validation errors"
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message, category="validation", retryable=False, user_action=action
        )


class InvalidImportError(ValidationError):
    """Import document is malformed or references something that does not exist.

    Fatal for the realm being imported; other realms of a batch continue.
    """

    def __init__(self, message: str, realm_name: str | None = None):
        self.realm_name = realm_name
        super().__init__(message)


class PermanentError(ConfigSyncError):
    """Permanent error that should not be retried."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="permanent",
            retryable=False,
            user_action=user_action or "Manual intervention required to resolve",
        )


class BuiltInFlowError(PermanentError):
    """Attempt to delete or recreate a flow shipped with Keycloak."""

    def __init__(self, flow_alias: str, realm_name: str):
        self.flow_alias = flow_alias
        self.realm_name = realm_name
        super().__init__(
            f"Unable to recreate flow '{flow_alias}' in realm '{realm_name}': "
            "Deletion or creation of built-in flows is not possible",
            user_action="Copy the built-in flow under a new alias and change the copy",
        )


class ReconciliationError(ConfigSyncError):
    """Error raised when reconciliation cannot be completed."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="reconciliation",
            retryable=retryable,
            user_action=user_action
            or "Inspect logs and the import document for issues",
            cause=cause,
        )


class ImportProcessingError(ReconciliationError):
    """A remote create/update/delete failed while importing a realm."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_key: str | None = None,
        realm_name: str | None = None,
        cause: Exception | None = None,
    ):
        self.entity_type = entity_type
        self.entity_key = entity_key
        self.realm_name = realm_name
        super().__init__(message, cause=cause)


class ConfigurationError(ConfigSyncError):
    """Error in runtime configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )
