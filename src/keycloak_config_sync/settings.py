"""Centralized settings using pydantic-settings.

This module provides a single source of truth for all runtime configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from typing import TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .services.entity_sync import EntityType, ManagedMode


class Settings(BaseSettings):
    """Configuration loaded from environment variables.

    Connection settings have no usable default and are checked when the admin
    client is built. Everything else has a sensible default.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Keycloak connection
    keycloak_url: str = Field(
        default="",
        description="Base URL of the Keycloak server",
        validation_alias="KEYCLOAK_URL",
    )
    keycloak_user: str = Field(
        default="",
        description="Admin username used for the password grant",
        validation_alias="KEYCLOAK_USER",
    )
    keycloak_password: str = Field(
        default="",
        description="Admin password used for the password grant",
        validation_alias="KEYCLOAK_PASSWORD",
    )
    keycloak_login_realm: str = Field(
        default="master",
        description="Realm the admin user authenticates against",
        validation_alias="KEYCLOAK_LOGIN_REALM",
    )
    keycloak_client_id: str = Field(
        default="admin-cli",
        description="Client ID used to obtain admin tokens",
        validation_alias="KEYCLOAK_CLIENT_ID",
    )
    keycloak_ssl_verify: bool = Field(
        default=True,
        description="Verify TLS certificates of the Keycloak server",
        validation_alias="KEYCLOAK_SSL_VERIFY",
    )
    keycloak_timeout: int = Field(
        default=60,
        description="Request timeout in seconds",
        validation_alias="KEYCLOAK_TIMEOUT",
    )

    # Import behavior
    import_files: str = Field(
        default="",
        description="Comma-separated files, directories or glob patterns to import",
        validation_alias="IMPORT_FILES_LOCATIONS",
    )
    import_force: bool = Field(
        default=False,
        description="Import even when the stored checksum matches",
        validation_alias="IMPORT_FORCE",
    )
    import_cache_key: str = Field(
        default="",
        description="Checksum cache key override (defaults to the source name)",
        validation_alias="IMPORT_CACHE_KEY",
    )
    import_var_substitution: bool = Field(
        default=False,
        description="Substitute $(env:NAME) placeholders in import documents",
        validation_alias="IMPORT_VAR_SUBSTITUTION_ENABLED",
    )
    state_enabled: bool = Field(
        default=True,
        description="Record created entities in realm attributes and only delete those",
        validation_alias="IMPORT_REMOTE_STATE_ENABLED",
    )
    skip_organizations: bool = Field(
        default=False,
        description="Never reconcile organizations",
        validation_alias="IMPORT_SKIP_ORGANIZATIONS",
    )

    # Managed modes per entity type (full | no-delete)
    managed_client: str = Field(default="full", validation_alias="IMPORT_MANAGED_CLIENT")
    managed_client_scope: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_CLIENT_SCOPE"
    )
    managed_role: str = Field(default="full", validation_alias="IMPORT_MANAGED_ROLE")
    managed_role_composite: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_ROLE_COMPOSITE"
    )
    managed_group: str = Field(default="full", validation_alias="IMPORT_MANAGED_GROUP")
    managed_required_action: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_REQUIRED_ACTION"
    )
    managed_authentication_flow: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_AUTHENTICATION_FLOW"
    )
    managed_component: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_COMPONENT"
    )
    managed_scope_mapping: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_SCOPE_MAPPING"
    )
    managed_identity_provider: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_IDENTITY_PROVIDER"
    )
    managed_organization: str = Field(
        default="full", validation_alias="IMPORT_MANAGED_ORGANIZATION"
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    @property
    def import_locations(self) -> list[str]:
        """Parse import locations from comma-separated string."""
        return [loc.strip() for loc in self.import_files.split(",") if loc.strip()]

    def managed_mode_for(self, entity_type: "EntityType") -> "ManagedMode":
        """Resolve the managed mode configured for an entity type.

        Entity types without a managed_* field (realm, user) are always
        reconciled without deletion.

        Raises:
            ConfigurationError: If the configured value is not a known mode
        """
        from .services.entity_sync import ManagedMode

        raw = getattr(self, f"managed_{entity_type.value}", None)
        if raw is None:
            return ManagedMode.NO_DELETE

        try:
            return ManagedMode(raw.strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown managed mode '{raw}' for {entity_type.value}",
                user_action="Use 'full' or 'no-delete'",
            ) from e


# Global settings instance - initialized once at module import
settings = Settings()
