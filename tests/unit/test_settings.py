"""Unit tests for environment-based settings."""

import pytest

from keycloak_config_sync.errors import ConfigurationError
from keycloak_config_sync.services.entity_sync import EntityType, ManagedMode
from keycloak_config_sync.settings import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        for name in ("IMPORT_FILES_LOCATIONS", "IMPORT_FORCE", "KEYCLOAK_LOGIN_REALM"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.keycloak_login_realm == "master"
        assert settings.import_force is False
        assert settings.import_locations == []

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("KEYCLOAK_URL", "http://keycloak:8080")
        monkeypatch.setenv("IMPORT_FORCE", "true")
        monkeypatch.setenv("IMPORT_FILES_LOCATIONS", " a.json , ,configs/ ")
        monkeypatch.setenv("IMPORT_MANAGED_GROUP", "no-delete")

        settings = Settings(_env_file=None)

        assert settings.keycloak_url == "http://keycloak:8080"
        assert settings.import_force is True
        assert settings.import_locations == ["a.json", "configs/"]
        assert settings.managed_mode_for(EntityType.GROUP) == ManagedMode.NO_DELETE

    def test_types_without_setting_never_delete(self):
        settings = Settings(_env_file=None)

        assert settings.managed_mode_for(EntityType.USER) == ManagedMode.NO_DELETE
        assert settings.managed_mode_for(EntityType.REALM) == ManagedMode.NO_DELETE

    def test_managed_mode_case_insensitive(self):
        settings = Settings(_env_file=None).model_copy(update={"managed_client": " FULL "})

        assert settings.managed_mode_for(EntityType.CLIENT) == ManagedMode.FULL

    def test_unknown_managed_mode(self):
        settings = Settings(_env_file=None).model_copy(update={"managed_component": "partial"})

        with pytest.raises(ConfigurationError) as exc_info:
            settings.managed_mode_for(EntityType.COMPONENT)

        assert "no-delete" in exc_info.value.user_action
