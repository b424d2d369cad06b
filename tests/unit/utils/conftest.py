"""Shared pytest fixtures for Keycloak admin client tests."""

import pytest


@pytest.fixture
def mock_admin_client():
    """Create a KeycloakAdminClient without running __init__.

    Uses object.__new__ to create an uninitialized instance, then sets the
    attributes __init__ would set, with a token that never expires.
    """
    from keycloak_config_sync.utils.keycloak_admin import KeycloakAdminClient

    client = object.__new__(KeycloakAdminClient)
    client.server_url = "http://keycloak:8080"
    client.username = "admin"
    client.password = "admin"
    client.admin_realm = "master"
    client.client_id = "admin-cli"
    client.verify_ssl = True
    client.timeout = 60
    client.access_token = "test-token"
    client.refresh_token = None
    client.token_expires_at = 9999999999.0
    return client
