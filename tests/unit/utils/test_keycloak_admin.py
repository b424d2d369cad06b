"""Unit tests for KeycloakAdminClient transport and accessor conventions."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from keycloak_config_sync.errors import ConfigurationError
from keycloak_config_sync.models.keycloak_api import (
    AuthenticationExecutionInfoRepresentation,
    ClientRepresentation,
    RoleRepresentation,
)
from keycloak_config_sync.settings import Settings
from keycloak_config_sync.utils.keycloak_admin import (
    Capability,
    KeycloakAdminError,
    get_keycloak_admin_client,
)
from tests.fakes import MockResponse


def http_response(status_code: int, text: str = "", json_data=None) -> httpx.Response:
    request = httpx.Request("GET", "http://keycloak:8080/admin/realms/test")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def not_found() -> KeycloakAdminError:
    return KeycloakAdminError("not found", status_code=404, response_body="")


# =============================================================================
# Transport
# =============================================================================


class TestMakeRequest:
    """Tests for _make_request."""

    @pytest.mark.asyncio
    async def test_sends_bearer_token_to_admin_url(self, mock_admin_client):
        """Should prefix endpoints with the admin base URL."""
        http = MagicMock()
        http.request = AsyncMock(return_value=http_response(200, json_data=[]))
        mock_admin_client._get_client = AsyncMock(return_value=http)

        await mock_admin_client._make_request("GET", "realms/test/clients")

        kwargs = http.request.call_args.kwargs
        assert kwargs["url"] == "http://keycloak:8080/admin/realms/test/clients"
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_reauthenticates_once_on_401(self, mock_admin_client):
        """Should retry with a fresh token after a 401."""
        http = MagicMock()
        http.request = AsyncMock(
            side_effect=[http_response(401), http_response(200, json_data={})]
        )
        mock_admin_client._get_client = AsyncMock(return_value=http)

        async def reauthenticate():
            mock_admin_client.access_token = "fresh-token"

        mock_admin_client.authenticate = AsyncMock(side_effect=reauthenticate)

        response = await mock_admin_client._make_request("GET", "realms/test")

        assert response.status_code == 200
        mock_admin_client.authenticate.assert_awaited_once()
        retry_headers = http.request.call_args.kwargs["headers"]
        assert retry_headers["Authorization"] == "Bearer fresh-token"

    @pytest.mark.asyncio
    async def test_error_status_keeps_response_body(self, mock_admin_client):
        """Should raise with status code and the server's response body."""
        http = MagicMock()
        http.request = AsyncMock(
            return_value=http_response(409, text='{"errorMessage":"exists"}')
        )
        mock_admin_client._get_client = AsyncMock(return_value=http)

        with pytest.raises(KeycloakAdminError) as exc_info:
            await mock_admin_client._make_request("POST", "realms/test/clients", json={})

        assert exc_info.value.status_code == 409
        assert "exists" in exc_info.value.response_body

    @pytest.mark.asyncio
    async def test_transport_error_has_no_status(self, mock_admin_client):
        """Should wrap connection failures without a status code."""
        http = MagicMock()
        http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
        mock_admin_client._get_client = AsyncMock(return_value=http)

        with pytest.raises(KeycloakAdminError) as exc_info:
            await mock_admin_client._make_request("GET", "realms/test")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_first(self, mock_admin_client):
        """Should refresh an expired token before the request."""
        mock_admin_client.token_expires_at = 0.0
        mock_admin_client.refresh_token = "refresh"
        mock_admin_client._refresh_token = AsyncMock()
        mock_admin_client.authenticate = AsyncMock()

        await mock_admin_client._ensure_authenticated()

        mock_admin_client._refresh_token.assert_awaited_once()
        mock_admin_client.authenticate.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_login(self, mock_admin_client):
        """Should log in again when the refresh token is rejected."""
        mock_admin_client.token_expires_at = 0.0
        mock_admin_client.refresh_token = "refresh"
        mock_admin_client._refresh_token = AsyncMock(side_effect=KeycloakAdminError("expired"))
        mock_admin_client.authenticate = AsyncMock()

        await mock_admin_client._ensure_authenticated()

        mock_admin_client.authenticate.assert_awaited_once()

    def test_body_preview_truncates(self):
        """Should shorten long response bodies for logs."""
        error = KeycloakAdminError("failed", status_code=500, response_body="x" * 30)

        assert error.body_preview(limit=10) == "x" * 10 + "...<truncated>"
        assert KeycloakAdminError("failed").body_preview() is None


# =============================================================================
# Accessor conventions
# =============================================================================


class TestAccessors:
    """Tests for the get/create/update/delete conventions."""

    @pytest.mark.asyncio
    async def test_get_realm_returns_none_on_404(self, mock_admin_client):
        """Should map a missing realm to None."""
        mock_admin_client._make_request = AsyncMock(side_effect=not_found())

        assert await mock_admin_client.get_realm("missing") is None

    @pytest.mark.asyncio
    async def test_get_realm_propagates_other_errors(self, mock_admin_client):
        """Should not hide server errors behind None."""
        mock_admin_client._make_request = AsyncMock(
            side_effect=KeycloakAdminError("boom", status_code=500)
        )

        with pytest.raises(KeycloakAdminError):
            await mock_admin_client.get_realm("test")

    @pytest.mark.asyncio
    async def test_create_returns_id_from_location(self, mock_admin_client):
        """Should return the id at the end of the Location header."""
        mock_admin_client._make_request = AsyncMock(
            return_value=MockResponse(
                201,
                headers={"Location": "http://keycloak:8080/admin/realms/test/clients/abc-123"},
            )
        )

        client_uuid = await mock_admin_client.create_client(
            ClientRepresentation(client_id="app", public_client=True), "test"
        )

        assert client_uuid == "abc-123"
        method, endpoint = mock_admin_client._make_request.call_args.args
        assert (method, endpoint) == ("POST", "realms/test/clients")
        assert mock_admin_client._make_request.call_args.kwargs["json"] == {
            "clientId": "app",
            "publicClient": True,
        }

    @pytest.mark.asyncio
    async def test_delete_treats_404_as_done(self, mock_admin_client):
        """Should accept deleting an entity that is already gone."""
        mock_admin_client._make_request = AsyncMock(side_effect=not_found())

        await mock_admin_client.delete_client("abc-123", "test")

    @pytest.mark.asyncio
    async def test_delete_propagates_conflicts(self, mock_admin_client):
        """Should raise when the server refuses the delete."""
        mock_admin_client._make_request = AsyncMock(
            side_effect=KeycloakAdminError("bad", status_code=400)
        )

        with pytest.raises(KeycloakAdminError):
            await mock_admin_client.delete_flow("flow-id", "test")

    @pytest.mark.asyncio
    async def test_flow_alias_is_quoted(self, mock_admin_client):
        """Should quote aliases containing spaces in the path."""
        mock_admin_client._make_request = AsyncMock(return_value=MockResponse(200, []))

        await mock_admin_client.get_flow_executions("my registration", "test")

        endpoint = mock_admin_client._make_request.call_args.args[1]
        assert endpoint == "realms/test/authentication/flows/my%20registration/executions"

    @pytest.mark.asyncio
    async def test_update_execution_serializes_model(self, mock_admin_client):
        """Should send the execution with camelCase keys."""
        mock_admin_client._make_request = AsyncMock(return_value=MockResponse(204))
        execution = AuthenticationExecutionInfoRepresentation.model_validate(
            {"id": "e1", "requirement": "REQUIRED", "priority": 1, "providerId": "p"}
        )

        await mock_admin_client.update_execution("browser", execution, "test")

        method, endpoint = mock_admin_client._make_request.call_args.args
        assert method == "PUT"
        body = mock_admin_client._make_request.call_args.kwargs["json"]
        assert body["providerId"] == "p"
        assert body["priority"] == 1

    @pytest.mark.asyncio
    async def test_role_mapping_endpoints(self, mock_admin_client):
        """Should address realm or client role mappings of the owner."""
        mock_admin_client._make_request = AsyncMock(return_value=MockResponse(200, []))

        await mock_admin_client.get_role_mappings("groups/g1", "test")
        await mock_admin_client.get_role_mappings("groups/g1", "test", "c1")

        endpoints = [c.args[1] for c in mock_admin_client._make_request.call_args_list]
        assert endpoints == [
            "realms/test/groups/g1/role-mappings/realm",
            "realms/test/groups/g1/role-mappings/clients/c1",
        ]

    @pytest.mark.asyncio
    async def test_scope_mapping_body_is_role_list(self, mock_admin_client):
        """Should post the roles as a JSON list."""
        mock_admin_client._make_request = AsyncMock(return_value=MockResponse(204))

        await mock_admin_client.add_scope_mappings(
            "client-scopes/s1", [RoleRepresentation(id="r1", name="user")], "test"
        )

        call = mock_admin_client._make_request.call_args
        assert call.args[1] == "realms/test/client-scopes/s1/scope-mappings/realm"
        assert call.kwargs["json"] == [{"id": "r1", "name": "user"}]

    @pytest.mark.asyncio
    async def test_user_lookup_is_exact(self, mock_admin_client):
        """Should ignore users whose name only contains the search term."""
        mock_admin_client._make_request = AsyncMock(
            return_value=MockResponse(200, [{"id": "u2", "username": "alice2"}])
        )

        assert await mock_admin_client.get_user_by_username("alice", "test") is None
        params = mock_admin_client._make_request.call_args.kwargs["params"]
        assert params == {"username": "alice", "exact": "true"}

    @pytest.mark.asyncio
    async def test_partial_export_flags(self, mock_admin_client):
        """Should pass export flags as lowercase strings."""
        mock_admin_client._make_request = AsyncMock(
            return_value=MockResponse(200, {"id": "realm-id", "realm": "test"})
        )

        export = await mock_admin_client.partial_export("test", export_clients=True)

        assert export.id == "realm-id"
        params = mock_admin_client._make_request.call_args.kwargs["params"]
        assert params == {"exportClients": "true", "exportGroupsAndRoles": "false"}

    @pytest.mark.asyncio
    async def test_component_filters_skip_unset(self, mock_admin_client):
        """Should only send the component filters that were given."""
        mock_admin_client._make_request = AsyncMock(
            return_value=MockResponse(200, [{"id": "c1", "name": "ldap", "parentId": "realm-id"}])
        )

        components = await mock_admin_client.get_components(
            "test", parent_id="realm-id", name="ldap"
        )

        assert [c.id for c in components] == ["c1"]
        call = mock_admin_client._make_request.call_args
        assert call.args[1] == "realms/test/components"
        assert call.kwargs["params"] == {"parent": "realm-id", "name": "ldap"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 501])
    async def test_organizations_unsupported(self, mock_admin_client, status_code):
        """Should report servers without organizations as unsupported."""
        mock_admin_client._make_request = AsyncMock(
            side_effect=KeycloakAdminError("no", status_code=status_code)
        )

        assert await mock_admin_client.get_organizations("test") is Capability.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_organizations_other_errors_raise(self, mock_admin_client):
        """Should only treat missing endpoints as unsupported."""
        mock_admin_client._make_request = AsyncMock(
            side_effect=KeycloakAdminError("forbidden", status_code=403)
        )

        with pytest.raises(KeycloakAdminError):
            await mock_admin_client.get_organizations("test")


# =============================================================================
# Factory
# =============================================================================


class TestGetKeycloakAdminClient:
    """Tests for get_keycloak_admin_client."""

    @pytest.mark.asyncio
    async def test_missing_url(self):
        """Should refuse to build a client without a server URL."""
        settings = Settings(_env_file=None).model_copy(update={"keycloak_url": ""})

        with pytest.raises(ConfigurationError, match="Keycloak URL"):
            await get_keycloak_admin_client(settings)

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        """Should refuse to build a client without admin credentials."""
        settings = Settings(_env_file=None).model_copy(
            update={"keycloak_url": "http://keycloak:8080", "keycloak_user": ""}
        )

        with pytest.raises(ConfigurationError, match="credentials"):
            await get_keycloak_admin_client(settings)
