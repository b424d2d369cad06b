"""
Keycloak Admin API client utilities.

This module provides a typed interface to the Keycloak Admin REST API for
everything a realm import touches: realms, clients, client scopes, roles,
groups, users, authentication flows, required actions, components,
identity providers and organizations.

The client handles:
- Authentication with Keycloak admin credentials
- Session management and token refresh
- Error wrapping with the remote response body preserved
- Type-safe API interactions

Conventions shared by every accessor method:
- ``get_*`` for a single entity returns ``None`` when the server answers 404
- ``create_*`` returns the id taken from the ``Location`` header
- ``delete_*`` treats 404 as success (already absent)
- optional capabilities answer ``Capability.UNSUPPORTED`` instead of raising
"""

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, TypeVar
from urllib.parse import quote, urljoin

import httpx
from pydantic import BaseModel

from ..errors import ConfigurationError
from ..models.keycloak_api import (
    AuthenticationExecutionInfoRepresentation,
    AuthenticationFlowRepresentation,
    AuthenticatorConfigRepresentation,
    ClientRepresentation,
    ClientScopeRepresentation,
    ComponentRepresentation,
    GroupRepresentation,
    IdentityProviderMapperRepresentation,
    IdentityProviderRepresentation,
    MemberRepresentation,
    OrganizationRepresentation,
    ProtocolMapperRepresentation,
    RealmRepresentation,
    RequiredActionProviderRepresentation,
    RoleRepresentation,
    UserRepresentation,
)

if TYPE_CHECKING:
    from ..settings import Settings

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Global cache for httpx clients - one per Keycloak server
# Key: (server_url, verify_ssl), Value: httpx.AsyncClient
_httpx_client_cache: dict[tuple[str, bool], httpx.AsyncClient] = {}
_cache_lock = asyncio.Lock()


class Capability(Enum):
    """Marker for optional server features."""

    UNSUPPORTED = "unsupported"


Unsupported = Literal[Capability.UNSUPPORTED]


class KeycloakAdminError(Exception):
    """Base exception for Keycloak Admin API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def body_preview(self, limit: int = 2048) -> str | None:
        """Return a truncated preview of the response body for logging."""

        if self.response_body is None:
            return None

        if len(self.response_body) <= limit:
            return self.response_body

        return f"{self.response_body[:limit]}...<truncated>"


def _segment(value: str) -> str:
    """Quote one path segment (flow aliases contain spaces)."""
    return quote(value, safe="")


def _created_id(response: httpx.Response) -> str | None:
    """Extract the new entity id from the Location header of a 201."""
    location = response.headers.get("Location", "")
    return location.rstrip("/").split("/")[-1] if location else None


class KeycloakAdminClient:
    """
    Client for Keycloak Admin API operations used during an import.

    One instance is shared by every reconciler of a run; its access token
    is mutable state, so calls are awaited strictly one after another.
    """

    def __init__(
        self,
        server_url: str,
        username: str,
        password: str,
        realm: str = "master",
        client_id: str = "admin-cli",
        verify_ssl: bool = True,
        timeout: int = 60,
    ) -> None:
        """
        Initialize Keycloak Admin client.

        Args:
            server_url: Base URL of the Keycloak server
            username: Admin username
            password: Admin password
            realm: Admin realm (default: master)
            client_id: Client ID for admin API access
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
        """
        self.server_url = server_url.rstrip("/")
        self.username = username
        self.password = password
        self.admin_realm = realm
        self.client_id = client_id
        self.verify_ssl = verify_ssl
        self.timeout = timeout

        # Authentication state
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self.token_expires_at: float | None = None

        logger.info(f"Initialized Keycloak Admin client for {server_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client (lazy initialization with caching)."""
        cache_key = (self.server_url, self.verify_ssl)

        async with _cache_lock:
            if cache_key in _httpx_client_cache:
                cached_client = _httpx_client_cache[cache_key]
                if not cached_client.is_closed:
                    return cached_client
                del _httpx_client_cache[cache_key]

            client = httpx.AsyncClient(
                verify=self.verify_ssl,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Content-Type": "application/json",
                },
                follow_redirects=False,
            )

            _httpx_client_cache[cache_key] = client
            logger.debug(f"Created and cached httpx client for {self.server_url}")
            return client

    async def close(self) -> None:
        """Drop tokens and close the shared httpx client."""
        self.access_token = None
        self.refresh_token = None
        self.token_expires_at = None

        async with _cache_lock:
            client = _httpx_client_cache.pop((self.server_url, self.verify_ssl), None)
        if client is not None and not client.is_closed:
            await client.aclose()

    async def __aenter__(self) -> "KeycloakAdminClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - ensures session cleanup."""
        await self.close()

    # =========================================================================
    # Authentication and transport
    # =========================================================================

    async def authenticate(self) -> None:
        """
        Authenticate with Keycloak and obtain access tokens.

        Uses username/password grant to obtain access and refresh tokens.
        """
        auth_url = (
            f"{self.server_url}/realms/{self.admin_realm}/protocol/openid-connect/token"
        )

        auth_data = {
            "username": self.username,
            "password": self.password,
            "grant_type": "password",
            "client_id": self.client_id,
        }

        try:
            client = await self._get_client()

            response = await client.post(
                auth_url,
                data=auth_data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            token_data = response.json()

            self.access_token = token_data["access_token"]
            self.refresh_token = token_data.get("refresh_token")
            self.token_expires_at = time.time() + token_data.get("expires_in", 300)

            logger.debug("Successfully authenticated with Keycloak")

        except httpx.HTTPError as e:
            logger.error(f"Failed to authenticate with Keycloak: {e}")
            raise KeycloakAdminError(f"Authentication failed: {e}") from e

    async def _ensure_authenticated(self) -> None:
        """
        Ensure we have a valid access token, refreshing if necessary.
        """
        # If no token or token is expired (with 30s buffer)
        if not self.access_token or (
            self.token_expires_at and time.time() >= self.token_expires_at - 30
        ):
            if self.refresh_token:
                try:
                    await self._refresh_token()
                except KeycloakAdminError:
                    await self.authenticate()
            else:
                await self.authenticate()

    async def _refresh_token(self) -> None:
        """
        Refresh the access token using the refresh token.
        """
        if not self.refresh_token:
            raise KeycloakAdminError("No refresh token available")

        auth_url = (
            f"{self.server_url}/realms/{self.admin_realm}/protocol/openid-connect/token"
        )

        refresh_data = {
            "grant_type": "refresh_token",
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }

        try:
            client = await self._get_client()

            response = await client.post(
                auth_url,
                data=refresh_data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            token_data = response.json()

            self.access_token = token_data["access_token"]
            self.refresh_token = token_data.get("refresh_token")
            self.token_expires_at = time.time() + token_data.get("expires_in", 300)

            logger.debug("Successfully refreshed access token")

        except httpx.HTTPError as e:
            logger.error(f"Failed to refresh token: {e}")
            raise KeycloakAdminError(f"Token refresh failed: {e}") from e

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make an authenticated request to the Keycloak Admin API.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (relative to admin base)
            json: JSON request body data
            params: Query parameters

        Returns:
            Response object (httpx.Response) with body already buffered

        Raises:
            KeycloakAdminError: On any HTTP error status or transport failure
        """
        await self._ensure_authenticated()

        url = urljoin(f"{self.server_url}/admin/", endpoint.lstrip("/"))
        client = await self._get_client()

        try:
            headers = {"Authorization": f"Bearer {self.access_token}"}

            response = await client.request(
                method=method,
                url=url,
                json=json,
                params=params,
                headers=headers,
            )

            # Handle 401 - token might be expired
            if response.status_code == 401:
                logger.warning("Received 401, attempting re-authentication")
                await self.authenticate()

                headers = {"Authorization": f"Bearer {self.access_token}"}
                response = await client.request(
                    method=method,
                    url=url,
                    json=json,
                    params=params,
                    headers=headers,
                )

            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            response_body: str | None = None

            try:
                response_body = e.response.text or "<no content>"
            except Exception:  # pragma: no cover
                response_body = "<unavailable>"

            body_preview = (
                response_body[:1024] + "...<truncated>"
                if len(response_body) > 1024
                else response_body
            )

            # 404 drives create-vs-update branching and is logged by callers
            log = logger.debug if status_code == 404 else logger.error
            log(
                f"Request failed: {method} {url} - {e}",
                extra={
                    "http_status": status_code,
                    "response_body": body_preview,
                },
            )
            raise KeycloakAdminError(
                f"API request failed: {e}",
                status_code=status_code,
                response_body=response_body,
            ) from e

        except httpx.HTTPError as e:
            # Other HTTP errors (connection, timeout, etc.)
            logger.error(f"Request failed: {method} {url} - {e}")
            raise KeycloakAdminError(
                f"API request failed: {e}",
                status_code=None,
            ) from e

    async def _make_validated_request(
        self,
        method: str,
        endpoint: str,
        request_model: BaseModel | None = None,
        response_model: type[BaseModel] | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make an authenticated request with automatic Pydantic validation.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (relative to admin base)
            request_model: Pydantic model instance to serialize as request body
            response_model: Pydantic model class to validate response data
            **kwargs: Additional arguments passed to _make_request

        Returns:
            Validated response model instance if response_model is provided,
            otherwise the raw Response object
        """
        if request_model is not None:
            # exclude_none: Don't send null values to API
            # by_alias: Use camelCase field names for API
            kwargs["json"] = request_model.model_dump(exclude_none=True, by_alias=True)

        response = await self._make_request(method, endpoint, **kwargs)

        if response_model is not None and response.status_code < 300:
            return response_model.model_validate(response.json())

        return response

    async def _get_optional(
        self, endpoint: str, model: type[M], params: dict[str, Any] | None = None
    ) -> M | None:
        """GET a single entity, mapping 404 to None."""
        try:
            return await self._make_validated_request(
                "GET", endpoint, response_model=model, params=params
            )
        except KeycloakAdminError as e:
            if e.status_code == 404:
                return None
            raise

    async def _get_list(
        self, endpoint: str, model: type[M], params: dict[str, Any] | None = None
    ) -> list[M]:
        """GET a collection endpoint and validate every element."""
        response = await self._make_request("GET", endpoint, params=params)
        return [model.model_validate(item) for item in response.json() or []]

    async def _create(self, endpoint: str, payload: Any) -> str | None:
        """POST a new entity and return its id from the Location header."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_none=True, by_alias=True)
        response = await self._make_request("POST", endpoint, json=payload)
        return _created_id(response)

    async def _update(self, endpoint: str, payload: Any) -> None:
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_none=True, by_alias=True)
        await self._make_request("PUT", endpoint, json=payload)

    async def _delete(self, endpoint: str, json: Any = None) -> None:
        """DELETE an entity; an already absent entity counts as deleted."""
        try:
            await self._make_request("DELETE", endpoint, json=json)
        except KeycloakAdminError as e:
            if e.status_code == 404:
                logger.debug(f"{endpoint} already absent")
                return
            raise

    # =========================================================================
    # Realms
    # =========================================================================

    async def get_realm(self, realm_name: str) -> RealmRepresentation | None:
        """
        Get realm configuration from Keycloak.

        Args:
            realm_name: Name of the realm to retrieve

        Returns:
            Realm configuration as RealmRepresentation or None if not found

        Raises:
            KeycloakAdminError: If the request fails (except 404)
        """
        return await self._get_optional(
            f"realms/{_segment(realm_name)}", RealmRepresentation
        )

    async def create_realm(self, realm_config: dict[str, Any]) -> None:
        """
        Create a new realm in Keycloak.

        Args:
            realm_config: Realm body (camelCase keys)

        Raises:
            KeycloakAdminError: If realm creation fails
        """
        logger.info(f"Creating realm: {realm_config.get('realm', 'unknown')}")
        await self._make_request("POST", "realms", json=realm_config)

    async def update_realm(self, realm_name: str, realm_config: dict[str, Any]) -> None:
        """
        Update realm settings. Only fields present in the body are changed.

        Args:
            realm_name: Name of the realm to update
            realm_config: Realm body (camelCase keys)

        Raises:
            KeycloakAdminError: If the update fails
        """
        logger.info(f"Updating realm '{realm_name}'")
        await self._update(f"realms/{_segment(realm_name)}", realm_config)

    async def partial_export(
        self,
        realm_name: str,
        export_clients: bool = False,
        export_groups_and_roles: bool = False,
    ) -> RealmRepresentation:
        """
        Export a realm including its nested component tree.

        Components, authenticator configs and scope mappings are only
        available in nested form through this endpoint.

        Args:
            realm_name: Name of the realm
            export_clients: Include clients and client scope mappings
            export_groups_and_roles: Include groups and roles
        """
        response = await self._make_request(
            "POST",
            f"realms/{_segment(realm_name)}/partial-export",
            params={
                "exportClients": str(export_clients).lower(),
                "exportGroupsAndRoles": str(export_groups_and_roles).lower(),
            },
        )
        return RealmRepresentation.model_validate(response.json())

    # =========================================================================
    # Clients and protocol mappers
    # =========================================================================

    async def get_clients(self, realm_name: str) -> list[ClientRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/clients", ClientRepresentation
        )

    async def get_client_by_client_id(
        self, client_id: str, realm_name: str
    ) -> ClientRepresentation | None:
        """
        Get a client by its clientId.

        Args:
            client_id: The clientId (not the UUID)
            realm_name: Name of the realm

        Returns:
            Client representation or None if no client has that clientId
        """
        clients = await self._get_list(
            f"realms/{_segment(realm_name)}/clients",
            ClientRepresentation,
            params={"clientId": client_id},
        )
        for client in clients:
            if client.client_id == client_id:
                return client
        return None

    async def create_client(
        self, client_config: ClientRepresentation, realm_name: str
    ) -> str | None:
        """
        Create a new client in the specified realm.

        Returns:
            Client UUID taken from the Location header

        Raises:
            KeycloakAdminError: If client creation fails
        """
        logger.info(
            f"Creating client '{client_config.client_id}' in realm '{realm_name}'"
        )
        return await self._create(
            f"realms/{_segment(realm_name)}/clients", client_config
        )

    async def update_client(
        self, client_uuid: str, client_config: dict[str, Any], realm_name: str
    ) -> None:
        logger.info(f"Updating client {client_uuid} in realm '{realm_name}'")
        await self._update(
            f"realms/{_segment(realm_name)}/clients/{client_uuid}", client_config
        )

    async def delete_client(self, client_uuid: str, realm_name: str) -> None:
        logger.info(f"Deleting client {client_uuid} from realm '{realm_name}'")
        await self._delete(f"realms/{_segment(realm_name)}/clients/{client_uuid}")

    async def get_protocol_mappers(
        self, owner: str, realm_name: str
    ) -> list[ProtocolMapperRepresentation]:
        """
        List protocol mappers of a client or client scope.

        Args:
            owner: ``clients/<uuid>`` or ``client-scopes/<id>``
            realm_name: Name of the realm
        """
        return await self._get_list(
            f"realms/{_segment(realm_name)}/{owner}/protocol-mappers/models",
            ProtocolMapperRepresentation,
        )

    async def create_protocol_mapper(
        self, owner: str, mapper: ProtocolMapperRepresentation, realm_name: str
    ) -> str | None:
        return await self._create(
            f"realms/{_segment(realm_name)}/{owner}/protocol-mappers/models", mapper
        )

    async def update_protocol_mapper(
        self, owner: str, mapper_id: str, mapper: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/{owner}/protocol-mappers/models/{mapper_id}",
            mapper,
        )

    async def delete_protocol_mapper(
        self, owner: str, mapper_id: str, realm_name: str
    ) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/{owner}/protocol-mappers/models/{mapper_id}"
        )

    # =========================================================================
    # Client scopes
    # =========================================================================

    async def get_client_scopes(
        self, realm_name: str
    ) -> list[ClientScopeRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/client-scopes", ClientScopeRepresentation
        )

    async def create_client_scope(
        self, scope: ClientScopeRepresentation, realm_name: str
    ) -> str | None:
        logger.info(f"Creating client scope '{scope.name}' in realm '{realm_name}'")
        return await self._create(
            f"realms/{_segment(realm_name)}/client-scopes", scope
        )

    async def update_client_scope(
        self, scope_id: str, scope: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/client-scopes/{scope_id}", scope
        )

    async def delete_client_scope(self, scope_id: str, realm_name: str) -> None:
        await self._delete(f"realms/{_segment(realm_name)}/client-scopes/{scope_id}")

    # =========================================================================
    # Roles and composites
    # =========================================================================

    async def get_realm_roles(self, realm_name: str) -> list[RoleRepresentation]:
        """
        Get all realm-level roles.

        Args:
            realm_name: Name of the realm

        Returns:
            List of RoleRepresentation including attributes
        """
        return await self._get_list(
            f"realms/{_segment(realm_name)}/roles",
            RoleRepresentation,
            params={"briefRepresentation": "false"},
        )

    async def create_realm_role(self, role: RoleRepresentation, realm_name: str) -> None:
        logger.info(f"Creating realm role '{role.name}' in realm '{realm_name}'")
        # composites are applied separately once every role exists
        payload = role.model_dump(
            exclude_none=True, by_alias=True, exclude={"composites", "composite"}
        )
        await self._make_request(
            "POST", f"realms/{_segment(realm_name)}/roles", json=payload
        )

    async def update_realm_role(
        self, role_name: str, role: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/roles/{_segment(role_name)}", role
        )

    async def delete_realm_role(self, role_name: str, realm_name: str) -> None:
        logger.info(f"Deleting realm role '{role_name}' from realm '{realm_name}'")
        await self._delete(f"realms/{_segment(realm_name)}/roles/{_segment(role_name)}")

    async def get_client_roles(
        self, client_uuid: str, realm_name: str
    ) -> list[RoleRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/clients/{client_uuid}/roles",
            RoleRepresentation,
            params={"briefRepresentation": "false"},
        )

    async def create_client_role(
        self, client_uuid: str, role: RoleRepresentation, realm_name: str
    ) -> None:
        logger.info(
            f"Creating client role '{role.name}' for client {client_uuid} in realm '{realm_name}'"
        )
        payload = role.model_dump(
            exclude_none=True, by_alias=True, exclude={"composites", "composite"}
        )
        await self._make_request(
            "POST",
            f"realms/{_segment(realm_name)}/clients/{client_uuid}/roles",
            json=payload,
        )

    async def update_client_role(
        self, client_uuid: str, role_name: str, role: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/clients/{client_uuid}/roles/{_segment(role_name)}",
            role,
        )

    async def delete_client_role(
        self, client_uuid: str, role_name: str, realm_name: str
    ) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/clients/{client_uuid}/roles/{_segment(role_name)}"
        )

    async def get_role_composites(
        self, role_id: str, realm_name: str
    ) -> list[RoleRepresentation]:
        """
        Get the direct composites of a role, realm and client roles alike.

        Client composites carry ``clientRole=True`` and the client UUID as
        ``containerId``.
        """
        return await self._get_list(
            f"realms/{_segment(realm_name)}/roles-by-id/{role_id}/composites",
            RoleRepresentation,
        )

    async def add_role_composites(
        self, role_id: str, roles: list[RoleRepresentation], realm_name: str
    ) -> None:
        await self._make_request(
            "POST",
            f"realms/{_segment(realm_name)}/roles-by-id/{role_id}/composites",
            json=[{"id": role.id, "name": role.name} for role in roles],
        )

    async def remove_role_composites(
        self, role_id: str, roles: list[RoleRepresentation], realm_name: str
    ) -> None:
        await self._make_request(
            "DELETE",
            f"realms/{_segment(realm_name)}/roles-by-id/{role_id}/composites",
            json=[{"id": role.id, "name": role.name} for role in roles],
        )

    # =========================================================================
    # Role mappings (groups and users) and scope mappings
    # =========================================================================

    def _mapping_endpoint(
        self, realm_name: str, owner: str, kind: str, client_uuid: str | None
    ) -> str:
        base = f"realms/{_segment(realm_name)}/{owner}/{kind}"
        return f"{base}/clients/{client_uuid}" if client_uuid else f"{base}/realm"

    async def get_role_mappings(
        self, owner: str, realm_name: str, client_uuid: str | None = None
    ) -> list[RoleRepresentation]:
        """
        Get realm (or one client's) roles mapped to a group or user.

        Args:
            owner: ``groups/<id>`` or ``users/<id>``
            realm_name: Name of the realm
            client_uuid: Client whose roles to list; realm roles when None
        """
        return await self._get_list(
            self._mapping_endpoint(realm_name, owner, "role-mappings", client_uuid),
            RoleRepresentation,
        )

    async def add_role_mappings(
        self,
        owner: str,
        roles: list[RoleRepresentation],
        realm_name: str,
        client_uuid: str | None = None,
    ) -> None:
        await self._make_request(
            "POST",
            self._mapping_endpoint(realm_name, owner, "role-mappings", client_uuid),
            json=[role.to_payload() for role in roles],
        )

    async def remove_role_mappings(
        self,
        owner: str,
        roles: list[RoleRepresentation],
        realm_name: str,
        client_uuid: str | None = None,
    ) -> None:
        await self._make_request(
            "DELETE",
            self._mapping_endpoint(realm_name, owner, "role-mappings", client_uuid),
            json=[role.to_payload() for role in roles],
        )

    async def add_scope_mappings(
        self,
        owner: str,
        roles: list[RoleRepresentation],
        realm_name: str,
        client_uuid: str | None = None,
    ) -> None:
        await self._make_request(
            "POST",
            self._mapping_endpoint(realm_name, owner, "scope-mappings", client_uuid),
            json=[role.to_payload() for role in roles],
        )

    async def remove_scope_mappings(
        self,
        owner: str,
        roles: list[RoleRepresentation],
        realm_name: str,
        client_uuid: str | None = None,
    ) -> None:
        await self._make_request(
            "DELETE",
            self._mapping_endpoint(realm_name, owner, "scope-mappings", client_uuid),
            json=[role.to_payload() for role in roles],
        )

    # =========================================================================
    # Groups
    # =========================================================================

    async def get_groups(self, realm_name: str) -> list[GroupRepresentation]:
        """Get top-level groups with attributes and role names."""
        return await self._get_list(
            f"realms/{_segment(realm_name)}/groups",
            GroupRepresentation,
            params={"briefRepresentation": "false"},
        )

    async def get_group_children(
        self, group_id: str, realm_name: str
    ) -> list[GroupRepresentation]:
        """Get direct sub-groups (not embedded in listings since Keycloak 23)."""
        return await self._get_list(
            f"realms/{_segment(realm_name)}/groups/{group_id}/children",
            GroupRepresentation,
            params={"briefRepresentation": "false"},
        )

    async def get_group_by_path(
        self, path: str, realm_name: str
    ) -> GroupRepresentation | None:
        return await self._get_optional(
            f"realms/{_segment(realm_name)}/group-by-path/{quote(path.lstrip('/'))}",
            GroupRepresentation,
        )

    async def create_group(
        self, group: dict[str, Any], realm_name: str
    ) -> str | None:
        logger.info(f"Creating group '{group.get('name')}' in realm '{realm_name}'")
        return await self._create(f"realms/{_segment(realm_name)}/groups", group)

    async def create_subgroup(
        self, parent_id: str, group: dict[str, Any], realm_name: str
    ) -> str | None:
        logger.info(
            f"Creating subgroup '{group.get('name')}' under {parent_id} in realm '{realm_name}'"
        )
        return await self._create(
            f"realms/{_segment(realm_name)}/groups/{parent_id}/children", group
        )

    async def update_group(
        self, group_id: str, group: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(f"realms/{_segment(realm_name)}/groups/{group_id}", group)

    async def delete_group(self, group_id: str, realm_name: str) -> None:
        logger.info(f"Deleting group {group_id} from realm '{realm_name}'")
        await self._delete(f"realms/{_segment(realm_name)}/groups/{group_id}")

    async def get_default_groups(self, realm_name: str) -> list[GroupRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/default-groups", GroupRepresentation
        )

    async def add_default_group(self, group_id: str, realm_name: str) -> None:
        await self._make_request(
            "PUT", f"realms/{_segment(realm_name)}/default-groups/{group_id}"
        )

    async def remove_default_group(self, group_id: str, realm_name: str) -> None:
        await self._delete(f"realms/{_segment(realm_name)}/default-groups/{group_id}")

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user_by_username(
        self, username: str, realm_name: str
    ) -> UserRepresentation | None:
        """Exact username lookup; the search endpoint matches substrings otherwise."""
        users = await self._get_list(
            f"realms/{_segment(realm_name)}/users",
            UserRepresentation,
            params={"username": username, "exact": "true"},
        )
        for user in users:
            if (user.username or "").lower() == username.lower():
                return user
        return None

    async def create_user(
        self, user: dict[str, Any], realm_name: str
    ) -> str | None:
        logger.info(f"Creating user '{user.get('username')}' in realm '{realm_name}'")
        return await self._create(f"realms/{_segment(realm_name)}/users", user)

    async def update_user(
        self, user_id: str, user: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(f"realms/{_segment(realm_name)}/users/{user_id}", user)

    async def get_user_groups(
        self, user_id: str, realm_name: str
    ) -> list[GroupRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/users/{user_id}/groups", GroupRepresentation
        )

    async def join_group(self, user_id: str, group_id: str, realm_name: str) -> None:
        await self._make_request(
            "PUT", f"realms/{_segment(realm_name)}/users/{user_id}/groups/{group_id}"
        )

    async def leave_group(self, user_id: str, group_id: str, realm_name: str) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/users/{user_id}/groups/{group_id}"
        )

    # =========================================================================
    # Authentication flows, executions and authenticator configs
    # =========================================================================

    async def get_flows(
        self, realm_name: str
    ) -> list[AuthenticationFlowRepresentation]:
        """Get top-level authentication flows (sub-flows are not listed)."""
        return await self._get_list(
            f"realms/{_segment(realm_name)}/authentication/flows",
            AuthenticationFlowRepresentation,
        )

    async def create_flow(
        self, flow: dict[str, Any], realm_name: str
    ) -> str | None:
        """
        Create an empty top-level flow.

        Args:
            flow: Flow body without executions
            realm_name: Name of the realm

        Returns:
            Id of the new flow
        """
        logger.info(f"Creating flow '{flow.get('alias')}' in realm '{realm_name}'")
        return await self._create(
            f"realms/{_segment(realm_name)}/authentication/flows", flow
        )

    async def update_flow(
        self, flow_id: str, flow: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/authentication/flows/{flow_id}", flow
        )

    async def delete_flow(self, flow_id: str, realm_name: str) -> None:
        logger.info(f"Deleting flow {flow_id} from realm '{realm_name}'")
        await self._delete(
            f"realms/{_segment(realm_name)}/authentication/flows/{flow_id}"
        )

    async def get_flow_executions(
        self, flow_alias: str, realm_name: str
    ) -> list[AuthenticationExecutionInfoRepresentation]:
        """
        Get executions of a flow and of all its sub-flows, depth first.

        Each entry has ``level`` (0 for direct children) and ``index``.
        """
        return await self._get_list(
            f"realms/{_segment(realm_name)}/authentication/flows/{_segment(flow_alias)}/executions",
            AuthenticationExecutionInfoRepresentation,
        )

    async def add_execution(
        self, flow_alias: str, provider: str, realm_name: str
    ) -> str | None:
        """Append an authenticator execution to a flow (created DISABLED)."""
        return await self._create(
            f"realms/{_segment(realm_name)}/authentication/flows/{_segment(flow_alias)}/executions/execution",
            {"provider": provider},
        )

    async def add_sub_flow(
        self, flow_alias: str, sub_flow: dict[str, Any], realm_name: str
    ) -> str | None:
        """
        Append a sub-flow execution to a flow, creating the sub-flow itself.

        Args:
            flow_alias: Alias of the parent flow
            sub_flow: ``alias``, ``type``, ``provider`` and ``description``
            realm_name: Name of the realm

        Returns:
            Id of the new sub-flow
        """
        return await self._create(
            f"realms/{_segment(realm_name)}/authentication/flows/{_segment(flow_alias)}/executions/flow",
            sub_flow,
        )

    async def update_execution(
        self,
        flow_alias: str,
        execution: AuthenticationExecutionInfoRepresentation,
        realm_name: str,
    ) -> None:
        """Update requirement and priority of an execution."""
        await self._update(
            f"realms/{_segment(realm_name)}/authentication/flows/{_segment(flow_alias)}/executions",
            execution,
        )

    async def get_authenticator_config(
        self, config_id: str, realm_name: str
    ) -> AuthenticatorConfigRepresentation | None:
        return await self._get_optional(
            f"realms/{_segment(realm_name)}/authentication/config/{config_id}",
            AuthenticatorConfigRepresentation,
        )

    async def create_authenticator_config(
        self,
        execution_id: str,
        config: AuthenticatorConfigRepresentation,
        realm_name: str,
    ) -> str | None:
        return await self._create(
            f"realms/{_segment(realm_name)}/authentication/executions/{execution_id}/config",
            config,
        )

    async def update_authenticator_config(
        self, config_id: str, config: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/authentication/config/{config_id}", config
        )

    # =========================================================================
    # Required actions
    # =========================================================================

    async def get_required_actions(
        self, realm_name: str
    ) -> list[RequiredActionProviderRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/authentication/required-actions",
            RequiredActionProviderRepresentation,
        )

    async def register_required_action(
        self, provider_id: str, name: str, realm_name: str
    ) -> None:
        """Register an unregistered required action provider."""
        logger.info(f"Registering required action '{provider_id}' in realm '{realm_name}'")
        await self._make_request(
            "POST",
            f"realms/{_segment(realm_name)}/authentication/register-required-action",
            json={"providerId": provider_id, "name": name},
        )

    async def update_required_action(
        self, alias: str, action: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/authentication/required-actions/{_segment(alias)}",
            action,
        )

    async def delete_required_action(self, alias: str, realm_name: str) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/authentication/required-actions/{_segment(alias)}"
        )

    # =========================================================================
    # Components
    # =========================================================================

    async def get_components(
        self,
        realm_name: str,
        parent_id: str | None = None,
        provider_type: str | None = None,
        name: str | None = None,
    ) -> list[ComponentRepresentation]:
        """List components, filtered by parent, provider type and name."""
        params = {"parent": parent_id, "type": provider_type, "name": name}
        return await self._get_list(
            f"realms/{_segment(realm_name)}/components",
            ComponentRepresentation,
            params={k: v for k, v in params.items() if v is not None},
        )

    async def create_component(
        self, component: ComponentRepresentation, realm_name: str
    ) -> str | None:
        """
        Create a component.

        Args:
            component: Component including ``parentId`` and ``providerType``
            realm_name: Name of the realm

        Returns:
            Id of the new component
        """
        logger.info(
            f"Creating component '{component.name}' ({component.provider_type}) in realm '{realm_name}'"
        )
        return await self._create(
            f"realms/{_segment(realm_name)}/components", component
        )

    async def update_component(
        self, component_id: str, component: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/components/{component_id}", component
        )

    async def delete_component(self, component_id: str, realm_name: str) -> None:
        logger.info(f"Deleting component {component_id} from realm '{realm_name}'")
        await self._delete(f"realms/{_segment(realm_name)}/components/{component_id}")

    # =========================================================================
    # Identity providers
    # =========================================================================

    async def get_identity_providers(
        self, realm_name: str
    ) -> list[IdentityProviderRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/identity-provider/instances",
            IdentityProviderRepresentation,
        )

    async def create_identity_provider(
        self, idp: IdentityProviderRepresentation, realm_name: str
    ) -> None:
        logger.info(f"Creating identity provider '{idp.alias}' in realm '{realm_name}'")
        await self._create(
            f"realms/{_segment(realm_name)}/identity-provider/instances", idp
        )

    async def update_identity_provider(
        self, alias: str, idp: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/identity-provider/instances/{_segment(alias)}",
            idp,
        )

    async def delete_identity_provider(self, alias: str, realm_name: str) -> None:
        logger.info(f"Deleting identity provider '{alias}' from realm '{realm_name}'")
        await self._delete(
            f"realms/{_segment(realm_name)}/identity-provider/instances/{_segment(alias)}"
        )

    async def get_identity_provider_mappers(
        self, alias: str, realm_name: str
    ) -> list[IdentityProviderMapperRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/identity-provider/instances/{_segment(alias)}/mappers",
            IdentityProviderMapperRepresentation,
        )

    async def create_identity_provider_mapper(
        self,
        alias: str,
        mapper: IdentityProviderMapperRepresentation,
        realm_name: str,
    ) -> str | None:
        return await self._create(
            f"realms/{_segment(realm_name)}/identity-provider/instances/{_segment(alias)}/mappers",
            mapper,
        )

    async def update_identity_provider_mapper(
        self, alias: str, mapper_id: str, mapper: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/identity-provider/instances/{_segment(alias)}/mappers/{mapper_id}",
            mapper,
        )

    async def delete_identity_provider_mapper(
        self, alias: str, mapper_id: str, realm_name: str
    ) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/identity-provider/instances/{_segment(alias)}/mappers/{mapper_id}"
        )

    # =========================================================================
    # Organizations (optional capability)
    # =========================================================================

    async def get_organizations(
        self, realm_name: str
    ) -> list[OrganizationRepresentation] | Unsupported:
        """
        Get all organizations of a realm.

        Returns:
            List of organizations, or ``Capability.UNSUPPORTED`` when the
            server does not offer the organizations endpoint
        """
        try:
            return await self._get_list(
                f"realms/{_segment(realm_name)}/organizations",
                OrganizationRepresentation,
                params={"briefRepresentation": "false"},
            )
        except KeycloakAdminError as e:
            if e.status_code in (404, 501):
                logger.debug(
                    f"Organizations not supported for realm '{realm_name}' (HTTP {e.status_code})"
                )
                return Capability.UNSUPPORTED
            raise

    async def create_organization(
        self, organization: dict[str, Any], realm_name: str
    ) -> str | None:
        logger.info(
            f"Creating organization '{organization.get('alias')}' in realm '{realm_name}'"
        )
        return await self._create(
            f"realms/{_segment(realm_name)}/organizations", organization
        )

    async def update_organization(
        self, org_id: str, organization: dict[str, Any], realm_name: str
    ) -> None:
        await self._update(
            f"realms/{_segment(realm_name)}/organizations/{org_id}", organization
        )

    async def delete_organization(self, org_id: str, realm_name: str) -> None:
        await self._delete(f"realms/{_segment(realm_name)}/organizations/{org_id}")

    async def get_organization_identity_providers(
        self, org_id: str, realm_name: str
    ) -> list[IdentityProviderRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/organizations/{org_id}/identity-providers",
            IdentityProviderRepresentation,
        )

    async def link_organization_identity_provider(
        self, org_id: str, alias: str, realm_name: str
    ) -> None:
        # body is the bare alias as JSON string
        await self._make_request(
            "POST",
            f"realms/{_segment(realm_name)}/organizations/{org_id}/identity-providers",
            json=alias,
        )

    async def unlink_organization_identity_provider(
        self, org_id: str, alias: str, realm_name: str
    ) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/organizations/{org_id}/identity-providers/{_segment(alias)}"
        )

    async def get_organization_members(
        self, org_id: str, realm_name: str
    ) -> list[MemberRepresentation]:
        return await self._get_list(
            f"realms/{_segment(realm_name)}/organizations/{org_id}/members",
            MemberRepresentation,
        )

    async def add_organization_member(
        self, org_id: str, user_id: str, realm_name: str
    ) -> None:
        await self._make_request(
            "POST",
            f"realms/{_segment(realm_name)}/organizations/{org_id}/members",
            json=user_id,
        )

    async def remove_organization_member(
        self, org_id: str, user_id: str, realm_name: str
    ) -> None:
        await self._delete(
            f"realms/{_segment(realm_name)}/organizations/{org_id}/members/{user_id}"
        )


async def get_keycloak_admin_client(settings: "Settings") -> KeycloakAdminClient:
    """
    Factory function to create an authenticated KeycloakAdminClient.

    Args:
        settings: Runtime settings holding URL and admin credentials

    Returns:
        Configured KeycloakAdminClient instance

    Raises:
        ConfigurationError: If URL or credentials are missing
        KeycloakAdminError: If authentication fails
    """
    if not settings.keycloak_url:
        raise ConfigurationError(
            "Keycloak URL is not configured", user_action="Set KEYCLOAK_URL"
        )
    if not settings.keycloak_user or not settings.keycloak_password:
        raise ConfigurationError(
            "Keycloak admin credentials are not configured",
            user_action="Set KEYCLOAK_USER and KEYCLOAK_PASSWORD",
        )

    logger.info(f"Creating admin client for {settings.keycloak_url}")

    admin_client = KeycloakAdminClient(
        server_url=settings.keycloak_url,
        username=settings.keycloak_user,
        password=settings.keycloak_password,
        realm=settings.keycloak_login_realm,
        client_id=settings.keycloak_client_id,
        verify_ssl=settings.keycloak_ssl_verify,
        timeout=settings.keycloak_timeout,
    )

    # Test authentication
    await admin_client.authenticate()

    return admin_client
