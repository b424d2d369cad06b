"""
Name-to-representation resolution for roles, clients and groups.

Import documents reference roles by name, clients by clientId and groups by
path; the Admin API wants ids. A RoleResolver caches listings for the
duration of one reconciler run and turns a missing reference into an
InvalidImportError naming it.
"""

from collections.abc import Iterable

from ..constants import DEFAULT_REALM_ROLES, DEFAULT_ROLES_PREFIX
from ..errors import InvalidImportError
from ..models.keycloak_api import ClientRepresentation, GroupRepresentation, RoleRepresentation
from ..utils.keycloak_admin import KeycloakAdminClient


def is_default_realm_role(name: str, realm_name: str) -> bool:
    """Realm roles Keycloak creates for every realm."""
    return name in DEFAULT_REALM_ROLES or name == f"{DEFAULT_ROLES_PREFIX}{realm_name}".lower()


class RoleResolver:
    """Resolve and cache roles, clients and groups of one realm."""

    def __init__(self, admin_client: KeycloakAdminClient, realm_name: str):
        self.admin_client = admin_client
        self.realm_name = realm_name
        self._realm_roles: dict[str, RoleRepresentation] | None = None
        self._clients: dict[str, ClientRepresentation] | None = None
        self._client_roles: dict[str, dict[str, RoleRepresentation]] = {}
        self._groups: dict[str, GroupRepresentation] = {}

    async def realm_role(self, name: str) -> RoleRepresentation:
        if self._realm_roles is None:
            roles = await self.admin_client.get_realm_roles(self.realm_name)
            self._realm_roles = {role.name: role for role in roles if role.name}

        role = self._realm_roles.get(name)
        if role is None:
            raise InvalidImportError(
                f"Cannot find realm role '{name}' within realm '{self.realm_name}'",
                realm_name=self.realm_name,
            )
        return role

    async def client(self, client_id: str) -> ClientRepresentation:
        if self._clients is None:
            clients = await self.admin_client.get_clients(self.realm_name)
            self._clients = {}
            for client in clients:
                if client.client_id and client.client_id not in self._clients:
                    self._clients[client.client_id] = client

        client = self._clients.get(client_id)
        if client is None or not client.id:
            raise InvalidImportError(
                f"Cannot find client '{client_id}' within realm '{self.realm_name}'",
                realm_name=self.realm_name,
            )
        return client

    async def client_role(self, client_id: str, name: str) -> RoleRepresentation:
        client = await self.client(client_id)
        if client.id not in self._client_roles:
            roles = await self.admin_client.get_client_roles(client.id, self.realm_name)
            self._client_roles[client.id] = {role.name: role for role in roles if role.name}

        role = self._client_roles[client.id].get(name)
        if role is None:
            raise InvalidImportError(
                f"Cannot find client role '{name}' of client '{client_id}' "
                f"within realm '{self.realm_name}'",
                realm_name=self.realm_name,
            )
        return role

    async def realm_roles(self, names: Iterable[str]) -> list[RoleRepresentation]:
        return [await self.realm_role(name) for name in names]

    async def client_roles(
        self, client_id: str, names: Iterable[str]
    ) -> list[RoleRepresentation]:
        return [await self.client_role(client_id, name) for name in names]

    async def group(self, path: str) -> GroupRepresentation:
        """Resolve a group by its slash-delimited path."""
        normalized = "/" + path.strip("/")
        if normalized not in self._groups:
            group = await self.admin_client.get_group_by_path(normalized, self.realm_name)
            if group is None or not group.id:
                raise InvalidImportError(
                    f"Cannot find group '{normalized}' within realm '{self.realm_name}'",
                    realm_name=self.realm_name,
                )
            self._groups[normalized] = group
        return self._groups[normalized]


async def sync_role_mappings(
    admin_client: KeycloakAdminClient,
    resolver: RoleResolver,
    owner: str,
    realm_roles: list[str] | None,
    client_roles: dict[str, list[str]] | None,
    realm_name: str,
) -> bool:
    """
    Converge the role mappings of a group or user.

    A ``None`` collection is not managed. Listed collections are applied as
    a set difference; default realm roles are never removed and client
    mappings are only reconciled for the clients listed.

    Args:
        admin_client: Admin API client
        resolver: Resolver bound to the same realm
        owner: ``groups/<id>`` or ``users/<id>``
        realm_roles: Desired realm role names
        client_roles: Desired client role names per clientId
        realm_name: Realm being imported

    Returns:
        True if any mapping was added or removed
    """
    # resolve every name before the first mutation
    wanted_realm = await resolver.realm_roles(realm_roles) if realm_roles is not None else None
    wanted_client = {
        client_id: (
            await resolver.client(client_id),
            await resolver.client_roles(client_id, names),
        )
        for client_id, names in (client_roles or {}).items()
    }

    changed = False

    if wanted_realm is not None:
        wanted_names = {role.name for role in wanted_realm}
        current = await admin_client.get_role_mappings(owner, realm_name)
        current_names = {role.name for role in current}
        to_add = [role for role in wanted_realm if role.name not in current_names]
        to_remove = [
            role
            for role in current
            if role.name not in wanted_names
            and not is_default_realm_role(role.name or "", realm_name)
        ]
        if to_add:
            await admin_client.add_role_mappings(owner, to_add, realm_name)
        if to_remove:
            await admin_client.remove_role_mappings(owner, to_remove, realm_name)
        changed = changed or bool(to_add or to_remove)

    for client, wanted in wanted_client.values():
        wanted_names = {role.name for role in wanted}
        current = await admin_client.get_role_mappings(owner, realm_name, client.id)
        current_names = {role.name for role in current}
        to_add = [role for role in wanted if role.name not in current_names]
        to_remove = [role for role in current if role.name not in wanted_names]
        if to_add:
            await admin_client.add_role_mappings(owner, to_add, realm_name, client.id)
        if to_remove:
            await admin_client.remove_role_mappings(owner, to_remove, realm_name, client.id)
        changed = changed or bool(to_add or to_remove)

    return changed
