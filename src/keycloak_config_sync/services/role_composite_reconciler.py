"""
Role composite reconciler.

Composite relationships form a graph over realm and client roles. Every
referenced role is resolved to its id up front, so a dangling reference
fails the import before the first composite is added. Realm and client
composites are diffed separately because the Admin API adds and removes
them with separate calls.
"""

from dataclasses import dataclass

from ..models.keycloak_api import RoleCompositesRepresentation, RoleRepresentation
from ..models.realm_import import RealmImport
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult
from .role_resolver import RoleResolver


@dataclass
class ResolvedComposites:
    """Desired composites of one role, resolved to remote roles.

    ``client`` is keyed by client UUID. ``None`` means not managed.
    """

    key: str
    owner: RoleRepresentation
    realm: list[RoleRepresentation] | None
    client: dict[str, list[RoleRepresentation]] | None


class RoleCompositeReconciler(BaseReconciler):
    """Reconciler for composite role relationships."""

    entity_type = EntityType.ROLE_COMPOSITE

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        roles = realm_import.realm.roles
        if roles is None:
            return SyncResult()

        realm_name = context.realm_name
        resolver = RoleResolver(self.admin_client, realm_name)

        planned: list[ResolvedComposites] = []
        for role in roles.realm or []:
            if role.composites is None:
                continue
            name = require_field(role.name, "realm role name", realm_name)
            owner = await resolver.realm_role(name)
            planned.append(await self._resolve(name, owner, role.composites, resolver))

        for client_id, client_roles in (roles.client or {}).items():
            for role in client_roles:
                if role.composites is None:
                    continue
                name = require_field(
                    role.name, f"role name of client '{client_id}'", realm_name
                )
                owner = await resolver.client_role(client_id, name)
                planned.append(
                    await self._resolve(
                        f"{client_id}/{name}", owner, role.composites, resolver
                    )
                )

        sync = self.synchronizer(realm_name)
        result = SyncResult()
        for composites in planned:
            with sync.remote_errors("update", composites.key):
                changed = await self._apply(composites, context)
            if changed:
                result.updated.append(composites.key)

        if result.changed:
            self.logger.info(
                f"Updated composites of {len(result.updated)} roles in realm '{realm_name}'",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
            )
        return result

    async def _resolve(
        self,
        key: str,
        owner: RoleRepresentation,
        composites: RoleCompositesRepresentation,
        resolver: RoleResolver,
    ) -> ResolvedComposites:
        realm = None
        if composites.realm is not None:
            realm = await resolver.realm_roles(composites.realm)

        client = None
        if composites.client is not None:
            client = {}
            for client_id, names in composites.client.items():
                remote_client = await resolver.client(client_id)
                client[remote_client.id] = await resolver.client_roles(client_id, names)

        return ResolvedComposites(key=key, owner=owner, realm=realm, client=client)

    async def _apply(
        self, composites: ResolvedComposites, context: ReconcileContext
    ) -> bool:
        """Add missing and (under full management) remove extra composites."""
        realm_name = context.realm_name
        role_id = composites.owner.id
        current = await self.admin_client.get_role_composites(role_id, realm_name)
        changed = False

        if composites.realm is not None:
            current_realm = [role for role in current if not role.client_role]
            changed |= await self._converge(
                role_id, composites.realm, current_realm, context
            )

        if composites.client is not None:
            current_client = [role for role in current if role.client_role]
            containers = set(composites.client) | {
                role.container_id for role in current_client
            }
            for client_uuid in sorted(c for c in containers if c):
                changed |= await self._converge(
                    role_id,
                    composites.client.get(client_uuid, []),
                    [r for r in current_client if r.container_id == client_uuid],
                    context,
                )

        return changed

    async def _converge(
        self,
        role_id: str,
        wanted: list[RoleRepresentation],
        current: list[RoleRepresentation],
        context: ReconcileContext,
    ) -> bool:
        current_ids = {role.id for role in current}
        wanted_ids = {role.id for role in wanted}

        to_add = [role for role in wanted if role.id not in current_ids]
        to_remove = (
            [role for role in current if role.id not in wanted_ids] if context.full else []
        )

        if to_add:
            await self.admin_client.add_role_composites(role_id, to_add, context.realm_name)
        if to_remove:
            await self.admin_client.remove_role_composites(
                role_id, to_remove, context.realm_name
            )
        return bool(to_add or to_remove)
