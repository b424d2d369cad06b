"""
Scope mapping reconciler.

Scope mappings grant roles to the tokens issued for a client or a client
scope. ``scopeMappings`` lists realm roles per target; ``clientScopeMappings``
lists, per role-owning client, that client's roles per target. The current
mappings are only available through a partial export.
"""

from dataclasses import dataclass

from ..constants import DEFAULT_CLIENT_SCOPES, DEFAULT_CLIENTS
from ..errors import InvalidImportError
from ..models.keycloak_api import RoleRepresentation, ScopeMappingRepresentation
from ..models.realm_import import RealmImport
from .base_reconciler import BaseReconciler, ReconcileContext
from .entity_sync import EntitySynchronizer, EntityType, SyncResult
from .role_resolver import RoleResolver

Target = tuple[str, str]


@dataclass
class ScopeMappingChange:
    """Roles to add to and remove from one target's scope."""

    key: str
    owner: str
    client_uuid: str | None
    to_add: list[RoleRepresentation]
    to_remove: list[RoleRepresentation]


def mapping_target(mapping: ScopeMappingRepresentation, realm_name: str) -> Target:
    if mapping.client:
        return "client", mapping.client
    if mapping.client_scope:
        return "client-scope", mapping.client_scope
    raise InvalidImportError(
        f"Scope mapping in realm '{realm_name}' names neither a client nor a client scope",
        realm_name=realm_name,
    )


def is_protected_target(target: Target) -> bool:
    kind, name = target
    defaults = DEFAULT_CLIENTS if kind == "client" else DEFAULT_CLIENT_SCOPES
    return name in defaults


class ScopeMappingReconciler(BaseReconciler):
    """Reconciler for realm and client role scope mappings."""

    entity_type = EntityType.SCOPE_MAPPING

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        realm = realm_import.realm
        if realm.scope_mappings is None and realm.client_scope_mappings is None:
            return SyncResult()

        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        resolver = RoleResolver(self.admin_client, realm_name)
        export = await self.admin_client.partial_export(
            realm_name, export_clients=True, export_groups_and_roles=True
        )
        scope_ids = {
            scope.name: scope.id
            for scope in await self.admin_client.get_client_scopes(realm_name)
        }

        # every change is resolved before the first mutation
        changes: list[ScopeMappingChange] = []

        if realm.scope_mappings is not None:
            changes += await self._plan(
                sync,
                realm.scope_mappings,
                export.scope_mappings or [],
                None,
                resolver,
                scope_ids,
                context,
            )

        if realm.client_scope_mappings is not None:
            current = export.client_scope_mappings or {}
            role_clients = list(realm.client_scope_mappings)
            if context.full:
                role_clients += [c for c in current if c not in realm.client_scope_mappings]
            for role_client in role_clients:
                changes += await self._plan(
                    sync,
                    realm.client_scope_mappings.get(role_client, []),
                    current.get(role_client, []),
                    role_client,
                    resolver,
                    scope_ids,
                    context,
                )

        result = SyncResult()
        for change in changes:
            with sync.remote_errors("update", change.key):
                if change.to_add:
                    await self.admin_client.add_scope_mappings(
                        change.owner, change.to_add, realm_name, change.client_uuid
                    )
                if change.to_remove:
                    await self.admin_client.remove_scope_mappings(
                        change.owner, change.to_remove, realm_name, change.client_uuid
                    )
            result.updated.append(change.key)

        if result.changed:
            self.logger.info(
                f"Updated {len(result.updated)} scope mappings in realm '{realm_name}'",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
            )
        return result

    async def _plan(
        self,
        sync: EntitySynchronizer,
        desired: list[ScopeMappingRepresentation],
        existing: list[ScopeMappingRepresentation],
        role_client: str | None,
        resolver: RoleResolver,
        scope_ids: dict[str | None, str | None],
        context: ReconcileContext,
    ) -> list[ScopeMappingChange]:
        """
        Diff the mappings of realm roles (``role_client`` None) or of one
        client's roles.
        """
        realm_name = context.realm_name
        wanted = sync.index_desired(desired, lambda m: mapping_target(m, realm_name))
        current = sync.index_existing(existing, lambda m: mapping_target(m, realm_name))

        targets = list(wanted)
        if context.full:
            targets += [t for t in current if t not in wanted and not is_protected_target(t)]

        client_uuid = (await resolver.client(role_client)).id if role_client else None
        changes: list[ScopeMappingChange] = []
        for target in targets:
            wanted_roles = set(wanted[target].roles or []) if target in wanted else set()
            current_roles = set(current[target].roles or []) if target in current else set()

            add_names = sorted(wanted_roles - current_roles)
            remove_names = sorted(current_roles - wanted_roles) if context.full else []
            if not add_names and not remove_names:
                continue

            if role_client:
                to_add = await resolver.client_roles(role_client, add_names)
                to_remove = await resolver.client_roles(role_client, remove_names)
            else:
                to_add = await resolver.realm_roles(add_names)
                to_remove = await resolver.realm_roles(remove_names)

            kind, name = target
            changes.append(
                ScopeMappingChange(
                    key=f"{role_client or 'realm'}:{kind}/{name}",
                    owner=await self._owner(target, resolver, scope_ids, realm_name),
                    client_uuid=client_uuid,
                    to_add=to_add,
                    to_remove=to_remove,
                )
            )
        return changes

    @staticmethod
    async def _owner(
        target: Target,
        resolver: RoleResolver,
        scope_ids: dict[str | None, str | None],
        realm_name: str,
    ) -> str:
        kind, name = target
        if kind == "client":
            return f"clients/{(await resolver.client(name)).id}"

        scope_id = scope_ids.get(name)
        if not scope_id:
            raise InvalidImportError(
                f"Cannot find client scope '{name}' within realm '{realm_name}'",
                realm_name=realm_name,
            )
        return f"client-scopes/{scope_id}"
