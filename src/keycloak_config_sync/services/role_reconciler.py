"""
Realm and client role reconciler.

Roles are created without their composites; the composite graph is only
reconciled once every role of the document exists, by the role composite
reconciler.
"""

from ..models.keycloak_api import RoleRepresentation
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult
from .role_resolver import RoleResolver, is_default_realm_role

REALM_STATE_SCOPE = "realm-role"
COMPOSITE_FIELDS = frozenset({"composite", "composites", "clientRole"})


def client_state_scope(client_id: str) -> str:
    return f"client-role.{client_id}"


class RoleReconciler(BaseReconciler):
    """Reconciler for realm roles, then client roles per clientId."""

    entity_type = EntityType.ROLE

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        roles = realm_import.realm.roles
        if roles is None:
            return SyncResult()

        result = SyncResult()
        if roles.realm is not None:
            result.merge(await self._reconcile_realm_roles(roles.realm, context))

        if roles.client is not None:
            resolver = RoleResolver(self.admin_client, context.realm_name)
            for client_id, client_roles in roles.client.items():
                result.merge(
                    await self._reconcile_client_roles(
                        client_id, client_roles, resolver, context
                    )
                )

        return result

    async def _reconcile_realm_roles(
        self, desired: list[RoleRepresentation], context: ReconcileContext
    ) -> SyncResult:
        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_realm_roles(realm_name)

        def key(role: RoleRepresentation) -> str:
            return require_field(role.name, "realm role name", realm_name)

        async def create(role: RoleRepresentation) -> None:
            await self.admin_client.create_realm_role(role, realm_name)

        async def update(role: RoleRepresentation, remote: RoleRepresentation) -> None:
            payload = patched_payload(role, remote, ignored=COMPOSITE_FIELDS)
            await self.admin_client.update_realm_role(remote.name, payload, realm_name)

        async def delete(remote: RoleRepresentation) -> None:
            await self.admin_client.delete_realm_role(remote.name, realm_name)

        result = await sync.reconcile(
            desired,
            existing,
            key,
            context.mode,
            create=create,
            update=update,
            delete=delete,
            needs_update=lambda d, r: needs_update(d, r, ignored=COMPOSITE_FIELDS),
            existing_key=lambda r: r.name,
            deletable=context.deletable(
                REALM_STATE_SCOPE,
                protected=lambda k: is_default_realm_role(str(k), realm_name),
            ),
        )
        context.record(REALM_STATE_SCOPE, (key(role) for role in desired))
        return result

    async def _reconcile_client_roles(
        self,
        client_id: str,
        desired: list[RoleRepresentation],
        resolver: RoleResolver,
        context: ReconcileContext,
    ) -> SyncResult:
        realm_name = context.realm_name
        client = await resolver.client(client_id)
        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_client_roles(client.id, realm_name)
        scope = client_state_scope(client_id)

        def key(role: RoleRepresentation) -> tuple[str, str]:
            return client_id, require_field(
                role.name, f"role name of client '{client_id}'", realm_name
            )

        async def create(role: RoleRepresentation) -> None:
            await self.admin_client.create_client_role(client.id, role, realm_name)

        async def update(role: RoleRepresentation, remote: RoleRepresentation) -> None:
            payload = patched_payload(role, remote, ignored=COMPOSITE_FIELDS)
            await self.admin_client.update_client_role(
                client.id, remote.name, payload, realm_name
            )

        async def delete(remote: RoleRepresentation) -> None:
            await self.admin_client.delete_client_role(client.id, remote.name, realm_name)

        result = await sync.reconcile(
            desired,
            existing,
            key,
            context.mode,
            create=create,
            update=update,
            delete=delete,
            needs_update=lambda d, r: needs_update(d, r, ignored=COMPOSITE_FIELDS),
            existing_key=lambda r: (client_id, r.name),
            deletable=self._client_role_filter(context, scope),
        )
        context.record(scope, (key(role)[1] for role in desired))
        return result

    @staticmethod
    def _client_role_filter(context: ReconcileContext, scope: str):
        # state stores bare role names, keys here are (clientId, name)
        deletable = context.deletable(scope)
        return lambda key, remote: deletable(key[1], remote)
