"""
Client reconciler.

Clients are matched by clientId. Keycloak's own clients are never deleted,
and under remote state only clients created by earlier imports are.
"""

from ..constants import DEFAULT_CLIENTS
from ..models.keycloak_api import ClientRepresentation
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .client_scope_reconciler import sync_protocol_mappers
from .entity_sync import EntityType, SyncResult

STATE_SCOPE = "client"

# Authorization settings are not managed; protocol mappers are reconciled
# per mapper after the client itself
NESTED_FIELDS = frozenset({"protocolMappers", "authorizationSettings"})


class ClientReconciler(BaseReconciler):
    """
    Reconciler for clients.

    Handles:
    - Creating clients missing from the realm (mappers included)
    - Patching changed client settings
    - Reconciling protocol mappers of existing clients
    - Deleting clients absent from the import under full management
    """

    entity_type = EntityType.CLIENT

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        desired = realm_import.realm.clients
        if desired is None:
            return SyncResult()

        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_clients(realm_name)

        def key(client: ClientRepresentation) -> str:
            return require_field(client.client_id, "clientId", realm_name)

        async def create(client: ClientRepresentation) -> None:
            await self.admin_client.create_client(client, realm_name)

        async def update(
            client: ClientRepresentation, remote: ClientRepresentation
        ) -> None:
            payload = patched_payload(client, remote, ignored=NESTED_FIELDS)
            payload["id"] = remote.id
            await self.admin_client.update_client(remote.id, payload, realm_name)

        async def delete(remote: ClientRepresentation) -> None:
            await self.admin_client.delete_client(remote.id, realm_name)

        plan = sync.plan(
            desired,
            existing,
            key,
            context.mode,
            lambda d, r: needs_update(d, r, ignored=NESTED_FIELDS),
            existing_key=lambda c: c.client_id,
            deletable=context.deletable(
                STATE_SCOPE, protected=lambda k: k in DEFAULT_CLIENTS
            ),
        )
        result = await sync.apply(plan, create, update, delete)

        for client_id, client, remote in plan.matched:
            mappers = await sync_protocol_mappers(
                self.admin_client,
                sync,
                f"clients/{remote.id}",
                client_id,
                client.protocol_mappers,
                context.mode,
            )
            if mappers.changed and client_id not in result.updated:
                result.updated.append(client_id)

        context.record(STATE_SCOPE, (key(client) for client in desired))
        return result
