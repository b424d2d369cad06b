"""
Client scope reconciler.

Client scopes are matched by name. Their protocol mappers are a nested
collection matched by mapper name and are reconciled the same way for
clients, see ``sync_protocol_mappers``.
"""

from ..constants import DEFAULT_CLIENT_SCOPES
from ..models.keycloak_api import (
    ClientScopeRepresentation,
    ProtocolMapperRepresentation,
)
from ..models.realm_import import RealmImport
from ..utils.keycloak_admin import KeycloakAdminClient
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntitySynchronizer, EntityType, ManagedMode, SyncResult

STATE_SCOPE = "client-scope"
NESTED_FIELDS = frozenset({"protocolMappers"})


async def sync_protocol_mappers(
    admin_client: KeycloakAdminClient,
    sync: EntitySynchronizer,
    owner: str,
    owner_key: str,
    desired: list[ProtocolMapperRepresentation] | None,
    mode: ManagedMode,
) -> SyncResult:
    """
    Reconcile the protocol mappers of one client or client scope.

    Args:
        admin_client: Admin API client
        sync: Synchronizer of the owning entity type (for error context)
        owner: ``clients/<uuid>`` or ``client-scopes/<id>``
        owner_key: clientId or scope name, used in keys and messages
        desired: Mappers from the document; None leaves mappers untouched
        mode: Managed mode of the owning entity type
    """
    if desired is None:
        return SyncResult()

    realm_name = sync.realm_name
    existing = await admin_client.get_protocol_mappers(owner, realm_name)

    async def create(mapper: ProtocolMapperRepresentation) -> None:
        await admin_client.create_protocol_mapper(owner, mapper, realm_name)

    async def update(
        mapper: ProtocolMapperRepresentation, remote: ProtocolMapperRepresentation
    ) -> None:
        payload = patched_payload(mapper, remote)
        payload["id"] = remote.id
        await admin_client.update_protocol_mapper(owner, remote.id, payload, realm_name)

    async def delete(remote: ProtocolMapperRepresentation) -> None:
        await admin_client.delete_protocol_mapper(owner, remote.id, realm_name)

    return await sync.reconcile(
        desired,
        existing,
        lambda m: (owner_key, require_field(m.name, f"protocol mapper name of '{owner_key}'", realm_name)),
        mode,
        create=create,
        update=update,
        delete=delete,
        needs_update=needs_update,
        existing_key=lambda m: (owner_key, m.name),
    )


class ClientScopeReconciler(BaseReconciler):
    """Reconciler for client scopes and their protocol mappers."""

    entity_type = EntityType.CLIENT_SCOPE

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        desired = realm_import.realm.client_scopes
        if desired is None:
            return SyncResult()

        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_client_scopes(realm_name)

        def key(scope: ClientScopeRepresentation) -> str:
            return require_field(scope.name, "client scope name", realm_name)

        async def create(scope: ClientScopeRepresentation) -> None:
            # mappers are part of the create body
            await self.admin_client.create_client_scope(scope, realm_name)

        async def update(
            scope: ClientScopeRepresentation, remote: ClientScopeRepresentation
        ) -> None:
            payload = patched_payload(scope, remote, ignored=NESTED_FIELDS)
            payload["id"] = remote.id
            await self.admin_client.update_client_scope(remote.id, payload, realm_name)

        async def delete(remote: ClientScopeRepresentation) -> None:
            await self.admin_client.delete_client_scope(remote.id, realm_name)

        plan = sync.plan(
            desired,
            existing,
            key,
            context.mode,
            lambda d, r: needs_update(d, r, ignored=NESTED_FIELDS),
            existing_key=lambda s: s.name,
            deletable=context.deletable(
                STATE_SCOPE, protected=lambda k: k in DEFAULT_CLIENT_SCOPES
            ),
        )
        result = await sync.apply(plan, create, update, delete)

        for scope_name, scope, remote in plan.matched:
            mappers = await sync_protocol_mappers(
                self.admin_client,
                sync,
                f"client-scopes/{remote.id}",
                scope_name,
                scope.protocol_mappers,
                context.mode,
            )
            if mappers.changed and scope_name not in result.updated:
                result.updated.append(scope_name)

        context.record(STATE_SCOPE, (key(scope) for scope in desired))
        self.logger.debug(
            f"Client scopes of realm '{realm_name}': {result.summary()}",
            realm_name=realm_name,
            entity_type=self.entity_type.value,
        )
        return result
