"""
Required action reconciler.

A required action has to be registered from its provider before it can be
configured, so creation is a registration followed by an update.
"""

from ..errors import InvalidImportError
from ..models.keycloak_api import RequiredActionProviderRepresentation
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult

STATE_SCOPE = "required-action"

# Keycloak orders required actions through dedicated raise/lower endpoints
IGNORED_FIELDS = frozenset({"priority"})


class RequiredActionReconciler(BaseReconciler):
    """Reconciler for required actions, matched by alias."""

    entity_type = EntityType.REQUIRED_ACTION

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        desired = realm_import.realm.required_actions
        if desired is None:
            return SyncResult()

        realm_name = context.realm_name
        for action in desired:
            self._validate(action, realm_name)

        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_required_actions(realm_name)

        async def create(action: RequiredActionProviderRepresentation) -> None:
            await self.admin_client.register_required_action(
                action.provider_id or action.alias, action.name or action.alias, realm_name
            )
            await self.admin_client.update_required_action(
                action.alias, action.to_payload(), realm_name
            )

        async def update(
            action: RequiredActionProviderRepresentation,
            remote: RequiredActionProviderRepresentation,
        ) -> None:
            payload = patched_payload(action, remote, ignored=IGNORED_FIELDS)
            await self.admin_client.update_required_action(remote.alias, payload, realm_name)

        async def delete(remote: RequiredActionProviderRepresentation) -> None:
            await self.admin_client.delete_required_action(remote.alias, realm_name)

        result = await sync.reconcile(
            desired,
            existing,
            lambda a: a.alias,
            context.mode,
            create=create,
            update=update,
            delete=delete,
            needs_update=lambda d, r: needs_update(d, r, ignored=IGNORED_FIELDS),
            deletable=context.deletable(STATE_SCOPE),
        )
        context.record(STATE_SCOPE, (action.alias for action in desired))
        return result

    @staticmethod
    def _validate(action: RequiredActionProviderRepresentation, realm_name: str) -> None:
        alias = require_field(action.alias, "required action alias", realm_name)
        if action.provider_id is None:
            # providerId defaults to the alias
            return
        if action.provider_id != alias:
            raise InvalidImportError(
                f"Cannot import Required-Action '{alias}': "
                "alias and provider-id have to be equal",
                realm_name=realm_name,
            )
