"""
Reconciler for import options that reach outside the imported realm.

``customImport.removeImpersonation`` strips the ``impersonation`` role from
the realm's management client in the master realm, so master-realm admins
cannot impersonate the realm's users. Setting the option back to false does
not restore the role.
"""

from ..constants import IMPERSONATION_ROLE, MANAGEMENT_CLIENT_SUFFIX, MASTER_REALM
from ..models.realm_import import RealmImport
from .base_reconciler import BaseReconciler, ReconcileContext
from .entity_sync import EntityType, SyncResult


class CustomImportReconciler(BaseReconciler):
    """Applies the ``customImport`` options of a document."""

    entity_type = EntityType.CUSTOM_IMPORT

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        options = realm_import.realm.custom_import
        if options is None or not options.remove_impersonation:
            return SyncResult()
        return await self._remove_impersonation(context.realm_name)

    async def _remove_impersonation(self, realm_name: str) -> SyncResult:
        result = SyncResult()
        client_id = f"{realm_name}{MANAGEMENT_CLIENT_SUFFIX}"
        client = await self.admin_client.get_client_by_client_id(client_id, MASTER_REALM)
        if client is None or not client.id:
            self.logger.info(
                f"No client '{client_id}' in realm '{MASTER_REALM}', "
                f"nothing to remove impersonation from",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
            )
            return result

        sync = self.synchronizer(realm_name)
        with sync.remote_errors("delete", (client_id, IMPERSONATION_ROLE)):
            # an absent role counts as removed
            await self.admin_client.delete_client_role(
                client.id, IMPERSONATION_ROLE, MASTER_REALM
            )

        self.logger.info(
            f"Removed role '{IMPERSONATION_ROLE}' from client '{client_id}' "
            f"in realm '{MASTER_REALM}'",
            realm_name=realm_name,
            entity_type=self.entity_type.value,
            operation="delete",
        )
        result.deleted.append(f"{client_id}/{IMPERSONATION_ROLE}")
        return result
