"""
Organization reconciler.

Organizations only exist on servers that offer them; when the server does
not, the whole entity type is skipped with a warning. Organizations are
matched by alias; linked identity providers and members are listed
associations and converge as set differences.
"""

from typing import Any

from ..errors import InvalidImportError
from ..models.keycloak_api import OrganizationRepresentation
from ..models.realm_import import RealmImport
from ..utils.keycloak_admin import Capability
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult

ASSOCIATION_FIELDS = frozenset({"identityProviders", "members"})


class OrganizationReconciler(BaseReconciler):
    """Reconciler for organizations, their identity providers and members."""

    entity_type = EntityType.ORGANIZATION

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        desired = realm_import.realm.organizations
        if desired is None:
            return SyncResult()

        realm_name = context.realm_name
        existing = await self.admin_client.get_organizations(realm_name)
        if existing is Capability.UNSUPPORTED:
            self.logger.warning(
                f"Server does not support organizations, skipping {len(desired)} "
                f"organizations of realm '{realm_name}'",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
            )
            return SyncResult()

        sync = self.synchronizer(realm_name)
        created_ids: dict[str, str | None] = {}

        def key(organization: OrganizationRepresentation) -> str:
            return require_field(organization.alias, "organization alias", realm_name)

        async def create(organization: OrganizationRepresentation) -> None:
            created_ids[key(organization)] = await self.admin_client.create_organization(
                self._payload(organization), realm_name
            )

        async def update(
            organization: OrganizationRepresentation, remote: OrganizationRepresentation
        ) -> None:
            payload = patched_payload(organization, remote, ignored=ASSOCIATION_FIELDS)
            payload["id"] = remote.id
            await self.admin_client.update_organization(remote.id, payload, realm_name)

        async def delete(remote: OrganizationRepresentation) -> None:
            await self.admin_client.delete_organization(remote.id, realm_name)

        plan = sync.plan(
            desired,
            existing,
            key,
            context.mode,
            lambda d, r: needs_update(d, r, ignored=ASSOCIATION_FIELDS),
            existing_key=lambda o: o.alias,
        )
        result = await sync.apply(plan, create, update, delete)

        targets = [(k, org, created_ids.get(k)) for k, org in plan.to_create]
        targets += [(k, org, remote.id) for k, org, remote in plan.matched]
        for alias, organization, org_id in targets:
            if not org_id:
                continue
            with sync.remote_errors("update", alias):
                changed = await self._sync_identity_providers(org_id, organization, realm_name)
                changed |= await self._sync_members(org_id, organization, realm_name)
            if changed and alias not in result.created and alias not in result.updated:
                result.updated.append(alias)

        return result

    @staticmethod
    def _payload(organization: OrganizationRepresentation) -> dict[str, Any]:
        return {
            k: v for k, v in organization.to_payload().items() if k not in ASSOCIATION_FIELDS
        }

    async def _sync_identity_providers(
        self, org_id: str, organization: OrganizationRepresentation, realm_name: str
    ) -> bool:
        if organization.identity_providers is None:
            return False

        wanted = [idp.alias for idp in organization.identity_providers if idp.alias]
        current = {
            idp.alias
            for idp in await self.admin_client.get_organization_identity_providers(
                org_id, realm_name
            )
        }

        to_link = [alias for alias in wanted if alias not in current]
        to_unlink = sorted(alias for alias in current if alias not in set(wanted))
        for alias in to_link:
            await self.admin_client.link_organization_identity_provider(org_id, alias, realm_name)
        for alias in to_unlink:
            await self.admin_client.unlink_organization_identity_provider(
                org_id, alias, realm_name
            )
        return bool(to_link or to_unlink)

    async def _sync_members(
        self, org_id: str, organization: OrganizationRepresentation, realm_name: str
    ) -> bool:
        if organization.members is None:
            return False

        # resolve every member before the first mutation
        wanted: dict[str, str] = {}
        for member in organization.members:
            username = require_field(
                member.username, f"member username of '{organization.alias}'", realm_name
            )
            user = await self.admin_client.get_user_by_username(username, realm_name)
            if user is None or not user.id:
                raise InvalidImportError(
                    f"Cannot find user '{username}' within realm '{realm_name}'",
                    realm_name=realm_name,
                )
            wanted[user.id] = username

        current = {
            member.id
            for member in await self.admin_client.get_organization_members(org_id, realm_name)
            if member.id
        }

        to_add = [user_id for user_id in wanted if user_id not in current]
        to_remove = sorted(user_id for user_id in current if user_id not in wanted)
        for user_id in to_add:
            await self.admin_client.add_organization_member(org_id, user_id, realm_name)
        for user_id in to_remove:
            await self.admin_client.remove_organization_member(org_id, user_id, realm_name)
        return bool(to_add or to_remove)
