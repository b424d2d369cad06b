"""
User reconciler.

Users are matched case-insensitively by username and are never deleted.
Credentials are only sent when a user is created, so passwords changed by
the user survive later imports.
"""

from typing import Any

from ..models.keycloak_api import UserRepresentation
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, ManagedMode, SyncResult
from .group_reconciler import normalize_path
from .role_resolver import RoleResolver, sync_role_mappings

ASSOCIATION_FIELDS = frozenset({"realmRoles", "clientRoles", "groups"})
NESTED_FIELDS = ASSOCIATION_FIELDS | {"credentials"}


class UserReconciler(BaseReconciler):
    """Reconciler for users, their role mappings and group memberships."""

    entity_type = EntityType.USER

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        desired = realm_import.realm.users
        if desired is None:
            return SyncResult()

        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)

        def key(user: UserRepresentation) -> str:
            return require_field(user.username, "username", realm_name).lower()

        # users are looked up one by one, realms can hold millions of them
        existing = []
        for user in desired:
            remote = await self.admin_client.get_user_by_username(key(user), realm_name)
            if remote is not None:
                existing.append(remote)

        created_ids: dict[str, str | None] = {}

        async def create(user: UserRepresentation) -> None:
            payload = {
                k: v for k, v in user.to_payload().items() if k not in ASSOCIATION_FIELDS
            }
            created_ids[key(user)] = await self.admin_client.create_user(payload, realm_name)

        async def update(user: UserRepresentation, remote: UserRepresentation) -> None:
            payload = patched_payload(user, remote, ignored=NESTED_FIELDS)
            payload["id"] = remote.id
            await self.admin_client.update_user(remote.id, payload, realm_name)

        plan = sync.plan(
            desired,
            existing,
            key,
            ManagedMode.NO_DELETE,
            lambda d, r: needs_update(d, r, ignored=NESTED_FIELDS),
            existing_key=lambda u: (u.username or "").lower(),
        )
        result = await sync.apply(plan, create, update)

        resolver = RoleResolver(self.admin_client, realm_name)
        targets = [(k, user, created_ids.get(k)) for k, user in plan.to_create]
        targets += [(k, user, remote.id) for k, user, remote in plan.matched]

        for username, user, user_id in targets:
            if not user_id:
                remote = await self.admin_client.get_user_by_username(username, realm_name)
                user_id = remote.id if remote else None
            if not user_id:
                continue

            with sync.remote_errors("update", username):
                changed = await sync_role_mappings(
                    self.admin_client,
                    resolver,
                    f"users/{user_id}",
                    user.realm_roles,
                    user.client_roles,
                    realm_name,
                )
                changed |= await self._sync_groups(user_id, user.groups, resolver, realm_name)

            if changed and username not in result.created and username not in result.updated:
                result.updated.append(username)

        return result

    async def _sync_groups(
        self,
        user_id: str,
        groups: list[str] | None,
        resolver: RoleResolver,
        realm_name: str,
    ) -> bool:
        """Join listed groups and leave unlisted ones."""
        if groups is None:
            return False

        wanted = [await resolver.group(path) for path in groups]
        wanted_ids = {group.id for group in wanted}
        current = await self.admin_client.get_user_groups(user_id, realm_name)
        current_ids = {group.id for group in current}

        to_join = [group for group in wanted if group.id not in current_ids]
        to_leave = [group for group in current if group.id not in wanted_ids]

        for group in to_join:
            await self.admin_client.join_group(user_id, group.id, realm_name)
        for group in to_leave:
            await self.admin_client.leave_group(user_id, group.id, realm_name)

        if to_join or to_leave:
            self.logger.debug(
                f"User {user_id} joined {len(to_join)} and left {len(to_leave)} groups",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
                groups=[normalize_path(g.path or "") for g in to_join],
            )
        return bool(to_join or to_leave)
