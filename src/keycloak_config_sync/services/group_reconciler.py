"""
Group hierarchy reconciler.

Groups are matched by their slash-delimited path and reconciled depth
first: a level of siblings is converged, then each surviving group gets its
role mappings and its own sub-groups. Deleting a group cascades to its
sub-groups on the server, so children of deleted groups are never visited.
"""

from typing import Any

from ..models.keycloak_api import GroupRepresentation
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult
from .role_resolver import RoleResolver, sync_role_mappings

# Reconciled per group after the group itself, never part of its body
NESTED_FIELDS = frozenset(
    {"subGroups", "realmRoles", "clientRoles", "subGroupCount", "path", "parentId"}
)


def normalize_path(path: str) -> str:
    return "/" + path.strip("/")


def group_differs(desired: GroupRepresentation, remote: GroupRepresentation) -> bool:
    """
    Compare a group's own fields.

    The attribute map is compared as a whole: a key missing from the
    document is removed from the group, unlike other nested maps which are
    compared as subsets.
    """
    if needs_update(desired, remote, ignored=NESTED_FIELDS | {"attributes"}):
        return True
    return desired.attributes is not None and desired.attributes != (remote.attributes or {})


class GroupReconciler(BaseReconciler):
    """
    Reconciler for the group tree and the realm's default groups.

    Handles:
    - Creating top-level groups and sub-groups under their parent's id
    - Replacing changed attribute maps
    - Converging realm and client role mappings per group
    - Deleting groups absent from the import under full management
    - Adding and removing default groups by path
    """

    entity_type = EntityType.GROUP

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        realm = realm_import.realm
        if realm.groups is None and realm.default_groups is None:
            return SyncResult()

        realm_name = context.realm_name
        resolver = RoleResolver(self.admin_client, realm_name)
        result = SyncResult()

        if realm.groups is not None:
            existing = await self.admin_client.get_groups(realm_name)
            await self._reconcile_level(
                realm.groups, existing, None, "", resolver, context, result
            )

        if realm.default_groups is not None:
            result.merge(
                await self._reconcile_default_groups(
                    realm.default_groups, resolver, context
                )
            )

        return result

    async def _reconcile_level(
        self,
        desired: list[GroupRepresentation],
        existing: list[GroupRepresentation],
        parent_id: str | None,
        parent_path: str,
        resolver: RoleResolver,
        context: ReconcileContext,
        result: SyncResult,
    ) -> None:
        """Converge one level of siblings, then descend into each of them."""
        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        created_ids: dict[str, str | None] = {}

        def key(group: GroupRepresentation) -> str:
            name = require_field(group.name, f"group name below '{parent_path or '/'}'", realm_name)
            return f"{parent_path}/{name}"

        async def create(group: GroupRepresentation) -> None:
            path = key(group)
            payload = self._group_payload(group)
            if parent_id is None:
                group_id = await self.admin_client.create_group(payload, realm_name)
            else:
                group_id = await self.admin_client.create_subgroup(
                    parent_id, payload, realm_name
                )
            if not group_id:
                created = await self.admin_client.get_group_by_path(path, realm_name)
                group_id = created.id if created else None
            created_ids[path] = group_id

        async def update(group: GroupRepresentation, remote: GroupRepresentation) -> None:
            payload = patched_payload(group, remote, ignored=NESTED_FIELDS)
            if group.attributes is not None:
                payload["attributes"] = group.attributes
            payload["id"] = remote.id
            await self.admin_client.update_group(remote.id, payload, realm_name)

        async def delete(remote: GroupRepresentation) -> None:
            await self.admin_client.delete_group(remote.id, realm_name)

        plan = sync.plan(
            desired,
            existing,
            key,
            context.mode,
            group_differs,
            existing_key=lambda g: f"{parent_path}/{g.name}",
        )
        result.merge(await sync.apply(plan, create, update, delete))

        visits: list[tuple[str, GroupRepresentation, str | None, bool]] = [
            (path, group, created_ids.get(path), True) for path, group in plan.to_create
        ]
        visits += [(path, group, remote.id, False) for path, group, remote in plan.matched]

        for path, group, group_id, is_new in visits:
            if not group_id:
                continue

            with sync.remote_errors("update", path):
                mapped = await sync_role_mappings(
                    self.admin_client,
                    resolver,
                    f"groups/{group_id}",
                    group.realm_roles,
                    group.client_roles,
                    realm_name,
                )
            if mapped and path not in result.created and path not in result.updated:
                result.updated.append(path)

            if group.sub_groups is None:
                continue

            children = (
                []
                if is_new
                else await self.admin_client.get_group_children(group_id, realm_name)
            )
            await self._reconcile_level(
                group.sub_groups, children, group_id, path, resolver, context, result
            )

    @staticmethod
    def _group_payload(group: GroupRepresentation) -> dict[str, Any]:
        return {k: v for k, v in group.to_payload().items() if k not in NESTED_FIELDS}

    async def _reconcile_default_groups(
        self, paths: list[str], resolver: RoleResolver, context: ReconcileContext
    ) -> SyncResult:
        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        result = SyncResult()

        wanted = list(dict.fromkeys(normalize_path(path) for path in paths))
        current = {
            normalize_path(group.path or f"/{group.name}"): group
            for group in await self.admin_client.get_default_groups(realm_name)
        }

        # resolve every path before the first mutation
        to_add = [await resolver.group(path) for path in wanted if path not in current]
        for group in to_add:
            path = normalize_path(group.path or f"/{group.name}")
            with sync.remote_errors("add default", path):
                await self.admin_client.add_default_group(group.id, realm_name)
            result.created.append(f"default {path}")

        if context.full:
            for path, group in current.items():
                if path in wanted:
                    continue
                with sync.remote_errors("remove default", path):
                    await self.admin_client.remove_default_group(group.id, realm_name)
                result.deleted.append(f"default {path}")

        if result.changed:
            self.logger.info(
                f"Default groups of realm '{realm_name}': {result.summary()}",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
            )
        return result
