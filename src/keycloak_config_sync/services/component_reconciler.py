"""
Component tree reconciler.

Components (key providers, user storage providers and their mappers, ...)
nest arbitrarily deep and are matched by ``(providerType, name, subType)``.
The Admin API only returns the nested tree through a partial export, so
the remote side is re-read from an export and flattened into a parent-id
index on every run. Levels are reconciled top down; a child is created
with the id of its freshly created or matched parent.
"""

from collections import defaultdict
from typing import Any

from ..errors import ImportProcessingError
from ..models.keycloak_api import ComponentExportRepresentation, ComponentRepresentation
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult

# (providerType, component) as listed in the document
DesiredComponent = tuple[str, ComponentExportRepresentation]


def flatten_component_tree(
    components: dict[str, list[ComponentExportRepresentation]] | None,
    parent_id: str | None,
) -> list[ComponentRepresentation]:
    """Flatten an exported component tree, recording each node's parent."""
    flat: list[ComponentRepresentation] = []
    for provider_type, items in (components or {}).items():
        for item in items:
            flat.append(
                ComponentRepresentation(
                    id=item.id,
                    name=item.name,
                    provider_id=item.provider_id,
                    provider_type=provider_type,
                    parent_id=parent_id,
                    sub_type=item.sub_type,
                    config=item.config,
                )
            )
            flat.extend(flatten_component_tree(item.sub_components, item.id))
    return flat


def component_key(component: ComponentRepresentation) -> tuple[str | None, str | None, str | None]:
    return component.provider_type, component.name, component.sub_type


class ComponentReconciler(BaseReconciler):
    """
    Reconciler for realm components and their sub-components.

    At the top level only the provider types present in the document are
    managed, so a document listing user storage providers leaves the realm
    key providers alone. Below a component, listing ``subComponents``
    manages all of its children.
    """

    entity_type = EntityType.COMPONENT

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        desired = realm_import.realm.components
        if desired is None:
            return SyncResult()

        realm_name = context.realm_name
        export = await self.admin_client.partial_export(realm_name)
        realm_id = export.id or realm_name

        children: dict[str | None, list[ComponentRepresentation]] = defaultdict(list)
        for component in flatten_component_tree(export.components, realm_id):
            children[component.parent_id].append(component)

        result = SyncResult()
        await self._reconcile_level(
            [(ptype, item) for ptype, items in desired.items() for item in items],
            [c for c in children[realm_id] if c.provider_type in desired],
            realm_id,
            children,
            context,
            result,
        )
        return result

    async def _reconcile_level(
        self,
        desired: list[DesiredComponent],
        existing: list[ComponentRepresentation],
        parent_id: str,
        children: dict[str | None, list[ComponentRepresentation]],
        context: ReconcileContext,
        result: SyncResult,
    ) -> None:
        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        created_ids: dict[tuple, str | None] = {}

        def key(entry: DesiredComponent) -> tuple[str, str, str | None]:
            provider_type, item = entry
            name = require_field(item.name, f"name of {provider_type} component", realm_name)
            return provider_type, name, item.sub_type

        def as_component(entry: DesiredComponent) -> ComponentRepresentation:
            provider_type, item = entry
            fields = self._own_fields(item)
            fields.update({"providerType": provider_type, "parentId": parent_id})
            return ComponentRepresentation.model_validate(fields)

        async def create(entry: DesiredComponent) -> None:
            component = as_component(entry)
            component_id = await self.admin_client.create_component(component, realm_name)
            if not component_id:
                component_id = await self._find_created(component, realm_name)
            created_ids[key(entry)] = component_id

        async def update(entry: DesiredComponent, remote: ComponentRepresentation) -> None:
            payload = patched_payload(as_component(entry), remote)
            payload["id"] = remote.id
            await self.admin_client.update_component(remote.id, payload, realm_name)

        async def delete(remote: ComponentRepresentation) -> None:
            # sub-components are removed with their parent
            await self.admin_client.delete_component(remote.id, realm_name)

        plan = sync.plan(
            desired,
            existing,
            key,
            context.mode,
            lambda entry, remote: needs_update(as_component(entry), remote),
            existing_key=component_key,
        )
        result.merge(await sync.apply(plan, create, update, delete))

        targets = [(k, entry, created_ids.get(k)) for k, entry in plan.to_create]
        targets += [(k, entry, remote.id) for k, entry, remote in plan.matched]
        for _key, (_, item), component_id in targets:
            if item.sub_components is None:
                continue

            await self._reconcile_level(
                [(ptype, child) for ptype, items in item.sub_components.items() for child in items],
                children.get(component_id, []),
                component_id,
                children,
                context,
                result,
            )

    async def _find_created(
        self, component: ComponentRepresentation, realm_name: str
    ) -> str:
        """
        Look up a component the server created without returning its id.

        Raises:
            ImportProcessingError: If the new component cannot be found
        """
        candidates = await self.admin_client.get_components(
            realm_name,
            parent_id=component.parent_id,
            provider_type=component.provider_type,
            name=component.name,
        )
        for candidate in candidates:
            if component_key(candidate) == component_key(component) and candidate.id:
                return candidate.id

        raise ImportProcessingError(
            f"Cannot find created component '{component.name}' "
            f"({component.provider_type}) in realm '{realm_name}'",
            entity_type=self.entity_type.value,
            entity_key=component.name,
            realm_name=realm_name,
        )

    @staticmethod
    def _own_fields(item: ComponentExportRepresentation) -> dict[str, Any]:
        fields = item.desired_fields()
        fields.pop("subComponents", None)
        fields.pop("id", None)
        return fields
