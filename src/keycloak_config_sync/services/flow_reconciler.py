"""
Authentication flow reconciler.

Flows come in two tiers: top-level flows, which a realm can bind as its
browser, registration, ... flow, and non-top-level flows, which only exist
as the sub-flow of an execution. Only top-level flows are matched by alias;
their executions (and nested sub-flows) are matched by authenticator, or
by sub-flow alias, together with an occurrence counter.

Requirement, priority and authenticator configs are changed in place.
Anything structural (an execution added or removed anywhere in the tree, a
changed flow provider) can only be applied by deleting and recreating the
top-level flow, which is refused for built-in flows.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from ..constants import (
    FLOW_BINDING_FIELDS,
    FLOW_PROVIDER_BASIC,
    FLOW_PROVIDER_FORM,
    REQUIREMENT_DISABLED,
    TEMPORARY_FLOW_ALIAS,
)
from ..errors import BuiltInFlowError, InvalidImportError
from ..models.keycloak_api import (
    AuthenticationExecutionExportRepresentation,
    AuthenticationExecutionInfoRepresentation,
    AuthenticationFlowRepresentation,
    AuthenticatorConfigRepresentation,
    RealmRepresentation,
)
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntitySynchronizer, EntityType, ManagedMode, SyncResult

# (authenticator, sub-flow alias, occurrence)
ExecutionKey = tuple[str | None, str | None, int]

FLOW_NESTED_FIELDS = frozenset({"authenticationExecutions", "topLevel", "builtIn"})


@dataclass
class DesiredExecution:
    key: ExecutionKey
    execution: AuthenticationExecutionExportRepresentation
    priority: int
    sub_flow: "DesiredFlow | None" = None

    @property
    def requirement(self) -> str:
        return self.execution.requirement or REQUIREMENT_DISABLED


@dataclass
class DesiredFlow:
    """A flow from the document with its executions resolved into a tree."""

    flow: AuthenticationFlowRepresentation
    executions: list[DesiredExecution]

    @property
    def alias(self) -> str:
        return self.flow.alias or ""


@dataclass
class RemoteExecution:
    info: AuthenticationExecutionInfoRepresentation
    children: list["RemoteExecution"] = field(default_factory=list)

    @property
    def priority(self) -> int:
        if self.info.priority is not None:
            return self.info.priority
        return self.info.index or 0


def number_keys(base_keys: list[tuple[str | None, str | None]]) -> list[ExecutionKey]:
    """Append an occurrence counter so repeated authenticators stay distinct."""
    seen: Counter = Counter()
    keys: list[ExecutionKey] = []
    for base in base_keys:
        keys.append((base[0], base[1], seen[base]))
        seen[base] += 1
    return keys


def describe(key: ExecutionKey) -> str:
    authenticator, flow_alias, occurrence = key
    name = flow_alias if flow_alias is not None else str(authenticator)
    return name if occurrence == 0 else f"{name}#{occurrence}"


def build_remote_tree(
    infos: list[AuthenticationExecutionInfoRepresentation],
) -> list[RemoteExecution]:
    """
    Rebuild the execution tree from the flat, depth-first executions listing.

    Each entry's ``level`` says how deep it is; an entry belongs to the
    closest preceding sub-flow entry one level up.
    """
    root: list[RemoteExecution] = []
    stack: list[list[RemoteExecution]] = [root]
    for info in infos:
        level = info.level or 0
        del stack[level + 1 :]
        node = RemoteExecution(info)
        stack[level].append(node)
        if info.authentication_flow:
            stack.append(node.children)
    return root


def key_remote(children: list[RemoteExecution]) -> dict[ExecutionKey, RemoteExecution]:
    base_keys = [
        (None, child.info.display_name)
        if child.info.authentication_flow
        else (child.info.provider_id, None)
        for child in children
    ]
    return dict(zip(number_keys(base_keys), children, strict=True))


def same_structure(desired: DesiredFlow, remote: list[RemoteExecution]) -> bool:
    """Whether both trees have the same execution keys at every level."""
    remote_by_key = key_remote(remote)
    if {execution.key for execution in desired.executions} != set(remote_by_key):
        return False
    return all(
        same_structure(execution.sub_flow, remote_by_key[execution.key].children)
        for execution in desired.executions
        if execution.sub_flow is not None
    )


class AuthenticationFlowReconciler(BaseReconciler):
    """
    Reconciler for authentication flows and authenticator configs.

    Deleting flows missing from the document is a separate step
    (``delete_obsolete_flows``): a flow can only be deleted once no realm
    binding uses it, and bindings are applied after all flows exist.
    """

    entity_type = EntityType.AUTHENTICATION_FLOW

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        realm = realm_import.realm
        if realm.authentication_flows is None:
            return SyncResult()

        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)

        configs = {
            require_field(config.alias, "authenticator config alias", realm_name): config
            for config in realm.authenticator_config or []
        }
        flows_by_alias = sync.index_desired(
            realm.authentication_flows,
            lambda f: require_field(f.alias, "authentication flow alias", realm_name),
        )
        # validate the whole document before the first call
        desired = [
            self._build(flow, flows_by_alias, configs, flow.alias, {flow.alias}, realm_name)
            for flow in realm.authentication_flows
            if flow.top_level
        ]

        existing = await self.admin_client.get_flows(realm_name)
        plan = sync.plan(
            desired,
            existing,
            lambda d: d.alias,
            ManagedMode.NO_DELETE,
            lambda d, r: True,
            existing_key=lambda f: f.alias,
        )

        result = SyncResult()
        for alias, flow in plan.to_create:
            await self._create_flow(flow, sync, configs)
            result.created.append(alias)

        for alias, flow, remote in plan.matched:
            if await self._update_flow(flow, remote, sync, configs):
                result.updated.append(alias)

        if result.changed:
            self.logger.info(
                f"Reconciled authentication flows in realm '{realm_name}': {result.summary()}",
                realm_name=realm_name,
                entity_type=self.entity_type.value,
            )
        return result

    async def delete_obsolete_flows(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        """
        Delete custom top-level flows missing from the document.

        Runs after the realm's flow bindings were applied, so a flow the
        document stopped binding is no longer in use.
        """
        flows = realm_import.realm.authentication_flows
        if flows is None or not context.full:
            return SyncResult()

        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        wanted = {flow.alias for flow in flows if flow.top_level}

        result = SyncResult()
        for remote in await self.admin_client.get_flows(realm_name):
            if remote.built_in or remote.alias in wanted:
                continue
            with sync.remote_errors("delete", remote.alias):
                await self.admin_client.delete_flow(remote.id, realm_name)
            result.deleted.append(remote.alias)
        return result

    # =========================================================================
    # Desired tree
    # =========================================================================

    def _build(
        self,
        flow: AuthenticationFlowRepresentation,
        flows_by_alias: dict,
        configs: dict[str, AuthenticatorConfigRepresentation],
        owner: str,
        ancestors: set[str],
        realm_name: str,
    ) -> DesiredFlow:
        """Resolve a flow's executions recursively, validating references."""
        listed = flow.authentication_executions or []
        ordered = sorted(
            (
                (execution.priority if execution.priority is not None else index, execution)
                for index, execution in enumerate(listed)
            ),
            key=lambda pair: pair[0],
        )
        keys = number_keys(
            [
                (None, execution.flow_alias)
                if execution.authenticator_flow
                else (execution.authenticator, None)
                for _, execution in ordered
            ]
        )

        executions: list[DesiredExecution] = []
        for key, (priority, execution) in zip(keys, ordered, strict=True):
            if execution.authenticator_config and execution.authenticator_config not in configs:
                raise InvalidImportError(
                    f"Authenticator config '{execution.authenticator_config}' not found "
                    f"(referenced from flow '{flow.alias}')",
                    realm_name=realm_name,
                )

            sub_flow = None
            if execution.authenticator_flow:
                sub_flow = self._build_sub_flow(
                    execution, flows_by_alias, configs, owner, ancestors, realm_name
                )
            elif not execution.authenticator:
                raise InvalidImportError(
                    f"Execution without authenticator in flow '{flow.alias}' "
                    f"of realm '{realm_name}'",
                    realm_name=realm_name,
                )
            executions.append(DesiredExecution(key, execution, priority, sub_flow))

        return DesiredFlow(flow=flow, executions=executions)

    def _build_sub_flow(
        self,
        execution: AuthenticationExecutionExportRepresentation,
        flows_by_alias: dict,
        configs: dict[str, AuthenticatorConfigRepresentation],
        owner: str,
        ancestors: set[str],
        realm_name: str,
    ) -> DesiredFlow:
        alias = execution.flow_alias
        if alias in ancestors:
            raise InvalidImportError(
                f"Flow '{alias}' is its own ancestor (referenced from top-level "
                f"flow '{owner}') in realm '{realm_name}'",
                realm_name=realm_name,
            )

        sub_flow = flows_by_alias.get(alias)
        if sub_flow is None or sub_flow.top_level:
            raise InvalidImportError(
                f"Non-toplevel flow not found: '{alias}' "
                f"(referenced from top-level flow '{owner}')",
                realm_name=realm_name,
            )

        if sub_flow.provider_id == FLOW_PROVIDER_FORM and not execution.authenticator:
            raise InvalidImportError(
                f"Form flow '{alias}' needs an authenticator (referenced from "
                f"top-level flow '{owner}')",
                realm_name=realm_name,
            )

        return self._build(
            sub_flow, flows_by_alias, configs, owner, ancestors | {alias}, realm_name
        )

    # =========================================================================
    # Create, update, recreate
    # =========================================================================

    async def _create_flow(
        self,
        desired: DesiredFlow,
        sync: EntitySynchronizer,
        configs: dict[str, AuthenticatorConfigRepresentation],
    ) -> None:
        """Create a top-level flow, its sub-flows and executions, then converge them."""
        realm_name = sync.realm_name
        with sync.remote_errors("create", desired.alias):
            await self.admin_client.create_flow(self._flow_payload(desired.flow), realm_name)

        await self._add_executions(desired, sync)

        infos = await self.admin_client.get_flow_executions(desired.alias, realm_name)
        await self._converge(desired, build_remote_tree(infos), sync, configs)

    async def _add_executions(self, flow: DesiredFlow, sync: EntitySynchronizer) -> None:
        realm_name = sync.realm_name
        for execution in flow.executions:
            with sync.remote_errors("create", (flow.alias, describe(execution.key))):
                if execution.sub_flow is None:
                    await self.admin_client.add_execution(
                        flow.alias, execution.execution.authenticator, realm_name
                    )
                    continue

                sub = execution.sub_flow.flow
                await self.admin_client.add_sub_flow(
                    flow.alias,
                    {
                        "alias": sub.alias,
                        "description": sub.description or "",
                        "provider": execution.execution.authenticator or FLOW_PROVIDER_BASIC,
                        "type": sub.provider_id or FLOW_PROVIDER_BASIC,
                    },
                    realm_name,
                )
            await self._add_executions(execution.sub_flow, sync)

    async def _update_flow(
        self,
        desired: DesiredFlow,
        remote: AuthenticationFlowRepresentation,
        sync: EntitySynchronizer,
        configs: dict[str, AuthenticatorConfigRepresentation],
    ) -> bool:
        """Apply changes to an existing top-level flow; True if anything changed."""
        realm_name = sync.realm_name
        infos = await self.admin_client.get_flow_executions(desired.alias, realm_name)
        tree = build_remote_tree(infos)

        provider_changed = (
            desired.flow.provider_id is not None
            and desired.flow.provider_id != remote.provider_id
        )
        if provider_changed or not same_structure(desired, tree):
            await self._recreate_flow(desired, remote, sync, configs)
            return True

        changed = False
        if not remote.built_in and needs_update(
            desired.flow, remote, ignored=FLOW_NESTED_FIELDS
        ):
            payload = patched_payload(desired.flow, remote, ignored=FLOW_NESTED_FIELDS)
            payload["id"] = remote.id
            with sync.remote_errors("update", desired.alias):
                await self.admin_client.update_flow(remote.id, payload, realm_name)
            changed = True

        updates = await self._converge(desired, tree, sync, configs)
        return changed or updates > 0

    async def _recreate_flow(
        self,
        desired: DesiredFlow,
        remote: AuthenticationFlowRepresentation,
        sync: EntitySynchronizer,
        configs: dict[str, AuthenticatorConfigRepresentation],
    ) -> None:
        realm_name = sync.realm_name
        if remote.built_in:
            raise BuiltInFlowError(desired.alias, realm_name)

        self.logger.info(
            f"Recreating flow '{desired.alias}' in realm '{realm_name}': executions changed",
            realm_name=realm_name,
            entity_type=self.entity_type.value,
            entity_key=desired.alias,
        )

        released = await self._release_bindings(desired.alias, sync)
        with sync.remote_errors("delete", desired.alias):
            await self.admin_client.delete_flow(remote.id, realm_name)

        await self._create_flow(desired, sync, configs)

        if released:
            await self._restore_bindings(desired.alias, released, sync)

    async def _release_bindings(self, alias: str, sync: EntitySynchronizer) -> list[str]:
        """
        Point realm bindings that use ``alias`` to a temporary flow.

        Keycloak refuses to delete a flow that is bound to the realm.

        Returns:
            Names of the binding fields that were moved
        """
        realm_name = sync.realm_name
        realm = await self.admin_client.get_realm(realm_name)
        bound = [name for name in FLOW_BINDING_FIELDS if realm and getattr(realm, name) == alias]
        if not bound:
            return []

        with sync.remote_errors("update", alias):
            flows = await self.admin_client.get_flows(realm_name)
            if not any(flow.alias == TEMPORARY_FLOW_ALIAS for flow in flows):
                await self.admin_client.create_flow(
                    {
                        "alias": TEMPORARY_FLOW_ALIAS,
                        "description": "Bound while a flow is recreated",
                        "providerId": FLOW_PROVIDER_BASIC,
                        "topLevel": True,
                        "builtIn": False,
                    },
                    realm_name,
                )
            await self.admin_client.update_realm(
                realm_name, self._bindings_payload(realm_name, bound, TEMPORARY_FLOW_ALIAS)
            )
        return bound

    async def _restore_bindings(
        self, alias: str, bound: list[str], sync: EntitySynchronizer
    ) -> None:
        realm_name = sync.realm_name
        with sync.remote_errors("update", alias):
            await self.admin_client.update_realm(
                realm_name, self._bindings_payload(realm_name, bound, alias)
            )
            for flow in await self.admin_client.get_flows(realm_name):
                if flow.alias == TEMPORARY_FLOW_ALIAS:
                    await self.admin_client.delete_flow(flow.id, realm_name)

    @staticmethod
    def _bindings_payload(realm_name: str, bound: list[str], alias: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"realm": realm_name}
        for name in bound:
            payload[RealmRepresentation.model_fields[name].alias] = alias
        return payload

    @staticmethod
    def _flow_payload(flow: AuthenticationFlowRepresentation) -> dict[str, Any]:
        return {
            "alias": flow.alias,
            "description": flow.description or "",
            "providerId": flow.provider_id or FLOW_PROVIDER_BASIC,
            "topLevel": True,
            "builtIn": False,
        }

    # =========================================================================
    # In-place convergence
    # =========================================================================

    async def _converge(
        self,
        desired: DesiredFlow,
        remote: list[RemoteExecution],
        sync: EntitySynchronizer,
        configs: dict[str, AuthenticatorConfigRepresentation],
    ) -> int:
        """
        Align requirement, priority and configs of structurally equal trees.

        Every execution whose priority differs is updated, so a reordering
        touches all moved executions.

        Returns:
            Number of update calls issued
        """
        realm_name = sync.realm_name
        remote_by_key = key_remote(remote)
        updates = 0

        for execution in desired.executions:
            current = remote_by_key[execution.key]
            entity_key = (desired.alias, describe(execution.key))

            if (
                execution.requirement != current.info.requirement
                or execution.priority != current.priority
            ):
                changed = current.info.model_copy(
                    update={
                        "requirement": execution.requirement,
                        "priority": execution.priority,
                    }
                )
                with sync.remote_errors("update", entity_key):
                    await self.admin_client.update_execution(
                        desired.alias, changed, realm_name
                    )
                updates += 1

            if execution.execution.authenticator_config:
                config = configs[execution.execution.authenticator_config]
                with sync.remote_errors("update", (*entity_key, config.alias)):
                    updates += await self._sync_config(current.info, config, realm_name)

            if execution.sub_flow is not None:
                updates += await self._converge(
                    execution.sub_flow, current.children, sync, configs
                )

        return updates

    async def _sync_config(
        self,
        info: AuthenticationExecutionInfoRepresentation,
        config: AuthenticatorConfigRepresentation,
        realm_name: str,
    ) -> int:
        """Create or update the authenticator config of one execution."""
        remote = None
        if info.authentication_config:
            remote = await self.admin_client.get_authenticator_config(
                info.authentication_config, realm_name
            )

        if remote is None:
            await self.admin_client.create_authenticator_config(
                info.id, config.model_copy(update={"id": None}), realm_name
            )
            return 1

        if needs_update(config, remote):
            payload = patched_payload(config, remote)
            payload["id"] = remote.id
            await self.admin_client.update_authenticator_config(remote.id, payload, realm_name)
            return 1

        return 0
