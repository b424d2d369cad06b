"""
Generic create/update/delete synchronization of one entity collection.

Every flat entity type (and every level of the hierarchical ones) is
reconciled the same way: both sides are indexed by a natural identity key,
the differences are planned, then applied as creates, updates and deletes,
in that order across the whole batch.
"""

import logging
from collections.abc import Awaitable, Callable, Hashable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from ..errors import ConfigSyncError, ImportProcessingError, InvalidImportError
from ..utils.keycloak_admin import KeycloakAdminError

logger = logging.getLogger(__name__)

D = TypeVar("D")
R = TypeVar("R")


class EntityType(Enum):
    """Entity types in the order the importer handles them."""

    REALM = "realm"
    CUSTOM_IMPORT = "custom_import"
    CLIENT_SCOPE = "client_scope"
    CLIENT = "client"
    ROLE = "role"
    ROLE_COMPOSITE = "role_composite"
    GROUP = "group"
    USER = "user"
    REQUIRED_ACTION = "required_action"
    AUTHENTICATION_FLOW = "authentication_flow"
    COMPONENT = "component"
    SCOPE_MAPPING = "scope_mapping"
    IDENTITY_PROVIDER = "identity_provider"
    ORGANIZATION = "organization"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class ManagedMode(Enum):
    """Deletion policy for remote entities missing from the import."""

    FULL = "full"
    NO_DELETE = "no-delete"


def format_key(key: Hashable) -> str:
    """Human readable form of a (possibly composite) identity key."""
    if isinstance(key, tuple):
        return "/".join(str(part) for part in key if part is not None)
    return str(key)


@dataclass
class SyncResult:
    """Keys touched by one reconciliation."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)

    def merge(self, other: "SyncResult") -> "SyncResult":
        self.created.extend(other.created)
        self.updated.extend(other.updated)
        self.deleted.extend(other.deleted)
        return self

    def summary(self) -> str:
        return (
            f"{len(self.created)} created, {len(self.updated)} updated, "
            f"{len(self.deleted)} deleted"
        )


@dataclass
class SyncPlan(Generic[D, R]):
    """Differences between desired and existing collections."""

    to_create: list[tuple[Hashable, D]] = field(default_factory=list)
    to_update: list[tuple[Hashable, D, R]] = field(default_factory=list)
    to_delete: list[tuple[Hashable, R]] = field(default_factory=list)
    unchanged: list[tuple[Hashable, D, R]] = field(default_factory=list)

    @property
    def matched(self) -> list[tuple[Hashable, D, R]]:
        """Desired entities that already exist remotely, changed or not."""
        return self.to_update + self.unchanged


class EntitySynchronizer(Generic[D, R]):
    """
    Diff and apply one entity collection of one realm.

    Args:
        entity_type: Entity type, used in log and error messages
        realm_name: Realm being imported
    """

    def __init__(self, entity_type: EntityType, realm_name: str):
        self.entity_type = entity_type
        self.realm_name = realm_name

    def index_desired(
        self, desired: Iterable[D], key: Callable[[D], Hashable]
    ) -> dict[Hashable, D]:
        """Index desired entities by key; duplicates are an input error."""
        indexed: dict[Hashable, D] = {}
        for entity in desired:
            entity_key = key(entity)
            if entity_key in indexed:
                raise InvalidImportError(
                    f"Duplicate {self.entity_type.label} '{format_key(entity_key)}' "
                    f"in import of realm '{self.realm_name}'",
                    realm_name=self.realm_name,
                )
            indexed[entity_key] = entity
        return indexed

    def index_existing(
        self, existing: Iterable[R], key: Callable[[R], Hashable]
    ) -> dict[Hashable, R]:
        """Index remote entities by key; on collision the first one listed wins."""
        indexed: dict[Hashable, R] = {}
        for entity in existing:
            entity_key = key(entity)
            if entity_key in indexed:
                logger.warning(
                    f"Ambiguous {self.entity_type.label} '{format_key(entity_key)}' "
                    f"in realm '{self.realm_name}', using the first match",
                    extra={
                        "realm_name": self.realm_name,
                        "entity_type": self.entity_type.value,
                        "entity_key": format_key(entity_key),
                    },
                )
                continue
            indexed[entity_key] = entity
        return indexed

    def plan(
        self,
        desired: Iterable[D],
        existing: Iterable[R],
        key: Callable[[D], Hashable],
        mode: ManagedMode,
        needs_update: Callable[[D, R], bool],
        existing_key: Callable[[R], Hashable] | None = None,
        deletable: Callable[[Hashable, R], bool] | None = None,
    ) -> SyncPlan[D, R]:
        """
        Compute creates, updates and deletes without touching the server.

        Args:
            desired: Entities from the import document
            existing: Entities fetched from the server
            key: Identity key of a desired entity
            mode: Managed mode of this entity type
            needs_update: Whether a matched remote entity differs
            existing_key: Identity key of a remote entity (defaults to ``key``)
            deletable: Extra filter for delete candidates (protected or
                not created by this tool)
        """
        desired_by_key = self.index_desired(desired, key)
        existing_by_key = self.index_existing(existing, existing_key or key)  # type: ignore[arg-type]

        plan: SyncPlan[D, R] = SyncPlan()
        for entity_key, entity in desired_by_key.items():
            remote = existing_by_key.get(entity_key)
            if remote is None:
                plan.to_create.append((entity_key, entity))
            elif needs_update(entity, remote):
                plan.to_update.append((entity_key, entity, remote))
            else:
                plan.unchanged.append((entity_key, entity, remote))

        if mode == ManagedMode.FULL:
            for entity_key, remote in existing_by_key.items():
                if entity_key in desired_by_key:
                    continue
                if deletable is not None and not deletable(entity_key, remote):
                    continue
                plan.to_delete.append((entity_key, remote))

        return plan

    async def apply(
        self,
        plan: SyncPlan[D, R],
        create: Callable[[D], Awaitable[object]],
        update: Callable[[D, R], Awaitable[object]],
        delete: Callable[[R], Awaitable[object]] | None = None,
    ) -> SyncResult:
        """Apply a plan: all creates, then all updates, then all deletes."""
        result = SyncResult()

        for entity_key, entity in plan.to_create:
            await self._call("create", entity_key, create(entity))
            result.created.append(format_key(entity_key))

        for entity_key, entity, remote in plan.to_update:
            await self._call("update", entity_key, update(entity, remote))
            result.updated.append(format_key(entity_key))

        if delete is not None:
            for entity_key, remote in plan.to_delete:
                await self._call("delete", entity_key, delete(remote))
                result.deleted.append(format_key(entity_key))

        if result.changed:
            logger.info(
                f"Reconciled {self.entity_type.label}s in realm '{self.realm_name}': "
                f"{result.summary()}",
                extra={
                    "realm_name": self.realm_name,
                    "entity_type": self.entity_type.value,
                },
            )
        return result

    async def reconcile(
        self,
        desired: Iterable[D],
        existing: Iterable[R],
        key: Callable[[D], Hashable],
        mode: ManagedMode,
        *,
        create: Callable[[D], Awaitable[object]],
        update: Callable[[D, R], Awaitable[object]],
        delete: Callable[[R], Awaitable[object]] | None = None,
        needs_update: Callable[[D, R], bool],
        existing_key: Callable[[R], Hashable] | None = None,
        deletable: Callable[[Hashable, R], bool] | None = None,
    ) -> SyncResult:
        """Plan and apply in one step."""
        plan = self.plan(
            desired,
            existing,
            key,
            mode,
            needs_update,
            existing_key=existing_key,
            deletable=deletable,
        )
        return await self.apply(plan, create, update, delete)

    async def _call(self, verb: str, entity_key: Hashable, call: Awaitable[object]) -> None:
        with self.remote_errors(verb, entity_key):
            await call

    @contextmanager
    def remote_errors(self, verb: str, entity_key: Hashable) -> Iterator[None]:
        """Wrap remote errors raised inside the block with entity context.

        Example:
            with sync.remote_errors("update", ("my flow", "auth-otp-form")):
                await admin_client.update_execution(...)
        """
        try:
            yield
        except ConfigSyncError:
            raise
        except KeycloakAdminError as e:
            key_text = format_key(entity_key)
            detail = e.response_body or str(e)
            logger.error(
                f"Cannot {verb} {self.entity_type.label} '{key_text}' "
                f"in realm '{self.realm_name}'",
                extra={
                    "realm_name": self.realm_name,
                    "entity_type": self.entity_type.value,
                    "entity_key": key_text,
                    "operation": verb,
                    "http_status": e.status_code,
                    "response_body": e.body_preview(),
                },
            )
            raise ImportProcessingError(
                f"Cannot {verb} {self.entity_type.label} '{key_text}' "
                f"in realm '{self.realm_name}': {detail}",
                entity_type=self.entity_type.value,
                entity_key=key_text,
                realm_name=self.realm_name,
                cause=e,
            ) from e
