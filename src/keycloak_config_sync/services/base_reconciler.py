"""
Base reconciler class providing common patterns for entity reconciliation.

This module defines the BaseReconciler class shared by every entity-type
reconciler, and the ReconcileContext the importer hands to each of them:
realm name, managed mode and the remote-state view for that step.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import InvalidImportError
from ..models.realm_import import RealmImport
from ..observability.logging import SyncLogger
from ..utils.keycloak_admin import KeycloakAdminClient
from .entity_sync import EntitySynchronizer, EntityType, ManagedMode, SyncResult


def require_field(value: str | None, description: str, realm_name: str) -> str:
    """Return a mandatory identity field, failing the import when it is absent."""
    if not value:
        raise InvalidImportError(
            f"Missing {description} in import of realm '{realm_name}'",
            realm_name=realm_name,
        )
    return value


@dataclass
class ReconcileContext:
    """
    Per-realm, per-step information passed to a reconciler.

    Attributes:
        realm_name: Realm being imported
        mode: Managed mode configured for the step's entity type
        managed_keys: Keys recorded by previous runs per state scope, or None
            when remote state tracking is disabled
        recorded_keys: Keys present in this import per state scope, written
            back by the importer after a successful run
    """

    realm_name: str
    mode: ManagedMode
    managed_keys: dict[str, set[str]] | None = None
    recorded_keys: dict[str, list[str]] = field(default_factory=dict)

    @property
    def full(self) -> bool:
        return self.mode == ManagedMode.FULL

    def record(self, scope: str, keys: Iterable[str]) -> None:
        """Remember the keys this import manages for a state scope."""
        self.recorded_keys[scope] = sorted(set(keys))

    def deletable(
        self, scope: str, protected: Callable[[Hashable], bool] | None = None
    ) -> Callable[[Hashable, Any], bool]:
        """
        Build the delete filter for a state scope.

        With remote state enabled only keys recorded by a previous run are
        deleted; protected keys are never deleted.
        """
        previous = None if self.managed_keys is None else self.managed_keys.get(scope, set())

        def _deletable(key: Hashable, _remote: Any) -> bool:
            if protected is not None and protected(key):
                return False
            if previous is not None:
                return str(key) in previous
            return True

        return _deletable


class BaseReconciler(ABC):
    """
    Base class for all entity-type reconcilers.

    Subclasses set ``entity_type`` and implement ``reconcile``; they get a
    structured logger and a factory for EntitySynchronizers bound to the
    realm being imported.
    """

    entity_type: EntityType

    def __init__(self, admin_client: KeycloakAdminClient):
        """
        Initialize base reconciler.

        Args:
            admin_client: Admin API client shared by the whole run
        """
        self.admin_client = admin_client
        self.logger = SyncLogger(self.__class__.__name__)

    def synchronizer(self, realm_name: str) -> EntitySynchronizer:
        return EntitySynchronizer(self.entity_type, realm_name)

    @abstractmethod
    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        """
        Converge the remote realm towards the import for one entity type.

        Implementations skip entirely when the import does not contain
        their collection.
        """
        raise NotImplementedError
