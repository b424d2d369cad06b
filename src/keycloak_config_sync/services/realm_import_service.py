"""
Import orchestration for one or many realms.

The importer runs the entity-type reconcilers of a realm strictly in
dependency order (scopes before clients, roles before composites, flows
before the realm's flow bindings, ...), then applies the realm's own scalar
settings. A checksum stored on the realm skips documents that were already
imported unchanged.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from ..constants import (
    CHECKSUM_ATTRIBUTE_PREFIX,
    FLOW_BINDING_FIELDS,
    STATE_ATTRIBUTE_PREFIX,
)
from ..errors import InvalidImportError
from ..models.keycloak_api import REALM_COLLECTION_FIELDS, RealmRepresentation
from ..models.realm_import import FailedImport, RealmImport
from ..observability.logging import SyncLogger
from ..settings import Settings
from ..utils.keycloak_admin import KeycloakAdminClient
from ..utils.patching import is_subset
from .base_reconciler import BaseReconciler, ReconcileContext
from .checksum_service import ChecksumService, RealmAttributeStore
from .client_reconciler import ClientReconciler
from .client_scope_reconciler import ClientScopeReconciler
from .component_reconciler import ComponentReconciler
from .custom_import_reconciler import CustomImportReconciler
from .entity_sync import EntityType, ManagedMode, SyncResult
from .flow_reconciler import AuthenticationFlowReconciler
from .group_reconciler import GroupReconciler
from .identity_provider_reconciler import IdentityProviderReconciler
from .organization_reconciler import OrganizationReconciler
from .required_action_reconciler import RequiredActionReconciler
from .role_composite_reconciler import RoleCompositeReconciler
from .role_reconciler import RoleReconciler
from .scope_mapping_reconciler import ScopeMappingReconciler
from .state_service import StateService
from .user_reconciler import UserReconciler

# Reconcilers in the order they run
RECONCILERS: dict[EntityType, type[BaseReconciler]] = {
    EntityType.CUSTOM_IMPORT: CustomImportReconciler,
    EntityType.CLIENT_SCOPE: ClientScopeReconciler,
    EntityType.CLIENT: ClientReconciler,
    EntityType.ROLE: RoleReconciler,
    EntityType.ROLE_COMPOSITE: RoleCompositeReconciler,
    EntityType.GROUP: GroupReconciler,
    EntityType.USER: UserReconciler,
    EntityType.REQUIRED_ACTION: RequiredActionReconciler,
    EntityType.AUTHENTICATION_FLOW: AuthenticationFlowReconciler,
    EntityType.COMPONENT: ComponentReconciler,
    EntityType.SCOPE_MAPPING: ScopeMappingReconciler,
    EntityType.IDENTITY_PROVIDER: IdentityProviderReconciler,
    EntityType.ORGANIZATION: OrganizationReconciler,
}

# Attributes written by this tool, preserved when a document sets attributes
OWN_ATTRIBUTE_PREFIXES = (CHECKSUM_ATTRIBUTE_PREFIX, STATE_ATTRIBUTE_PREFIX)


@dataclass(frozen=True)
class ImportStep:
    """One entity type of the import plan."""

    entity_type: EntityType
    managed_mode: ManagedMode
    enabled: bool = True


def build_import_plan(settings: Settings) -> list[ImportStep]:
    """
    Build the ordered import plan from settings.

    Raises:
        ConfigurationError: If a managed mode setting is not valid
    """
    return [
        ImportStep(
            entity_type=entity_type,
            managed_mode=settings.managed_mode_for(entity_type),
            enabled=not (
                entity_type == EntityType.ORGANIZATION and settings.skip_organizations
            ),
        )
        for entity_type in RECONCILERS
    ]


@dataclass
class ImportOutcome:
    """Result of importing one document."""

    realm_name: str
    source: str
    skipped: bool = False
    results: dict[EntityType, SyncResult] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class RealmImportService:
    """
    Imports realm documents into a Keycloak server.

    Args:
        admin_client: Admin API client shared by every step
        settings: Runtime settings (managed modes, force, cache key, state)
    """

    def __init__(self, admin_client: KeycloakAdminClient, settings: Settings):
        self.admin_client = admin_client
        self.settings = settings
        self.plan = build_import_plan(settings)
        self.logger = SyncLogger(self.__class__.__name__)
        # the flow reconciler also runs the post-binding cleanup
        self.flow_reconciler = AuthenticationFlowReconciler(admin_client)
        self.reconcilers: dict[EntityType, BaseReconciler] = {
            entity_type: reconciler_class(admin_client)
            for entity_type, reconciler_class in RECONCILERS.items()
            if entity_type != EntityType.AUTHENTICATION_FLOW
        }
        self.reconcilers[EntityType.AUTHENTICATION_FLOW] = self.flow_reconciler

    async def import_all(
        self, imports: list[RealmImport | FailedImport]
    ) -> list[ImportOutcome]:
        """
        Import documents one after another.

        An invalid document, including one that could not be loaded, fails
        only its own realm; any other error aborts the batch.
        """
        outcomes: list[ImportOutcome] = []
        for realm_import in imports:
            if isinstance(realm_import, FailedImport):
                self.logger.warning(
                    f"Skipping import '{realm_import.source}' that could not be loaded",
                    realm_name=realm_import.realm_name,
                    source=realm_import.source,
                )
                outcomes.append(
                    ImportOutcome(
                        realm_name=realm_import.realm_name,
                        source=realm_import.source,
                        error=realm_import.error,
                    )
                )
                continue

            try:
                outcomes.append(await self.import_realm(realm_import))
            except InvalidImportError as e:
                self.logger.warning(
                    f"Invalid import '{realm_import.source}', continuing with the next one: {e.message}",
                    realm_name=realm_import.realm_name,
                    source=realm_import.source,
                )
                outcomes.append(
                    ImportOutcome(
                        realm_name=realm_import.realm_name,
                        source=realm_import.source,
                        error=e,
                    )
                )
        return outcomes

    async def import_realm(self, realm_import: RealmImport) -> ImportOutcome:
        """
        Converge one realm towards an import document.

        Raises:
            InvalidImportError: If the document is invalid for this realm
            ImportProcessingError: If a remote call was rejected
        """
        realm_name = realm_import.realm_name
        if not realm_name:
            raise InvalidImportError(
                f"Import '{realm_import.source}' does not name a realm"
            )

        start_time = time.time()
        self.logger.log_import_start(realm_name, realm_import.source)

        try:
            outcome = await self._import(realm_import)
        except Exception as e:
            self.logger.log_import_error(
                realm_name, realm_import.source, e, time.time() - start_time
            )
            raise

        if outcome.skipped:
            self.logger.log_import_skipped(realm_name, realm_import.source)
        else:
            self.logger.log_import_success(
                realm_name, realm_import.source, time.time() - start_time
            )
        return outcome

    async def _import(self, realm_import: RealmImport) -> ImportOutcome:
        realm_name = realm_import.realm_name
        outcome = ImportOutcome(realm_name=realm_name, source=realm_import.source)

        await self._ensure_realm(realm_import)

        store = RealmAttributeStore(self.admin_client, realm_name)
        await store.load()
        cache_key = self.settings.import_cache_key or realm_import.source
        checksum = ChecksumService(store, cache_key)
        if not self.settings.import_force and not checksum.has_changed(realm_import.checksum):
            outcome.skipped = True
            return outcome

        state = StateService(store, cache_key, enabled=self.settings.state_enabled)
        managed_keys = state.load_managed_keys()
        recorded: dict[str, list[str]] = {}

        for step in self.plan:
            if not step.enabled:
                self.logger.debug(
                    f"Step {step.entity_type.label} disabled for realm '{realm_name}'",
                    realm_name=realm_name,
                    entity_type=step.entity_type.value,
                )
                continue

            context = ReconcileContext(
                realm_name=realm_name,
                mode=step.managed_mode,
                managed_keys=managed_keys,
                recorded_keys=recorded,
            )
            reconciler = self.reconcilers[step.entity_type]
            outcome.results[step.entity_type] = await reconciler.reconcile(
                realm_import, context
            )

        outcome.results[EntityType.REALM] = await self._update_realm(realm_import)

        flow_step = next(s for s in self.plan if s.entity_type == EntityType.AUTHENTICATION_FLOW)
        obsolete = await self.flow_reconciler.delete_obsolete_flows(
            realm_import,
            ReconcileContext(realm_name=realm_name, mode=flow_step.managed_mode),
        )
        outcome.results[EntityType.AUTHENTICATION_FLOW].merge(obsolete)

        checksum.record(realm_import.checksum)
        state.save(recorded)
        await store.flush()
        return outcome

    # =========================================================================
    # Realm scalars
    # =========================================================================

    async def _ensure_realm(self, realm_import: RealmImport) -> None:
        """Create the realm from its scalar settings if it does not exist."""
        realm_name = realm_import.realm_name
        if await self.admin_client.get_realm(realm_name) is not None:
            return

        payload = self._scalar_fields(realm_import.realm)
        # flows are not there yet
        for name in FLOW_BINDING_FIELDS:
            payload.pop(RealmRepresentation.model_fields[name].alias, None)

        self.logger.info(
            f"Realm '{realm_name}' does not exist, creating it",
            realm_name=realm_name,
            entity_type=EntityType.REALM.value,
        )
        await self.admin_client.create_realm(payload)

    async def _update_realm(self, realm_import: RealmImport) -> SyncResult:
        """
        Apply the realm's scalar settings and flow bindings.

        Raises:
            InvalidImportError: If a binding names a flow that does not exist
        """
        realm_name = realm_import.realm_name
        await self._validate_bindings(realm_import)

        desired = self._scalar_fields(realm_import.realm)
        remote = await self.admin_client.get_realm(realm_name)
        remote_data = remote.model_dump(by_alias=True, exclude_none=True) if remote else {}

        if "attributes" in desired:
            own = {
                k: v
                for k, v in remote_data.get("attributes", {}).items()
                if k.startswith(OWN_ATTRIBUTE_PREFIXES)
            }
            desired["attributes"] = {**own, **desired["attributes"]}

        result = SyncResult()
        if is_subset(desired, remote_data):
            return result

        await self.admin_client.update_realm(realm_name, desired)
        result.updated.append(realm_name)
        return result

    async def _validate_bindings(self, realm_import: RealmImport) -> None:
        realm = realm_import.realm
        bindings = {
            name: getattr(realm, name)
            for name in FLOW_BINDING_FIELDS
            if getattr(realm, name) is not None
        }
        if not bindings:
            return

        known = {flow.alias for flow in realm.authentication_flows or [] if flow.top_level}
        known |= {
            flow.alias for flow in await self.admin_client.get_flows(realm_import.realm_name)
        }
        for name, alias in bindings.items():
            if alias not in known:
                raise InvalidImportError(
                    f"Cannot bind {RealmRepresentation.model_fields[name].alias} "
                    f"to unknown flow '{alias}' in realm '{realm_import.realm_name}'",
                    realm_name=realm_import.realm_name,
                )

    @staticmethod
    def _scalar_fields(realm: RealmRepresentation) -> dict[str, Any]:
        fields = realm.desired_fields()
        for name in REALM_COLLECTION_FIELDS:
            fields.pop(name, None)
        fields.pop("id", None)
        return fields
