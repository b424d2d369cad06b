"""
Service layer for keycloak-config-sync.

This module provides the reconcilers for every entity type of a realm
import and the service that runs them in dependency order.
"""

from .base_reconciler import BaseReconciler, ReconcileContext
from .client_reconciler import ClientReconciler
from .client_scope_reconciler import ClientScopeReconciler
from .component_reconciler import ComponentReconciler
from .custom_import_reconciler import CustomImportReconciler
from .entity_sync import EntitySynchronizer, EntityType, ManagedMode, SyncResult
from .flow_reconciler import AuthenticationFlowReconciler
from .group_reconciler import GroupReconciler
from .identity_provider_reconciler import IdentityProviderReconciler
from .organization_reconciler import OrganizationReconciler
from .realm_import_service import ImportStep, RealmImportService, build_import_plan
from .required_action_reconciler import RequiredActionReconciler
from .role_composite_reconciler import RoleCompositeReconciler
from .role_reconciler import RoleReconciler
from .scope_mapping_reconciler import ScopeMappingReconciler
from .user_reconciler import UserReconciler

__all__ = [
    "BaseReconciler",
    "ReconcileContext",
    "EntitySynchronizer",
    "EntityType",
    "ManagedMode",
    "SyncResult",
    "ClientScopeReconciler",
    "ClientReconciler",
    "RoleReconciler",
    "RoleCompositeReconciler",
    "GroupReconciler",
    "UserReconciler",
    "RequiredActionReconciler",
    "AuthenticationFlowReconciler",
    "ComponentReconciler",
    "CustomImportReconciler",
    "ScopeMappingReconciler",
    "IdentityProviderReconciler",
    "OrganizationReconciler",
    "ImportStep",
    "RealmImportService",
    "build_import_plan",
]
