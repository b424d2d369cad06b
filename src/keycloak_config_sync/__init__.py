"""
Keycloak Config Sync - declarative realm configuration for Keycloak.

This package converges a running Keycloak realm towards the state described
in one or more import documents:
- Create/update/delete reconciliation per entity type
- Managed deletion policy (full / no-delete)
- Ordered handling of flows, components, groups and role composites
- Checksum based idempotency stored on the realm itself
"""

__version__ = "0.1.0"
