"""
Constants used throughout keycloak-config-sync.

This module defines constant values used by the reconcilers including:
- Realm attribute keys for checksum and remote state
- Realm flow binding fields
- Entities Keycloak creates for every realm and that must never be deleted
"""

# Realm attribute keys
CHECKSUM_ATTRIBUTE_PREFIX = "keycloak-config-sync.import-checksum"
STATE_ATTRIBUTE_PREFIX = "keycloak-config-sync.state"
STATE_CHUNK_SIZE = 250

# Realm-level authentication flow bindings, applied after flows exist
FLOW_BINDING_FIELDS = (
    "browser_flow",
    "registration_flow",
    "direct_grant_flow",
    "reset_credentials_flow",
    "client_authentication_flow",
    "docker_authentication_flow",
    "first_broker_login_flow",
)

# Execution requirement of a freshly added execution
REQUIREMENT_DISABLED = "DISABLED"

# Flow provider ids
FLOW_PROVIDER_BASIC = "basic-flow"
FLOW_PROVIDER_FORM = "form-flow"

# Stands in for a realm flow binding while the bound flow is recreated
TEMPORARY_FLOW_ALIAS = "keycloak-config-sync-temporary-flow"

# Entities created by Keycloak for every realm
DEFAULT_REALM_ROLES = frozenset({"offline_access", "uma_authorization"})
DEFAULT_ROLES_PREFIX = "default-roles-"
DEFAULT_CLIENTS = frozenset(
    {
        "account",
        "account-console",
        "admin-cli",
        "broker",
        "realm-management",
        "security-admin-console",
    }
)
DEFAULT_CLIENT_SCOPES = frozenset(
    {
        "acr",
        "address",
        "basic",
        "email",
        "microprofile-jwt",
        "offline_access",
        "organization",
        "phone",
        "profile",
        "role_list",
        "roles",
        "saml_organization",
        "service_account",
        "web-origins",
    }
)

# Server masks secret component/IdP config values with this placeholder
SECRET_MASK = "**********"
# Every realm's management client lives in the master realm as "<realm>-realm"
MASTER_REALM = "master"
MANAGEMENT_CLIENT_SUFFIX = "-realm"
IMPERSONATION_ROLE = "impersonation"
