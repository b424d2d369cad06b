"""
Pydantic models for Keycloak Admin API representations.

The same models describe both sides of a reconciliation: the desired
entities parsed from an import document and the remote entities returned
by the Admin API. Field names are snake_case with the API's camelCase as
alias; unknown fields are preserved so that anything Keycloak accepts can be
imported without a model change.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class KeycloakModel(BaseModel):
    """Base class for all Admin API representations."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_payload(self) -> dict[str, Any]:
        """Serialize for a request body: camelCase keys, no null values."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def desired_fields(self) -> dict[str, Any]:
        """Fields explicitly present in the source document."""
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


# =============================================================================
# Roles
# =============================================================================


class RoleCompositesRepresentation(KeycloakModel):
    realm: list[str] | None = None
    client: dict[str, list[str]] | None = None


class RoleRepresentation(KeycloakModel):
    id: str | None = None
    name: str | None = None
    description: str | None = None
    composite: bool | None = None
    composites: RoleCompositesRepresentation | None = None
    client_role: bool | None = Field(None, alias="clientRole")
    container_id: str | None = Field(None, alias="containerId")
    attributes: dict[str, list[str]] | None = None


class RolesRepresentation(KeycloakModel):
    realm: list[RoleRepresentation] | None = None
    client: dict[str, list[RoleRepresentation]] | None = None


# =============================================================================
# Clients and client scopes
# =============================================================================


class ProtocolMapperRepresentation(KeycloakModel):
    id: str | None = None
    name: str | None = None
    protocol: str | None = None
    protocol_mapper: str | None = Field(None, alias="protocolMapper")
    config: dict[str, str] | None = None


class ClientRepresentation(KeycloakModel):
    id: str | None = None
    client_id: str | None = Field(None, alias="clientId")
    name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    protocol: str | None = None
    public_client: bool | None = Field(None, alias="publicClient")
    bearer_only: bool | None = Field(None, alias="bearerOnly")
    redirect_uris: list[str] | None = Field(None, alias="redirectUris")
    web_origins: list[str] | None = Field(None, alias="webOrigins")
    attributes: dict[str, str] | None = None
    protocol_mappers: list[ProtocolMapperRepresentation] | None = Field(
        None, alias="protocolMappers"
    )
    default_client_scopes: list[str] | None = Field(None, alias="defaultClientScopes")
    optional_client_scopes: list[str] | None = Field(
        None, alias="optionalClientScopes"
    )


class ClientScopeRepresentation(KeycloakModel):
    id: str | None = None
    name: str | None = None
    description: str | None = None
    protocol: str | None = None
    attributes: dict[str, str] | None = None
    protocol_mappers: list[ProtocolMapperRepresentation] | None = Field(
        None, alias="protocolMappers"
    )


class ScopeMappingRepresentation(KeycloakModel):
    """Roles granted to a client or client scope's tokens."""

    client: str | None = None
    client_scope: str | None = Field(None, alias="clientScope")
    roles: list[str] | None = None


# =============================================================================
# Groups and users
# =============================================================================


class GroupRepresentation(KeycloakModel):
    id: str | None = None
    name: str | None = None
    path: str | None = None
    parent_id: str | None = Field(None, alias="parentId")
    sub_group_count: int | None = Field(None, alias="subGroupCount")
    attributes: dict[str, list[str]] | None = None
    realm_roles: list[str] | None = Field(None, alias="realmRoles")
    client_roles: dict[str, list[str]] | None = Field(None, alias="clientRoles")
    sub_groups: list["GroupRepresentation"] | None = Field(None, alias="subGroups")


class CredentialRepresentation(KeycloakModel):
    type: str | None = None
    value: str | None = None
    temporary: bool | None = None


class UserRepresentation(KeycloakModel):
    id: str | None = None
    username: str | None = None
    email: str | None = None
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    enabled: bool | None = None
    email_verified: bool | None = Field(None, alias="emailVerified")
    attributes: dict[str, list[str]] | None = None
    credentials: list[CredentialRepresentation] | None = None
    required_actions: list[str] | None = Field(None, alias="requiredActions")
    realm_roles: list[str] | None = Field(None, alias="realmRoles")
    client_roles: dict[str, list[str]] | None = Field(None, alias="clientRoles")
    groups: list[str] | None = None


# =============================================================================
# Authentication
# =============================================================================


class AuthenticationExecutionExportRepresentation(KeycloakModel):
    """One execution as written in an import document."""

    authenticator: str | None = None
    authenticator_config: str | None = Field(None, alias="authenticatorConfig")
    authenticator_flow: bool | None = Field(None, alias="authenticatorFlow")
    flow_alias: str | None = Field(None, alias="flowAlias")
    requirement: str | None = None
    priority: int | None = None
    user_setup_allowed: bool | None = Field(None, alias="userSetupAllowed")


class AuthenticationFlowRepresentation(KeycloakModel):
    id: str | None = None
    alias: str | None = None
    description: str | None = None
    provider_id: str | None = Field(None, alias="providerId")
    top_level: bool | None = Field(None, alias="topLevel")
    built_in: bool | None = Field(None, alias="builtIn")
    authentication_executions: list[AuthenticationExecutionExportRepresentation] | None = (
        Field(None, alias="authenticationExecutions")
    )


class AuthenticationExecutionInfoRepresentation(KeycloakModel):
    """One execution as listed by the flow executions endpoint."""

    id: str | None = None
    requirement: str | None = None
    display_name: str | None = Field(None, alias="displayName")
    alias: str | None = None
    description: str | None = None
    requirement_choices: list[str] | None = Field(None, alias="requirementChoices")
    configurable: bool | None = None
    authentication_flow: bool | None = Field(None, alias="authenticationFlow")
    provider_id: str | None = Field(None, alias="providerId")
    authentication_config: str | None = Field(None, alias="authenticationConfig")
    flow_id: str | None = Field(None, alias="flowId")
    level: int | None = None
    index: int | None = None
    priority: int | None = None


class AuthenticatorConfigRepresentation(KeycloakModel):
    id: str | None = None
    alias: str | None = None
    config: dict[str, str] | None = None


class RequiredActionProviderRepresentation(KeycloakModel):
    alias: str | None = None
    name: str | None = None
    provider_id: str | None = Field(None, alias="providerId")
    enabled: bool | None = None
    default_action: bool | None = Field(None, alias="defaultAction")
    priority: int | None = None
    config: dict[str, str] | None = None


# =============================================================================
# Components
# =============================================================================


class ComponentRepresentation(KeycloakModel):
    id: str | None = None
    name: str | None = None
    provider_id: str | None = Field(None, alias="providerId")
    provider_type: str | None = Field(None, alias="providerType")
    parent_id: str | None = Field(None, alias="parentId")
    sub_type: str | None = Field(None, alias="subType")
    config: dict[str, list[str]] | None = None


class ComponentExportRepresentation(KeycloakModel):
    """Component inside an import document or a partial export.

    Children are grouped by provider type in ``subComponents``.
    """

    id: str | None = None
    name: str | None = None
    provider_id: str | None = Field(None, alias="providerId")
    sub_type: str | None = Field(None, alias="subType")
    config: dict[str, list[str]] | None = None
    sub_components: dict[str, list["ComponentExportRepresentation"]] | None = Field(
        None, alias="subComponents"
    )


# =============================================================================
# Identity providers and organizations
# =============================================================================


class IdentityProviderRepresentation(KeycloakModel):
    alias: str | None = None
    internal_id: str | None = Field(None, alias="internalId")
    provider_id: str | None = Field(None, alias="providerId")
    display_name: str | None = Field(None, alias="displayName")
    enabled: bool | None = None
    first_broker_login_flow_alias: str | None = Field(
        None, alias="firstBrokerLoginFlowAlias"
    )
    post_broker_login_flow_alias: str | None = Field(
        None, alias="postBrokerLoginFlowAlias"
    )
    config: dict[str, str] | None = None


class IdentityProviderMapperRepresentation(KeycloakModel):
    id: str | None = None
    name: str | None = None
    identity_provider_alias: str | None = Field(None, alias="identityProviderAlias")
    identity_provider_mapper: str | None = Field(None, alias="identityProviderMapper")
    config: dict[str, str] | None = None


class OrganizationDomainRepresentation(KeycloakModel):
    name: str | None = None
    verified: bool | None = None


class MemberRepresentation(KeycloakModel):
    id: str | None = None
    username: str | None = None


class OrganizationRepresentation(KeycloakModel):
    id: str | None = None
    alias: str | None = None
    name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    redirect_url: str | None = Field(None, alias="redirectUrl")
    attributes: dict[str, list[str]] | None = None
    domains: list[OrganizationDomainRepresentation] | None = None
    identity_providers: list[IdentityProviderRepresentation] | None = Field(
        None, alias="identityProviders"
    )
    members: list[MemberRepresentation] | None = None


# =============================================================================
# Realm
# =============================================================================


class CustomImportRepresentation(KeycloakModel):
    """Options of an import that act outside the realm itself."""

    remove_impersonation: bool | None = Field(None, alias="removeImpersonation")


class RealmRepresentation(KeycloakModel):
    """A realm: scalar settings plus the entity collections of a full import."""

    id: str | None = None
    realm: str | None = None
    enabled: bool | None = None
    display_name: str | None = Field(None, alias="displayName")
    attributes: dict[str, str] | None = None

    # Flow bindings
    browser_flow: str | None = Field(None, alias="browserFlow")
    registration_flow: str | None = Field(None, alias="registrationFlow")
    direct_grant_flow: str | None = Field(None, alias="directGrantFlow")
    reset_credentials_flow: str | None = Field(None, alias="resetCredentialsFlow")
    client_authentication_flow: str | None = Field(
        None, alias="clientAuthenticationFlow"
    )
    docker_authentication_flow: str | None = Field(
        None, alias="dockerAuthenticationFlow"
    )
    first_broker_login_flow: str | None = Field(None, alias="firstBrokerLoginFlow")

    # Collections
    clients: list[ClientRepresentation] | None = None
    client_scopes: list[ClientScopeRepresentation] | None = Field(
        None, alias="clientScopes"
    )
    roles: RolesRepresentation | None = None
    groups: list[GroupRepresentation] | None = None
    default_groups: list[str] | None = Field(None, alias="defaultGroups")
    users: list[UserRepresentation] | None = None
    authentication_flows: list[AuthenticationFlowRepresentation] | None = Field(
        None, alias="authenticationFlows"
    )
    authenticator_config: list[AuthenticatorConfigRepresentation] | None = Field(
        None, alias="authenticatorConfig"
    )
    required_actions: list[RequiredActionProviderRepresentation] | None = Field(
        None, alias="requiredActions"
    )
    components: dict[str, list[ComponentExportRepresentation]] | None = None
    identity_providers: list[IdentityProviderRepresentation] | None = Field(
        None, alias="identityProviders"
    )
    identity_provider_mappers: list[IdentityProviderMapperRepresentation] | None = (
        Field(None, alias="identityProviderMappers")
    )
    scope_mappings: list[ScopeMappingRepresentation] | None = Field(
        None, alias="scopeMappings"
    )
    client_scope_mappings: dict[str, list[ScopeMappingRepresentation]] | None = (
        Field(None, alias="clientScopeMappings")
    )
    organizations: list[OrganizationRepresentation] | None = None

    # Import options, never sent to the server
    custom_import: CustomImportRepresentation | None = Field(None, alias="customImport")


# Realm fields reconciled by dedicated reconcilers, never sent with the
# realm's scalar update
REALM_COLLECTION_FIELDS = frozenset(
    {
        "clients",
        "clientScopes",
        "roles",
        "groups",
        "defaultGroups",
        "users",
        "authenticationFlows",
        "authenticatorConfig",
        "requiredActions",
        "components",
        "identityProviders",
        "identityProviderMappers",
        "scopeMappings",
        "clientScopeMappings",
        "organizations",
        "customImport",
        "defaultRole",
        "defaultDefaultClientScopes",
        "defaultOptionalClientScopes",
    }
)
