"""
Identity provider reconciler.

Identity providers are matched by alias. Their mappers are listed flat in
the realm document (``identityProviderMappers``) and are reconciled per
identity provider, matched by ``(identityProviderAlias, name)``.
"""

from collections import defaultdict

from ..errors import InvalidImportError
from ..models.keycloak_api import (
    IdentityProviderMapperRepresentation,
    IdentityProviderRepresentation,
)
from ..models.realm_import import RealmImport
from ..utils.patching import needs_update, patched_payload
from .base_reconciler import BaseReconciler, ReconcileContext, require_field
from .entity_sync import EntityType, SyncResult

STATE_SCOPE = "identity-provider"


class IdentityProviderReconciler(BaseReconciler):
    """Reconciler for identity providers and their mappers."""

    entity_type = EntityType.IDENTITY_PROVIDER

    async def reconcile(
        self, realm_import: RealmImport, context: ReconcileContext
    ) -> SyncResult:
        realm = realm_import.realm
        result = SyncResult()

        if realm.identity_providers is not None:
            result.merge(await self._reconcile_providers(realm.identity_providers, context))

        if realm.identity_provider_mappers is not None:
            remote_aliases = {
                idp.alias
                for idp in await self.admin_client.get_identity_providers(context.realm_name)
                if idp.alias
            }
            result.merge(
                await self._reconcile_mappers(
                    realm.identity_provider_mappers,
                    realm.identity_providers or [],
                    remote_aliases,
                    context,
                )
            )

        return result

    async def _reconcile_providers(
        self, desired: list[IdentityProviderRepresentation], context: ReconcileContext
    ) -> SyncResult:
        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_identity_providers(realm_name)

        def key(idp: IdentityProviderRepresentation) -> str:
            return require_field(idp.alias, "identity provider alias", realm_name)

        async def create(idp: IdentityProviderRepresentation) -> None:
            await self.admin_client.create_identity_provider(idp, realm_name)

        async def update(
            idp: IdentityProviderRepresentation, remote: IdentityProviderRepresentation
        ) -> None:
            payload = patched_payload(idp, remote)
            payload["internalId"] = remote.internal_id
            await self.admin_client.update_identity_provider(remote.alias, payload, realm_name)

        async def delete(remote: IdentityProviderRepresentation) -> None:
            await self.admin_client.delete_identity_provider(remote.alias, realm_name)

        result = await sync.reconcile(
            desired,
            existing,
            key,
            context.mode,
            create=create,
            update=update,
            delete=delete,
            needs_update=needs_update,
            existing_key=lambda idp: idp.alias,
            deletable=context.deletable(STATE_SCOPE),
        )
        context.record(STATE_SCOPE, (key(idp) for idp in desired))
        return result

    async def _reconcile_mappers(
        self,
        desired: list[IdentityProviderMapperRepresentation],
        providers: list[IdentityProviderRepresentation],
        remote_aliases: set[str],
        context: ReconcileContext,
    ) -> SyncResult:
        """
        Reconcile mappers of every identity provider named in the document.

        Mappers of providers neither listed in ``identityProviders`` nor
        referenced by a mapper are left alone.
        """
        realm_name = context.realm_name
        by_alias: dict[str, list[IdentityProviderMapperRepresentation]] = defaultdict(list)
        for mapper in desired:
            alias = require_field(
                mapper.identity_provider_alias,
                f"identityProviderAlias of mapper '{mapper.name}'",
                realm_name,
            )
            by_alias[alias].append(mapper)

        for idp in providers:
            if idp.alias:
                by_alias.setdefault(idp.alias, [])

        missing = sorted(alias for alias in by_alias if alias not in remote_aliases)
        if missing:
            raise InvalidImportError(
                f"Cannot find identity provider '{missing[0]}' within realm '{realm_name}'",
                realm_name=realm_name,
            )

        result = SyncResult()
        for alias, mappers in by_alias.items():
            result.merge(await self._reconcile_provider_mappers(alias, mappers, context))
        return result

    async def _reconcile_provider_mappers(
        self,
        alias: str,
        desired: list[IdentityProviderMapperRepresentation],
        context: ReconcileContext,
    ) -> SyncResult:
        realm_name = context.realm_name
        sync = self.synchronizer(realm_name)
        existing = await self.admin_client.get_identity_provider_mappers(alias, realm_name)

        async def create(mapper: IdentityProviderMapperRepresentation) -> None:
            await self.admin_client.create_identity_provider_mapper(alias, mapper, realm_name)

        async def update(
            mapper: IdentityProviderMapperRepresentation,
            remote: IdentityProviderMapperRepresentation,
        ) -> None:
            payload = patched_payload(mapper, remote)
            payload["id"] = remote.id
            await self.admin_client.update_identity_provider_mapper(
                alias, remote.id, payload, realm_name
            )

        async def delete(remote: IdentityProviderMapperRepresentation) -> None:
            await self.admin_client.delete_identity_provider_mapper(
                alias, remote.id, realm_name
            )

        return await sync.reconcile(
            desired,
            existing,
            lambda m: (alias, require_field(m.name, f"mapper name of '{alias}'", realm_name)),
            context.mode,
            create=create,
            update=update,
            delete=delete,
            needs_update=needs_update,
            existing_key=lambda m: (alias, m.name),
        )
