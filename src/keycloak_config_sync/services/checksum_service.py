"""
Checksum tracking on realm attributes.

The realm is its own state store: the checksum of the last successfully
imported document is kept in the realm's generic attribute map. The
attribute map is loaded once when a realm import starts and written once
after it succeeded, through RealmAttributeStore.
"""

from __future__ import annotations

import logging

from ..constants import CHECKSUM_ATTRIBUTE_PREFIX
from ..utils.keycloak_admin import KeycloakAdminClient

logger = logging.getLogger(__name__)


class RealmAttributeStore:
    """
    Key-value view over a realm's attribute map.

    Reads are served from the snapshot taken by ``load``; writes are
    buffered and merged into the current attribute map by ``flush``, so
    attributes this store never touched are preserved.
    """

    def __init__(self, admin_client: KeycloakAdminClient, realm_name: str):
        self.admin_client = admin_client
        self.realm_name = realm_name
        self._snapshot: dict[str, str] = {}
        self._changes: dict[str, str] = {}

    async def load(self) -> None:
        """Read the realm's attributes; a missing realm has none."""
        realm = await self.admin_client.get_realm(self.realm_name)
        self._snapshot = dict(realm.attributes or {}) if realm else {}
        self._changes = {}

    def get(self, key: str) -> str | None:
        if key in self._changes:
            return self._changes[key]
        return self._snapshot.get(key)

    def set(self, key: str, value: str) -> None:
        self._changes[key] = value

    def keys(self) -> set[str]:
        return set(self._snapshot) | set(self._changes)

    @property
    def dirty(self) -> bool:
        return any(self._snapshot.get(k) != v for k, v in self._changes.items())

    async def flush(self) -> None:
        """Merge buffered changes into the realm's current attributes."""
        if not self.dirty:
            return

        realm = await self.admin_client.get_realm(self.realm_name)
        attributes = dict(realm.attributes or {}) if realm else {}
        attributes.update(self._changes)

        await self.admin_client.update_realm(
            self.realm_name, {"realm": self.realm_name, "attributes": attributes}
        )
        self._snapshot = attributes
        self._changes = {}
        logger.debug(f"Stored import attributes on realm '{self.realm_name}'")


class ChecksumService:
    """Compare and record the checksum of an import document."""

    def __init__(self, store: RealmAttributeStore, cache_key: str):
        self.store = store
        self.cache_key = cache_key

    @property
    def attribute_key(self) -> str:
        return f"{CHECKSUM_ATTRIBUTE_PREFIX}.{self.cache_key}.realm"

    def has_changed(self, checksum: str) -> bool:
        """True when the stored checksum differs from (or lacks) ``checksum``."""
        stored = self.store.get(self.attribute_key)
        return stored != checksum

    def record(self, checksum: str) -> None:
        self.store.set(self.attribute_key, checksum)
