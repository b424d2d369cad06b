"""
Remote state: which entities were created by previous imports.

With remote state enabled, a FULL managed entity type only deletes remote
entities whose key this tool recorded before, so entities created by hand
or by other tools survive. Keys are stored as a JSON list split over
several realm attributes because attribute values are length limited.
"""

import json
import logging

from ..constants import STATE_ATTRIBUTE_PREFIX, STATE_CHUNK_SIZE
from ..errors import ImportProcessingError
from .checksum_service import RealmAttributeStore

logger = logging.getLogger(__name__)


def split_chunks(text: str, size: int = STATE_CHUNK_SIZE) -> list[str]:
    return [text[start : start + size] for start in range(0, len(text), size)]


class StateService:
    """Read and write per-scope key lists in realm attributes."""

    def __init__(self, store: RealmAttributeStore, cache_key: str, enabled: bool = True):
        self.store = store
        self.cache_key = cache_key
        self.enabled = enabled

    def _chunk_key(self, scope: str, index: int) -> str:
        return f"{STATE_ATTRIBUTE_PREFIX}.{self.cache_key}.{scope}-{index}"

    def _scope_prefix(self) -> str:
        return f"{STATE_ATTRIBUTE_PREFIX}.{self.cache_key}."

    def get(self, scope: str) -> set[str]:
        """Keys recorded for a scope; chunks are read until the first gap."""
        parts: list[str] = []
        index = 0
        while chunk := self.store.get(self._chunk_key(scope, index)):
            parts.append(chunk)
            index += 1

        if not parts:
            return set()

        try:
            return {str(key) for key in json.loads("".join(parts))}
        except json.JSONDecodeError as e:
            raise ImportProcessingError(
                f"Corrupt import state for '{scope}' in realm '{self.store.realm_name}'",
                realm_name=self.store.realm_name,
                cause=e,
            ) from e

    def load_managed_keys(self) -> dict[str, set[str]] | None:
        """All recorded scopes, or None when remote state is disabled."""
        if not self.enabled:
            return None

        prefix = self._scope_prefix()
        scopes = {
            key[len(prefix) :].rsplit("-", 1)[0]
            for key in self.store.keys()
            if key.startswith(prefix)
        }
        return {scope: self.get(scope) for scope in scopes}

    def save(self, recorded: dict[str, list[str]]) -> None:
        """
        Record the keys managed by this import.

        Chunks left over from a longer previous list are blanked; a blank
        chunk terminates reading.
        """
        if not self.enabled:
            return

        for scope, keys in recorded.items():
            chunks = split_chunks(json.dumps(sorted(keys)))
            for index, chunk in enumerate(chunks):
                self.store.set(self._chunk_key(scope, index), chunk)

            index = len(chunks)
            while self.store.get(self._chunk_key(scope, index)):
                self.store.set(self._chunk_key(scope, index), "")
                index += 1

            logger.debug(
                f"Recorded {len(keys)} keys for '{scope}' in realm '{self.store.realm_name}'"
            )
