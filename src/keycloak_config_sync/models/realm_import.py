"""
Pydantic model for one loaded import document.

A RealmImport pairs the parsed realm representation with the metadata the
import run needs: the name of the source it came from (used as checksum
cache key) and the SHA3-512 checksum of the raw document text. A
FailedImport stands in for a document that could not be loaded.
"""

import hashlib
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidImportError
from .keycloak_api import RealmRepresentation


def compute_checksum(raw_content: str | bytes) -> str:
    """SHA3-512 hex digest of a raw import document."""
    if isinstance(raw_content, str):
        raw_content = raw_content.encode("utf-8")
    return hashlib.sha3_512(raw_content).hexdigest()


class RealmImport(BaseModel):
    """Desired state of one realm, immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Source name of the import document")
    checksum: str = Field(..., description="SHA3-512 of the raw document")
    realm: RealmRepresentation = Field(..., description="Parsed realm document")

    @property
    def realm_name(self) -> str:
        return self.realm.realm or ""

    @classmethod
    def from_document(
        cls, source: str, raw_content: str, document: dict
    ) -> "RealmImport":
        """Build an import from a parsed document and the text it was parsed from."""
        return cls(
            source=source,
            checksum=compute_checksum(raw_content),
            realm=RealmRepresentation.model_validate(document),
        )


@dataclass(frozen=True)
class FailedImport:
    """A document that could not be loaded, kept so the batch can report it."""

    source: str
    error: InvalidImportError
    realm_name: str = ""
