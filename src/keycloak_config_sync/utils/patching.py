"""
Deep patch and subset comparison of API representations.

Import documents are partial: a field missing from the document means
"leave as is", not "reset". Updates are therefore computed by patching the
remote representation with the desired fields, and a remote entity only
needs an update when one of the desired fields differs from it.
"""

from typing import Any

from pydantic import BaseModel

from ..constants import SECRET_MASK

# Server-assigned identifiers never take part in comparisons
SERVER_MANAGED_FIELDS = frozenset({"id", "internalId", "containerId"})


def deep_patch(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``existing`` with ``desired`` merged over it.

    Nested dicts are merged key by key; any other value (including lists)
    is replaced wholesale.
    """
    patched = dict(existing)
    for key, value in desired.items():
        current = patched.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            patched[key] = deep_patch(current, value)
        else:
            patched[key] = value
    return patched


def is_subset(desired: Any, existing: Any) -> bool:
    """Check that every value in ``desired`` is matched by ``existing``.

    Dicts are compared as subsets, lists element by element, and a masked
    secret on the remote side matches any desired value.
    """
    if existing == SECRET_MASK and isinstance(desired, str):
        return True
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        return all(
            key in existing and is_subset(value, existing[key])
            for key, value in desired.items()
        )
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_subset(d, e) for d, e in zip(desired, existing, strict=True))
    return desired == existing


def _strip(data: dict[str, Any], ignored: frozenset[str]) -> dict[str, Any]:
    skip = SERVER_MANAGED_FIELDS | ignored
    return {k: v for k, v in data.items() if k not in skip}


def needs_update(
    desired: BaseModel,
    existing: BaseModel,
    ignored: frozenset[str] = frozenset(),
) -> bool:
    """Whether the remote entity differs from any field set in the document.

    Args:
        desired: Entity parsed from the import document
        existing: Entity fetched from the server
        ignored: camelCase field names reconciled elsewhere
    """
    desired_data = _strip(
        desired.model_dump(by_alias=True, exclude_unset=True, exclude_none=True),
        ignored,
    )
    existing_data = existing.model_dump(by_alias=True, exclude_none=True)
    return not is_subset(desired_data, existing_data)


def patched_payload(
    desired: BaseModel,
    existing: BaseModel,
    ignored: frozenset[str] = frozenset(),
) -> dict[str, Any]:
    """Update body: the remote entity patched with the document's fields."""
    desired_data = _strip(
        desired.model_dump(by_alias=True, exclude_unset=True, exclude_none=True),
        ignored,
    )
    existing_data = {
        k: v
        for k, v in existing.model_dump(by_alias=True, exclude_none=True).items()
        if k not in ignored
    }
    return deep_patch(existing_data, desired_data)
