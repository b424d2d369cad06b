"""
Loading of realm import documents.

Locations may be files, directories (their files, not recursive, sorted by
name) or glob patterns. JSON and YAML documents are accepted; a YAML file
can hold several documents, each becoming its own import tagged
``<file name>#<index>``. A document that cannot be loaded is reported as
a FailedImport instead of stopping the whole batch.
"""

import glob
import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..errors import InvalidImportError
from ..models.realm_import import FailedImport, RealmImport

logger = logging.getLogger(__name__)

IMPORT_SUFFIXES = frozenset({".json", ".yaml", ".yml"})

# $(env:NAME) or $(env:NAME:-default)
ENV_PLACEHOLDER = re.compile(r"\$\(env:([A-Za-z_][A-Za-z0-9_]*)(?::-([^)]*))?\)")


def substitute_variables(text: str, source: str, environ: Mapping[str, str] | None = None) -> str:
    """
    Replace ``$(env:NAME)`` placeholders with environment values.

    Raises:
        InvalidImportError: If a variable is undefined and has no default
    """
    env = os.environ if environ is None else environ

    def replace(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        if name in env:
            return env[name]
        if default is not None:
            return default
        raise InvalidImportError(
            f"Undefined variable '{name}' in import '{source}'"
        )

    return ENV_PLACEHOLDER.sub(replace, text)


def resolve_locations(locations: list[str]) -> list[Path]:
    """Expand files, directories and glob patterns into import files."""
    files: list[Path] = []
    for location in locations:
        path = Path(location)
        if path.is_dir():
            matches = sorted(p for p in path.iterdir() if p.is_file())
        elif path.is_file():
            matches = [path]
        else:
            matches = [Path(p) for p in sorted(glob.glob(location)) if Path(p).is_file()]
            if not matches:
                raise InvalidImportError(f"No import files found at '{location}'")

        for match in matches:
            if match.suffix.lower() in IMPORT_SUFFIXES and match not in files:
                files.append(match)
    return files


def parse_documents(text: str, path: Path) -> list[dict]:
    """
    Parse the documents of one file.

    Raises:
        InvalidImportError: If the file is not valid JSON/YAML or a document
            is not a mapping
    """
    try:
        if path.suffix.lower() == ".json":
            documents = [json.loads(text)]
        else:
            documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise InvalidImportError(f"Cannot parse import '{path}': {e}") from e

    for index, document in enumerate(documents):
        if not isinstance(document, dict):
            raise InvalidImportError(
                f"Import '{path}' document {index} is not a realm object"
            )
    return documents


def load_realm_imports(
    locations: list[str],
    substitute: bool = False,
    environ: Mapping[str, str] | None = None,
) -> list[RealmImport | FailedImport]:
    """
    Load every import document found at ``locations``.

    A file or document that cannot be substituted, parsed or validated is
    returned as a FailedImport so the other documents of the batch still run.

    Args:
        locations: Files, directories or glob patterns
        substitute: Replace ``$(env:...)`` placeholders before parsing
        environ: Variables for substitution (defaults to the process environment)

    Returns:
        One entry per document, in file then document order

    Raises:
        InvalidImportError: If a location matches no file
    """
    imports: list[RealmImport | FailedImport] = []
    for path in resolve_locations(locations):
        text = path.read_text(encoding="utf-8")
        try:
            if substitute:
                text = substitute_variables(text, path.name, environ)
            documents = parse_documents(text, path)
        except InvalidImportError as e:
            logger.error(f"Cannot load import file {path}: {e.message}")
            imports.append(FailedImport(source=path.name, error=e))
            continue

        for index, document in enumerate(documents):
            source = path.name if len(documents) == 1 else f"{path.name}#{index}"
            try:
                imports.append(RealmImport.from_document(source, text, document))
            except PydanticValidationError as e:
                error = InvalidImportError(f"Invalid import '{source}': {e}")
                logger.error(error.message)
                imports.append(
                    FailedImport(
                        source=source, error=error, realm_name=str(document.get("realm") or "")
                    )
                )

        logger.info(f"Loaded {len(documents)} import documents from {path}")
    return imports
