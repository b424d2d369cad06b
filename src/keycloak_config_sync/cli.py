"""
Command-line entry point.

Loads the import documents, connects to Keycloak with the configured admin
credentials and imports every realm. Exit codes: 0 when all realms were
imported (or skipped as unchanged), 1 when any realm failed, 2 on
configuration errors.
"""

import argparse
import asyncio
import logging
import sys

from .errors import ConfigSyncError, ConfigurationError
from .observability.logging import setup_structured_logging
from .settings import Settings, settings
from .utils.keycloak_admin import KeycloakAdminError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keycloak-config-sync",
        description="Import realm configuration documents into Keycloak",
    )
    parser.add_argument(
        "--import-files",
        action="append",
        metavar="LOCATION",
        help="File, directory or glob pattern to import (repeatable)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        default=None,
        help="Import even when the stored checksum is unchanged",
    )
    parser.add_argument("--cache-key", help="Checksum cache key override")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Log JSON lines",
    )
    return parser


def apply_arguments(base: Settings, args: argparse.Namespace) -> Settings:
    """Overlay command-line flags on the environment settings."""
    overrides = {
        "import_files": ",".join(args.import_files) if args.import_files else None,
        "import_force": args.force,
        "import_cache_key": args.cache_key,
        "log_level": args.log_level,
        "json_logs": args.json_logs,
    }
    return base.model_copy(update={k: v for k, v in overrides.items() if v is not None})


async def run(run_settings: Settings) -> int:
    """Load documents and import them; returns the process exit code."""
    from .services.realm_import_service import RealmImportService
    from .utils.import_loader import load_realm_imports
    from .utils.keycloak_admin import get_keycloak_admin_client

    if not run_settings.import_locations:
        raise ConfigurationError(
            "No import files configured",
            user_action="Pass --import-files or set IMPORT_FILES_LOCATIONS",
        )

    imports = load_realm_imports(
        run_settings.import_locations, substitute=run_settings.import_var_substitution
    )
    service = RealmImportService(await get_keycloak_admin_client(run_settings), run_settings)
    async with service.admin_client:
        outcomes = await service.import_all(imports)

    failed = [outcome for outcome in outcomes if outcome.failed]
    for outcome in failed:
        logger.error(f"Import of realm '{outcome.realm_name}' from '{outcome.source}' failed")

    logger.info(
        f"Processed {len(outcomes)} imports: "
        f"{sum(1 for o in outcomes if o.skipped)} unchanged, {len(failed)} failed"
    )
    return EXIT_FAILED if failed else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    run_settings = apply_arguments(settings, args)

    setup_structured_logging(
        log_level=run_settings.log_level,
        enable_json_formatting=run_settings.json_logs,
        correlation_id_enabled=run_settings.correlation_ids,
    )

    try:
        return asyncio.run(run(run_settings))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION
    except (ConfigSyncError, KeycloakAdminError) as e:
        logger.error(f"Import failed: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
