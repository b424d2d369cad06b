"""
Observability utilities for keycloak-config-sync.

This module provides structured logging with correlation IDs for
troubleshooting import runs.
"""

from .logging import SyncLogger, setup_structured_logging

__all__ = [
    "SyncLogger",
    "setup_structured_logging",
]
