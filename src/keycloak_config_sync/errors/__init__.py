"""
Error handling module for keycloak-config-sync.

This module provides an error hierarchy with clear categorization for
input problems, remote processing failures and configuration mistakes.
"""

from .sync_errors import (
    BuiltInFlowError,
    ConfigSyncError,
    ConfigurationError,
    ImportProcessingError,
    InvalidImportError,
    PermanentError,
    ReconciliationError,
    ValidationError,
)

__all__ = [
    "ConfigSyncError",
    "ValidationError",
    "InvalidImportError",
    "PermanentError",
    "BuiltInFlowError",
    "ReconciliationError",
    "ImportProcessingError",
    "ConfigurationError",
]
