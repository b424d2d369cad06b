"""
Structured logging utilities for keycloak-config-sync.

This module provides correlation ID tracking and structured log formatting
so that every log line of one realm import can be grouped together.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable for tracking correlation IDs across async operations
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

STRUCTURED_FIELDS = (
    "realm_name",
    "source",
    "entity_type",
    "entity_key",
    "operation",
    "duration",
    "error_type",
    "http_status",
    "response_body",
)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Add correlation ID to the log record.

        Args:
            record: The log record to process

        Returns:
            True to allow the record to be processed
        """
        current_correlation_id = correlation_id.get()
        if not current_correlation_id:
            current_correlation_id = generate_correlation_id()
            correlation_id.set(current_correlation_id)

        record.correlation_id = current_correlation_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter for logs with correlation ID support.

    Formats log records as one JSON object per line for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # extra= fields land as attributes on the record
        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID.

    Returns:
        Unique correlation ID string
    """
    return str(uuid.uuid4())[:8]  # Short 8-character ID for readability


def set_correlation_id(corr_id: str) -> str:
    """Set the correlation ID for the current context."""
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    """Get the current correlation ID, or empty string if none set."""
    return correlation_id.get("")


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = False,
    correlation_id_enabled: bool = True,
) -> None:
    """
    Set up logging for a command-line run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: Whether to use JSON formatting
        correlation_id_enabled: Whether to enable correlation ID tracking
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    elif correlation_id_enabled:
        formatter = logging.Formatter(
            "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class SyncLogger:
    """
    Logger wrapper for reconcilers with structured logging support.

    Provides convenient methods for logging import lifecycle events
    with correlation ID tracking and structured data.
    """

    def __init__(self, name: str):
        """
        Initialize logger.

        Args:
            name: Logger name (usually the class name)
        """
        self.logger = logging.getLogger(name)

    def log_import_start(
        self,
        realm_name: str,
        source: str,
        corr_id: str | None = None,
    ) -> str:
        """
        Log the start of a realm import and bind a correlation ID to it.

        Returns:
            The correlation ID used for this import
        """
        if corr_id is None:
            corr_id = generate_correlation_id()

        set_correlation_id(corr_id)

        self.logger.info(
            f"Importing realm '{realm_name}' from '{source}'",
            extra={
                "realm_name": realm_name,
                "source": source,
                "operation": "import_start",
            },
        )

        return corr_id

    def log_import_success(self, realm_name: str, source: str, duration: float) -> None:
        self.logger.info(
            f"Realm '{realm_name}' imported successfully",
            extra={
                "realm_name": realm_name,
                "source": source,
                "operation": "import_success",
                "duration": duration,
            },
        )

    def log_import_skipped(self, realm_name: str, source: str) -> None:
        self.logger.info(
            f"Skipping import of '{source}' for realm '{realm_name}': checksum unchanged",
            extra={
                "realm_name": realm_name,
                "source": source,
                "operation": "import_skipped",
            },
        )

    def log_import_error(
        self,
        realm_name: str,
        source: str,
        error: Exception,
        duration: float,
    ) -> None:
        """
        Log a failed realm import.

        Args:
            realm_name: Realm that was being imported
            source: Source name of the import document
            error: The error that occurred
            duration: Import duration in seconds
        """
        self.logger.error(
            f"Import of realm '{realm_name}' from '{source}' failed: {str(error)}",
            extra={
                "realm_name": realm_name,
                "source": source,
                "operation": "import_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=True,
        )

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with extra data."""
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with extra data."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with extra data."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message with extra data."""
        self.logger.error(message, exc_info=exc_info, extra=kwargs)
