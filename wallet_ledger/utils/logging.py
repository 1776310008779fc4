"""
Structured JSON logging for the wallet ledger.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields
- Redaction of long hex blobs (raw transactions, viewing keys, nullifiers)
- Component-based logger creation

All logs use Python's standard logging module with custom formatting.
Log level defaults to INFO, use setup_logging(verbose=True) for DEBUG.

Examples:
    >>> from wallet_ledger.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbose=True)
    >>> logger = get_logger("migrations.executor")
    >>> logger.info("Migration applied", extra={"context": {"pending": 3}})
"""

import json
import logging
import re
import sys
from typing import Any

from wallet_ledger.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON with structured fields.

    Each log record is formatted as a JSON object with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level (INFO, WARNING, ERROR, DEBUG)
    - component: Module/component name (from logger name)
    - message: Human-readable log message
    - context: Additional structured data (from 'context' in extra)
    - migration_id: Migration being processed (from 'migration_id' in extra)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "migration_id"):
            log_entry["migration_id"] = str(record.migration_id)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HexBlobRedactingFilter(logging.Filter):
    """
    Logging filter that shortens long hexadecimal blobs in log messages.

    Wallet data contains raw serialized transactions, unified full viewing
    keys and nullifiers. None of these belong in logs in full, so any hex
    run of 32+ characters is replaced with its first and last 4 characters:
    "0400008085202f89...a1b2" -> "0400...a1b2"
    """

    HEX_BLOB = re.compile(r"\b(?:0x)?[0-9a-fA-F]{32,}\b")

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._redact(str(arg)) for arg in record.args)

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact(self, text: str) -> str:
        def shorten(match: re.Match) -> str:
            blob = match.group(0)
            return f"{blob[:4]}...{blob[-4:]}"

        return self.HEX_BLOB.sub(shorten, text)

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact(value)
            elif isinstance(value, bytes):
                result[key] = self._redact(value.hex())
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Sets up:
    - JSON formatter for structured output
    - Hex blob redaction filter
    - stderr output (stdout reserved for user-facing content)
    - Log level: DEBUG if verbose=True, INFO otherwise

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        quiet_logs: If True and not verbose, only WARNING and above are
            emitted. Used by the CLI in human mode where rich output
            already reports progress.
    """
    root_logger = logging.getLogger()

    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(HexBlobRedactingFilter())

    root_logger.addHandler(handler)


def get_logger(component: str) -> logging.Logger:
    """
    Get a logger instance for a specific component.

    Args:
        component: Component name (e.g., "migrations.executor")

    Returns:
        Logger instance configured for JSON output
    """
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    migration_id: Any | None = None,
) -> None:
    """
    Log a message with structured context and optional migration_id.

    Equivalent to logger.log(level, message, extra={'context': {...}, 'migration_id': ...})

    Example:
        >>> logger = get_logger("migrations.executor")
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Migration applied",
        ...     context={"description": "Add sent_notes table"},
        ...     migration_id=descriptor.migration_id,
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if migration_id is not None:
        extra["migration_id"] = migration_id

    logger.log(level, message, extra=extra if extra else None)
