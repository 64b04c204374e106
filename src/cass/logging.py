"""Structured logging configuration for CASS.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import Settings, get_settings

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(settings: Settings | None = None) -> None:
    """Configure root logging from settings (level and json/text format)."""
    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = dict(self.extra)
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, stage="dedup", run_id="abc123")
        logger.info("Checking batch")  # Includes stage and run_id
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_run_start(run_id: str, records: int) -> None:
    """Log the start of a pipeline run."""
    logger = get_logger("cass.pipeline")
    logger.info(
        f"Starting pipeline run with {records} records",
        extra={"run_id": run_id, "records": records, "event": "run_start"},
    )


def log_run_complete(
    run_id: str, staged: int, error_count: int, duration_ms: int
) -> None:
    """Log the completion of a pipeline run."""
    logger = get_logger("cass.pipeline")
    logger.info(
        f"Completed pipeline run: {staged} staged, {error_count} errors",
        extra={
            "run_id": run_id,
            "staged": staged,
            "error_count": error_count,
            "duration_ms": duration_ms,
            "event": "run_complete",
        },
    )


def log_source_failure(
    source: str,
    operation: str,
    error: str,
    timed_out: bool = False,
) -> None:
    """Log an isolated failure of an external call.

    Timeouts are logged at WARNING with ``timed_out=True`` so they can be
    told apart from hard errors, which are logged at ERROR.

    Args:
        source: Source, category or collaborator that failed
        operation: Operation attempted (fetch, lookup, score, write)
        error: Error message
        timed_out: Whether the failure was a timeout
    """
    logger = get_logger("cass.sources")
    level = logging.WARNING if timed_out else logging.ERROR
    kind = "timed out" if timed_out else "failed"
    logger.log(
        level,
        f"{operation} for {source} {kind}: {error}",
        extra={
            "source": source,
            "operation": operation,
            "error": error,
            "timed_out": timed_out,
            "event": "source_failure",
        },
    )


def log_policy_rejection(title: str, kind: str, reasons: list[str]) -> None:
    """Log a record that failed admissibility. Not an error."""
    logger = get_logger("cass.validation")
    logger.debug(
        f"Rejected {kind}: {title}",
        extra={"title": title, "kind": kind, "reasons": reasons, "event": "policy_rejection"},
    )


def log_resolution_event(
    canonical_name: str,
    members: int,
    confidence: float,
    signals: list[str] | None = None,
) -> None:
    """Log the creation of a unified entity.

    Args:
        canonical_name: Chosen canonical name
        members: Number of records merged into the entity
        confidence: Entity confidence
        signals: Signal kinds that joined members to the cluster
    """
    logger = get_logger("cass.resolution")
    logger.debug(
        f"Resolved {members} record(s) into {canonical_name}",
        extra={
            "canonical_name": canonical_name,
            "members": members,
            "confidence": confidence,
            "signals": signals or [],
            "event": "entity_resolution",
        },
    )


def log_scorer_fallback(entity: str, error: str, timed_out: bool) -> None:
    """Log a scorer failure that fell back to the neutral score."""
    log_source_failure(entity, "score", error, timed_out=timed_out)


def log_write_outcome(
    category: str,
    key: str,
    action: str,
    error: str | None = None,
) -> None:
    """Log the terminal outcome of a staging write.

    Args:
        category: Staging category
        key: Identifying key of the record
        action: inserted, conflict_resolved, skipped or failed
        error: Error message for failed writes
    """
    logger = get_logger("cass.staging")
    level = logging.WARNING if action == "failed" else logging.DEBUG
    logger.log(
        level,
        f"Staging {category} {key}: {action}",
        extra={
            "category": category,
            "key": key,
            "action": action,
            "error": error,
            "event": "write_outcome",
        },
    )
