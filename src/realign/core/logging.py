"""Structured logging infrastructure for the ReAlign intelligence core.

Provides structured logging using structlog with learning-specific context
such as case_id, correlation_id and component names. Supports console and
JSON output, optionally mirrored to a rotating log file.

Example usage:
    from realign.core.logging import get_logger, configure_logging, with_context

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("orchestrator")

    # Log with auto-context
    logger.info("task_started", task_kind="emotional")

    # Use a learning context for automatic correlation
    ctx = LearningContext(case_id="case-1", component="pipeline")
    with with_context(ctx):
        logger.info("features_extracted")  # Includes case_id, correlation_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Sensitive field patterns that should never be logged
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "auth",
    "bearer",
    "authorization",
})

# Counters such as tokens_used are not secrets
_SAFE_KEYS = frozenset({"tokens_used", "max_tokens"})


def new_correlation_id(prefix: str) -> str:
    """Generate a correlation id such as ``EXEC-emotional-1f2e3d4c5b6a``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class LearningContext:
    """Immutable context for correlating log entries across one unit of work.

    Attributes:
        correlation_id: Identifier shared by every log line of the unit of work.
        case_id: Owning case, when known.
        interaction_id: Interaction being processed, when known.
        component: Component name for the current operation.
    """

    correlation_id: str = field(default_factory=lambda: new_correlation_id("CTX"))
    case_id: str | None = None
    interaction_id: str | None = None
    component: str = "unknown"

    def with_component(self, component: str) -> LearningContext:
        """Return a copy of this context bound to another component."""
        return replace(self, component=component)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging (None values dropped)."""
        result: dict[str, Any] = {
            "correlation_id": self.correlation_id,
            "component": self.component,
        }
        if self.case_id is not None:
            result["case_id"] = self.case_id
        if self.interaction_id is not None:
            result["interaction_id"] = self.interaction_id
        return result


# ContextVar gives each asyncio task its own view of the current context
_current_context: ContextVar[LearningContext | None] = ContextVar(
    "realign_context", default=None
)


def get_current_context() -> LearningContext | None:
    """Get the current LearningContext if set."""
    return _current_context.get()


@contextmanager
def with_context(ctx: LearningContext) -> Iterator[LearningContext]:
    """Set the LearningContext for the duration of a block.

    Args:
        ctx: The context to use for the block.

    Yields:
        The context that was set.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    if key_lower in _SAFE_KEYS:
        return value
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds LearningContext fields to log entries.

    Explicit bindings take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class RealignLogger:
    """Component logger wrapper around structlog.

    The underlying structlog logger is fetched on every call so that loggers
    created at import time still respect a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> RealignLogger:
        """Create a new logger with additional bound context."""
        new_logger = RealignLogger.__new__(RealignLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback. Call from an exception handler."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure structured logging. Call once at process startup.

    Args:
        level: Minimum log level to capture.
        format: "json" for structured, "console" for human-readable, "both" for
            console to stderr plus a JSON-lines file (requires file_path).
        file_path: Optional file path for log output.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to include ISO8601 timestamps.
        include_context: Whether to include LearningContext fields.

    Raises:
        ValueError: If format="both" but file_path is not provided.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    if format in ("json", "both"):
        if file_path:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            handlers.append(file_handler)
        else:
            json_handler = logging.StreamHandler(sys.stdout)
            json_handler.setLevel(log_level)
            handlers.append(json_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    # cache_logger_on_first_use=False so import-time loggers pick up this config
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> RealignLogger:
    """Get a logger for a component (e.g. "orchestrator", "learning.pipeline")."""
    return RealignLogger(component, **initial_context)


__all__ = [
    "LearningContext",
    "RealignLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "new_correlation_id",
    "with_context",
]
