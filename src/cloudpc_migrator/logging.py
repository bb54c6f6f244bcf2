"""
Structured Logging for the migrator.

This module provides:
- Structured JSON or text logging with consistent fields
- Job context correlation (job id, user, stage) for every record
- Stage event logging for lifecycle transitions and anomalies
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .config.logging import LoggingConfig

if TYPE_CHECKING:
    from .jobs.types import JobRecord, StageEvent

# =============================================================================
# Log Context
# =============================================================================


@dataclass
class LogContext:
    """Context information attached to log records."""

    job_id: str | None = None
    user: str | None = None
    stage: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            job_id=kwargs.get("job_id", self.job_id),
            user=kwargs.get("user", self.user),
            stage=kwargs.get("stage", self.stage),
            operation=kwargs.get("operation", self.operation),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured output and job context tracking.

    Example:
        ```python
        logger = StructuredLogger("cloudpc_migrator")

        with logger.job_context(job):
            logger.info("Removed user from source group")
        ```
    """

    def __init__(
        self,
        name: str = "cloudpc_migrator",
        level: str = "INFO",
        json_output: bool = False,
        include_job_context: bool = True,
    ):
        self.name = name
        self.json_output = json_output
        self.include_job_context = include_job_context

        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper()))

        self._context: LogContext = LogContext()

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            if json_output:
                handler.setFormatter(JSONFormatter())
            else:
                handler.setFormatter(TextFormatter())
            self._logger.addHandler(handler)

    @property
    def context(self) -> LogContext:
        return self._context

    @contextmanager
    def job_context(self, job: JobRecord, **kwargs) -> Iterator[LogContext]:
        """
        Context manager that tags records with the job being processed.

        Args:
            job: The job record
            **kwargs: Additional context fields
        """
        old_context = self._context
        try:
            if self.include_job_context:
                self._context = old_context.with_update(
                    job_id=job.job_id,
                    user=job.user_principal_name,
                    stage=job.stage.value,
                    **kwargs,
                )
            yield self._context
        finally:
            self._context = old_context

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Internal logging method."""
        record_data = {
            "message": message,
            **self._context.to_dict(),
        }

        if event_type:
            record_data["event_type"] = event_type

        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str))
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip())

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    def log_event(self, event: StageEvent) -> None:
        """Log a stage engine event."""
        self._log(
            event.level,
            event.message,
            event_type=event.event_type,
            data=dict(event.data),
        )

    def log_error(
        self,
        error: Exception,
        message: str | None = None,
        **kwargs,
    ) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }

        if hasattr(error, "code"):
            error_data["error_code"] = str(error.code.value)
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable

        self._log(
            logging.ERROR,
            message or f"Error: {error}",
            event_type="error",
            data=error_data,
        )


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        # Parse JSON message if present
        try:
            message_data = json.loads(record.getMessage())
            if isinstance(message_data, dict):
                log_data.update(message_data)
            else:
                log_data["message"] = record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        return f"{timestamp} {color}{record.levelname:8}{reset} {record.getMessage()}"


def create_logger(config: LoggingConfig | None = None) -> StructuredLogger:
    """Build a StructuredLogger from a LoggingConfig."""
    config = config or LoggingConfig()
    return StructuredLogger(
        name=config.name,
        level=config.level,
        json_output=config.format == "json",
        include_job_context=config.include_job_context,
    )


__all__ = [
    "LogContext",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "create_logger",
]
