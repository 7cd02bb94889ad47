"""
Observability for reststores pipelines.

Structured (JSON) logging of store pipeline runs. Each run gets a
PipelineLogger bound to its request id; the driver reports start, every
stage, and the final outcome.

Design Philosophy:
- Structured logging by default (JSON-formatted)
- Minimal overhead when the logger is not enabled for the level
- Per-request audit trail lives on the RequestContext itself
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

PIPELINE_LOGGER_NAME = "reststores.pipeline"


class LogLevel(Enum):
    """Standard log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class StructuredLogger(Protocol):
    """Protocol for structured logging implementations."""

    def debug(self, message: str, **context: Any) -> None:
        ...

    def info(self, message: str, **context: Any) -> None:
        ...

    def warning(self, message: str, **context: Any) -> None:
        ...

    def error(self, message: str, **context: Any) -> None:
        ...


@dataclass
class JSONLogger:
    """
    Structured logger that outputs JSON-formatted records.

    Example output:
        {"timestamp": "2026-01-02T10:30:00+00:00", "level": "info",
         "message": "Pipeline started", "request_id": "1f0c2a9b",
         "store": "people", "verb": "post"}
    """

    name: str = PIPELINE_LOGGER_NAME
    request_id: str | None = None
    extra_context: dict[str, Any] = field(default_factory=dict)
    _python_logger: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._python_logger = logging.getLogger(self.name)

    def _log(self, level: LogLevel, message: str, context: dict[str, Any]) -> None:
        log_method = getattr(self._python_logger, level.value)
        if not self._python_logger.isEnabledFor(getattr(logging, level.name)):
            return

        record = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level.value,
            "message": message,
            **self.extra_context,
            **context,
        }
        if self.request_id:
            record["request_id"] = self.request_id

        log_method(json.dumps(record, default=str))

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(LogLevel.ERROR, message, context)

    def with_context(self, **extra: Any) -> JSONLogger:
        """Create a new logger with additional context."""
        return JSONLogger(
            name=self.name,
            request_id=self.request_id,
            extra_context={**self.extra_context, **extra},
        )


@dataclass
class PipelineLogger:
    """
    Lifecycle logger for one store pipeline run.

    Example:
        plog = PipelineLogger(request_id=ctx.short_id, store="people", verb="post")
        plog.pipeline_started(store="people", verb="post", stages=[...], remote=True)
        plog.stage_completed("validate", duration_ms=1.2)
        plog.pipeline_completed(duration_ms=4.8)
    """

    request_id: str
    store: str = ""
    verb: str = ""
    inner: StructuredLogger | None = None

    def __post_init__(self) -> None:
        if self.inner is None:
            extra = {k: v for k, v in (("store", self.store), ("verb", self.verb)) if v}
            self.inner = JSONLogger(request_id=self.request_id, extra_context=extra)

    def pipeline_started(self, store: str, verb: str, stages: list[str], remote: bool) -> None:
        self.inner.info(
            "Pipeline started",
            store=store,
            verb=verb,
            stages=stages,
            stage_count=len(stages),
            remote=remote,
        )

    def stage_completed(self, stage: str, duration_ms: float) -> None:
        self.inner.debug("Stage completed", stage=stage, duration_ms=round(duration_ms, 2))

    def stage_skipped(self, stage: str) -> None:
        self.inner.debug("Stage skipped", stage=stage)

    def pipeline_completed(self, duration_ms: float) -> None:
        self.inner.info("Pipeline completed", success=True, duration_ms=round(duration_ms, 2))

    def pipeline_failed(self, stage: str, error_kind: str, error_message: str) -> None:
        self.inner.warning(
            "Pipeline failed",
            success=False,
            stage=stage,
            error_kind=error_kind,
            error=error_message,
        )
