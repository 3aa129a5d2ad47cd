"""
Log formatting with run / flow / step correlation.

FlowRunner.run() and step() set ``run_id`` and ``flow`` once; the
dispatcher adds ``step_id`` before each step. Both formatters read that
ContextVar, so a plain ``logger.info(...)`` anywhere in the engine is
tagged with the run it belongs to, across awaits.
"""

import json
import logging
import os
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# Prefix labels for the human format, in display order
_PREFIX_LABELS = (("run_id", "run"), ("flow", "flow"), ("step_id", "step"))


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: level, logger, message, trace context, event."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            **(trace_context.get() or {}),
        }
        # Observer records carry their own step_id, which wins over the context
        for attr in ("event", "step_id"):
            value = getattr(record, attr, None)
            if value is not None:
                entry[attr] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colorized ``[LEVEL] [run:… | flow:… | step:…] message [event]`` lines."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _prefix(context: dict[str, Any]) -> str:
        parts = []
        for key, label in _PREFIX_LABELS:
            value = context.get(key)
            if value:
                value = value[:8] if key == "run_id" else value
                parts.append(f"{label}:{value}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        event = getattr(record, "event", None)
        line = (
            f"{color}[{record.levelname:<8}]{self.RESET} "
            f"{self._prefix(trace_context.get() or {})}{record.getMessage()}"
        )
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Install one root handler with the chosen formatter. Call once at startup.

    ``auto`` picks JSON when LOG_FORMAT=json or ENV=production, else human.

    Example:
        configure_logging(*get_log_settings())
    """
    formatter: logging.Formatter = (
        StructuredFormatter() if _resolve_format(format) == "json" else HumanReadableFormatter()
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Request logs from the HTTP client go through the same handler
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True


def set_trace_context(**kwargs: Any) -> None:
    """Merge fields (run_id, flow, step_id) into the current trace context."""
    trace_context.set({**(trace_context.get() or {}), **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current trace context ({} if none is set)."""
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
