"""
Flow Observer - The notification sink the engine reports into.

Presentation layers (a results panel, a log, an event bus) subclass
``FlowObserver`` and override the hooks they care about. Every hook is
synchronous: the engine calls them between suspension points, so an
observer always sees a consistent state.
"""

import itertools
import logging
from enum import StrEnum
from typing import Any

from flowrunner.flow.context import Context

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class FlowObserver:
    """
    No-op observer. Override any subset of hooks.

    ``on_step_start`` returns an opaque token that is handed back to
    ``on_step_complete`` / ``on_error`` for the same step, so a UI can
    update the row it created when the step started.
    """

    def __init__(self) -> None:
        self._tokens = itertools.count()

    def on_step_start(self, step: Any, path: list[dict[str, Any]]) -> Any:
        return next(self._tokens)

    def on_step_complete(
        self,
        token: Any,
        step: Any,
        result: Any,
        context: Context,
        path: list[dict[str, Any]],
    ) -> None:
        pass

    def on_error(
        self,
        token: Any,
        step: Any,
        error: BaseException,
        context: Context,
        path: list[dict[str, Any]],
    ) -> None:
        pass

    def on_flow_complete(self, context: Context, results: list[Any]) -> None:
        pass

    def on_flow_stopped(self, context: Context, results: list[Any]) -> None:
        pass

    def on_message(self, text: str, severity: Severity) -> None:
        pass

    def on_context_changed(self, context: Context) -> None:
        pass

    def on_refresh(self) -> None:
        """The runner went idle; controls bound to its state may change."""


class LoggingObserver(FlowObserver):
    """Writes every notification to the ``flowrunner`` logger."""

    _LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.SUCCESS: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.ERROR: logging.ERROR,
    }

    def __init__(self, log: logging.Logger | None = None) -> None:
        super().__init__()
        self._log = log or logger

    def on_step_start(self, step, path):
        token = super().on_step_start(step, path)
        self._log.info(
            f"▶ [{token}] {step.name or step.id} ({step.type})",
            extra={"event": "step_started", "step_id": step.id},
        )
        return token

    def on_step_complete(self, token, step, result, context, path):
        status = getattr(result, "status", "")
        self._log.info(
            f"✓ [{token}] {step.name or step.id}: {status}",
            extra={"event": "step_completed", "step_id": step.id},
        )

    def on_error(self, token, step, error, context, path):
        self._log.error(
            f"✗ [{token}] {step.name or step.id}: {error}",
            extra={"event": "step_failed", "step_id": step.id},
        )

    def on_flow_complete(self, context, results):
        self._log.info(f"Flow completed ({len(results)} steps)", extra={"event": "flow_completed"})

    def on_flow_stopped(self, context, results):
        self._log.warning(f"Flow stopped ({len(results)} steps)", extra={"event": "flow_stopped"})

    def on_message(self, text, severity):
        self._log.log(self._LEVELS.get(Severity(severity), logging.INFO), text)

    def on_context_changed(self, context):
        self._log.debug(f"Context now has {len(context)} variables")
