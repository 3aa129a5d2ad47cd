"""Mutable state of one flow execution."""

from dataclasses import dataclass, field

from flowrunner.flow.context import Context
from flowrunner.flow.request_executor import CancellationToken
from flowrunner.flow.results import StepResult
from flowrunner.flow.stack import ExecutionStack


@dataclass
class EngineState:
    """
    Everything a run needs to resume: the stack, the results so far and the
    control flags. ``is_running`` and ``is_stepping`` are never both true,
    and both are false while the engine is at rest.
    """

    is_running: bool = False
    is_stepping: bool = False
    stop_requested: bool = False
    stack: ExecutionStack = field(default_factory=ExecutionStack)
    root_context: Context = field(default_factory=dict)
    results: list[StepResult] = field(default_factory=list)
    active_cancellation: CancellationToken | None = None

    @property
    def is_active(self) -> bool:
        return self.is_running or self.is_stepping
