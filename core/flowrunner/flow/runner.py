"""
Flow Runner - Run a flow to completion or one step at a time.

The runner owns the engine state and drives the execution stack:

1. Reset state with the flow's static variables, push the root frame
2. Retire exhausted frames (loop frames move to their next item)
3. Dispatch the step under the top frame's cursor
4. Advance the cursor according to the step's stack effect
5. Sleep for the inter-step delay (run mode only), interruptible by stop()

``run()`` repeats 2-5 until the stack is empty or a stop is requested.
``step()`` performs 2-4 exactly once. Both share the same dispatcher, so
the two modes cannot drift apart.
"""

import asyncio
import logging
import uuid
from typing import Any

import httpx

from flowrunner.config import RunnerConfig
from flowrunner.flow.context import Context
from flowrunner.flow.dispatcher import StepDispatcher
from flowrunner.flow.errors import ExecutionInProgressError
from flowrunner.flow.observer import FlowObserver, Severity
from flowrunner.flow.request_executor import RequestExecutor
from flowrunner.flow.stack import ExecutionStack, FrameKind, PopOutcome, ScopeFrame
from flowrunner.flow.state import EngineState
from flowrunner.flow.steps import Flow
from flowrunner.flow.strategies import (
    ConditionEvaluator,
    PathEvaluator,
    Substituter,
    lookup_key,
    never_true,
    passthrough_substitute,
)
from flowrunner.observability import set_trace_context

logger = logging.getLogger(__name__)


class FlowRunner:
    """
    Executes flows against a variable context.

    Example:
        runner = FlowRunner(
            observer=LoggingObserver(),
            substitute=my_template_engine,
            evaluate_condition=my_condition_language,
            evaluate_path=my_json_path,
        )

        await runner.run(Flow.model_validate(doc))
        print(runner.state.results)

        # Or, one step at a time:
        await runner.step(flow)
    """

    def __init__(
        self,
        observer: FlowObserver | None = None,
        substitute: Substituter | None = None,
        evaluate_condition: ConditionEvaluator | None = None,
        evaluate_path: PathEvaluator | None = None,
        config: RunnerConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the runner.

        Args:
            observer: Notification sink for step and flow events
            substitute: Variable substitution strategy (default: pass-through)
            evaluate_condition: Predicate strategy (default: always false)
            evaluate_path: Path resolution strategy (default: top-level key lookup)
            config: Delay and timeout settings (default: ~/.flowrunner/configuration.json)
            http_client: Shared client for request steps (default: one per request)
        """
        self.config = config or RunnerConfig()
        self.observer = observer or FlowObserver()
        self.delay_ms = max(0, self.config.step_delay_ms)
        self._stop_event = asyncio.Event()
        self._dispatcher = StepDispatcher(
            observer=self.observer,
            request_executor=RequestExecutor(
                client=http_client, timeout=self.config.request_timeout_seconds
            ),
            substitute=substitute or passthrough_substitute,
            evaluate_condition=evaluate_condition or never_true,
            evaluate_path=evaluate_path or lookup_key,
            on_halt=self._request_stop,
        )
        self._state = EngineState()
        self.reset()

    # === STATE ===

    def reset(self, initial_vars: Context | None = None) -> None:
        """Discard all execution state and start over from ``initial_vars``."""
        self._state = EngineState(
            stack=ExecutionStack(on_skip=self._report_skip),
            root_context=dict(initial_vars or {}),
        )
        self._stop_event = asyncio.Event()

    def is_running(self) -> bool:
        return self._state.is_running

    def is_stepping(self) -> bool:
        return self._state.is_stepping

    def is_start_of_flow(self) -> bool:
        return self._state.stack.is_at_start()

    def set_delay(self, delay_ms: int) -> None:
        self.delay_ms = max(0, int(delay_ms))

    def stop(self) -> None:
        """Ask the active run or step to halt and abort any in-flight request."""
        if not self._state.is_active:
            return
        logger.info("Stop requested")
        self._request_stop()
        if self._state.active_cancellation is not None:
            self._state.active_cancellation.cancel("user")

    def _request_stop(self) -> None:
        self._state.stop_requested = True
        self._stop_event.set()

    def _report_skip(self, kind: FrameKind) -> None:
        self.observer.on_message(f"Skipping empty branch/loop body ({kind}).", Severity.INFO)

    def _start_pass(self, flow: Flow) -> None:
        self.reset(flow.static_vars)
        self.observer.on_context_changed(self._state.root_context)
        self._state.stack.push(flow.steps, self._state.root_context, FrameKind.MAIN)

    # === CONTROLLERS ===

    async def run(self, flow: Flow) -> None:
        """Execute ``flow`` from the beginning until it completes or is stopped.

        Raises:
            ExecutionInProgressError: a run or step is already active
        """
        if self._state.is_active:
            raise ExecutionInProgressError("Execution already in progress.")

        self._start_pass(flow)
        self._state.is_running = True
        run_id = uuid.uuid4().hex
        set_trace_context(run_id=run_id, flow=flow.name)
        logger.info(f"Running flow '{flow.name}' ({len(flow.steps)} top-level steps)")

        try:
            await self._drain()
        finally:
            self._state.is_running = False
            self._state.is_stepping = False
            self._state.active_cancellation = None
            self.observer.on_refresh()

        if self._state.stop_requested:
            logger.info(f"Flow '{flow.name}' stopped after {len(self._state.results)} steps")
            self.observer.on_flow_stopped(self._state.root_context, self._state.results)
        else:
            logger.info(f"Flow '{flow.name}' completed ({len(self._state.results)} steps)")
            self.observer.on_flow_complete(self._state.root_context, self._state.results)

    async def step(self, flow: Flow) -> None:
        """Execute the next single logical step of ``flow``.

        A busy runner reports a warning instead of raising.
        """
        if self._state.is_active:
            self.observer.on_message("Already processing a step.", Severity.WARNING)
            return

        try:
            if not self._state.stack:
                self._start_pass(flow)
                set_trace_context(run_id=uuid.uuid4().hex, flow=flow.name)
            self._state.is_stepping = True
            self._state.stop_requested = False
            self._stop_event = asyncio.Event()

            executed = await self._advance_once()
            if not executed and not self._state.stop_requested:
                self.observer.on_message("End of flow reached.", Severity.INFO)
        finally:
            self._state.is_stepping = False
            self._state.is_running = False
            self._state.active_cancellation = None
            self.observer.on_refresh()
            if self._state.stop_requested:
                self.observer.on_flow_stopped(self._state.root_context, self._state.results)

    # === STACK WALK ===

    async def _drain(self) -> None:
        while self._state.stack:
            if self._state.stop_requested:
                break
            frame = self._next_due_frame()
            if frame is None or self._state.stop_requested:
                break

            effect = await self._dispatcher.dispatch(self._state, frame)
            self._state.stack.advance_after(frame, effect)

            if self._state.stop_requested:
                break
            if frame.has_more and self.delay_ms > 0:
                await self._sleep(self.delay_ms / 1000)

    async def _advance_once(self) -> bool:
        """Dispatch one step. Returns False when nothing was left to run."""
        if self._state.stop_requested:
            return False
        frame = self._next_due_frame()
        if frame is None or self._state.stop_requested:
            return False
        effect = await self._dispatcher.dispatch(self._state, frame)
        self._state.stack.advance_after(frame, effect)
        return True

    def _next_due_frame(self) -> ScopeFrame | None:
        """Retire exhausted frames until one has a step under its cursor."""
        stack = self._state.stack
        while stack:
            frame = stack.top
            if frame.has_more:
                return frame
            outcome = stack.pop()
            if frame.kind == FrameKind.LOOP:
                if outcome == PopOutcome.NEXT_ITERATION:
                    self._dispatcher.announce_iteration(self._state, frame)
                else:
                    self._dispatcher.announce_loop_end(self._state, frame)
            if self._state.stop_requested:
                return None
        return None

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def results(self) -> list[Any]:
        return self._state.results
