"""
Step Dispatcher - Executes exactly one due step, end to end.

For the step under a frame's cursor the dispatcher:
1. Notifies the observer and substitutes variables into a snapshot
2. Runs the kind-specific handler (request / condition / loop)
3. Applies extraction rules after a successful request
4. Records exactly one StepResult and applies the failure policy

Nothing a step does escapes ``dispatch()``: every exception becomes an
``error`` result and halts the flow.
"""

import json
import logging
from collections.abc import Callable
from typing import Any

from flowrunner.flow.context import MISSING, Context, snapshot
from flowrunner.flow.errors import (
    ConditionEvaluationError,
    LoopSourceError,
    SubstitutionError,
    UnknownStepTypeError,
)
from flowrunner.flow.extraction import extract_variables
from flowrunner.flow.observer import FlowObserver, Severity
from flowrunner.flow.request_executor import CancellationToken, RequestExecutor
from flowrunner.flow.results import StepResult, StepStatus
from flowrunner.flow.stack import FrameKind, ScopeFrame, StackEffect
from flowrunner.flow.state import EngineState
from flowrunner.flow.steps import (
    ConditionStep,
    FailurePolicy,
    LoopStep,
    MarkerStep,
    RequestStep,
)
from flowrunner.flow.strategies import (
    ConditionEvaluator,
    PathEvaluator,
    Substituter,
    SubstitutionResult,
)
from flowrunner.observability import set_trace_context

logger = logging.getLogger(__name__)

ITEM_PREVIEW_LIMIT = 100


class StepDispatcher:
    """Runs one step against its frame's live context."""

    def __init__(
        self,
        observer: FlowObserver,
        request_executor: RequestExecutor,
        substitute: Substituter,
        evaluate_condition: ConditionEvaluator,
        evaluate_path: PathEvaluator,
        on_halt: Callable[[], None],
    ):
        self.observer = observer
        self.request_executor = request_executor
        self.substitute = substitute
        self.evaluate_condition = evaluate_condition
        self.evaluate_path = evaluate_path
        self._on_halt = on_halt

    async def dispatch(self, state: EngineState, frame: ScopeFrame) -> StackEffect:
        """Execute the step under ``frame``'s cursor and report its stack effect."""
        step = frame.current_step()
        context = frame.context
        path = state.stack.describe()
        token = None
        recorded = False
        effect = StackEffect.STAYED
        set_trace_context(step_id=getattr(step, "id", None))

        try:
            token = self.observer.on_step_start(step, path)
            processed, placeholders = self._substitute(step, context)

            if isinstance(processed, RequestStep):
                result = await self._execute_request(state, processed, placeholders, context)
            elif isinstance(processed, ConditionStep):
                result, effect = self._execute_condition(state, step, processed, context)
            elif isinstance(processed, LoopStep):
                result, effect = self._execute_loop(state, step, processed, context)
                if effect == StackEffect.PUSHED_CHILD:
                    self.announce_iteration(state, state.stack.top)
            else:
                raise UnknownStepTypeError(
                    f"Unknown step type: {getattr(processed, 'type', type(processed).__name__)}"
                )

            state.results.append(result)
            recorded = True
            self.observer.on_step_complete(token, step, result, context, state.stack.describe())

            if self._should_halt(processed, result):
                self._halt(step)

        except Exception as e:
            logger.error(f"Step {getattr(step, 'id', '?')} failed: {e}", exc_info=True)
            if not recorded:
                state.results.append(
                    StepResult(
                        step_id=getattr(step, "id", ""),
                        status=StepStatus.ERROR,
                        error=str(e) or "Unknown execution error",
                    )
                )
            self.observer.on_error(token, step, e, snapshot(context), path)
            self._halt(step)

        return effect

    # === HANDLERS ===

    def _substitute(self, step: Any, context: Context) -> tuple[Any, dict[str, Any]]:
        try:
            outcome = self.substitute(step, snapshot(context))
        except Exception as e:
            raise SubstitutionError(
                f"Variable substitution failed for step {getattr(step, 'id', '?')}: {e}"
            ) from e
        if isinstance(outcome, SubstitutionResult):
            return outcome.processed_step, outcome.unquoted_placeholders
        return outcome, {}

    async def _execute_request(
        self,
        state: EngineState,
        step: RequestStep,
        placeholders: dict[str, Any],
        context: Context,
    ) -> StepResult:
        token = CancellationToken()
        if state.stop_requested:
            token.cancel("user")
        state.active_cancellation = token
        try:
            outcome = await self.request_executor.execute(step, placeholders, token)
        finally:
            state.active_cancellation = None

        for warning in outcome.warnings:
            self.observer.on_message(warning, Severity.WARNING)

        result = StepResult(
            step_id=step.id,
            status=StepStatus(outcome.status),
            output=outcome.output,
            error=outcome.error,
        )

        if result.succeeded and step.extract and outcome.output is not None:
            report = extract_variables(step.extract, outcome.output, context, self.evaluate_path)
            for failure in report.failures:
                self.observer.on_message(
                    f'Extraction warning: Path "{failure.path}" for variable '
                    f'"{failure.var_name}" yielded undefined ({failure.reason}).',
                    Severity.WARNING,
                )
            result.extraction_failures = report.failures
            if report.changed:
                self.observer.on_context_changed(context)

        return result

    def _execute_condition(
        self,
        state: EngineState,
        step: ConditionStep,
        processed: ConditionStep,
        context: Context,
    ) -> tuple[StepResult, StackEffect]:
        try:
            met = bool(self.evaluate_condition(processed.condition_data, context))
        except Exception as e:
            raise ConditionEvaluationError(f"Condition evaluation error: {e}") from e

        label = "TRUE" if met else "FALSE"
        branch = "then" if met else "else"
        self.emit_marker(
            state,
            MarkerStep(id=f"{step.id}-result", name=f"Condition Result: {label}"),
            f"Branch: {branch.capitalize()}",
            context,
        )

        if met:
            pushed = state.stack.push(step.then_steps, snapshot(context), FrameKind.THEN, step.id)
        else:
            pushed = state.stack.push(step.else_steps, snapshot(context), FrameKind.ELSE, step.id)

        result = StepResult(
            step_id=step.id,
            status=StepStatus.SUCCESS,
            output={"condition_met": met, "branch_taken": branch},
        )
        return result, StackEffect.PUSHED_CHILD if pushed else StackEffect.STAYED

    def _execute_loop(
        self,
        state: EngineState,
        step: LoopStep,
        processed: LoopStep,
        context: Context,
    ) -> tuple[StepResult, StackEffect]:
        source = processed.source_path
        try:
            items = self.evaluate_path(context, source)
        except Exception as e:
            raise LoopSourceError(f"Loop setup error: {e}") from e

        if items is MISSING or items is None:
            self.observer.on_message(
                f'Loop source "{processed.source}" resolved to nothing; treating it as empty.',
                Severity.WARNING,
            )
            items = []
        elif not isinstance(items, list | tuple):
            raise LoopSourceError(
                f'Loop setup error: source "{processed.source}" did not resolve to an array. '
                f"Value: {_preview(items)}"
            )

        start_msg = (
            f'Loop source "{processed.source}" is empty. Skipping.'
            if not items
            else f'Iterating over "{processed.source}" as "{{{{{step.loop_variable}}}}}".'
        )
        self.emit_marker(
            state,
            MarkerStep(id=f"{step.id}-start", name=f"Loop Start ({len(items)} items)"),
            start_msg,
            context,
        )

        frame = state.stack.push_loop(
            step.body_steps, list(items), step.loop_variable, context, step.id
        )
        result = StepResult(
            step_id=step.id,
            status=StepStatus.SUCCESS,
            output={"item_count": len(items)},
        )
        return result, StackEffect.PUSHED_CHILD if frame is not None else StackEffect.STAYED

    # === MARKERS ===

    def emit_marker(
        self,
        state: EngineState,
        marker: MarkerStep,
        output: Any,
        context: Context,
    ) -> None:
        """Report a synthetic result. Markers are not part of the result log."""
        path = state.stack.describe()
        token = self.observer.on_step_start(marker, path)
        self.observer.on_step_complete(
            token,
            marker,
            StepResult(step_id=marker.id, status=StepStatus.SUCCESS, output=output),
            context,
            path,
        )

    def announce_iteration(self, state: EngineState, frame: ScopeFrame) -> None:
        loop = frame.loop_state
        self.observer.on_context_changed(frame.context)
        self.emit_marker(
            state,
            MarkerStep(
                id=f"{frame.parent_step_id}-iter-{loop.item_index}",
                name=f"Loop Iteration {loop.item_index + 1}/{len(loop.items)}",
            ),
            f"{{{{{loop.loop_var_name}}}}} = {_preview(loop.current_item)}",
            frame.context,
        )

    def announce_loop_end(self, state: EngineState, frame: ScopeFrame) -> None:
        self.emit_marker(
            state,
            MarkerStep(id=f"{frame.parent_step_id}-end", name="Loop End"),
            "Finished loop.",
            frame.context,
        )

    # === FAILURE POLICY ===

    @staticmethod
    def _should_halt(step: Any, result: StepResult) -> bool:
        if result.status != StepStatus.ERROR:
            return False
        if isinstance(step, RequestStep):
            return step.on_failure == FailurePolicy.STOP
        return True

    def _halt(self, step: Any) -> None:
        name = getattr(step, "name", "") or getattr(step, "id", "?")
        self.observer.on_message(
            f'Execution stopped due to error in step "{name}".', Severity.ERROR
        )
        self._on_halt()


def _preview(value: Any) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    if len(text) > ITEM_PREVIEW_LIMIT:
        text = text[:ITEM_PREVIEW_LIMIT] + "..."
    return text
