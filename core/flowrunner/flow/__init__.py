"""Flow execution: step models, the execution stack, dispatcher and runner."""

from flowrunner.flow.context import MISSING, Context
from flowrunner.flow.errors import (
    BodyPreparationError,
    ConditionEvaluationError,
    ExecutionInProgressError,
    FlowRunnerError,
    LoopSourceError,
    StepExecutionError,
    SubstitutionError,
    UnknownStepTypeError,
)
from flowrunner.flow.extraction import ExtractionFailure, extract_variables
from flowrunner.flow.observer import FlowObserver, LoggingObserver, Severity
from flowrunner.flow.request_executor import CancellationToken, RequestExecutor
from flowrunner.flow.results import StepResult, StepStatus
from flowrunner.flow.runner import FlowRunner
from flowrunner.flow.stack import ExecutionStack, FrameKind, ScopeFrame, StackEffect
from flowrunner.flow.state import EngineState
from flowrunner.flow.steps import (
    ConditionData,
    ConditionStep,
    FailurePolicy,
    Flow,
    LoopStep,
    MarkerStep,
    RequestStep,
    Step,
)
from flowrunner.flow.strategies import (
    ConditionEvaluator,
    PathEvaluator,
    Substituter,
    SubstitutionResult,
)

__all__ = [
    # Model
    "Flow",
    "Step",
    "RequestStep",
    "ConditionStep",
    "ConditionData",
    "LoopStep",
    "MarkerStep",
    "FailurePolicy",
    # Context
    "Context",
    "MISSING",
    # Execution
    "FlowRunner",
    "EngineState",
    "ExecutionStack",
    "ScopeFrame",
    "FrameKind",
    "StackEffect",
    "RequestExecutor",
    "CancellationToken",
    "StepResult",
    "StepStatus",
    "ExtractionFailure",
    "extract_variables",
    # Collaborators
    "Substituter",
    "SubstitutionResult",
    "ConditionEvaluator",
    "PathEvaluator",
    "FlowObserver",
    "LoggingObserver",
    "Severity",
    # Errors
    "FlowRunnerError",
    "ExecutionInProgressError",
    "StepExecutionError",
    "SubstitutionError",
    "BodyPreparationError",
    "ConditionEvaluationError",
    "LoopSourceError",
    "UnknownStepTypeError",
]
