"""
flowrunner - Execute declarative API test flows.

A flow is a tree of request, condition and loop steps sharing a variable
context. The runner walks it with an explicit execution stack, so a flow
can run to completion or advance one step at a time.
"""

from flowrunner.config import RunnerConfig
from flowrunner.flow import (
    ConditionStep,
    ExecutionInProgressError,
    FailurePolicy,
    Flow,
    FlowObserver,
    FlowRunner,
    LoggingObserver,
    LoopStep,
    RequestStep,
    StepResult,
    StepStatus,
)
from flowrunner.observability import configure_logging

__all__ = [
    "Flow",
    "RequestStep",
    "ConditionStep",
    "LoopStep",
    "FailurePolicy",
    "FlowRunner",
    "FlowObserver",
    "LoggingObserver",
    "StepResult",
    "StepStatus",
    "RunnerConfig",
    "ExecutionInProgressError",
    "configure_logging",
]
