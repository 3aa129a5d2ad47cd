"""Exception types raised by the flow engine.

Step-local failures are subclasses of ``StepExecutionError``. The
dispatcher catches them and turns them into ``error`` step results, so
they never escape a ``run()`` or ``step()`` call.
"""


class FlowRunnerError(Exception):
    """Base class for all flow runner errors."""


class ExecutionInProgressError(FlowRunnerError):
    """Raised when a run is requested while another run or step is active."""


class StepExecutionError(FlowRunnerError):
    """A single step could not be executed."""


class SubstitutionError(StepExecutionError):
    """Variable substitution failed for a step."""


class BodyPreparationError(StepExecutionError):
    """The request body could not be serialized or validated."""


class ConditionEvaluationError(StepExecutionError):
    """A condition predicate raised while being evaluated."""


class LoopSourceError(StepExecutionError):
    """A loop source did not resolve to a collection."""


class UnknownStepTypeError(StepExecutionError):
    """The dispatcher was handed a step kind it does not know."""
