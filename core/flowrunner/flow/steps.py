"""
Step Model - The declarative description of a flow.

A flow is an ordered list of steps. Each step is one of three kinds:
- request: issue an HTTP call, optionally extracting variables from the response
- condition: evaluate a predicate and run either the then or the else branch
- loop: iterate over a collection, running the body once per item

Condition and loop steps carry child step lists, so a flow is a finite tree.
The step kind is resolved once, when the flow is built, through a pydantic
discriminated union on ``type``.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class FailurePolicy(StrEnum):
    """What a failed request step does to the rest of the flow."""

    STOP = "stop"  # Halt the flow (default)
    CONTINUE = "continue"  # Record the failure and keep going


_ALIASED = ConfigDict(populate_by_name=True, extra="allow", frozen=True)


class ConditionData(BaseModel):
    """Structured predicate: ``<variable> <operator> <value>``."""

    model_config = _ALIASED

    variable: str = ""
    operator: str = ""
    value: Any = None


class RequestStep(BaseModel):
    """
    An HTTP request.

    Example:
        RequestStep(
            id="login",
            name="Log in",
            method="POST",
            url="{{baseUrl}}/login",
            body={"user": "##VAR:string:user##"},
            extract={"token": "body.token"},
        )
    """

    model_config = _ALIASED

    id: str
    name: str = ""
    type: Literal["request"] = "request"
    method: str = "GET"
    url: str = ""
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    extract: dict[str, str] = Field(
        default_factory=dict,
        description="Variables to populate from the response: {var_name: path}",
    )
    on_failure: FailurePolicy = Field(default=FailurePolicy.STOP, alias="onFailure")


class ConditionStep(BaseModel):
    """Branch on a predicate evaluated against the current context."""

    model_config = _ALIASED

    id: str
    name: str = ""
    type: Literal["condition"] = "condition"
    condition_data: ConditionData = Field(default_factory=ConditionData, alias="conditionData")
    then_steps: list["Step"] = Field(
        default_factory=list,
        validation_alias=AliasChoices("then_steps", "thenSteps", "then"),
    )
    else_steps: list["Step"] = Field(
        default_factory=list,
        validation_alias=AliasChoices("else_steps", "elseSteps", "else"),
    )


class LoopStep(BaseModel):
    """Run ``body_steps`` once per item of the collection named by ``source``."""

    model_config = _ALIASED

    id: str
    name: str = ""
    type: Literal["loop"] = "loop"
    source: str = ""
    loop_variable: str = Field(default="item", alias="loopVariable")
    body_steps: list["Step"] = Field(
        default_factory=list,
        validation_alias=AliasChoices("body_steps", "bodySteps", "loopSteps"),
    )

    @property
    def source_path(self) -> str:
        """``source`` with any surrounding ``{{ }}`` removed."""
        return self.source.strip().removeprefix("{{").removesuffix("}}").strip()


Step = Annotated[RequestStep | ConditionStep | LoopStep, Field(discriminator="type")]

ConditionStep.model_rebuild()
LoopStep.model_rebuild()


class MarkerStep(BaseModel):
    """Synthetic step the engine reports for branch and loop bookkeeping."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: Literal["system"] = "system"


class Flow(BaseModel):
    """A named, ordered list of top-level steps plus its static variables."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    steps: list[Step] = Field(default_factory=list)
    static_vars: dict[str, Any] = Field(default_factory=dict, alias="staticVars")

    def iter_steps(self):
        """Depth-first walk over every step in the tree."""
        stack = list(reversed(self.steps))
        while stack:
            step = stack.pop()
            yield step
            if isinstance(step, ConditionStep):
                stack.extend(reversed(step.else_steps))
                stack.extend(reversed(step.then_steps))
            elif isinstance(step, LoopStep):
                stack.extend(reversed(step.body_steps))

    def find_step(self, step_id: str) -> RequestStep | ConditionStep | LoopStep | None:
        for step in self.iter_steps():
            if step.id == step_id:
                return step
        return None
