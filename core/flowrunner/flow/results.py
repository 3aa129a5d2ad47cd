"""Step results and the per-run result log."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowrunner.flow.extraction import ExtractionFailure


class StepStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    STOPPED = "stopped"


@dataclass
class StepResult:
    """Outcome of one executed step."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    error: str | None = None
    extraction_failures: list[ExtractionFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "extraction_failures": [f.to_dict() for f in self.extraction_failures],
        }
