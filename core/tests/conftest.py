"""Shared fixtures and fakes for flow runner tests."""

from __future__ import annotations

from string import Template

import httpx
import pytest

from flowrunner.config import RunnerConfig
from flowrunner.flow.context import MISSING
from flowrunner.flow.observer import FlowObserver
from flowrunner.flow.runner import FlowRunner
from flowrunner.flow.steps import RequestStep
from flowrunner.flow.strategies import SubstitutionResult
from flowrunner.observability import clear_trace_context


class RecordingObserver(FlowObserver):
    """Observer that keeps every notification for assertions."""

    def __init__(self):
        super().__init__()
        self.started: list[str] = []
        self.completed: list[tuple[str, str]] = []
        self.completed_contexts: list[tuple[str, dict]] = []
        self.errors: list[tuple[str, BaseException]] = []
        self.messages: list[tuple[str, str]] = []
        self.context_updates: list[dict] = []
        self.flow_completed: list[dict] = []
        self.flow_stopped: list[dict] = []
        self.refreshes = 0

    def on_step_start(self, step, path):
        self.started.append(step.id)
        return super().on_step_start(step, path)

    def on_step_complete(self, token, step, result, context, path):
        self.completed.append((step.id, str(result.status)))
        self.completed_contexts.append((step.id, dict(context)))

    def on_error(self, token, step, error, context, path):
        self.errors.append((step.id, error))

    def on_message(self, text, severity):
        self.messages.append((text, str(severity)))

    def on_context_changed(self, context):
        self.context_updates.append(dict(context))

    def on_flow_complete(self, context, results):
        self.flow_completed.append(dict(context))

    def on_flow_stopped(self, context, results):
        self.flow_stopped.append(dict(context))

    def on_refresh(self):
        self.refreshes += 1

    @property
    def real_started(self) -> list[str]:
        """Started step ids without engine markers."""
        return [s for s in self.started if not _is_marker(s)]

    def message_texts(self, severity: str | None = None) -> list[str]:
        return [text for text, sev in self.messages if severity is None or sev == severity]


def _is_marker(step_id: str) -> bool:
    return any(tag in step_id for tag in ("-result", "-start", "-iter-", "-end"))


def dotted_path(data, path: str):
    """Minimal ``a.b.0.c`` resolver used as the test path evaluator."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


def equals_condition(condition, context) -> bool:
    """Loose equality predicate used as the test condition evaluator."""
    actual = dotted_path(context, condition.variable)
    return actual is not MISSING and str(actual) == str(condition.value)


def template_substitute(step, context) -> SubstitutionResult:
    """Expand ``$name`` in request URLs; everything else passes through."""
    if isinstance(step, RequestStep):
        url = Template(step.url).safe_substitute(
            {k: v for k, v in context.items() if isinstance(v, str | int | float)}
        )
        return SubstitutionResult(processed_step=step.model_copy(update={"url": url}))
    return SubstitutionResult(processed_step=step)


def json_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"path": request.url.path})


@pytest.fixture(autouse=True)
def _clean_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def make_runner(observer):
    """Build a runner whose HTTP traffic goes to ``handler``."""

    def _make(handler=json_ok, timeout: float = 5.0, **kwargs) -> FlowRunner:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("substitute", template_substitute)
        kwargs.setdefault("evaluate_condition", equals_condition)
        kwargs.setdefault("evaluate_path", dotted_path)
        return FlowRunner(
            observer=observer,
            config=RunnerConfig(step_delay_ms=0, request_timeout_seconds=timeout),
            http_client=client,
            **kwargs,
        )

    return _make


@pytest.fixture
def path_eval():
    return dotted_path
