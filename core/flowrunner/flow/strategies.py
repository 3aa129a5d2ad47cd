"""
Strategy interfaces for the collaborators the engine delegates to.

The engine never interprets template syntax, condition operators or path
expressions itself. Hosts plug those in through the protocols below:

- Substituter: expands variables in a step before it runs
- ConditionEvaluator: decides a condition step's predicate
- PathEvaluator: resolves a path expression against a value

Contracts:
    substitute() is pure, must not mutate its inputs, and raises only on
    malformed input. The engine records such a raise as a step error.
    evaluate() for conditions is pure; any raise is a condition failure.
    resolve() for paths is pure and returns MISSING for "not found".
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from flowrunner.flow.context import MISSING, Context


@dataclass
class SubstitutionResult:
    """A step with its variables expanded.

    ``unquoted_placeholders`` maps placeholder strings embedded in a request
    body to raw values that must be written as JSON literals (numbers,
    booleans, objects) rather than quoted strings.
    """

    processed_step: Any
    unquoted_placeholders: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Substituter(Protocol):
    def __call__(self, step: Any, context: Context) -> SubstitutionResult: ...


@runtime_checkable
class ConditionEvaluator(Protocol):
    def __call__(self, condition: Any, context: Context) -> bool: ...


@runtime_checkable
class PathEvaluator(Protocol):
    def __call__(self, data: Any, path: str) -> Any: ...


def passthrough_substitute(step: Any, context: Context) -> SubstitutionResult:
    """Return the step unchanged."""
    return SubstitutionResult(processed_step=step)


def never_true(condition: Any, context: Context) -> bool:
    """Default predicate: always takes the else branch."""
    return False


def lookup_key(data: Any, path: str) -> Any:
    """Resolve ``path`` as a single top-level key of a mapping."""
    if isinstance(data, dict) and path in data:
        return data[path]
    return MISSING
