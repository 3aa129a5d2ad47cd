"""
Extraction - Populate context variables from a request's response.

Each rule maps a variable name to a path into the response output
(``{"status", "headers", "body"}``). Reserved forms:

    status / .status    HTTP status code
    headers             all response headers
    headers.<name>      one header, matched case-insensitively
    body                the parsed response body
    body.<path>         a path inside the body
    <path>              a path inside the body, then inside the whole output

A rule that cannot be resolved never fails the step: the variable is unset
and the failure is recorded for later inspection.
"""

import logging
from dataclasses import dataclass
from typing import Any

from flowrunner.flow.context import MISSING, Context, assign, snapshot, values_differ
from flowrunner.flow.strategies import PathEvaluator

logger = logging.getLogger(__name__)


@dataclass
class ExtractionFailure:
    var_name: str
    path: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"var_name": self.var_name, "path": self.path, "reason": self.reason}


@dataclass
class ExtractionReport:
    failures: list[ExtractionFailure]
    changed: bool


def resolve_output_path(output: dict[str, Any], path: str, evaluate_path: PathEvaluator) -> Any:
    """Resolve one extraction path against a request output."""
    path = path.strip()
    if path in ("status", ".status"):
        return output.get("status", MISSING)
    if path == "headers":
        return output.get("headers", MISSING)
    if path.startswith("headers."):
        wanted = path[len("headers.") :].lower()
        for name, value in (output.get("headers") or {}).items():
            if name.lower() == wanted:
                return value
        return MISSING
    if path == "body":
        return output.get("body", MISSING)
    if path.startswith("body."):
        return evaluate_path(output.get("body"), path[len("body.") :])

    value = evaluate_path(output.get("body"), path)
    if value is MISSING:
        value = evaluate_path(output, path)
    return value


def extract_variables(
    rules: dict[str, str],
    output: dict[str, Any],
    context: Context,
    evaluate_path: PathEvaluator,
) -> ExtractionReport:
    """Apply ``rules`` to ``output``, updating ``context`` in place.

    Never raises for a bad rule. Returns the per-variable failures and
    whether the context changed by value.
    """
    before = snapshot(context)
    failures: list[ExtractionFailure] = []

    for var_name, path in rules.items():
        try:
            value = resolve_output_path(output, path, evaluate_path)
        except Exception as e:
            logger.warning(f"Extraction of '{var_name}' from '{path}' raised: {e}")
            failures.append(ExtractionFailure(var_name, path, f"Path evaluation error: {e}"))
            assign(context, var_name, MISSING)
            continue

        if value is MISSING:
            failures.append(ExtractionFailure(var_name, path, "Path not found in response"))
        assign(context, var_name, value)

    return ExtractionReport(failures=failures, changed=values_differ(before, context))
