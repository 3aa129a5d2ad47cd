"""Variable context helpers.

A context is a flat ``dict`` of variable name to JSON-like value. Each
scope frame owns one; child frames get a shallow copy at creation time.
"""

from typing import Any

Context = dict[str, Any]


class _Missing:
    """Sentinel type for "not found"."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


# Returned by path evaluators when a path does not resolve. Distinct from
# ``None``, which is a legitimate JSON null.
MISSING: Any = _Missing()


def snapshot(context: Context) -> Context:
    """Shallow copy of a context."""
    return dict(context)


def assign(context: Context, name: str, value: Any) -> None:
    """Set ``name`` in place; assigning ``MISSING`` removes the variable."""
    if value is MISSING:
        context.pop(name, None)
    else:
        context[name] = value


def values_differ(before: Context, after: Context) -> bool:
    """True when the two contexts differ by value (not identity)."""
    if before.keys() != after.keys():
        return True
    return any(before[key] != value for key, value in after.items())
