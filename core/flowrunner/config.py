"""Shared flow runner configuration utilities.

Centralises reading of ~/.flowrunner/configuration.json so that hosts
embedding the runner share one implementation of the defaults.

Example file:
    {
        "runner": {"step_delay_ms": 250, "request_timeout_seconds": 10},
        "logging": {"level": "DEBUG", "format": "human"}
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWRUNNER_CONFIG_FILE = Path.home() / ".flowrunner" / "configuration.json"

# Delay between steps of a continuous run, in milliseconds
DEFAULT_STEP_DELAY_MS = 1000

# Hard limit on a single request, in seconds
DEFAULT_REQUEST_TIMEOUT = 30.0


def get_flowrunner_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, returning {} when the file is absent or unreadable."""
    config_file = path or Path(os.environ.get("FLOWRUNNER_CONFIG", FLOWRUNNER_CONFIG_FILE))
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_step_delay_ms() -> int:
    """Return the configured inter-step delay, never negative."""
    value = get_flowrunner_config().get("runner", {}).get("step_delay_ms", DEFAULT_STEP_DELAY_MS)
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return DEFAULT_STEP_DELAY_MS


def get_request_timeout() -> float:
    """Return the per-request hard timeout in seconds."""
    value = (
        get_flowrunner_config()
        .get("runner", {})
        .get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT)
    )
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return DEFAULT_REQUEST_TIMEOUT
    return timeout if timeout > 0 else DEFAULT_REQUEST_TIMEOUT


def get_log_settings() -> tuple[str, str]:
    """Return (level, format) for configure_logging()."""
    logging_cfg = get_flowrunner_config().get("logging", {})
    return logging_cfg.get("level", "INFO"), logging_cfg.get("format", "auto")


# ---------------------------------------------------------------------------
# RunnerConfig – shared across hosts
# ---------------------------------------------------------------------------


@dataclass
class RunnerConfig:
    """Runner settings loaded from ~/.flowrunner/configuration.json."""

    step_delay_ms: int = field(default_factory=get_step_delay_ms)
    request_timeout_seconds: float = field(default_factory=get_request_timeout)
