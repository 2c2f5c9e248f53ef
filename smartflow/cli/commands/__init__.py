"""CLI commands for SmartFlow."""

from . import (
    config_cmd,
    inspect,
    run,
    validate,
)

__all__ = [
    "config_cmd",
    "inspect",
    "run",
    "validate",
]
