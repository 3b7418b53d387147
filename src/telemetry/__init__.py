"""Telemetry package for observability.

This package contains structured logging configuration and the helpers that
bind run and step identifiers to every log line.
"""

from __future__ import annotations

from src.telemetry.logging import (
    bind_run_context,
    bind_step_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "bind_run_context",
    "bind_step_context",
    "clear_context",
    "configure_logging",
]
