"""Structured logging configuration.

Configures structlog with JSON output for production runs and a readable,
coloured console format during development.

Features:
- JSON-formatted logs in production (human-readable in dev)
- Run ID and pipeline step bound through context variables, so every
  routing and ledger event carries the step that triggered it
- ISO8601 timestamps with timezone
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "logger": "src.routing.router",
        "event": "model_router.primary_selected",
        "run_id": "run_3f9a...",
        "step": "score_confidence",
        "provider": "anthropic",
        "model": "claude-3-5-haiku-20241022"
    }
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_run_context(run_id: str | None = None) -> str:
    """Bind a run ID to the log context and return it.

    Args:
        run_id: Existing run identifier. A new one is generated when omitted.
    """
    effective = run_id or f"run_{uuid.uuid4().hex[:16]}"
    structlog.contextvars.bind_contextvars(run_id=effective)
    return effective


def bind_step_context(step: str) -> None:
    """Bind the current pipeline step name to the log context.

    Args:
        step: Pipeline step name (e.g. "extract_candidates")
    """
    structlog.contextvars.bind_contextvars(step=step)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
