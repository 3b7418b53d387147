"""Fallback candidate ordering.

When the primary provider for a step fails, the router asks this module for
the order in which the configured fallback candidates should be tried:

- cascade: declaration order
- round-robin: declaration order rotated to start at a shared cursor, which
  advances by one on every consultation
- cheapest-first: local providers first, then ascending estimated cost of a
  fixed reference request
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from src.providers.base import GenerationRequest

if TYPE_CHECKING:
    from src.providers.base import LLMProvider
    from src.routing.config import FallbackCandidate

log = structlog.get_logger(__name__)

# Nominal request used to rank candidates by price. Ranking against the
# caller's real request would need an estimate per candidate per request.
REFERENCE_REQUEST = GenerationRequest(
    system_prompt="test",
    user_prompt="test",
    max_tokens=2000,
)


class FallbackStrategy(StrEnum):
    CASCADE = "cascade"
    ROUND_ROBIN = "round-robin"
    CHEAPEST_FIRST = "cheapest-first"


class RoundRobinCursor:
    """Shared rotation position for the round-robin strategy."""

    def __init__(self) -> None:
        self._position = 0
        self._lock = threading.Lock()

    @property
    def position(self) -> int:
        with self._lock:
            return self._position

    def advance(self, length: int) -> int:
        """Return the current position and move it one step (mod ``length``)."""
        if length < 1:
            raise ValueError("length must be positive")
        with self._lock:
            current = self._position % length
            self._position = (current + 1) % length
            return current

    def reset(self) -> None:
        with self._lock:
            self._position = 0


def order_candidates(
    strategy: FallbackStrategy,
    candidates: Sequence[FallbackCandidate],
    providers: Mapping[str, LLMProvider],
    cursor: RoundRobinCursor,
) -> list[FallbackCandidate]:
    """Return fallback candidates in the order they should be attempted.

    Args:
        strategy: Configured fallback strategy
        candidates: Fallback candidates in declaration order
        providers: Registered providers by name (used by cheapest-first)
        cursor: Round-robin cursor, advanced once per call for round-robin

    Returns:
        A new list; ``candidates`` is never modified.
    """
    if not candidates:
        return []

    if strategy == FallbackStrategy.CASCADE:
        return list(candidates)

    if strategy == FallbackStrategy.ROUND_ROBIN:
        start = cursor.advance(len(candidates))
        ordered = list(candidates[start:]) + list(candidates[:start])
        log.debug("fallback.round_robin", start=start, first=ordered[0].provider)
        return ordered

    if strategy == FallbackStrategy.CHEAPEST_FIRST:
        return _cheapest_first(candidates, providers)

    raise ValueError(f"Unknown fallback strategy: {strategy}")


def _cheapest_first(
    candidates: Sequence[FallbackCandidate],
    providers: Mapping[str, LLMProvider],
) -> list[FallbackCandidate]:
    def sort_key(candidate: FallbackCandidate) -> tuple[int, float]:
        provider = providers.get(candidate.provider)
        if provider is None:
            # Unregistered names go last; the attempt will fail anyway
            return (2, 0.0)
        if provider.is_local:
            return (0, 0.0)
        estimate = provider.estimate_cost(REFERENCE_REQUEST.with_defaults(model=candidate.model))
        return (1, estimate.cost_usd)

    ordered = sorted(candidates, key=sort_key)
    log.debug("fallback.cheapest_first", order=[c.provider for c in ordered])
    return ordered
