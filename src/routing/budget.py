"""Cost ledger for budget governance.

The CostLedger accumulates observed spend and token usage for one router
and gates new requests against configured ceilings. It provides:
- Pre-flight affordability checks against per-run and daily limits
- Per-provider cost and request breakdowns
- Alerting when an alert threshold is reached, at most once per cooldown
- Milestone logging as total spend grows
- Point-in-time statistics and a printable summary

Limits are soft. The gate compares the running total plus the *estimated*
cost of the next request against each ceiling; the actual cost is only
known after the backend returns, so the total can end slightly above a
limit. The ledger is in-memory only and lives as long as its router.

All mutation and reads go through one lock, so concurrent ``route`` calls
never lose updates.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from src.routing.config import CostManagementConfig

if TYPE_CHECKING:
    from src.providers.base import GenerationResponse

log = structlog.get_logger(__name__)

ALERT_COOLDOWN_SECONDS = 60.0

# Spend levels (USD) logged once when crossed
COST_MILESTONES = (0.01, 0.05, 0.10, 0.25, 0.50, 1.0, 2.5, 5.0, 10.0)


@dataclass(frozen=True)
class BudgetCheck:
    """Outcome of an affordability check.

    Attributes:
        allowed: True if the estimate fits under every configured ceiling
        estimated_cost_usd: Estimate that was checked
        current_total_usd: Running total at check time
        limit_name: Breached limit ("per_run_limit_usd" / "daily_limit_usd")
        limit_usd: Value of the breached limit
    """

    allowed: bool
    estimated_cost_usd: float
    current_total_usd: float
    limit_name: str | None = None
    limit_usd: float | None = None


@dataclass(frozen=True)
class CostAlert:
    total_cost_usd: float
    threshold_usd: float
    raised_at: datetime


@dataclass(frozen=True)
class CostStatistics:
    total_cost_usd: float
    total_requests: int
    cost_by_provider: dict[str, float]
    requests_by_provider: dict[str, int]
    total_input_tokens: int
    total_output_tokens: int
    total_tokens: int
    average_cost_per_request: float
    started_at: datetime
    duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


@dataclass
class _LedgerState:
    total_cost_usd: float = 0.0
    total_requests: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    cost_by_provider: dict[str, float] = field(default_factory=dict)
    requests_by_provider: dict[str, int] = field(default_factory=dict)


class CostLedger:
    """Accumulates observed cost and answers affordability questions."""

    def __init__(
        self,
        limits: CostManagementConfig | None = None,
        *,
        alert_cooldown_seconds: float = ALERT_COOLDOWN_SECONDS,
        on_alert: Callable[[CostAlert], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the ledger.

        Args:
            limits: Daily / per-run ceilings and alert threshold (all optional)
            alert_cooldown_seconds: Minimum time between two threshold alerts
            on_alert: Optional callback invoked with each emitted alert
            clock: Monotonic time source, injectable for tests
        """
        self._limits = limits or CostManagementConfig()
        self._cooldown = alert_cooldown_seconds
        self._on_alert = on_alert
        self._clock = clock
        self._lock = threading.Lock()

        self._state = _LedgerState()
        self._started_at = datetime.now(UTC)
        self._started_clock = clock()
        self._last_alert_clock: float | None = None

        log.info(
            "cost_ledger.initialized",
            daily_limit_usd=self._limits.daily_limit_usd,
            per_run_limit_usd=self._limits.per_run_limit_usd,
            alert_threshold_usd=self._limits.alert_threshold_usd,
        )

    @property
    def limits(self) -> CostManagementConfig:
        return self._limits

    def check(self, estimated_cost_usd: float) -> BudgetCheck:
        """Check whether an estimated cost fits under the configured ceilings.

        The per-run ceiling is checked first, then the daily ceiling.
        """
        with self._lock:
            current = self._state.total_cost_usd

        projected = current + estimated_cost_usd
        for limit_name in ("per_run_limit_usd", "daily_limit_usd"):
            limit = getattr(self._limits, limit_name)
            if limit is not None and projected > limit:
                log.warning(
                    "cost_ledger.limit_exceeded",
                    limit=limit_name,
                    limit_usd=limit,
                    current_usd=round(current, 6),
                    estimated_usd=round(estimated_cost_usd, 6),
                )
                return BudgetCheck(
                    allowed=False,
                    estimated_cost_usd=estimated_cost_usd,
                    current_total_usd=current,
                    limit_name=limit_name,
                    limit_usd=limit,
                )

        return BudgetCheck(
            allowed=True,
            estimated_cost_usd=estimated_cost_usd,
            current_total_usd=current,
        )

    def can_afford(self, estimated_cost_usd: float) -> bool:
        return self.check(estimated_cost_usd).allowed

    def record(self, response: GenerationResponse) -> None:
        """Fold a successful response's actual cost and usage into the totals."""
        alert: CostAlert | None = None

        with self._lock:
            state = self._state
            previous_total = state.total_cost_usd

            state.total_cost_usd += response.cost_usd
            state.total_requests += 1
            state.total_input_tokens += response.usage.input_tokens
            state.total_output_tokens += response.usage.output_tokens
            state.cost_by_provider[response.provider] = (
                state.cost_by_provider.get(response.provider, 0.0) + response.cost_usd
            )
            state.requests_by_provider[response.provider] = (
                state.requests_by_provider.get(response.provider, 0) + 1
            )
            total = state.total_cost_usd

            threshold = self._limits.alert_threshold_usd
            if threshold is not None and total >= threshold:
                now = self._clock()
                if self._last_alert_clock is None or now - self._last_alert_clock >= self._cooldown:
                    self._last_alert_clock = now
                    alert = CostAlert(
                        total_cost_usd=total,
                        threshold_usd=threshold,
                        raised_at=datetime.now(UTC),
                    )

        log.info(
            "cost_ledger.request_recorded",
            provider=response.provider,
            model=response.model,
            cost_usd=round(response.cost_usd, 6),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            total_cost_usd=round(total, 6),
        )

        for milestone in COST_MILESTONES:
            if previous_total < milestone <= total:
                log.info("cost_ledger.milestone_reached", milestone_usd=milestone)

        if alert is not None:
            self._emit_alert(alert)

    def _emit_alert(self, alert: CostAlert) -> None:
        log.warning(
            "cost_ledger.alert_threshold_reached",
            total_cost_usd=round(alert.total_cost_usd, 6),
            threshold_usd=alert.threshold_usd,
        )
        if self._on_alert is None:
            return
        try:
            self._on_alert(alert)
        except Exception as exc:
            # Alerts are advisory; a broken callback must not fail the request
            log.error("cost_ledger.alert_callback_failed", error=str(exc))

    def get_statistics(self) -> CostStatistics:
        with self._lock:
            state = self._state
            requests = state.total_requests
            return CostStatistics(
                total_cost_usd=state.total_cost_usd,
                total_requests=requests,
                cost_by_provider=dict(state.cost_by_provider),
                requests_by_provider=dict(state.requests_by_provider),
                total_input_tokens=state.total_input_tokens,
                total_output_tokens=state.total_output_tokens,
                total_tokens=state.total_input_tokens + state.total_output_tokens,
                average_cost_per_request=(
                    state.total_cost_usd / requests if requests > 0 else 0.0
                ),
                started_at=self._started_at,
                duration_ms=(self._clock() - self._started_clock) * 1000,
            )

    def reset(self) -> None:
        """Zero every counter and restart the clocks (new run or new day)."""
        with self._lock:
            previous = self._state.total_cost_usd
            self._state = _LedgerState()
            self._started_at = datetime.now(UTC)
            self._started_clock = self._clock()
            self._last_alert_clock = None
        log.info("cost_ledger.reset", previous_total_usd=round(previous, 6))

    def format_summary(self) -> str:
        """Render a plain-text cost report."""
        stats = self.get_statistics()
        rule = "=" * 80
        lines = [
            rule,
            "AI API COST SUMMARY",
            rule,
            f"Total Cost:           ${stats.total_cost_usd:.6f}",
            f"Total Requests:       {stats.total_requests}",
            f"Average Cost/Request: ${stats.average_cost_per_request:.6f}",
            f"Total Tokens:         {stats.total_tokens:,}",
            f"  Input:              {stats.total_input_tokens:,}",
            f"  Output:             {stats.total_output_tokens:,}",
            f"Duration:             {stats.duration_ms / 1000:.2f}s",
        ]

        if stats.cost_by_provider:
            lines.append("")
            lines.append("Cost by Provider:")
            for provider, cost in stats.cost_by_provider.items():
                requests = stats.requests_by_provider.get(provider, 0)
                lines.append(f"  {provider:<15} ${cost:.6f} ({requests} requests)")

        for label, limit in (
            ("Per-Run Limit:", self._limits.per_run_limit_usd),
            ("Daily Limit:", self._limits.daily_limit_usd),
        ):
            if limit:
                used_pct = stats.total_cost_usd / limit * 100
                lines.append(f"{label:<22}${limit} ({used_pct:.1f}% used)")

        lines.append(rule)
        return "\n".join(lines)
