"""Routing failures.

All routing errors extend ``ProviderError`` so a pipeline step can catch a
single exception type. Only ``AllProvidersFailedError`` is terminal; the
others describe a single failed attempt and make the router move on to the
next fallback candidate.
"""

from __future__ import annotations

from src.providers.base import ProviderError


class ProviderNotRegisteredError(ProviderError):
    """A step or fallback entry names a provider that was never initialized.

    Usually a configuration defect rather than a transient condition.
    """

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider} is not registered", provider)


class BudgetExceededError(ProviderError):
    """The estimated cost of an attempt would breach a configured ceiling."""

    def __init__(
        self,
        provider: str,
        *,
        estimated_cost_usd: float,
        limit_name: str,
        limit_usd: float,
        current_total_usd: float,
    ) -> None:
        super().__init__(
            f"Cost limit would be exceeded on {provider}: "
            f"estimated ${estimated_cost_usd:.4f} + current ${current_total_usd:.4f} "
            f"> {limit_name} ${limit_usd:.4f}",
            provider,
        )
        self.estimated_cost_usd = estimated_cost_usd
        self.limit_name = limit_name
        self.limit_usd = limit_usd
        self.current_total_usd = current_total_usd


class AllProvidersFailedError(ProviderError):
    """Primary and every fallback candidate failed.

    The primary failure is chained as ``__cause__``; ``failures`` keeps every
    attempt's error in attempt order.
    """

    def __init__(
        self,
        step: str,
        attempted_providers: list[str],
        failures: list[tuple[str, ProviderError]],
    ) -> None:
        primary = failures[0][1] if failures else None
        root_cause = primary.message if primary is not None else "no candidates"
        super().__init__(
            f"All providers failed for step {step}. "
            f"Attempted: {', '.join(attempted_providers)}. "
            f"Primary failure: {root_cause}",
            attempted_providers[0] if attempted_providers else "",
            step=step,
            attempted_providers=attempted_providers,
        )
        self.failures = list(failures)

    @property
    def primary_failure(self) -> ProviderError | None:
        return self.failures[0][1] if self.failures else None
