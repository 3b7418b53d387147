"""Model router - per-step provider selection, fallback, and budget gating.

For every logical request a pipeline step makes, the router:
1. Resolves the primary provider/model (offline override, step override, defaults)
2. Runs a single attempt: registered? available? affordable? then execute
3. On failure, walks the fallback candidates in the order chosen by the
   configured strategy, skipping providers already attempted
4. Records every successful response in the cost ledger

The router never retries the same provider. Transient errors are retried by
the backends themselves; the router's only resilience mechanism is moving to
a different provider.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from src.providers.base import (
    GenerationRequest,
    GenerationResponse,
    LLMProvider,
    ProviderError,
    ProviderUnavailableError,
    TokenUsage,
)
from src.routing.budget import CostLedger, CostStatistics
from src.routing.config import RoutingConfig
from src.routing.errors import (
    AllProvidersFailedError,
    BudgetExceededError,
    ProviderNotRegisteredError,
)
from src.routing.fallback import RoundRobinCursor, order_candidates

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RoutingResult:
    """A response plus how the router obtained it.

    Attributes:
        response: Response from the provider that succeeded
        attempted_providers: Providers tried, in order (never empty)
        fallback_used: True if any provider beyond the primary was needed
    """

    response: GenerationResponse
    attempted_providers: list[str]
    fallback_used: bool

    @property
    def content(self) -> str:
        return self.response.content

    @property
    def provider(self) -> str:
        return self.response.provider

    @property
    def model(self) -> str:
        return self.response.model

    @property
    def cost_usd(self) -> float:
        return self.response.cost_usd

    @property
    def usage(self) -> TokenUsage:
        return self.response.usage


class ModelRouter:
    """Routes pipeline-step requests across interchangeable providers.

    One router owns one cost ledger and one round-robin cursor; both live for
    the lifetime of the process unless reset.
    """

    def __init__(
        self,
        providers: Mapping[str, LLMProvider],
        config: RoutingConfig,
        *,
        ledger: CostLedger | None = None,
    ) -> None:
        """Initialize the router.

        Args:
            providers: Registered providers by name (a ProviderRegistry or dict)
            config: Validated routing configuration
            ledger: Cost ledger; one is built from config.cost_management if None
        """
        self._providers = providers
        self._config = config
        self._ledger = ledger or CostLedger(config.cost_management)
        self._cursor = RoundRobinCursor()

        log.info(
            "model_router.initialized",
            providers=list(providers),
            default_provider=config.defaults.provider,
            default_model=config.defaults.model,
            fallback_enabled=config.fallback.enabled,
            fallback_strategy=config.fallback.strategy,
            offline_mode=config.offline_mode.enabled,
        )

    @property
    def config(self) -> RoutingConfig:
        return self._config

    @property
    def ledger(self) -> CostLedger:
        return self._ledger

    def resolve_step(self, step: str) -> tuple[str, str]:
        """Return the (provider, model) a step will try first."""
        offline = self._config.offline_mode
        if offline.enabled:
            return offline.default_provider, offline.default_model  # type: ignore[return-value]
        provider, model, _ = self._config.step_target(step)
        return provider, model

    async def route(self, step: str, request: GenerationRequest) -> RoutingResult:
        """Route a request for a pipeline step.

        Args:
            step: Pipeline step name, used as the configuration lookup key
            request: Prompt and generation parameters

        Returns:
            RoutingResult with the response and routing metadata

        Raises:
            ProviderError: Primary failure when fallback is disabled or in
                offline mode (with ``step`` and ``attempted_providers`` set)
            AllProvidersFailedError: Primary and every fallback candidate failed
        """
        with structlog.contextvars.bound_contextvars(step=step):
            if self._config.offline_mode.enabled:
                return await self._route_offline(step, request)

            provider_name, model, reason = self._config.step_target(step)
            log.info(
                "model_router.primary_selected",
                provider=provider_name,
                model=model,
                reason=reason,
            )

            attempted = [provider_name]
            try:
                # An explicit model on the request is meant for the primary provider
                response = await self._attempt(provider_name, request.with_defaults(model=model))
            except ProviderError as exc:
                log.warning(
                    "model_router.primary_failed",
                    provider=provider_name,
                    error_type=type(exc).__name__,
                    error=exc.message,
                )
                if not self._config.fallback.enabled:
                    self._annotate(exc, step, attempted)
                    raise
                return await self._route_fallback(step, request, attempted, exc)

            return RoutingResult(
                response=response,
                attempted_providers=attempted,
                fallback_used=False,
            )

    async def _route_offline(self, step: str, request: GenerationRequest) -> RoutingResult:
        offline = self._config.offline_mode
        provider_name = offline.default_provider or ""
        log.info(
            "model_router.offline_mode",
            provider=provider_name,
            model=offline.default_model,
        )

        attempted = [provider_name]
        try:
            response = await self._attempt(
                provider_name, _force_model(request, offline.default_model or "")
            )
        except ProviderError as exc:
            log.error("model_router.offline_failed", provider=provider_name, error=exc.message)
            self._annotate(exc, step, attempted)
            raise

        return RoutingResult(response=response, attempted_providers=attempted, fallback_used=False)

    async def _route_fallback(
        self,
        step: str,
        request: GenerationRequest,
        attempted: list[str],
        primary_error: ProviderError,
    ) -> RoutingResult:
        fallback = self._config.fallback
        assert fallback.strategy is not None

        candidates = order_candidates(
            fallback.strategy, fallback.providers, self._providers, self._cursor
        )
        log.info(
            "model_router.fallback_started",
            strategy=fallback.strategy.value,
            candidates=[c.provider for c in candidates],
        )

        failures: list[tuple[str, ProviderError]] = [(attempted[0], primary_error)]

        for candidate in candidates:
            if candidate.provider in attempted:
                continue
            attempted.append(candidate.provider)

            log.info(
                "model_router.fallback_attempt",
                provider=candidate.provider,
                model=candidate.model,
            )
            try:
                response = await self._attempt(
                    candidate.provider, _force_model(request, candidate.model)
                )
            except ProviderError as exc:
                failures.append((candidate.provider, exc))
                log.warning(
                    "model_router.fallback_failed",
                    provider=candidate.provider,
                    error_type=type(exc).__name__,
                    error=exc.message,
                )
                continue

            log.info(
                "model_router.fallback_succeeded",
                provider=candidate.provider,
                attempted=attempted,
            )
            return RoutingResult(
                response=response,
                attempted_providers=list(attempted),
                fallback_used=True,
            )

        log.error(
            "model_router.all_providers_failed",
            attempted=attempted,
            failures=[(name, type(err).__name__) for name, err in failures],
        )
        raise AllProvidersFailedError(step, list(attempted), failures) from primary_error

    async def _attempt(self, provider_name: str, request: GenerationRequest) -> GenerationResponse:
        """Single attempt against one provider.

        ``request.model`` is already resolved; temperature and max tokens
        fall back to the configured defaults here.
        """
        provider = self._providers.get(provider_name)
        if provider is None:
            log.error(
                "model_router.provider_not_registered",
                provider=provider_name,
                hint="check routing configuration provider names",
            )
            raise ProviderNotRegisteredError(provider_name)

        if not await provider.is_available():
            raise ProviderUnavailableError(provider_name)

        defaults = self._config.defaults
        effective = request.with_defaults(
            temperature=defaults.temperature,
            max_tokens=defaults.max_tokens,
        )

        estimate = provider.estimate_cost(effective, defaults.currency)
        check = self._ledger.check(estimate.cost_usd)
        if not check.allowed:
            log.warning(
                "model_router.budget_rejected",
                provider=provider_name,
                model=effective.model,
                limit=check.limit_name,
                estimated_cost_usd=round(estimate.cost_usd, 6),
            )
            raise BudgetExceededError(
                provider_name,
                estimated_cost_usd=estimate.cost_usd,
                limit_name=check.limit_name or "",
                limit_usd=check.limit_usd or 0.0,
                current_total_usd=check.current_total_usd,
            )

        log.debug(
            "model_router.dispatch",
            provider=provider_name,
            model=effective.model,
            estimated_cost_usd=round(estimate.cost_usd, 6),
            estimated_cost_display=round(estimate.amount, 6),
            currency=estimate.currency.value,
        )

        try:
            response = await provider.execute(effective)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"Provider {provider_name} failed: {type(exc).__name__}: {exc}",
                provider_name,
            ) from exc

        self._ledger.record(response)
        return response

    @staticmethod
    def _annotate(error: ProviderError, step: str, attempted: list[str]) -> None:
        error.step = step
        error.attempted_providers = list(attempted)

    # ------------------------------------------------------------------ #
    # Statistics and diagnostics
    # ------------------------------------------------------------------ #

    def get_cost_statistics(self) -> CostStatistics:
        return self._ledger.get_statistics()

    def reset_cost_tracking(self) -> None:
        """Reset cost tracking, e.g. for a new day or a new run."""
        self._ledger.reset()

    def format_cost_summary(self) -> str:
        return self._ledger.format_summary()

    async def is_provider_available(self, name: str) -> bool:
        provider = self._providers.get(name)
        if provider is None:
            return False
        return await provider.is_available()

    async def get_available_providers(self) -> list[str]:
        """Names of registered providers that currently report available."""
        return [name for name in self._providers if await self.is_provider_available(name)]

    def get_registered_providers(self) -> list[str]:
        return list(self._providers)


def _force_model(request: GenerationRequest, model: str) -> GenerationRequest:
    """Pin the model for fallback and offline attempts, whatever the caller asked for."""
    return GenerationRequest(
        system_prompt=request.system_prompt,
        user_prompt=request.user_prompt,
        model=model,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
