"""Provider abstraction shared by every LLM backend.

The router only depends on ``LLMProvider``: an availability check, a
pre-flight cost estimate, and an execution call that returns content plus
actual cost and token usage. Concrete backends live next to this module
(``litellm_provider``, ``ollama``) and are registered by name.

Errors raised by backends are normalised to the ``ProviderError`` hierarchy
so the router can treat every failure uniformly.
"""

from __future__ import annotations

import dataclasses
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum

from src.providers.currency import Currency, convert_from_usd, get_exchange_rate

# Assumed completion length when a request does not bound its output
DEFAULT_ESTIMATED_OUTPUT_TOKENS = 2048


class ProviderType(StrEnum):
    """Remote providers bill per token, local ones have zero marginal cost."""

    REMOTE = "remote"
    LOCAL = "local"


# ------------------------------------------------------------------ #
# Request / response types
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class GenerationRequest:
    """A single prompt sent to a backend.

    Attributes:
        system_prompt: Instruction text defining the model's role
        user_prompt: The task itself
        model: Explicit model identifier, or None to let the router decide
        temperature: Sampling temperature, or None for the configured default
        max_tokens: Output token bound, or None for the configured default
    """

    system_prompt: str
    user_prompt: str
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    def with_defaults(
        self,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationRequest:
        """Return a copy with unset fields filled from the given defaults."""
        return dataclasses.replace(
            self,
            model=self.model if self.model is not None else model,
            temperature=self.temperature if self.temperature is not None else temperature,
            max_tokens=self.max_tokens if self.max_tokens is not None else max_tokens,
        )


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self) -> None:
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class GenerationResponse:
    """Result of a successful backend execution.

    Attributes:
        content: Generated text
        provider: Name of the backend that served the request
        model: Model that produced the text
        cost_usd: Actual incurred cost in USD
        usage: Input/output token counts
        duration_ms: Wall-clock time of the backend call
    """

    content: str
    provider: str
    model: str
    cost_usd: float
    usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ms: float = 0.0

    def __post_init__(self) -> None:
        if self.cost_usd < 0:
            raise ValueError("cost_usd cannot be negative")


@dataclass(frozen=True)
class CostEstimate:
    """Pre-flight cost estimate in USD plus a display-currency rendering."""

    cost_usd: float
    currency: Currency
    amount: float
    exchange_rate: float
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float
    output: float


# ------------------------------------------------------------------ #
# Errors
# ------------------------------------------------------------------ #


class ProviderError(Exception):
    """Base exception for every backend and routing failure.

    ``step`` and ``attempted_providers`` are filled in by the router when the
    error is surfaced to a pipeline step.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        *,
        step: str | None = None,
        attempted_providers: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.step = step
        self.attempted_providers: list[str] = list(attempted_providers or [])


class ProviderUnavailableError(ProviderError):
    """Backend cannot accept work right now."""

    def __init__(self, provider: str, reason: str | None = None) -> None:
        message = f"Provider {provider} is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, provider)


class ProviderAuthenticationError(ProviderError):
    """Credentials were rejected by the backend."""


class ModelNotFoundError(ProviderError):
    """Requested model is unknown or unsupported by the backend."""

    def __init__(self, provider: str, model: str) -> None:
        super().__init__(f"Model {model} is not available on provider {provider}", provider)
        self.model = model


class RateLimitError(ProviderError):
    """Backend rate limit exceeded after its own retries."""

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        super().__init__(f"Rate limit exceeded for provider {provider}", provider)
        self.retry_after = retry_after


# ------------------------------------------------------------------ #
# Provider interface
# ------------------------------------------------------------------ #


class LLMProvider(ABC):
    """Interface every backend implements."""

    name: str
    provider_type: ProviderType

    @property
    def is_local(self) -> bool:
        return self.provider_type == ProviderType.LOCAL

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True if the backend can accept work.

        Must not raise for ordinary unavailability.
        """

    @abstractmethod
    def estimate_cost(
        self, request: GenerationRequest, currency: Currency = Currency.EUR
    ) -> CostEstimate:
        """Estimate what ``request`` would cost on this backend."""

    @abstractmethod
    async def execute(self, request: GenerationRequest) -> GenerationResponse:
        """Run the request.

        Raises:
            ProviderError: Or a subclass describing the failure category
        """

    def supported_models(self) -> list[str]:
        return []

    async def aclose(self) -> None:
        """Release network resources held by the backend."""


class PricedProvider(LLMProvider):
    """Base for remote providers billed from a per-model pricing table."""

    provider_type = ProviderType.REMOTE

    def __init__(self, *, name: str, default_model: str, pricing: dict[str, ModelPricing]) -> None:
        if default_model not in pricing:
            raise ValueError(f"Default model {default_model} has no pricing entry")
        self.name = name
        self.default_model = default_model
        self._pricing = dict(pricing)

    def supported_models(self) -> list[str]:
        return list(self._pricing)

    def pricing_for(self, model: str) -> ModelPricing:
        """Pricing for ``model``; unknown models are priced as the default model."""
        return self._pricing.get(model, self._pricing[self.default_model])

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        pricing = self.pricing_for(model)
        return (input_tokens / 1_000_000) * pricing.input + (
            output_tokens / 1_000_000
        ) * pricing.output

    def estimate_cost(
        self, request: GenerationRequest, currency: Currency = Currency.EUR
    ) -> CostEstimate:
        model = request.model or self.default_model
        # ~4 characters per token
        input_tokens = math.ceil((len(request.system_prompt) + len(request.user_prompt)) / 4)
        output_tokens = request.max_tokens or DEFAULT_ESTIMATED_OUTPUT_TOKENS
        cost_usd = self.calculate_cost(model, input_tokens, output_tokens)
        return CostEstimate(
            cost_usd=cost_usd,
            currency=Currency(currency),
            amount=convert_from_usd(cost_usd, currency),
            exchange_rate=get_exchange_rate(currency),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


class LocalProvider(LLMProvider):
    """Base for self-hosted backends. Estimates and actual costs are zero."""

    provider_type = ProviderType.LOCAL

    def estimate_cost(
        self, request: GenerationRequest, currency: Currency = Currency.EUR
    ) -> CostEstimate:
        return CostEstimate(
            cost_usd=0.0,
            currency=Currency(currency),
            amount=0.0,
            exchange_rate=get_exchange_rate(currency),
        )
