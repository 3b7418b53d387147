"""
Shared test fixtures for pytest.

Provides fakes and configuration builders for all test modules:
- FakeProvider: scriptable LLMProvider recording every request it receives
- make_provider / make_failing: factories for FakeProvider instances
- make_config: builds a RoutingConfig from plain keyword sections
- request_: a small GenerationRequest
"""

from __future__ import annotations

from typing import Any

import pytest

from src.config import get_settings
from src.providers.base import (
    CostEstimate,
    GenerationRequest,
    GenerationResponse,
    LLMProvider,
    ProviderError,
    ProviderType,
    TokenUsage,
)
from src.providers.currency import Currency, convert_from_usd, get_exchange_rate
from src.routing.config import RoutingConfig, parse_routing_config


# ------------------------------------------------------------------ #
# Settings cache
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so env overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Fake provider
# ------------------------------------------------------------------ #


class FakeProvider(LLMProvider):
    """In-memory provider with a fixed estimate and scripted outcome."""

    def __init__(
        self,
        name: str,
        *,
        local: bool = False,
        available: bool = True,
        estimate_usd: float = 0.001,
        cost_usd: float | None = None,
        error: Exception | None = None,
        content: str | None = None,
        usage: TokenUsage | None = None,
    ) -> None:
        self.name = name
        self.provider_type = ProviderType.LOCAL if local else ProviderType.REMOTE
        self.available = available
        self.estimate_usd = 0.0 if local else estimate_usd
        self.cost_usd = self.estimate_usd if cost_usd is None else cost_usd
        self.error = error
        self.content = content if content is not None else f"response from {name}"
        self.usage = usage or TokenUsage(input_tokens=10, output_tokens=20)
        self.requests: list[GenerationRequest] = []
        self.estimate_requests: list[GenerationRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def is_available(self) -> bool:
        return self.available

    def estimate_cost(
        self, request: GenerationRequest, currency: Currency = Currency.EUR
    ) -> CostEstimate:
        self.estimate_requests.append(request)
        return CostEstimate(
            cost_usd=self.estimate_usd,
            currency=Currency(currency),
            amount=convert_from_usd(self.estimate_usd, currency),
            exchange_rate=get_exchange_rate(currency),
        )

    async def execute(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GenerationResponse(
            content=self.content,
            provider=self.name,
            model=request.model or "default",
            cost_usd=self.cost_usd,
            usage=self.usage,
        )


@pytest.fixture
def make_provider():
    """Factory for FakeProvider instances."""
    return FakeProvider


@pytest.fixture
def make_failing():
    """Factory for FakeProviders whose execute always raises a ProviderError."""

    def _make(name: str, **kwargs: Any) -> FakeProvider:
        return FakeProvider(name, error=ProviderError(f"{name} exploded", name), **kwargs)

    return _make


# ------------------------------------------------------------------ #
# Routing configuration
# ------------------------------------------------------------------ #


def build_config(
    *,
    defaults: dict[str, Any] | None = None,
    fallback: dict[str, Any] | None = None,
    steps: dict[str, Any] | None = None,
    cost_management: dict[str, Any] | None = None,
    offline_mode: dict[str, Any] | None = None,
) -> RoutingConfig:
    data: dict[str, Any] = {
        "defaults": defaults or {"provider": "anthropic", "model": "claude-3-5-haiku-20241022"},
    }
    if fallback is not None:
        data["fallback"] = fallback
    if steps is not None:
        data["steps"] = steps
    if cost_management is not None:
        data["cost_management"] = cost_management
    if offline_mode is not None:
        data["offline_mode"] = offline_mode
    return parse_routing_config(data)


@pytest.fixture
def make_config():
    """Build a RoutingConfig from plain section dicts."""
    return build_config


@pytest.fixture
def request_() -> GenerationRequest:
    return GenerationRequest(system_prompt="You extract backlog items.", user_prompt="Transcript")
