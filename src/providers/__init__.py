"""LLM backends behind a common interface.

Remote providers (Anthropic, OpenAI, Azure OpenAI, Gemini) go through
LiteLLM; the local Ollama daemon is called directly over HTTP. The router
depends only on ``LLMProvider`` and looks backends up in a
``ProviderRegistry``.
"""

from __future__ import annotations

from src.providers.base import (
    CostEstimate,
    GenerationRequest,
    GenerationResponse,
    LLMProvider,
    LocalProvider,
    ModelNotFoundError,
    ModelPricing,
    PricedProvider,
    ProviderAuthenticationError,
    ProviderError,
    ProviderType,
    ProviderUnavailableError,
    RateLimitError,
    TokenUsage,
)
from src.providers.currency import Currency, convert_from_usd, format_currency
from src.providers.litellm_provider import LiteLLMProvider
from src.providers.ollama import OllamaProvider
from src.providers.registry import NoProvidersConfiguredError, ProviderRegistry

__all__ = [
    "CostEstimate",
    "Currency",
    "GenerationRequest",
    "GenerationResponse",
    "LLMProvider",
    "LiteLLMProvider",
    "LocalProvider",
    "ModelNotFoundError",
    "ModelPricing",
    "NoProvidersConfiguredError",
    "OllamaProvider",
    "PricedProvider",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderRegistry",
    "ProviderType",
    "ProviderUnavailableError",
    "RateLimitError",
    "TokenUsage",
    "convert_from_usd",
    "format_currency",
]
