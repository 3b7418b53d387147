"""LiteLLM-backed remote providers.

LiteLLM gives a single completion interface over Anthropic, OpenAI, Azure
OpenAI and Gemini. Each remote backend is a ``LiteLLMProvider`` configured
with its LiteLLM model prefix, credentials and pricing table.

This module:
- Wraps litellm.acompletion() with retries for transient failures via tenacity
- Normalizes litellm errors to the ProviderError hierarchy
- Computes the actual cost of a call from reported token usage
"""

from __future__ import annotations

import time
from typing import Any

import litellm
import structlog
from pydantic import SecretStr
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.providers.base import (
    GenerationRequest,
    GenerationResponse,
    ModelNotFoundError,
    ModelPricing,
    PricedProvider,
    ProviderAuthenticationError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    TokenUsage,
)

log = structlog.get_logger(__name__)

# Transient failures worth retrying against the same backend
_RETRYABLE = (
    litellm.exceptions.RateLimitError,
    litellm.exceptions.ServiceUnavailableError,
    litellm.exceptions.Timeout,
    litellm.exceptions.APIConnectionError,
)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096

ANTHROPIC_PRICING: dict[str, ModelPricing] = {
    "claude-3-5-sonnet-20241022": ModelPricing(input=3.0, output=15.0),
    "claude-3-5-haiku-20241022": ModelPricing(input=0.8, output=4.0),
    "claude-3-opus-20240229": ModelPricing(input=15.0, output=75.0),
    "claude-3-sonnet-20240229": ModelPricing(input=3.0, output=15.0),
    "claude-3-haiku-20240307": ModelPricing(input=0.25, output=1.25),
}

OPENAI_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input=2.5, output=10.0),
    "gpt-4o-mini": ModelPricing(input=0.15, output=0.6),
    "gpt-4-turbo": ModelPricing(input=10.0, output=30.0),
    "gpt-4": ModelPricing(input=30.0, output=60.0),
    "gpt-3.5-turbo": ModelPricing(input=0.5, output=1.5),
}

GEMINI_PRICING: dict[str, ModelPricing] = {
    "gemini-1.5-pro": ModelPricing(input=3.5, output=10.5),
    "gemini-1.5-flash": ModelPricing(input=0.075, output=0.3),
    "gemini-1.0-pro": ModelPricing(input=0.5, output=1.5),
}


class LiteLLMProvider(PricedProvider):
    """Remote backend reached through LiteLLM."""

    def __init__(
        self,
        *,
        name: str,
        model_prefix: str,
        api_key: SecretStr | None,
        default_model: str,
        pricing: dict[str, ModelPricing],
        api_base: str | None = None,
        api_version: str | None = None,
        deployment: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize a LiteLLM provider.

        Args:
            name: Registry name (e.g. "anthropic")
            model_prefix: LiteLLM provider prefix (e.g. "anthropic", "azure")
            api_key: Provider API key; the provider is unavailable without one
            default_model: Model used when a request names none
            pricing: USD pricing per model
            api_base: Custom endpoint (Azure resource URL)
            api_version: API version (Azure)
            deployment: Deployment requests are sent to, overriding the model
                name in the LiteLLM call (Azure). Pricing still follows the model.
            timeout: Request timeout in seconds
        """
        super().__init__(name=name, default_model=default_model, pricing=pricing)
        self._model_prefix = model_prefix
        self._api_key = api_key
        self._api_base = api_base
        self._api_version = api_version
        self._deployment = deployment
        self._timeout = timeout

    async def is_available(self) -> bool:
        return self._api_key is not None and bool(self._api_key.get_secret_value())

    def litellm_model(self, model: str) -> str:
        return f"{self._model_prefix}/{self._deployment or model}"

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _complete(self, **kwargs: Any) -> litellm.ModelResponse:
        return await litellm.acompletion(**kwargs)

    async def execute(self, request: GenerationRequest) -> GenerationResponse:
        """Send a chat completion request via LiteLLM.

        Raises:
            ProviderAuthenticationError: Credentials rejected
            ModelNotFoundError: Unknown model for this provider
            RateLimitError: Upstream rate limit after retries
            ProviderUnavailableError: Service unreachable after retries
            ProviderError: Any other failure
        """
        model = request.model or self.default_model
        kwargs: dict[str, Any] = {
            "model": self.litellm_model(model),
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "temperature": (
                request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "timeout": self._timeout,
        }
        if self._api_key is not None:
            kwargs["api_key"] = self._api_key.get_secret_value()
        if self._api_base:
            kwargs["api_base"] = self._api_base
        if self._api_version:
            kwargs["api_version"] = self._api_version

        log.debug(
            "litellm_provider.request",
            provider=self.name,
            model=kwargs["model"],
            max_tokens=kwargs["max_tokens"],
        )

        started = time.perf_counter()
        try:
            response = await self._complete(**kwargs)
        except (
            litellm.exceptions.AuthenticationError,
            litellm.exceptions.PermissionDeniedError,
        ) as exc:
            raise ProviderAuthenticationError(
                f"Authentication failed. Check your {self.name} API key: {exc}", self.name
            ) from exc
        except litellm.exceptions.NotFoundError as exc:
            raise ModelNotFoundError(self.name, model) from exc
        except litellm.exceptions.RateLimitError as exc:
            raise RateLimitError(self.name) from exc
        except (
            litellm.exceptions.ServiceUnavailableError,
            litellm.exceptions.Timeout,
            litellm.exceptions.APIConnectionError,
        ) as exc:
            raise ProviderUnavailableError(self.name, str(exc)) from exc
        except Exception as exc:
            raise ProviderError(f"{self.name} completion failed: {exc}", self.name) from exc
        duration_ms = (time.perf_counter() - started) * 1000

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError) as exc:
            raise ProviderError(
                f"{self.name} returned a malformed response", self.name
            ) from exc

        usage = TokenUsage(
            input_tokens=getattr(response.usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(response.usage, "completion_tokens", 0) or 0,
        )
        cost = self.calculate_cost(model, usage.input_tokens, usage.output_tokens)

        log.info(
            "litellm_provider.completion_done",
            provider=self.name,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost_usd=round(cost, 6),
        )

        return GenerationResponse(
            content=content,
            provider=self.name,
            model=model,
            cost_usd=cost,
            usage=usage,
            duration_ms=duration_ms,
        )


# ------------------------------------------------------------------ #
# Factories
# ------------------------------------------------------------------ #


def anthropic_provider(api_key: SecretStr | None, *, timeout: float = 60.0) -> LiteLLMProvider:
    return LiteLLMProvider(
        name="anthropic",
        model_prefix="anthropic",
        api_key=api_key,
        default_model="claude-3-5-haiku-20241022",
        pricing=ANTHROPIC_PRICING,
        timeout=timeout,
    )


def openai_provider(api_key: SecretStr | None, *, timeout: float = 60.0) -> LiteLLMProvider:
    return LiteLLMProvider(
        name="openai",
        model_prefix="openai",
        api_key=api_key,
        default_model="gpt-4o-mini",
        pricing=OPENAI_PRICING,
        timeout=timeout,
    )


def azure_openai_provider(
    api_key: SecretStr | None,
    *,
    endpoint: str,
    deployment: str,
    api_version: str,
    timeout: float = 60.0,
) -> LiteLLMProvider:
    return LiteLLMProvider(
        name="azure-openai",
        model_prefix="azure",
        api_key=api_key,
        default_model="gpt-4o-mini",
        pricing=OPENAI_PRICING,
        api_base=endpoint,
        api_version=api_version,
        deployment=deployment,
        timeout=timeout,
    )


def gemini_provider(api_key: SecretStr | None, *, timeout: float = 60.0) -> LiteLLMProvider:
    return LiteLLMProvider(
        name="gemini",
        model_prefix="gemini",
        api_key=api_key,
        default_model="gemini-1.5-flash",
        pricing=GEMINI_PRICING,
        timeout=timeout,
    )
