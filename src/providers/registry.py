"""Provider registry - builds and holds backend instances by name.

The router looks providers up by the names used in the routing
configuration ("anthropic", "openai", "azure-openai", "gemini", "ollama").
``ProviderRegistry.from_settings`` registers every remote backend whose
credentials are configured plus the local Ollama daemon.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

import structlog

from src.providers.base import LLMProvider
from src.providers.litellm_provider import (
    anthropic_provider,
    azure_openai_provider,
    gemini_provider,
    openai_provider,
)
from src.providers.ollama import OllamaProvider

if TYPE_CHECKING:
    from src.config import Settings

log = structlog.get_logger(__name__)


class NoProvidersConfiguredError(RuntimeError):
    """Raised when settings enable no backend at all."""


class ProviderRegistry(Mapping[str, LLMProvider]):
    """Name → provider mapping."""

    def __init__(self, providers: list[LLMProvider] | None = None) -> None:
        self._providers: dict[str, LLMProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: LLMProvider) -> None:
        if provider.name in self._providers:
            log.warning("provider_registry.replaced", provider=provider.name)
        self._providers[provider.name] = provider
        log.info(
            "provider_registry.registered",
            provider=provider.name,
            provider_type=provider.provider_type.value,
        )

    def __getitem__(self, name: str) -> LLMProvider:
        return self._providers[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def names(self) -> list[str]:
        return list(self._providers)

    async def check_availability(self) -> dict[str, bool]:
        """Check every registered provider concurrently.

        Checks that raise are reported as unavailable.
        """
        names = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[name].is_available() for name in names),
            return_exceptions=True,
        )
        availability: dict[str, bool] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                log.warning(
                    "provider_registry.availability_error", provider=name, error=str(result)
                )
                availability[name] = False
            else:
                availability[name] = bool(result)
        return availability

    async def aclose(self) -> None:
        """Close every provider; a failing close does not stop the others."""
        names = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[name].aclose() for name in names),
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                log.warning("provider_registry.close_failed", provider=name, error=str(result))

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderRegistry:
        """Build providers for every backend enabled in settings.

        Raises:
            NoProvidersConfiguredError: If no backend could be registered
        """
        registry = cls()
        timeout = settings.provider_timeout_seconds

        if settings.anthropic_api_key is not None:
            registry.register(anthropic_provider(settings.anthropic_api_key, timeout=timeout))
        if settings.openai_api_key is not None:
            registry.register(openai_provider(settings.openai_api_key, timeout=timeout))
        if settings.azure_openai_api_key is not None and settings.azure_openai_endpoint:
            registry.register(
                azure_openai_provider(
                    settings.azure_openai_api_key,
                    endpoint=settings.azure_openai_endpoint,
                    deployment=settings.azure_openai_deployment,
                    api_version=settings.azure_openai_api_version,
                    timeout=timeout,
                )
            )
        if settings.google_api_key is not None:
            registry.register(gemini_provider(settings.google_api_key, timeout=timeout))
        if settings.ollama_enabled:
            registry.register(
                OllamaProvider(
                    settings.ollama_endpoint,
                    default_model=settings.ollama_default_model,
                    timeout=timeout,
                )
            )

        if not registry:
            raise NoProvidersConfiguredError(
                "No AI providers initialized. Set at least one of ANTHROPIC_API_KEY, "
                "OPENAI_API_KEY, AZURE_OPENAI_API_KEY, GOOGLE_API_KEY, or enable Ollama."
            )

        log.info("provider_registry.initialized", providers=registry.names())
        return registry
