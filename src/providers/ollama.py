"""Ollama local inference backend.

Talks to the Ollama daemon over its OpenAI-compatible chat endpoint. Local
models are free, so estimates and actual costs are always zero.
"""

from __future__ import annotations

import time

import httpx
import structlog

from src.providers.base import (
    GenerationRequest,
    GenerationResponse,
    LocalProvider,
    ModelNotFoundError,
    ProviderError,
    ProviderUnavailableError,
    TokenUsage,
)

log = structlog.get_logger(__name__)

COMMON_MODELS = [
    "llama3.2:latest",
    "llama3.1:latest",
    "mistral:latest",
    "mixtral:latest",
    "qwen2.5:latest",
    "phi3:latest",
    "gemma2:latest",
]


class OllamaProvider(LocalProvider):
    """Local provider backed by an Ollama daemon."""

    name = "ollama"

    def __init__(
        self,
        endpoint: str = "http://localhost:11434",
        *,
        default_model: str = "llama3.2:latest",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.default_model = default_model
        self._timeout = timeout
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.endpoint, timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_available(self) -> bool:
        try:
            response = await self._http().get("/api/tags", timeout=5.0)
        except httpx.HTTPError as exc:
            log.debug("ollama.tags_request_failed", endpoint=self.endpoint, error=str(exc))
            return False
        return response.is_success

    async def installed_models(self) -> list[str]:
        """Return the names of models pulled into the local daemon."""
        try:
            response = await self._http().get("/api/tags", timeout=5.0)
            response.raise_for_status()
        except httpx.HTTPError:
            return []
        return [item["name"] for item in response.json().get("models", [])]

    def supported_models(self) -> list[str]:
        return list(COMMON_MODELS)

    async def execute(self, request: GenerationRequest) -> GenerationResponse:
        model = request.model or self.default_model
        payload = {
            "model": model,
            "max_tokens": request.max_tokens or 4096,
            "temperature": request.temperature if request.temperature is not None else 0.7,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
        }

        started = time.perf_counter()
        try:
            response = await self._http().post("/v1/chat/completions", json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ProviderUnavailableError(
                self.name,
                f"Ollama is not running at {self.endpoint}. Start it with: ollama serve",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Ollama request failed: {exc}", self.name) from exc

        if response.status_code == 404:
            raise ModelNotFoundError(self.name, model)
        if response.is_error:
            raise ProviderError(
                f"Ollama API returned {response.status_code}: {response.text[:200]}",
                self.name,
            )

        data = response.json()
        duration_ms = (time.perf_counter() - started) * 1000

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        raw_usage = data.get("usage") or {}
        usage = TokenUsage(
            input_tokens=raw_usage.get("prompt_tokens", 0),
            output_tokens=raw_usage.get("completion_tokens", 0),
        )

        log.info(
            "ollama.completion_done",
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=round(duration_ms, 1),
        )

        return GenerationResponse(
            content=content,
            provider=self.name,
            model=model,
            cost_usd=0.0,
            usage=usage,
            duration_ms=duration_ms,
        )
