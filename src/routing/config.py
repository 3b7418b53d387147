"""Routing configuration.

Loaded once per run from YAML and validated before any routing happens.
Every model is frozen: a router reads its configuration but never changes it.

Example::

    defaults:
      provider: anthropic
      model: claude-3-5-haiku-20241022
      temperature: 0.7
      maxTokens: 4096
      currency: EUR
    fallback:
      enabled: true
      strategy: cascade
      providers:
        - {provider: openai, model: gpt-4o-mini}
        - {provider: ollama, model: llama3.2:latest}
    steps:
      score_confidence:
        provider: openai
        model: gpt-4o-mini
        reason: Cheap numeric scoring
    cost_management:
      per_run_limit_usd: 1.0
      alert_threshold_usd: 0.5
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from src.providers.currency import Currency
from src.routing.fallback import FallbackStrategy


class RoutingConfigError(Exception):
    """Routing configuration is missing, unreadable, or invalid."""


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class DefaultsConfig(_FrozenModel):
    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, alias="maxTokens")
    currency: Currency = Currency.EUR


class FallbackCandidate(_FrozenModel):
    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)


class FallbackConfig(_FrozenModel):
    enabled: bool = False
    strategy: FallbackStrategy | None = None
    providers: tuple[FallbackCandidate, ...] = ()

    @model_validator(mode="after")
    def _require_strategy_when_enabled(self) -> FallbackConfig:
        if self.enabled:
            if self.strategy is None:
                raise ValueError("fallback.strategy is required when fallback is enabled")
            if not self.providers:
                raise ValueError("fallback.providers must not be empty when fallback is enabled")
        return self


class StepConfig(_FrozenModel):
    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    reason: str | None = None


class CostManagementConfig(_FrozenModel):
    daily_limit_usd: float | None = Field(default=None, ge=0.0)
    per_run_limit_usd: float | None = Field(default=None, ge=0.0)
    alert_threshold_usd: float | None = Field(default=None, ge=0.0)


class OfflineModeConfig(_FrozenModel):
    enabled: bool = False
    default_provider: str | None = None
    default_model: str | None = None

    @model_validator(mode="after")
    def _require_target_when_enabled(self) -> OfflineModeConfig:
        if self.enabled and not (self.default_provider and self.default_model):
            raise ValueError(
                "offline_mode.default_provider and offline_mode.default_model "
                "are required when offline mode is enabled"
            )
        return self


class RoutingConfig(_FrozenModel):
    # Top-level sections owned by other tools may share the file
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    defaults: DefaultsConfig
    fallback: FallbackConfig = FallbackConfig()
    steps: dict[str, StepConfig] = Field(default_factory=dict)
    cost_management: CostManagementConfig = CostManagementConfig()
    offline_mode: OfflineModeConfig = OfflineModeConfig()

    def step_target(self, step: str) -> tuple[str, str, str | None]:
        """Return (provider, model, reason) for a step, falling back to defaults."""
        override = self.steps.get(step)
        if override is not None:
            return override.provider, override.model, override.reason
        return self.defaults.provider, self.defaults.model, None


def parse_routing_config(data: dict[str, Any]) -> RoutingConfig:
    """Validate an already-parsed mapping.

    Raises:
        RoutingConfigError: If the mapping does not describe a valid configuration
    """
    if not isinstance(data, dict):
        raise RoutingConfigError("Routing configuration must be a mapping")
    try:
        return RoutingConfig.model_validate(data)
    except ValidationError as exc:
        raise RoutingConfigError(f"Invalid routing configuration: {exc}") from exc


def load_routing_config(path: str | Path) -> RoutingConfig:
    """Load and validate a routing configuration YAML file.

    Raises:
        RoutingConfigError: If the file cannot be read, parsed, or validated
    """
    config_path = Path(path)
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RoutingConfigError(
            f"Failed to read routing configuration from {config_path}: {exc}"
        ) from exc
    except yaml.YAMLError as exc:
        raise RoutingConfigError(
            f"Failed to parse routing configuration from {config_path}: {exc}"
        ) from exc

    try:
        return parse_routing_config(raw)
    except RoutingConfigError as exc:
        raise RoutingConfigError(f"{config_path}: {exc}") from exc


def create_default_routing_config() -> RoutingConfig:
    """Built-in configuration used when no routing file is provided."""
    return RoutingConfig(
        defaults=DefaultsConfig(
            provider="anthropic",
            model="claude-3-5-haiku-20241022",
            temperature=0.7,
            max_tokens=4096,
            currency=Currency.EUR,
        ),
        fallback=FallbackConfig(
            enabled=True,
            strategy=FallbackStrategy.CASCADE,
            providers=(
                FallbackCandidate(provider="anthropic", model="claude-3-5-haiku-20241022"),
                FallbackCandidate(provider="openai", model="gpt-4o-mini"),
                FallbackCandidate(provider="ollama", model="llama3.2:latest"),
            ),
        ),
        cost_management=CostManagementConfig(
            daily_limit_usd=10.0,
            per_run_limit_usd=1.0,
            alert_threshold_usd=0.5,
        ),
    )
