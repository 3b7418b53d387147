"""
Application configuration via pydantic-settings.

Process-level settings (credentials, logging, where to find the routing file)
are loaded from environment variables or a .env file in dev. Routing policy
itself lives in a YAML file, see src/routing/config.py.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="Emit JSON log lines instead of the coloured console format",
    )

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #
    routing_config_path: str | None = Field(
        default=None,
        description=(
            "Path to the routing YAML file. When unset, the built-in default "
            "routing configuration is used."
        ),
    )

    # ------------------------------------------------------------------ #
    # Remote providers
    # ------------------------------------------------------------------ #
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Anthropic API key. Leave unset to disable the provider.",
    )
    openai_api_key: SecretStr | None = Field(
        default=None,
        description="OpenAI API key. Leave unset to disable the provider.",
    )
    azure_openai_api_key: SecretStr | None = Field(
        default=None,
        description="Azure OpenAI API key. Requires azure_openai_endpoint as well.",
    )
    azure_openai_endpoint: str | None = Field(
        default=None,
        description="Azure OpenAI resource endpoint URL",
    )
    azure_openai_deployment: str = Field(
        default="gpt-4o",
        description="Azure OpenAI deployment name requests are sent to",
    )
    azure_openai_api_version: str = Field(
        default="2024-08-01-preview",
        description="Azure OpenAI REST API version",
    )
    google_api_key: SecretStr | None = Field(
        default=None,
        description="Google AI Studio key for Gemini. Leave unset to disable.",
    )
    provider_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout for backend calls in seconds",
    )

    # ------------------------------------------------------------------ #
    # Local inference
    # ------------------------------------------------------------------ #
    ollama_enabled: bool = Field(
        default=True,
        description="Register the local Ollama backend",
    )
    ollama_endpoint: str = Field(
        default="http://localhost:11434",
        description="Ollama daemon base URL",
    )
    ollama_default_model: str = Field(
        default="llama3.2:latest",
        description="Model used by Ollama when a request does not name one",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_azure_pair(self) -> Settings:
        if self.azure_openai_api_key is not None and not self.azure_openai_endpoint:
            raise ValueError(
                "AZURE_OPENAI_ENDPOINT must be set when AZURE_OPENAI_API_KEY is configured"
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Call directly from the CLI and at router construction time.
    """
    return Settings()
