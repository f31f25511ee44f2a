"""Settings configuration"""
import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ..exceptions import ConfigurationError
from ..providers.base import ProviderConfig


class Settings(BaseSettings):
    """Orchestrator settings read once at startup"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False,
        validate_assignment=True
    )

    # Application
    app_name: str = Field(default="Model Orchestrator", validation_alias="APP_NAME")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    # Providers
    default_provider: str = Field(default="deepseek", validation_alias="ORCHESTRATOR_DEFAULT_PROVIDER")
    fallback_providers: Annotated[List[str], NoDecode] = Field(
        default=["deepseek", "zhipu"], validation_alias="ORCHESTRATOR_FALLBACK_PROVIDERS"
    )
    providers_file: Optional[Path] = Field(default=None, validation_alias="ORCHESTRATOR_PROVIDERS_FILE")

    # API Keys
    deepseek_api_key: Optional[SecretStr] = Field(default=None, validation_alias="DEEPSEEK_API_KEY")
    zhipu_api_key: Optional[SecretStr] = Field(default=None, validation_alias="ZHIPU_API_KEY")

    # Model Defaults
    deepseek_model: str = Field(default="deepseek-chat", validation_alias="DEEPSEEK_MODEL")
    zhipu_model: str = Field(default="glm-4", validation_alias="ZHIPU_MODEL")
    deepseek_base_url: Optional[str] = Field(default=None, validation_alias="DEEPSEEK_BASE_URL")
    zhipu_base_url: Optional[str] = Field(default=None, validation_alias="ZHIPU_BASE_URL")
    deepseek_cost_per_token: float = Field(default=0.00000014, validation_alias="DEEPSEEK_COST_PER_TOKEN", ge=0)
    zhipu_cost_per_token: float = Field(default=0.0000001, validation_alias="ZHIPU_COST_PER_TOKEN", ge=0)
    default_max_tokens: int = Field(default=4000, validation_alias="DEFAULT_MAX_TOKENS", ge=1)

    # Budgets
    daily_budget: float = Field(default=100.0, validation_alias="DAILY_BUDGET", ge=0)
    monthly_budget: float = Field(default=2000.0, validation_alias="MONTHLY_BUDGET", ge=0)
    cost_retention_days: int = Field(default=62, validation_alias="COST_RETENTION_DAYS", ge=31)

    # Routing
    load_balancing_strategy: str = Field(default="score", validation_alias="LOAD_BALANCING_STRATEGY")
    health_check_interval: float = Field(default=30.0, validation_alias="HEALTH_CHECK_INTERVAL", gt=0)

    # Cache
    cache_backend: str = Field(default="memory", validation_alias="CACHE_BACKEND")
    cache_ttl_seconds: int = Field(default=1800, validation_alias="CACHE_TTL_SECONDS", ge=1)
    cache_max_size: int = Field(default=1000, validation_alias="CACHE_MAX_SIZE", ge=1)
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # Timeouts
    request_timeout: float = Field(default=60.0, validation_alias="REQUEST_TIMEOUT", gt=0)

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    @field_validator("fallback_providers", mode="before")
    @classmethod
    def parse_fallback_providers(cls, v):
        if isinstance(v, str):
            # Handle JSON array format
            if v.startswith("["):
                try:
                    return json.loads(v)
                except (json.JSONDecodeError, ValueError):
                    pass
            # Handle comma-separated format
            return [provider.strip() for provider in v.split(",") if provider.strip()]
        return v

    @field_validator("load_balancing_strategy")
    @classmethod
    def validate_strategy(cls, v):
        allowed = {"score", "round_robin", "least_connections"}
        if v not in allowed:
            raise ValueError(f"load_balancing_strategy must be one of {sorted(allowed)}")
        return v

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v):
        if v not in {"memory", "redis"}:
            raise ValueError("cache_backend must be 'memory' or 'redis'")
        return v

    # Properties
    @property
    def has_deepseek_key(self) -> bool:
        return bool(self.deepseek_api_key)

    @property
    def has_zhipu_key(self) -> bool:
        return bool(self.zhipu_api_key)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def load_provider_configs(settings: Settings) -> Dict[str, ProviderConfig]:
    """
    Build provider configs from the providers file and environment API keys.

    Entries in the providers file win over the environment-derived ones.

    Raises:
        ConfigurationError: If the providers file cannot be read or is invalid
    """
    configs: Dict[str, ProviderConfig] = {}

    if settings.has_deepseek_key:
        configs["deepseek"] = ProviderConfig(
            id="deepseek",
            name="DeepSeek",
            provider="deepseek",
            model=settings.deepseek_model,
            endpoint=settings.deepseek_base_url,
            api_key=settings.deepseek_api_key,
            max_tokens=settings.default_max_tokens,
            cost_per_token=settings.deepseek_cost_per_token,
            timeout=settings.request_timeout,
        )

    if settings.has_zhipu_key:
        configs["zhipu"] = ProviderConfig(
            id="zhipu",
            name="Zhipu AI",
            provider="zhipu",
            model=settings.zhipu_model,
            endpoint=settings.zhipu_base_url,
            api_key=settings.zhipu_api_key,
            max_tokens=settings.default_max_tokens,
            cost_per_token=settings.zhipu_cost_per_token,
            timeout=settings.request_timeout,
        )

    if settings.providers_file is not None:
        try:
            raw = json.loads(settings.providers_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read providers file {settings.providers_file}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError("Providers file must contain an object keyed by provider id")

        for provider_id, entry in raw.items():
            try:
                configs[provider_id] = ProviderConfig(**{"id": provider_id, **entry})
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid provider config: {e}", provider=provider_id) from e

    return configs
