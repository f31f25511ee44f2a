"""
Provider registry: builds, holds and lifecycle-manages model adapters.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import ConfigurationError, NoAdaptersAvailableError
from .base import BaseModelAdapter, ProviderConfig
from .deepseek_provider import DeepSeekAdapter
from .zhipu_provider import ZhipuAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[ProviderConfig], BaseModelAdapter]

DEFAULT_ADAPTER_TYPES: Dict[str, AdapterFactory] = {
    "deepseek": DeepSeekAdapter,
    "zhipu": ZhipuAdapter,
}


class ProviderInfo(BaseModel):
    """Static catalog entry describing a supported backend."""

    id: str
    name: str
    description: str
    supported_models: List[str]
    capabilities: List[str]
    input_cost_per_1k_tokens: float
    output_cost_per_1k_tokens: float
    max_tokens_per_request: int
    requests_per_minute: int
    tokens_per_minute: int
    status: str = Field(default="available", description="available, unavailable or deprecated")


PROVIDER_CATALOG: List[ProviderInfo] = [
    ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        description="DeepSeek models focused on code generation and reasoning",
        supported_models=list(DeepSeekAdapter.supported_models),
        capabilities=["text generation", "code generation", "reasoning", "function calling"],
        input_cost_per_1k_tokens=0.14,
        output_cost_per_1k_tokens=0.28,
        max_tokens_per_request=4000,
        requests_per_minute=60,
        tokens_per_minute=200000,
    ),
    ProviderInfo(
        id="zhipu",
        name="Zhipu AI",
        description="GLM family with multimodal and long-context variants",
        supported_models=list(ZhipuAdapter.supported_models),
        capabilities=["text generation", "image understanding", "long context", "tool calling"],
        input_cost_per_1k_tokens=0.1,
        output_cost_per_1k_tokens=0.1,
        max_tokens_per_request=8000,
        requests_per_minute=100,
        tokens_per_minute=300000,
    ),
]


class ProviderRegistry:
    """Owns the map from provider id to live adapter."""

    def __init__(
        self,
        providers: Dict[str, ProviderConfig],
        default_provider: str,
        fallback_providers: Optional[List[str]] = None,
        adapter_types: Optional[Dict[str, AdapterFactory]] = None,
    ):
        """
        Initialize the registry.

        Args:
            providers: Provider configs keyed by adapter id
            default_provider: Id tried first by get_default_adapter()
            fallback_providers: Ids tried in order when the default is missing
            adapter_types: Extra or replacement adapter constructors keyed by type
        """
        self._configs: Dict[str, ProviderConfig] = {
            provider_id: config if config.id == provider_id else config.model_copy(update={"id": provider_id})
            for provider_id, config in providers.items()
        }
        self.default_provider = default_provider
        self.fallback_providers = list(fallback_providers or [])
        self._adapter_types: Dict[str, AdapterFactory] = {**DEFAULT_ADAPTER_TYPES, **(adapter_types or {})}
        self._adapters: Dict[str, BaseModelAdapter] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def register_adapter_type(self, provider_type: str, factory: AdapterFactory) -> None:
        self._adapter_types[provider_type] = factory

    def create_adapter(self, config: ProviderConfig) -> BaseModelAdapter:
        """
        Construct an adapter for a config without initializing it.

        Raises:
            ConfigurationError: If the provider type is unknown
        """
        factory = self._adapter_types.get(config.provider)
        if factory is None:
            raise ConfigurationError(f"Unsupported provider type: {config.provider}", provider=config.id)
        return factory(config)

    async def _build(self, config: ProviderConfig) -> BaseModelAdapter:
        adapter = self.create_adapter(config)
        await adapter.initialize()
        return adapter

    async def initialize(self) -> None:
        """
        Initialize every configured adapter, tolerating individual failures.

        Raises:
            NoAdaptersAvailableError: If no adapter could be initialized
        """
        if self._initialized:
            return

        logger.info(f"Initializing {len(self._configs)} provider adapters")
        provider_ids = list(self._configs)
        results = await asyncio.gather(
            *(self._build(self._configs[provider_id]) for provider_id in provider_ids),
            return_exceptions=True,
        )

        for provider_id, result in zip(provider_ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Adapter {provider_id} failed to initialize: {result}",
                    extra={"provider": provider_id, "error_type": type(result).__name__},
                )
                continue
            self._adapters[provider_id] = result
            logger.info(f"Adapter {provider_id} ready", extra={"provider": provider_id})

        if not self._adapters:
            raise NoAdaptersAvailableError("No model adapters could be initialized")

        self._initialized = True
        logger.info(f"Provider registry ready with {len(self._adapters)} adapters")

    def get_adapter(self, provider_id: str) -> Optional[BaseModelAdapter]:
        return self._adapters.get(provider_id)

    def get_default_adapter(self) -> BaseModelAdapter:
        """
        Resolve the default adapter, then the fallback order, then the first available.

        Raises:
            NoAdaptersAvailableError: If the registry holds no adapter
        """
        adapter = self._adapters.get(self.default_provider)
        if adapter is not None:
            return adapter

        for fallback_id in self.fallback_providers:
            adapter = self._adapters.get(fallback_id)
            if adapter is not None:
                logger.warning(f"Default adapter unavailable, using fallback {fallback_id}")
                return adapter

        for provider_id, adapter in self._adapters.items():
            logger.warning(f"Using first available adapter {provider_id}")
            return adapter

        raise NoAdaptersAvailableError()

    def get_available_adapters(self) -> List[BaseModelAdapter]:
        return list(self._adapters.values())

    def get_adapter_ids(self) -> List[str]:
        return list(self._adapters)

    def get_adapters_list(self) -> List[Dict[str, Any]]:
        return [
            {
                **adapter.get_model_info(),
                "status": "active",
                "metrics": adapter.get_metrics().model_dump(),
            }
            for adapter in self._adapters.values()
        ]

    @staticmethod
    def get_provider_info() -> List[ProviderInfo]:
        return list(PROVIDER_CATALOG)

    async def add_adapter(self, config: ProviderConfig) -> BaseModelAdapter:
        """
        Build, initialize and register one adapter.

        Raises:
            ConfigurationError: If the id is already registered or the adapter cannot start
        """
        async with self._lock:
            return await self._add(config)

    async def _add(self, config: ProviderConfig) -> BaseModelAdapter:
        if config.id in self._adapters:
            raise ConfigurationError(f"Adapter {config.id} already exists", provider=config.id)
        adapter = await self._build(config)
        self._adapters[config.id] = adapter
        self._configs[config.id] = config
        logger.info(f"Added adapter {config.id}", extra={"provider": config.provider})
        return adapter

    async def remove_adapter(self, provider_id: str) -> None:
        """
        Shut down and unregister one adapter.

        Raises:
            ConfigurationError: If no adapter has that id
        """
        async with self._lock:
            await self._remove(provider_id)

    async def _remove(self, provider_id: str) -> None:
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise ConfigurationError(f"Adapter {provider_id} does not exist", provider=provider_id)
        await adapter.shutdown()
        del self._adapters[provider_id]
        self._configs.pop(provider_id, None)
        logger.info(f"Removed adapter {provider_id}")

    async def reload_adapter(self, provider_id: str, config: Optional[ProviderConfig] = None) -> BaseModelAdapter:
        """Remove then re-add one adapter, optionally with a new config."""
        async with self._lock:
            config = config or self._configs.get(provider_id)
            if config is None:
                raise ConfigurationError(f"No configuration for adapter {provider_id}", provider=provider_id)
            if config.id != provider_id:
                config = config.model_copy(update={"id": provider_id})
            await self._remove(provider_id)
            return await self._add(config)

    async def health_check_all(self) -> Dict[str, bool]:
        provider_ids = list(self._adapters)
        results = await asyncio.gather(
            *(self._adapters[provider_id].health_check() for provider_id in provider_ids),
            return_exceptions=True,
        )
        health = {
            provider_id: result is True for provider_id, result in zip(provider_ids, results)
        }
        logger.info(f"Health check complete: {sum(health.values())}/{len(health)} adapters healthy")
        return health

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate call statistics across adapters."""
        total_requests = 0
        total_cost = 0.0
        weighted_latency = 0.0
        successful = 0
        active = 0

        for adapter in self._adapters.values():
            metrics = adapter.get_metrics()
            total_requests += metrics.total_requests
            total_cost += metrics.total_cost
            weighted_latency += metrics.average_response_time * metrics.successful_requests
            successful += metrics.successful_requests
            if metrics.total_requests > 0:
                active += 1

        return {
            "total_adapters": len(self._adapters),
            "active_adapters": active,
            "total_requests": total_requests,
            "total_cost": total_cost,
            "average_response_time": weighted_latency / successful if successful else 0.0,
        }

    async def shutdown(self) -> None:
        """Shut every adapter down; one failing shutdown does not stop the others."""
        adapters = list(self._adapters.items())
        results = await asyncio.gather(
            *(adapter.shutdown() for _, adapter in adapters), return_exceptions=True
        )
        for (provider_id, _), result in zip(adapters, results):
            if isinstance(result, Exception):
                logger.error(f"Adapter {provider_id} failed to shut down: {result}")

        self._adapters.clear()
        self._initialized = False
        logger.info("Provider registry shut down")
