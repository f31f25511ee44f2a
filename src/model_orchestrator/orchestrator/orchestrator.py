"""Model orchestrator with health-aware routing, response caching and failover."""

import hashlib
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..cache import InMemoryCache, RedisCache, ResponseCache
from ..config import Settings, get_settings, load_provider_configs
from ..exceptions import (
    FailoverError,
    OrchestratorError,
    OrchestratorNotInitializedError,
    RequestValidationError,
)
from ..finops.cost_optimizer import CostOptimizer
from ..providers.base import BaseModelAdapter, ChatMessage, MessageRole, ModelRequest, ModelResponse
from ..providers.registry import AdapterFactory, ProviderRegistry
from ..telemetry.alerts import Alert, AlertBus
from ..telemetry.logger import RequestContext, get_logger
from ..telemetry.metrics import MetricsCollector
from .classifier import ModelCriteria, ProcessOptions, TaskClassifier
from .health_monitor import HealthMonitor
from .load_balancer import LoadBalancer, LoadBalancingStrategy, SelectionPreferences

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "ai_response:"
FAILOVER_TEMPERATURE = 0.7
FAILOVER_MAX_TOKENS = 1000


class OrchestratorStatus(BaseModel):
    """Read-only snapshot of the orchestrator and its components."""

    initialized: bool
    available_models: int
    total_models: int
    total_requests: int
    total_cost: float
    average_response_time: float
    pending_alerts: int = 0
    load_balancer: Dict[str, Any] = Field(default_factory=dict)
    health_monitor: Dict[str, Any] = Field(default_factory=dict)
    cost_optimizer: Dict[str, Any] = Field(default_factory=dict)
    cache: Dict[str, Any] = Field(default_factory=dict)


class AIOrchestrator:
    """Routes prompts to model adapters.

    Each prompt is classified, an adapter is selected by the load balancer,
    the response cache is consulted and, on a miss, the adapter is called.
    Any provider-side failure on that path gets exactly one retry against the
    registry's default adapter.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: Optional[ResponseCache] = None,
        health_monitor: Optional[HealthMonitor] = None,
        load_balancer: Optional[LoadBalancer] = None,
        cost_optimizer: Optional[CostOptimizer] = None,
        classifier: Optional[TaskClassifier] = None,
        metrics: Optional[MetricsCollector] = None,
        alert_bus: Optional[AlertBus] = None,
        cache_ttl: int = 1800,
        request_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.alert_bus = alert_bus or AlertBus()
        self.metrics = metrics or MetricsCollector()
        self.cache = cache if cache is not None else InMemoryCache()
        self.health_monitor = health_monitor or HealthMonitor(
            registry, alert_bus=self.alert_bus, metrics=self.metrics
        )
        self.load_balancer = load_balancer or LoadBalancer(registry, self.health_monitor)
        self.cost_optimizer = cost_optimizer or CostOptimizer(alert_bus=self.alert_bus, metrics=self.metrics)
        self.classifier = classifier or TaskClassifier()
        self.cache_ttl = cache_ttl
        self.request_timeout = request_timeout
        self._initialized = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        adapter_types: Optional[Dict[str, AdapterFactory]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "AIOrchestrator":
        """Wire every component from application settings."""
        settings = settings or get_settings()
        registry = ProviderRegistry(
            load_provider_configs(settings),
            default_provider=settings.default_provider,
            fallback_providers=settings.fallback_providers,
            adapter_types=adapter_types,
        )

        if settings.cache_backend == "redis":
            cache: ResponseCache = RedisCache(settings.redis_url)
        else:
            cache = InMemoryCache(max_size=settings.cache_max_size)

        alert_bus = AlertBus()
        metrics = metrics or MetricsCollector()
        health_monitor = HealthMonitor(
            registry,
            interval=settings.health_check_interval,
            alert_bus=alert_bus,
            metrics=metrics,
        )
        return cls(
            registry,
            cache=cache,
            health_monitor=health_monitor,
            load_balancer=LoadBalancer(
                registry, health_monitor, strategy=LoadBalancingStrategy(settings.load_balancing_strategy)
            ),
            cost_optimizer=CostOptimizer(
                daily_budget=settings.daily_budget,
                monthly_budget=settings.monthly_budget,
                retention_days=settings.cost_retention_days,
                alert_bus=alert_bus,
                metrics=metrics,
            ),
            metrics=metrics,
            alert_bus=alert_bus,
            cache_ttl=settings.cache_ttl_seconds,
            request_timeout=settings.request_timeout,
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Start adapters and health monitoring. Safe to call twice."""
        if self._initialized:
            return

        try:
            await self.registry.initialize()
            await self.health_monitor.start()
        except Exception:
            await self._release_resources()
            raise
        self._initialized = True
        logger.info("Orchestrator initialized", adapters=len(self.registry.get_adapter_ids()))

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise OrchestratorNotInitializedError()

    def select_model(self, criteria: ModelCriteria) -> BaseModelAdapter:
        """Pick an adapter for the criteria; the caller must release it on the load balancer."""
        self._ensure_initialized()
        adapter = self.load_balancer.select(SelectionPreferences.from_criteria(criteria))
        logger.info(
            "Model selected",
            task_type=criteria.task_type.value,
            adapter=adapter.id,
            model=adapter.config.model,
        )
        return adapter

    @staticmethod
    def generate_cache_key(prompt: str, adapter_id: str) -> str:
        digest = hashlib.md5((prompt + adapter_id).encode("utf-8")).hexdigest()
        return f"{CACHE_KEY_PREFIX}{digest}"

    async def process(self, prompt: str, options: Optional[ProcessOptions] = None) -> ModelResponse:
        """
        Answer one prompt.

        Raises:
            OrchestratorNotInitializedError: If initialize() has not run
            RequestValidationError: If the request is malformed
            NoAdaptersAvailableError: If the registry holds no adapter at all
            FailoverError: If both the selected and the failover adapter fail
        """
        self._ensure_initialized()
        options = options or ProcessOptions()

        with RequestContext() as context:
            criteria = self.classifier.analyze(prompt, options)
            context.set_task_type(criteria.task_type.value)
            try:
                return await self._process_selected(prompt, criteria, options)
            except RequestValidationError:
                raise
            except OrchestratorError as e:
                logger.warning("Primary model call failed", error=str(e), error_type=type(e).__name__)
                return await self._failover(prompt, criteria, options, e)

    async def _process_selected(
        self, prompt: str, criteria: ModelCriteria, options: ProcessOptions
    ) -> ModelResponse:
        adapter = self.select_model(criteria)
        try:
            cache_key = self.generate_cache_key(prompt, adapter.id)
            if not options.skip_cache:
                cached = await self._cache_get(cache_key)
                if cached is not None:
                    return cached

            response = await self._call(adapter, self._build_request(prompt, options), options, criteria)
            await self._cache_set(cache_key, response)
            return response
        finally:
            self.load_balancer.release(adapter.id)

    def _build_request(self, prompt: str, options: ProcessOptions, stream: bool = False) -> ModelRequest:
        return ModelRequest(
            messages=[ChatMessage(role=MessageRole.USER.value, content=prompt)],
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            stream=stream,
        )

    async def _call(
        self,
        adapter: BaseModelAdapter,
        request: ModelRequest,
        options: ProcessOptions,
        criteria: ModelCriteria,
    ) -> ModelResponse:
        timeout = options.timeout or self.request_timeout
        try:
            response = await adapter.chat(request, timeout=timeout)
        except RequestValidationError:
            raise
        except OrchestratorError:
            self.metrics.record_model_call(adapter.id, adapter.config.model, success=False)
            raise

        self.metrics.record_model_call(
            adapter.id,
            adapter.config.model,
            success=True,
            latency_ms=response.response_time,
            cost=response.cost,
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
        )
        self.cost_optimizer.record_cost(
            adapter.id, response.cost, response.usage.total_tokens, criteria.task_type
        )
        return response

    async def _failover(
        self,
        prompt: str,
        criteria: ModelCriteria,
        options: ProcessOptions,
        primary_error: OrchestratorError,
    ) -> ModelResponse:
        # NoAdaptersAvailableError from an empty registry propagates as is
        adapter = self.registry.get_default_adapter()
        logger.info("Starting failover", adapter=adapter.id, model=adapter.config.model)

        request = ModelRequest(
            messages=[ChatMessage(role=MessageRole.USER.value, content=prompt)],
            temperature=options.temperature if options.temperature is not None else FAILOVER_TEMPERATURE,
            max_tokens=options.max_tokens or FAILOVER_MAX_TOKENS,
        )
        self.load_balancer.acquire(adapter.id)
        try:
            response = await self._call(adapter, request, options, criteria)
        except OrchestratorError as fallback_error:
            self.metrics.record_failover(success=False)
            logger.error(
                "Failover failed",
                adapter=adapter.id,
                primary_error=str(primary_error),
                fallback_error=str(fallback_error),
            )
            raise FailoverError(primary_error, fallback_error) from fallback_error
        finally:
            self.load_balancer.release(adapter.id)

        self.metrics.record_failover(success=True)
        response.metadata.update({"failover": True, "primary_error": str(primary_error)})
        return response

    async def _cache_get(self, key: str) -> Optional[ModelResponse]:
        try:
            cached = await self.cache.get(key)
            if cached is None:
                self.metrics.record_cache(hit=False)
                return None
            response = ModelResponse.model_validate(cached)
        except Exception as e:
            logger.warning("Cache read failed, treating as miss", key=key, error=str(e))
            self.metrics.record_cache(hit=False)
            return None

        self.metrics.record_cache(hit=True)
        response.metadata["cached"] = True
        logger.info("Serving cached response", key=key)
        return response

    async def _cache_set(self, key: str, response: ModelResponse) -> None:
        try:
            await self.cache.set(key, response.model_dump(mode="json"), self.cache_ttl)
        except Exception as e:
            logger.warning("Cache write failed", key=key, error=str(e))

    async def process_stream(
        self, prompt: str, options: Optional[ProcessOptions] = None
    ) -> AsyncIterator[ModelResponse]:
        """Stream partial responses from the selected adapter. No cache, no failover."""
        self._ensure_initialized()
        options = options or ProcessOptions()
        criteria = self.classifier.analyze(prompt, options)
        adapter = self.select_model(criteria)
        try:
            async for chunk in adapter.stream_chat(self._build_request(prompt, options, stream=True)):
                yield chunk
        finally:
            self.load_balancer.release(adapter.id)

    def drain_alerts(self) -> List[Alert]:
        return self.alert_bus.drain()

    def subscribe(self, observer: Callable[[Alert], None]) -> Callable[[], None]:
        return self.alert_bus.subscribe(observer)

    def get_status(self) -> OrchestratorStatus:
        stats = self.registry.get_stats()
        cache_stats = getattr(self.cache, "stats", None)
        return OrchestratorStatus(
            initialized=self._initialized,
            available_models=stats["active_adapters"],
            total_models=stats["total_adapters"],
            total_requests=stats["total_requests"],
            total_cost=stats["total_cost"],
            average_response_time=stats["average_response_time"],
            pending_alerts=self.alert_bus.pending_count,
            load_balancer=self.load_balancer.get_status(),
            health_monitor=self.health_monitor.get_status(),
            cost_optimizer=self.cost_optimizer.get_status(),
            cache=cache_stats.to_dict() if cache_stats is not None else {},
        )

    async def shutdown(self) -> None:
        if not self._initialized:
            return

        await self._release_resources()
        self._initialized = False
        logger.info("Orchestrator shut down")

    async def _release_resources(self) -> None:
        await self.health_monitor.stop()
        await self.registry.shutdown()
        await self.cache.close()

    async def __aenter__(self) -> "AIOrchestrator":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()
