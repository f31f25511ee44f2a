"""Metrics collection and reporting with Prometheus integration."""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsCollector:
    """Prometheus series for model calls, cache, failover, health and budgets.

    Each collector owns its registry unless one is passed in, so several
    orchestrators in one process never collide on metric names.
    """

    def __init__(self, namespace: str = "model_orchestrator", registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()

        self.model_requests = Counter(
            f"{namespace}_model_requests_total",
            "Total model requests",
            ["provider", "model", "status"],
            registry=self.registry,
        )
        self.model_latency = Histogram(
            f"{namespace}_model_latency_seconds",
            "Model response latency",
            ["provider", "model"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )
        self.cost = Counter(
            f"{namespace}_cost_usd_total",
            "Total cost in USD",
            ["provider", "model"],
            registry=self.registry,
        )
        self.tokens = Counter(
            f"{namespace}_tokens_processed_total",
            "Total tokens processed",
            ["provider", "model", "type"],
            registry=self.registry,
        )
        self.cache_hits = Counter(f"{namespace}_cache_hits_total", "Cache hits", registry=self.registry)
        self.cache_misses = Counter(f"{namespace}_cache_misses_total", "Cache misses", registry=self.registry)
        self.failovers = Counter(
            f"{namespace}_failovers_total",
            "Failover attempts",
            ["outcome"],
            registry=self.registry,
        )
        self.adapter_health = Gauge(
            f"{namespace}_adapter_health",
            "1 if the adapter is healthy, 0 otherwise",
            ["adapter"],
            registry=self.registry,
        )
        self.budget_usage = Gauge(
            f"{namespace}_budget_usage_ratio",
            "Spend divided by budget",
            ["scope"],
            registry=self.registry,
        )

    def record_model_call(
        self,
        provider: str,
        model: str,
        success: bool,
        latency_ms: float = 0.0,
        cost: float = 0.0,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
    ) -> None:
        self.model_requests.labels(provider=provider, model=model, status="success" if success else "error").inc()
        if not success:
            return
        self.model_latency.labels(provider=provider, model=model).observe(latency_ms / 1000)
        self.cost.labels(provider=provider, model=model).inc(cost)
        self.tokens.labels(provider=provider, model=model, type="prompt").inc(prompt_tokens)
        self.tokens.labels(provider=provider, model=model, type="completion").inc(completion_tokens)

    def record_cache(self, hit: bool) -> None:
        (self.cache_hits if hit else self.cache_misses).inc()

    def record_failover(self, success: bool) -> None:
        self.failovers.labels(outcome="success" if success else "failure").inc()

    def set_adapter_health(self, adapter_id: str, healthy: bool) -> None:
        self.adapter_health.labels(adapter=adapter_id).set(1 if healthy else 0)

    def set_budget_usage(self, scope: str, ratio: float) -> None:
        self.budget_usage.labels(scope=scope).set(ratio)

    def export(self) -> str:
        """Prometheus exposition text for this collector's registry."""
        return generate_latest(self.registry).decode("utf-8")
