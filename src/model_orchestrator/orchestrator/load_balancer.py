"""Load balancer that scores adapters and picks one per request."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..exceptions import NoAdaptersAvailableError
from ..providers.base import BaseModelAdapter
from ..providers.registry import ProviderRegistry
from .classifier import CostLevel, LatencyLevel, ModelCriteria, QualityLevel, TaskType
from .health_monitor import HealthMonitor, HealthState

logger = logging.getLogger(__name__)


class LoadBalancingStrategy(str, Enum):
    """Load balancing strategies."""

    SCORE = "score"
    ROUND_ROBIN = "round_robin"
    LEAST_CONNECTIONS = "least_connections"


class ScoringWeights(BaseModel):
    """Tunable scoring constants."""

    health: float = 50.0
    latency: float = 50.0
    latency_divisor_ms: float = 50.0
    cost: float = 30.0
    cost_multiplier: float = 10000.0
    reasoning: float = 20.0
    code_generation: float = 15.0
    multimodal: float = 10.0
    speed: float = 40.0
    speed_divisor_ms: float = 25.0


class SelectionPreferences(BaseModel):
    """What the caller wants the balancer to favour."""

    task_type: Optional[TaskType] = None
    prioritize_cost: bool = False
    prioritize_speed: bool = False
    prioritize_quality: bool = False

    @classmethod
    def from_criteria(cls, criteria: ModelCriteria) -> "SelectionPreferences":
        return cls(
            task_type=criteria.task_type,
            prioritize_cost=criteria.cost_sensitivity == CostLevel.MINIMAL,
            prioritize_speed=criteria.latency_requirement == LatencyLevel.REAL_TIME,
            prioritize_quality=criteria.quality == QualityLevel.PREMIUM,
        )


@dataclass
class ScoredAdapter:
    adapter: BaseModelAdapter
    score: float


class LoadBalancer:
    """Distributes requests across registered adapters."""

    ROUND_ROBIN_POOL = 3

    def __init__(
        self,
        registry: ProviderRegistry,
        health_monitor: Optional[HealthMonitor] = None,
        strategy: LoadBalancingStrategy = LoadBalancingStrategy.SCORE,
        weights: Optional[ScoringWeights] = None,
    ):
        """Initialize load balancer.

        Args:
            registry: Source of candidate adapters
            health_monitor: Health source; unhealthy adapters are skipped
            strategy: Load balancing strategy
            weights: Scoring constants
        """
        self.registry = registry
        self.health_monitor = health_monitor
        self.strategy = LoadBalancingStrategy(strategy)
        self.weights = weights or ScoringWeights()
        self.round_robin_index = 0
        self.connection_counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _health_state(self, adapter_id: str) -> HealthState:
        if self.health_monitor is None:
            return HealthState.UNKNOWN
        return self.health_monitor.get_state(adapter_id)

    def _candidates(self) -> List[BaseModelAdapter]:
        return [
            adapter
            for adapter in self.registry.get_available_adapters()
            if self._health_state(adapter.id) != HealthState.UNHEALTHY
        ]

    def calculate_score(self, adapter: BaseModelAdapter, preferences: SelectionPreferences) -> float:
        """Score one adapter; higher is better."""
        weights = self.weights
        metrics = adapter.get_metrics()
        avg_ms = metrics.average_response_time
        score = 0.0

        if self._health_state(adapter.id) == HealthState.HEALTHY:
            score += weights.health

        score += max(0.0, weights.latency - avg_ms / weights.latency_divisor_ms)

        if preferences.prioritize_cost:
            score += max(0.0, weights.cost - adapter.config.cost_per_token * weights.cost_multiplier)

        if preferences.prioritize_quality:
            capabilities = adapter.capabilities
            if capabilities.reasoning:
                score += weights.reasoning
            if capabilities.code_generation and preferences.task_type == TaskType.GENERATION:
                score += weights.code_generation
            if capabilities.multimodal:
                score += weights.multimodal

        if preferences.prioritize_speed:
            score += max(0.0, weights.speed - avg_ms / weights.speed_divisor_ms)

        return score

    def score_adapters(self, preferences: Optional[SelectionPreferences] = None) -> List[ScoredAdapter]:
        preferences = preferences or SelectionPreferences()
        scored = [ScoredAdapter(adapter, self.calculate_score(adapter, preferences)) for adapter in self._candidates()]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored

    def select(self, preferences: Optional[SelectionPreferences] = None) -> BaseModelAdapter:
        """
        Pick an adapter and count it as having one more open call.

        Callers must pair every successful select() with release().

        Raises:
            NoAdaptersAvailableError: If no candidate remains
        """
        scored = self.score_adapters(preferences)
        if not scored:
            raise NoAdaptersAvailableError("No healthy model adapters available for selection")

        with self._lock:
            if self.strategy == LoadBalancingStrategy.ROUND_ROBIN:
                selected = self._select_round_robin(scored)
            elif self.strategy == LoadBalancingStrategy.LEAST_CONNECTIONS:
                selected = self._select_least_connections(scored)
            else:
                selected = scored[0].adapter
            self.connection_counts[selected.id] = self.connection_counts.get(selected.id, 0) + 1

        logger.debug(
            f"Selected adapter {selected.id}",
            extra={"strategy": self.strategy.value, "candidates": len(scored)},
        )
        return selected

    def _select_round_robin(self, scored: List[ScoredAdapter]) -> BaseModelAdapter:
        pool = scored[: self.ROUND_ROBIN_POOL]
        selected = pool[self.round_robin_index % len(pool)].adapter
        self.round_robin_index += 1
        return selected

    def _select_least_connections(self, scored: List[ScoredAdapter]) -> BaseModelAdapter:
        return min(scored, key=lambda item: self.connection_counts.get(item.adapter.id, 0)).adapter

    def acquire(self, adapter_id: str) -> None:
        """Count one more open call on an adapter chosen outside select()."""
        with self._lock:
            self.connection_counts[adapter_id] = self.connection_counts.get(adapter_id, 0) + 1

    def release(self, adapter_id: str) -> None:
        with self._lock:
            count = self.connection_counts.get(adapter_id, 0)
            self.connection_counts[adapter_id] = max(0, count - 1)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            connections = dict(self.connection_counts)
        return {
            "strategy": self.strategy.value,
            "round_robin_index": self.round_robin_index,
            "connection_counts": connections,
            "available_adapters": len(self._candidates()),
        }
