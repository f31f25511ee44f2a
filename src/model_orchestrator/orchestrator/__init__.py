"""Request pipeline: classification, health monitoring, load balancing and failover."""

from .classifier import (
    ComplexityLevel,
    CostLevel,
    LatencyLevel,
    ModelCriteria,
    ProcessOptions,
    QualityLevel,
    TaskClassifier,
    TaskType,
)
from .health_monitor import HealthMonitor, HealthRecord, HealthState, HealthStatus
from .load_balancer import (
    LoadBalancer,
    LoadBalancingStrategy,
    ScoredAdapter,
    ScoringWeights,
    SelectionPreferences,
)
from .orchestrator import AIOrchestrator, OrchestratorStatus

__all__ = [
    "AIOrchestrator",
    "OrchestratorStatus",
    "ComplexityLevel",
    "CostLevel",
    "LatencyLevel",
    "ModelCriteria",
    "ProcessOptions",
    "QualityLevel",
    "TaskClassifier",
    "TaskType",
    "HealthMonitor",
    "HealthRecord",
    "HealthState",
    "HealthStatus",
    "LoadBalancer",
    "LoadBalancingStrategy",
    "ScoredAdapter",
    "ScoringWeights",
    "SelectionPreferences",
]
