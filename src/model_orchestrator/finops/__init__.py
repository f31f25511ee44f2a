"""Cost tracking and budget management."""

from model_orchestrator.finops.cost_optimizer import CostOptimizer, CostRecord

__all__ = ["CostOptimizer", "CostRecord"]
