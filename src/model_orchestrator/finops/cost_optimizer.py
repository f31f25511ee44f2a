"""Cost ledger, budget tracking and spend recommendations."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..telemetry.alerts import Alert, AlertBus, AlertLevel
from ..telemetry.metrics import MetricsCollector

logger = logging.getLogger(__name__)

WARNING_THRESHOLD = 0.8
CRITICAL_THRESHOLD = 0.95
DISPROPORTIONATE_COST_FACTOR = 2.0
MONTHLY_RECOMMENDATION_THRESHOLD = 0.8
DAILY_RECOMMENDATION_THRESHOLD = 0.9


@dataclass
class CostRecord:
    """One billed model call."""

    model_id: str
    cost: float
    tokens: int
    task_type: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def cost_per_token(self) -> float:
        return self.cost / self.tokens if self.tokens else 0.0

    def to_dict(self) -> dict:
        return {
            "model_id": self.model_id,
            "cost": self.cost,
            "tokens": self.tokens,
            "task_type": self.task_type,
            "cost_per_token": self.cost_per_token,
            "timestamp": self.timestamp.isoformat(),
        }


class CostOptimizer:
    """Tracks spend per model and raises advisory budget alerts.

    Budgets never block calls. Crossing 80% of a budget publishes a WARNING
    alert and crossing 95% a CRITICAL one, each at most once per period.
    Records older than ``retention_days`` are dropped on insert.
    """

    def __init__(
        self,
        daily_budget: float = 100.0,
        monthly_budget: float = 2000.0,
        retention_days: int = 62,
        alert_bus: Optional[AlertBus] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.daily_budget = daily_budget
        self.monthly_budget = monthly_budget
        self.retention = timedelta(days=retention_days)
        self.alert_bus = alert_bus
        self.metrics = metrics
        self._clock = clock

        self.records: List[CostRecord] = []
        self._alerted: Set[Tuple[str, AlertLevel, str]] = set()

        logger.info(f"Cost optimizer initialized (daily ${daily_budget}, monthly ${monthly_budget})")

    def record_cost(self, model_id: str, cost: float, tokens: int, task_type: Any = "") -> CostRecord:
        """Append a record, prune expired ones and re-check both budgets."""
        record = CostRecord(
            model_id=model_id,
            cost=cost,
            tokens=tokens,
            task_type=getattr(task_type, "value", task_type) or "",
            timestamp=self._clock(),
        )
        self.records.append(record)
        self._prune(record.timestamp)

        logger.debug(f"Tracked cost: ${cost:.6f} for {model_id} ({tokens} tokens)")
        self._check_budgets()
        return record

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.retention
        if self.records and self.records[0].timestamp < cutoff:
            self.records = [record for record in self.records if record.timestamp >= cutoff]

    def _today_records(self) -> List[CostRecord]:
        today = self._clock().date()
        return [record for record in self.records if record.timestamp.date() == today]

    def _month_records(self) -> List[CostRecord]:
        now = self._clock()
        return [
            record
            for record in self.records
            if record.timestamp.year == now.year and record.timestamp.month == now.month
        ]

    def get_today_cost(self) -> float:
        return sum(record.cost for record in self._today_records())

    def get_month_cost(self) -> float:
        return sum(record.cost for record in self._month_records())

    def _usage(self) -> Dict[str, float]:
        return {
            "daily": self.get_today_cost() / self.daily_budget if self.daily_budget else 0.0,
            "monthly": self.get_month_cost() / self.monthly_budget if self.monthly_budget else 0.0,
        }

    def _check_budgets(self) -> None:
        now = self._clock()
        periods = {"daily": now.strftime("%Y-%m-%d"), "monthly": now.strftime("%Y-%m")}
        budgets = {"daily": self.daily_budget, "monthly": self.monthly_budget}

        for scope, ratio in self._usage().items():
            if self.metrics is not None:
                self.metrics.set_budget_usage(scope, ratio)

            if ratio >= CRITICAL_THRESHOLD:
                level = AlertLevel.CRITICAL
            elif ratio >= WARNING_THRESHOLD:
                level = AlertLevel.WARNING
            else:
                continue

            key = (scope, level, periods[scope])
            if key in self._alerted:
                continue
            self._alerted.add(key)
            if level == AlertLevel.CRITICAL:
                self._alerted.add((scope, AlertLevel.WARNING, periods[scope]))

            message = f"{scope.capitalize()} budget usage at {ratio:.0%}"
            if self.alert_bus is not None:
                self.alert_bus.publish(
                    Alert(
                        source="cost_optimizer",
                        level=level,
                        message=message,
                        details={
                            "scope": scope,
                            "usage": ratio,
                            "budget": budgets[scope],
                            "period": periods[scope],
                        },
                    )
                )
            else:
                logger.warning(message, extra={"scope": scope, "level": level.value})

    def get_most_efficient_model(self, task_type: Any) -> Optional[str]:
        """Model with the lowest average cost per token for a task type, if any was recorded."""
        task_type = getattr(task_type, "value", task_type)
        per_token: Dict[str, List[float]] = defaultdict(list)
        for record in self.records:
            if record.task_type == task_type:
                per_token[record.model_id].append(record.cost_per_token)

        if not per_token:
            return None
        return min(per_token, key=lambda model_id: sum(per_token[model_id]) / len(per_token[model_id]))

    def _cost_by(self, records: List[CostRecord], attribute: str) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        for record in records:
            totals[getattr(record, attribute)] += record.cost
        return dict(totals)

    def generate_recommendations(self) -> List[str]:
        recommendations: List[str] = []
        usage = self._usage()

        ranked = sorted(
            self._cost_by(self._month_records(), "model_id").items(), key=lambda item: item[1], reverse=True
        )
        if len(ranked) >= 2 and ranked[0][1] > ranked[1][1] * DISPROPORTIONATE_COST_FACTOR:
            recommendations.append(
                f"Model {ranked[0][0]} costs ${ranked[0][1]:.2f}, more than twice the next model "
                f"({ranked[1][0]}, ${ranked[1][1]:.2f}); consider routing more traffic elsewhere"
            )

        if usage["monthly"] > MONTHLY_RECOMMENDATION_THRESHOLD:
            recommendations.append(
                f"Monthly budget usage is {usage['monthly']:.0%}; prefer cheaper models for the rest of the month"
            )

        if usage["daily"] > DAILY_RECOMMENDATION_THRESHOLD:
            recommendations.append(
                f"Daily budget usage is {usage['daily']:.0%}; consider deferring batch workloads"
            )

        return recommendations

    def get_cost_analysis(self) -> Dict[str, Any]:
        month_records = self._month_records()
        usage = self._usage()
        return {
            "total_cost": sum(record.cost for record in month_records),
            "today_cost": self.get_today_cost(),
            "daily_budget": self.daily_budget,
            "monthly_budget": self.monthly_budget,
            "daily_usage": usage["daily"],
            "monthly_usage": usage["monthly"],
            "cost_by_model": self._cost_by(month_records, "model_id"),
            "cost_by_task_type": self._cost_by(month_records, "task_type"),
            "recommendations": self.generate_recommendations(),
        }

    def set_budget(self, daily: Optional[float] = None, monthly: Optional[float] = None) -> None:
        if daily is not None:
            self.daily_budget = daily
        if monthly is not None:
            self.monthly_budget = monthly
        logger.info(f"Budgets updated (daily ${self.daily_budget}, monthly ${self.monthly_budget})")
        self._check_budgets()

    def get_status(self) -> Dict[str, Any]:
        usage = self._usage()
        return {
            "daily_budget": self.daily_budget,
            "monthly_budget": self.monthly_budget,
            "daily_usage": usage["daily"],
            "monthly_usage": usage["monthly"],
            "tracked_models": len({record.model_id for record in self.records}),
            "records": len(self.records),
            "recommendations": self.generate_recommendations(),
        }

    def export_records(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self.records]
