"""
Periodic health probing for registered adapters.

Every tick probes all adapters concurrently and appends one HealthRecord per
adapter to a bounded history. Health is derived from the most recent records.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel

from ..providers.base import BaseModelAdapter, ChatMessage, MessageRole, ModelRequest
from ..providers.registry import ProviderRegistry
from ..telemetry.alerts import Alert, AlertBus, AlertLevel
from ..telemetry.metrics import MetricsCollector

logger = logging.getLogger(__name__)

PROBE_PROMPT = "ping"
PROBE_MAX_TOKENS = 5
SCORE_WINDOW = 10
HEALTHY_SCORE_THRESHOLD = 0.7


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthRecord:
    """Outcome of one probe."""

    adapter_id: str
    is_healthy: bool
    response_time: float = 0.0
    error: Optional[str] = None
    tokens_used: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)


class HealthStatus(BaseModel):
    """Derived health view of one adapter."""

    adapter_id: str
    state: HealthState = HealthState.UNKNOWN
    is_healthy: bool = False
    health_score: float = 0.0
    average_response_time: float = 0.0
    error_rate: float = 1.0
    uptime: float = 0.0
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None


class HealthMonitor:
    """Probes adapters on a fixed interval and keeps a rolling history."""

    def __init__(
        self,
        registry: ProviderRegistry,
        interval: float = 30.0,
        history_size: int = 100,
        probe_timeout: Optional[float] = 10.0,
        alert_bus: Optional[AlertBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.interval = interval
        self.history_size = history_size
        self.probe_timeout = probe_timeout
        self.alert_bus = alert_bus
        self.metrics = metrics

        self._history: Dict[str, Deque[HealthRecord]] = {}
        self._totals: Dict[str, List[int]] = {}  # adapter id -> [checks, healthy checks]
        self._states: Dict[str, HealthState] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Probe immediately, then keep probing every interval in the background."""
        if self._running:
            return
        self._running = True
        await self._tick()
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(f"Health monitor started with {self.interval}s interval")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Health monitor stopped")

    async def _monitor_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.check_now()
        except Exception:
            logger.exception("Health monitor tick failed")

    async def check_now(self) -> Dict[str, HealthRecord]:
        """Run one probe round across every registered adapter."""
        adapters = self.registry.get_available_adapters()
        self._forget_unregistered({adapter.id for adapter in adapters})

        results = await asyncio.gather(
            *(self._probe(adapter) for adapter in adapters), return_exceptions=True
        )

        records: Dict[str, HealthRecord] = {}
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                result = HealthRecord(adapter_id=adapter.id, is_healthy=False, error=str(result))
            self._append(result)
            records[adapter.id] = result
        return records

    async def _probe(self, adapter: BaseModelAdapter) -> HealthRecord:
        request = ModelRequest(
            messages=[ChatMessage(role=MessageRole.USER.value, content=PROBE_PROMPT)],
            max_tokens=PROBE_MAX_TOKENS,
            temperature=0,
        )
        start_time = time.perf_counter()
        try:
            response = await adapter.chat(request, timeout=self.probe_timeout)
        except Exception as e:
            logger.warning(
                f"Health probe failed for {adapter.id}: {e}",
                extra={"adapter": adapter.id, "error_type": type(e).__name__},
            )
            return HealthRecord(
                adapter_id=adapter.id,
                is_healthy=False,
                response_time=(time.perf_counter() - start_time) * 1000,
                error=str(e),
            )
        return HealthRecord(
            adapter_id=adapter.id,
            is_healthy=True,
            response_time=(time.perf_counter() - start_time) * 1000,
            tokens_used=response.usage.total_tokens,
        )

    def record(self, record: HealthRecord) -> None:
        """Append an externally produced probe result."""
        self._append(record)

    def _append(self, record: HealthRecord) -> None:
        adapter_id = record.adapter_id
        history = self._history.setdefault(adapter_id, deque(maxlen=self.history_size))
        history.append(record)

        totals = self._totals.setdefault(adapter_id, [0, 0])
        totals[0] += 1
        if record.is_healthy:
            totals[1] += 1

        healthy = self.is_healthy(adapter_id)
        new_state = HealthState.HEALTHY if healthy else HealthState.UNHEALTHY
        old_state = self._states.get(adapter_id, HealthState.UNKNOWN)
        self._states[adapter_id] = new_state

        if self.metrics is not None:
            self.metrics.set_adapter_health(adapter_id, healthy)
        if new_state != old_state:
            self._on_transition(adapter_id, old_state, new_state, record)

    def _on_transition(
        self, adapter_id: str, old_state: HealthState, new_state: HealthState, record: HealthRecord
    ) -> None:
        logger.info(f"Adapter {adapter_id} health {old_state.value} -> {new_state.value}")
        if self.alert_bus is None:
            return
        if new_state == HealthState.UNHEALTHY:
            self.alert_bus.publish(
                Alert(
                    source="health_monitor",
                    level=AlertLevel.WARNING,
                    message=f"Adapter {adapter_id} is unhealthy",
                    details={"adapter_id": adapter_id, "error": record.error, "previous": old_state.value},
                )
            )
        elif old_state == HealthState.UNHEALTHY:
            self.alert_bus.publish(
                Alert(
                    source="health_monitor",
                    level=AlertLevel.INFO,
                    message=f"Adapter {adapter_id} recovered",
                    details={"adapter_id": adapter_id},
                )
            )

    def _forget_unregistered(self, registered: set) -> None:
        for adapter_id in list(self._history):
            if adapter_id not in registered:
                del self._history[adapter_id]
                self._totals.pop(adapter_id, None)
                self._states.pop(adapter_id, None)

    def _recent(self, adapter_id: str) -> List[HealthRecord]:
        history = self._history.get(adapter_id)
        if not history:
            return []
        return list(history)[-SCORE_WINDOW:]

    def get_health_score(self, adapter_id: str) -> float:
        recent = self._recent(adapter_id)
        if not recent:
            return 0.0
        return sum(1 for record in recent if record.is_healthy) / len(recent)

    def is_healthy(self, adapter_id: str) -> bool:
        recent = self._recent(adapter_id)
        if not recent:
            return False
        return recent[-1].is_healthy and self.get_health_score(adapter_id) > HEALTHY_SCORE_THRESHOLD

    def get_state(self, adapter_id: str) -> HealthState:
        return self._states.get(adapter_id, HealthState.UNKNOWN)

    def get_history(self, adapter_id: str) -> List[HealthRecord]:
        return list(self._history.get(adapter_id, ()))

    def get_health_status(self, adapter_id: str) -> HealthStatus:
        recent = self._recent(adapter_id)
        if not recent:
            return HealthStatus(adapter_id=adapter_id)

        healthy_records = [record for record in recent if record.is_healthy]
        checks, healthy_checks = self._totals.get(adapter_id, [0, 0])
        last_error = next((record.error for record in reversed(recent) if record.error), None)
        return HealthStatus(
            adapter_id=adapter_id,
            state=self.get_state(adapter_id),
            is_healthy=self.is_healthy(adapter_id),
            health_score=len(healthy_records) / len(recent),
            average_response_time=(
                sum(record.response_time for record in healthy_records) / len(healthy_records)
                if healthy_records
                else 0.0
            ),
            error_rate=(len(recent) - len(healthy_records)) / len(recent),
            uptime=healthy_checks / checks if checks else 0.0,
            last_check=recent[-1].timestamp,
            last_error=last_error,
        )

    def get_all_health_status(self) -> Dict[str, HealthStatus]:
        return {adapter_id: self.get_health_status(adapter_id) for adapter_id in self.registry.get_adapter_ids()}

    def get_status(self) -> Dict[str, Any]:
        statuses = self.get_all_health_status()
        healthy = sum(1 for status in statuses.values() if status.is_healthy)
        return {
            "active": self._running,
            "monitored": len(statuses),
            "healthy": healthy,
            "overall_health": healthy / len(statuses) if statuses else 0.0,
            "adapters": {adapter_id: status.model_dump(mode="json") for adapter_id, status in statuses.items()},
        }
