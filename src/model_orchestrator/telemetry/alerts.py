"""
Threshold alerts from the health monitor and cost optimizer.

Producers publish to an AlertBus; consumers either subscribe a callback or
drain the pending queue.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List

logger = logging.getLogger(__name__)


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Alert:
    """One threshold crossing."""

    source: str
    level: AlertLevel
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "level": self.level.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


AlertObserver = Callable[[Alert], None]


class AlertBus:
    """Observer list plus a bounded queue of undrained alerts."""

    def __init__(self, max_pending: int = 1000):
        self._observers: List[AlertObserver] = []
        self._pending: Deque[Alert] = deque(maxlen=max_pending)

    def subscribe(self, observer: AlertObserver) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish(self, alert: Alert) -> None:
        self._pending.append(alert)
        log = logger.warning if alert.level != AlertLevel.INFO else logger.info
        log(
            f"[{alert.level.value}] {alert.source}: {alert.message}",
            extra={"alert_source": alert.source, "alert_level": alert.level.value},
        )
        for observer in list(self._observers):
            try:
                observer(alert)
            except Exception:
                logger.exception(f"Alert observer {observer!r} failed")

    def drain(self) -> List[Alert]:
        """Return and clear every pending alert."""
        alerts = list(self._pending)
        self._pending.clear()
        return alerts

    @property
    def pending_count(self) -> int:
        return len(self._pending)
