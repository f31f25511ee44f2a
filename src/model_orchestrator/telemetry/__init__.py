"""Telemetry module for observability and monitoring."""

from model_orchestrator.telemetry.alerts import Alert, AlertBus, AlertLevel
from model_orchestrator.telemetry.logger import LogContext, RequestContext, get_logger, setup_logging
from model_orchestrator.telemetry.metrics import MetricsCollector

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "RequestContext",
    "MetricsCollector",
    "Alert",
    "AlertBus",
    "AlertLevel",
]
