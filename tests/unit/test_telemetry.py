"""Unit tests for logging helpers, alerts and Prometheus metrics."""

import pytest
from structlog.testing import capture_logs

from model_orchestrator.telemetry import Alert, AlertBus, AlertLevel, LogContext, MetricsCollector, RequestContext, get_logger
from model_orchestrator.telemetry.logger import (
    CredentialRedactor,
    add_context_vars,
    redact_credentials,
    request_id_var,
    task_type_var,
)


class TestLogging:
    """Test suite for log processors and request context."""

    def test_redacts_bearer_and_api_keys(self):
        text = "Authorization: Bearer abcdefgh12345678 and key sk-0123456789abcdef0123"

        redacted = CredentialRedactor.redact(text)

        assert "abcdefgh12345678" not in redacted
        assert "sk-0123456789abcdef0123" not in redacted
        assert "Bearer [REDACTED]" in redacted

    def test_redaction_leaves_other_values(self):
        assert CredentialRedactor.redact(42) == 42
        assert CredentialRedactor.redact("plain message") == "plain message"

    def test_processor_redacts_nested_dicts(self):
        event = {"event": "call", "headers": {"Authorization": "Bearer abcdefgh12345678"}}

        result = redact_credentials(None, "info", event)

        assert result["headers"]["Authorization"] == "Bearer [REDACTED]"

    def test_request_context_sets_and_resets(self):
        with RequestContext(request_id="req-1") as context:
            context.set_task_type("analysis")
            event = add_context_vars(None, "info", {"event": "x"})
            assert event["request_id"] == "req-1"
            assert event["task_type"] == "analysis"

        assert request_id_var.get() == ""
        assert task_type_var.get() == ""
        assert "request_id" not in add_context_vars(None, "info", {"event": "x"})

    def test_log_context_binds_fields_and_reports_errors(self):
        with capture_logs() as logs:
            with pytest.raises(ValueError):
                with LogContext(get_logger("test"), adapter="alpha") as log:
                    log.info("calling")
                    raise ValueError("boom")

        assert logs[0]["adapter"] == "alpha"
        assert logs[0]["event"] == "calling"
        assert logs[1]["exc_type"] == "ValueError"
        assert logs[1]["adapter"] == "alpha"

    def test_request_context_generates_id(self):
        with RequestContext() as context:
            assert request_id_var.get() == context.request_id
            assert len(context.request_id) == 36


class TestAlertBus:
    """Alert fan-out."""

    def test_publish_notifies_and_queues(self):
        bus = AlertBus()
        seen = []
        bus.subscribe(seen.append)

        bus.publish(Alert(source="test", level=AlertLevel.WARNING, message="hot"))

        assert [alert.message for alert in seen] == ["hot"]
        assert bus.pending_count == 1
        assert bus.drain()[0].to_dict()["level"] == "warning"
        assert bus.pending_count == 0

    def test_unsubscribe(self):
        bus = AlertBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        bus.publish(Alert(source="test", level=AlertLevel.INFO, message="quiet"))

        assert seen == []

    def test_failing_observer_does_not_block_others(self):
        bus = AlertBus()
        seen = []

        def broken(alert):
            raise RuntimeError("observer bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        bus.publish(Alert(source="test", level=AlertLevel.CRITICAL, message="over budget"))

        assert len(seen) == 1

    def test_pending_queue_is_bounded(self):
        bus = AlertBus(max_pending=2)

        for index in range(3):
            bus.publish(Alert(source="test", level=AlertLevel.INFO, message=str(index)))

        assert [alert.message for alert in bus.drain()] == ["1", "2"]


class TestMetricsCollector:
    """Prometheus series."""

    def test_model_call_series(self, metrics):
        metrics.record_model_call("alpha", "fake-model", True, latency_ms=250.0, cost=0.01, prompt_tokens=3, completion_tokens=7)
        metrics.record_model_call("alpha", "fake-model", False)

        sample = metrics.registry.get_sample_value
        labels = {"provider": "alpha", "model": "fake-model"}
        assert sample("model_orchestrator_model_requests_total", {**labels, "status": "success"}) == 1.0
        assert sample("model_orchestrator_model_requests_total", {**labels, "status": "error"}) == 1.0
        assert sample("model_orchestrator_cost_usd_total", labels) == 0.01
        assert sample("model_orchestrator_tokens_processed_total", {**labels, "type": "completion"}) == 7.0
        assert sample("model_orchestrator_model_latency_seconds_count", labels) == 1.0

    def test_cache_and_failover_counters(self, metrics):
        metrics.record_cache(hit=True)
        metrics.record_cache(hit=False)
        metrics.record_cache(hit=False)
        metrics.record_failover(success=True)

        sample = metrics.registry.get_sample_value
        assert sample("model_orchestrator_cache_hits_total") == 1.0
        assert sample("model_orchestrator_cache_misses_total") == 2.0
        assert sample("model_orchestrator_failovers_total", {"outcome": "success"}) == 1.0

    def test_collectors_do_not_share_registries(self):
        first = MetricsCollector()
        second = MetricsCollector()

        first.record_cache(hit=True)

        assert second.registry.get_sample_value("model_orchestrator_cache_hits_total") == 0.0

    def test_export_text(self, metrics):
        metrics.set_budget_usage("daily", 0.5)

        text = metrics.export()

        assert 'model_orchestrator_budget_usage_ratio{scope="daily"} 0.5' in text
