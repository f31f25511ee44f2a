"""End-to-end orchestrator tests over in-process adapters."""

import pytest
import pytest_asyncio

from model_orchestrator.cache import InMemoryCache
from model_orchestrator.exceptions import (
    FailoverError,
    NoAdaptersAvailableError,
    OrchestratorNotInitializedError,
    ProviderError,
    RequestValidationError,
)
from model_orchestrator.finops import CostOptimizer
from model_orchestrator.orchestrator import AIOrchestrator, HealthRecord, HealthState, ProcessOptions, TaskType
from model_orchestrator.orchestrator.load_balancer import ScoringWeights
from model_orchestrator.telemetry import AlertBus, AlertLevel

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def build(make_registry, metrics):
    """Create and initialize orchestrators; background probing is stopped so tests drive health explicitly.

    Latency scoring is switched off so ties between equally healthy adapters resolve in registry order.
    """
    created = []

    async def factory(**registry_overrides) -> AIOrchestrator:
        orchestrator = AIOrchestrator(make_registry(**registry_overrides), metrics=metrics)
        await orchestrator.initialize()
        await orchestrator.health_monitor.stop()
        orchestrator.load_balancer.weights = ScoringWeights(latency=0.0)
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        await orchestrator.shutdown()


class TestProcess:
    """Happy path, cache and accounting."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, make_registry):
        orchestrator = AIOrchestrator(make_registry())

        with pytest.raises(OrchestratorNotInitializedError):
            await orchestrator.process("hello")

    @pytest.mark.asyncio
    async def test_answers_and_records_cost(self, build, metrics):
        orchestrator = await build()

        response = await orchestrator.process("Generate a haiku", ProcessOptions(max_tokens=50))

        assert response.content.startswith("reply from")
        assert "failover" not in response.metadata
        assert orchestrator.cost_optimizer.records[0].task_type == "generation"
        assert orchestrator.cost_optimizer.records[0].cost == pytest.approx(0.01)
        assert sum(orchestrator.load_balancer.connection_counts.values()) == 0
        assert metrics.registry.get_sample_value(
            "model_orchestrator_model_requests_total",
            {"provider": response.metadata["provider"], "model": "fake-model", "status": "success"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_second_identical_prompt_is_served_from_cache(self, build, metrics):
        orchestrator = await build(ids=("alpha",))
        alpha = orchestrator.registry.get_adapter("alpha")

        first = await orchestrator.process("What is 2+2?")
        sent_after_first = len(alpha.sent)
        second = await orchestrator.process("What is 2+2?")

        assert second.content == first.content
        assert second.metadata["cached"] is True
        assert "cached" not in first.metadata
        assert len(alpha.sent) == sent_after_first
        assert len(orchestrator.cost_optimizer.records) == 1
        assert metrics.registry.get_sample_value("model_orchestrator_cache_hits_total") == 1.0

    @pytest.mark.asyncio
    async def test_skip_cache_calls_the_model_again(self, build):
        orchestrator = await build(ids=("alpha",))
        alpha = orchestrator.registry.get_adapter("alpha")

        await orchestrator.process("What is 2+2?")
        sent_after_first = len(alpha.sent)
        response = await orchestrator.process("What is 2+2?", ProcessOptions(skip_cache=True))

        assert len(alpha.sent) == sent_after_first + 1
        assert "cached" not in response.metadata

    @pytest.mark.asyncio
    async def test_cache_key_depends_on_prompt_and_adapter(self):
        key = AIOrchestrator.generate_cache_key("hello", "alpha")

        assert key.startswith("ai_response:")
        assert key == AIOrchestrator.generate_cache_key("hello", "alpha")
        assert key != AIOrchestrator.generate_cache_key("hello", "beta")
        assert key != AIOrchestrator.generate_cache_key("hello!", "alpha")

    @pytest.mark.asyncio
    async def test_corrupt_cache_entry_is_a_miss(self, make_registry):
        cache = InMemoryCache()
        orchestrator = AIOrchestrator(make_registry(ids=("alpha",)), cache=cache)
        await orchestrator.initialize()
        await orchestrator.health_monitor.stop()
        await cache.set(AIOrchestrator.generate_cache_key("hi", "alpha"), {"content": 42, "usage": "bad"}, 60)

        response = await orchestrator.process("hi")

        assert response.content == "reply from alpha"
        assert "cached" not in response.metadata
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_unhealthy_adapter_is_not_selected(self, build):
        orchestrator = await build()
        orchestrator.health_monitor.record(HealthRecord(adapter_id="alpha", is_healthy=False, error="down"))

        response = await orchestrator.process("hello")

        assert response.metadata["provider"] == "beta"
        assert "failover" not in response.metadata

    @pytest.mark.asyncio
    async def test_budget_alerts_reach_subscribers(self, make_registry):
        bus = AlertBus()
        orchestrator = AIOrchestrator(
            make_registry(), alert_bus=bus, cost_optimizer=CostOptimizer(daily_budget=0.01, alert_bus=bus)
        )
        seen = []
        orchestrator.subscribe(seen.append)
        await orchestrator.initialize()
        await orchestrator.health_monitor.stop()

        await orchestrator.process("hello")

        assert [alert.level for alert in seen] == [AlertLevel.CRITICAL]
        assert orchestrator.get_status().pending_alerts == 1
        assert [alert.source for alert in orchestrator.drain_alerts()] == ["cost_optimizer"]
        assert orchestrator.drain_alerts() == []
        await orchestrator.shutdown()


class TestFailover:
    """Single failover to the registry default."""

    @pytest.mark.asyncio
    async def test_primary_failure_falls_back_to_default(self, build, metrics):
        orchestrator = await build(default_provider="beta")
        orchestrator.registry.get_adapter("alpha").fail = True
        beta = orchestrator.registry.get_adapter("beta")

        response = await orchestrator.process("hello")

        assert response.content == "reply from beta"
        assert response.metadata["failover"] is True
        assert "alpha is down" in response.metadata["primary_error"]
        assert beta.sent[-1].temperature == 0.7
        assert beta.sent[-1].max_tokens == 1000
        assert orchestrator.load_balancer.connection_counts["alpha"] == 0
        assert metrics.registry.get_sample_value("model_orchestrator_failovers_total", {"outcome": "success"}) == 1.0

    @pytest.mark.asyncio
    async def test_failover_call_counts_as_open_connection(self, build):
        orchestrator = await build(default_provider="beta")
        orchestrator.registry.get_adapter("alpha").fail = True
        beta = orchestrator.registry.get_adapter("beta")
        open_calls = []
        send = beta._send_request

        async def observe(request):
            open_calls.append(orchestrator.load_balancer.connection_counts.get("beta", 0))
            return await send(request)

        beta._send_request = observe

        await orchestrator.process("hello")

        assert open_calls == [1]
        assert orchestrator.load_balancer.connection_counts["beta"] == 0

    @pytest.mark.asyncio
    async def test_failover_keeps_caller_sampling_options(self, build):
        orchestrator = await build(default_provider="beta")
        orchestrator.registry.get_adapter("alpha").fail = True

        await orchestrator.process("hello", ProcessOptions(temperature=0, max_tokens=64))

        sent = orchestrator.registry.get_adapter("beta").sent[-1]
        assert sent.temperature == 0
        assert sent.max_tokens == 64

    @pytest.mark.asyncio
    async def test_both_attempts_fail(self, build, metrics):
        orchestrator = await build(default_provider="beta")
        orchestrator.registry.get_adapter("alpha").fail = True
        orchestrator.registry.get_adapter("beta").fail = True

        with pytest.raises(FailoverError) as exc_info:
            await orchestrator.process("hello")

        error = exc_info.value
        assert isinstance(error.primary_error, ProviderError)
        assert "alpha is down" in str(error)
        assert "beta is down" in str(error)
        assert error.__cause__ is error.fallback_error
        assert metrics.registry.get_sample_value("model_orchestrator_failovers_total", {"outcome": "failure"}) == 1.0

    @pytest.mark.asyncio
    async def test_timeout_triggers_failover(self, build):
        orchestrator = await build(default_provider="beta")
        orchestrator.registry.get_adapter("alpha").delay = 1.0

        response = await orchestrator.process("hello", ProcessOptions(timeout=0.05))

        assert response.metadata["failover"] is True
        assert response.metadata["provider"] == "beta"

    @pytest.mark.asyncio
    async def test_validation_errors_do_not_fail_over(self, build):
        orchestrator = await build(default_provider="beta")
        beta = orchestrator.registry.get_adapter("beta")
        sent_before = len(beta.sent)

        with pytest.raises(RequestValidationError):
            await orchestrator.process("hello", ProcessOptions(max_tokens=5000))

        assert len(beta.sent) == sent_before

    @pytest.mark.asyncio
    async def test_empty_registry(self, build):
        orchestrator = await build()
        await orchestrator.registry.remove_adapter("alpha")
        await orchestrator.registry.remove_adapter("beta")

        with pytest.raises(NoAdaptersAvailableError):
            await orchestrator.process("hello")

    @pytest.mark.asyncio
    async def test_all_unhealthy_uses_default(self, build):
        orchestrator = await build(default_provider="beta")
        for adapter_id in ("alpha", "beta"):
            orchestrator.health_monitor.record(HealthRecord(adapter_id=adapter_id, is_healthy=False))

        response = await orchestrator.process("hello")

        assert response.metadata["provider"] == "beta"
        assert response.metadata["failover"] is True


class TestStreamingAndStatus:
    """Streaming path and status snapshot."""

    @pytest.mark.asyncio
    async def test_process_stream(self, build):
        orchestrator = await build(ids=("alpha",))

        chunks = [chunk async for chunk in orchestrator.process_stream("Generate a poem", ProcessOptions(task_type=TaskType.GENERATION))]

        assert "".join(chunk.content for chunk in chunks) == "replyfromalpha"
        assert orchestrator.load_balancer.connection_counts["alpha"] == 0

    @pytest.mark.asyncio
    async def test_status_snapshot(self, build):
        orchestrator = await build()
        await orchestrator.health_monitor.check_now()
        await orchestrator.process("hello")

        status = orchestrator.get_status()

        assert status.initialized
        assert status.total_models == 2
        assert status.available_models == 2
        # Two startup probes, two on-demand probes and one answered prompt
        assert status.total_requests == 5
        assert status.total_cost == pytest.approx(0.05)
        assert status.health_monitor["healthy"] == 2
        assert status.cost_optimizer["records"] == 1
        assert status.cache["sets"] == 1
        assert status.load_balancer["strategy"] == "score"

    @pytest.mark.asyncio
    async def test_initialize_runs_first_health_round(self, build):
        orchestrator = await build()

        assert orchestrator.health_monitor.get_state("alpha") == HealthState.HEALTHY
        assert orchestrator.health_monitor.get_history("beta")[0].tokens_used == 10

    @pytest.mark.asyncio
    async def test_failed_initialize_releases_resources(self, make_registry):
        cache = InMemoryCache()
        await cache.set("leftover", {"content": "x"}, 60)
        registry = make_registry(ids=("broken",), default_provider="broken", broken={"api_key": None})
        orchestrator = AIOrchestrator(registry, cache=cache)

        with pytest.raises(NoAdaptersAvailableError):
            await orchestrator.initialize()

        assert await cache.get("leftover") is None
        assert not orchestrator.health_monitor.is_running
        assert not orchestrator.is_initialized

    @pytest.mark.asyncio
    async def test_context_manager(self, make_registry):
        async with AIOrchestrator(make_registry()) as orchestrator:
            assert orchestrator.is_initialized
            await orchestrator.initialize()

        assert not orchestrator.is_initialized
        assert not orchestrator.health_monitor.is_running
