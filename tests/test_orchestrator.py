"""Tests for model orchestration: selection, retry, fallback, history and health.

Backoff sleeps are injected as AsyncMock so retry tests run instantly.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from realign.core.config import OrchestratorConfig, RealignConfig, RetryConfig
from realign.core.errors import (
    ModelConfigurationError,
    ModelExecutionError,
    ModelTimeoutError,
    ProviderError,
)
from realign.models.base import (
    Specialization,
    Task,
    TaskContext,
    TaskKind,
    TaskOptions,
    Urgency,
)
from realign.models.offline import OfflineModel
from realign.models.prompted import PromptedModel
from realign.orchestration import ModelConfiguration, ModelOrchestrator, build_model_registry
from tests.helpers import StubModel

EMOTIONAL_TASK = Task(kind=TaskKind.EMOTIONAL, input={"message": "I am behind on payments"})


def _orchestrator(
    primary: StubModel,
    fallback: StubModel | None = None,
    specialized: dict[Specialization, StubModel] | None = None,
    retry: RetryConfig | None = None,
    history_size: int = 1000,
) -> tuple[ModelOrchestrator, AsyncMock]:
    sleep = AsyncMock()
    orchestrator = ModelOrchestrator(
        {
            TaskKind.EMOTIONAL: ModelConfiguration(
                primary=primary, fallback=fallback, specialized=specialized or {}
            )
        },
        retry=retry or RetryConfig(max_retries=3, base_delay_seconds=1.0),
        history_size=history_size,
        heavy_payload_bytes=1000,
        sleep=sleep,
    )
    return orchestrator, sleep


# ============================================================================
# Selection
# ============================================================================


class TestModelSelection:
    """select_model prefers specialized variants only for critical urgency."""

    def setup_method(self) -> None:
        self.primary = StubModel("primary")
        self.accurate = StubModel("accurate")
        self.heavy = StubModel("heavy")
        self.orchestrator, _ = _orchestrator(
            self.primary,
            specialized={
                Specialization.ACCURACY: self.accurate,
                Specialization.HEAVY_PAYLOAD: self.heavy,
            },
        )

    def test_primary_by_default(self) -> None:
        selection = self.orchestrator.select_model(TaskKind.EMOTIONAL, TaskContext())
        assert selection.model is self.primary
        assert selection.reason == "primary_model"

    def test_accuracy_requires_critical_urgency(self) -> None:
        high = TaskContext(urgency=Urgency.HIGH, requires_accuracy=True)
        critical = TaskContext(urgency=Urgency.CRITICAL, requires_accuracy=True)

        assert self.orchestrator.select_model(TaskKind.EMOTIONAL, high).model is self.primary
        selection = self.orchestrator.select_model(TaskKind.EMOTIONAL, critical)
        assert selection.model is self.accurate
        assert selection.reason == "specialized_accuracy"

    def test_heavy_payload_above_threshold(self) -> None:
        at_limit = TaskContext(urgency=Urgency.CRITICAL, data_size=1000)
        above = TaskContext(urgency=Urgency.CRITICAL, data_size=1001)

        assert self.orchestrator.select_model(TaskKind.EMOTIONAL, at_limit).model is self.primary
        assert self.orchestrator.select_model(TaskKind.EMOTIONAL, above).model is self.heavy

    def test_unconfigured_kind(self) -> None:
        with pytest.raises(ModelConfigurationError, match="regulatory"):
            self.orchestrator.select_model(TaskKind.REGULATORY, TaskContext())

    @pytest.mark.asyncio
    async def test_execute_unconfigured_kind_raises_configuration_error(self) -> None:
        with pytest.raises(ModelConfigurationError):
            await self.orchestrator.execute_task(Task(kind=TaskKind.INTENT, input="x"))
        assert self.orchestrator.execution_history == []


# ============================================================================
# Retry and fallback
# ============================================================================


class TestRetry:
    """Retry-with-timeout and exponential backoff on the chosen model."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self) -> None:
        primary = StubModel("primary", behaviors=[{"sentiment": 0.2}])
        orchestrator, sleep = _orchestrator(primary)

        result = await orchestrator.execute_task(EMOTIONAL_TASK, TaskContext(case_id="case-1"))

        assert result.data == {"sentiment": 0.2}
        assert result.model_name == "primary"
        assert len(primary.calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_failures_then_success(self) -> None:
        """Attempt n that fails waits base * 2**n before the next attempt."""
        primary = StubModel(
            "primary",
            behaviors=[ConnectionError("reset"), ProviderError("busy", "fake"), {"ok": True}],
        )
        orchestrator, sleep = _orchestrator(primary)

        result = await orchestrator.execute_task(EMOTIONAL_TASK)

        assert result.data == {"ok": True}
        assert len(primary.calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_attempts_are_one_plus_max_retries(self) -> None:
        primary = StubModel("primary", behaviors=[RuntimeError("boom")] * 4)
        orchestrator, sleep = _orchestrator(primary)

        with pytest.raises(ModelExecutionError) as exc_info:
            await orchestrator.execute_task(EMOTIONAL_TASK)

        assert len(primary.calls) == 4
        # No sleep after the final attempt
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0, 8.0]
        error = exc_info.value
        assert error.task_kind == "emotional"
        assert error.correlation_id.startswith("EXEC-emotional-")
        assert isinstance(error.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_zero_retries(self) -> None:
        primary = StubModel("primary", behaviors=[RuntimeError("boom")])
        orchestrator, sleep = _orchestrator(primary, retry=RetryConfig(max_retries=0))

        with pytest.raises(ModelExecutionError):
            await orchestrator.execute_task(EMOTIONAL_TASK)

        assert len(primary.calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_permanent_provider_error_uses_every_attempt(self) -> None:
        auth_error = ProviderError("Authentication failed", "fake", retriable=False)
        primary = StubModel("primary", behaviors=[auth_error] * 4)
        fallback = StubModel("fallback", behaviors=[{"source": "fallback"}])
        orchestrator, sleep = _orchestrator(primary, fallback)

        result = await orchestrator.execute_task(EMOTIONAL_TASK)

        assert result.model_name == "fallback"
        assert len(primary.calls) == 4
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_model_configuration_error_is_retried(self) -> None:
        primary = StubModel("primary", behaviors=[ModelConfigurationError("no key")] * 4)
        orchestrator, _ = _orchestrator(primary)

        with pytest.raises(ModelExecutionError) as exc_info:
            await orchestrator.execute_task(EMOTIONAL_TASK)

        assert len(primary.calls) == 4
        assert isinstance(exc_info.value.cause, ModelConfigurationError)

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_retried(self) -> None:
        class SlowModel(StubModel):
            async def execute(self, task, context):
                if not self.calls:
                    self.calls.append((task, context))
                    await asyncio.sleep(10)
                return await super().execute(task, context)

        primary = SlowModel("slow", behaviors=[{"late": False}])
        orchestrator, sleep = _orchestrator(primary)
        task = Task(kind=TaskKind.EMOTIONAL, input="x", options=TaskOptions(timeout_ms=10))

        result = await orchestrator.execute_task(task)

        assert result.data == {"late": False}
        assert sleep.await_args_list[0].args[0] == 2.0


class TestFallback:
    """The fallback model runs once after the primary exhausts its attempts."""

    @pytest.mark.asyncio
    async def test_fallback_used_after_exhaustion(self) -> None:
        primary = StubModel("primary", behaviors=[RuntimeError("down")] * 4)
        fallback = StubModel("fallback", behaviors=[{"source": "fallback"}])
        orchestrator, _ = _orchestrator(primary, fallback)

        result = await orchestrator.execute_task(EMOTIONAL_TASK)

        assert result.model_name == "fallback"
        assert len(fallback.calls) == 1
        record = orchestrator.execution_history[-1]
        assert record.success is True
        assert record.fallback_used is True
        assert record.model_name == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_is_not_retried(self) -> None:
        primary = StubModel("primary", behaviors=[RuntimeError("down")] * 4)
        fallback = StubModel("fallback", behaviors=[RuntimeError("also down"), {"never": 1}])
        orchestrator, _ = _orchestrator(primary, fallback)

        with pytest.raises(ModelExecutionError, match="also down") as exc_info:
            await orchestrator.execute_task(EMOTIONAL_TASK, TaskContext(case_id="case-9"))

        assert len(fallback.calls) == 1
        assert exc_info.value.context.case_id == "case-9"
        assert str(exc_info.value.cause) == "also down"

    @pytest.mark.asyncio
    async def test_stalled_fallback_times_out(self) -> None:
        class StalledModel(StubModel):
            async def execute(self, task, context):
                self.calls.append((task, context))
                await asyncio.sleep(3600)

        primary = StubModel("primary", behaviors=[RuntimeError("down")] * 4)
        fallback = StalledModel("stalled")
        orchestrator, _ = _orchestrator(primary, fallback)
        task = Task(kind=TaskKind.EMOTIONAL, input="x", options=TaskOptions(timeout_ms=50))

        with pytest.raises(ModelExecutionError) as exc_info:
            await asyncio.wait_for(orchestrator.execute_task(task), 5.0)

        assert len(fallback.calls) == 1
        assert isinstance(exc_info.value.cause, ModelTimeoutError)
        assert orchestrator.execution_history[-1].success is False

    @pytest.mark.asyncio
    async def test_specialized_failure_falls_back_to_shared_fallback(self) -> None:
        primary = StubModel("primary")
        accurate = StubModel("accurate", behaviors=[RuntimeError("x")] * 4)
        fallback = StubModel("fallback", behaviors=[{"ok": 1}])
        orchestrator, _ = _orchestrator(
            primary, fallback, specialized={Specialization.ACCURACY: accurate}
        )

        result = await orchestrator.execute_task(
            EMOTIONAL_TASK, TaskContext(urgency=Urgency.CRITICAL, requires_accuracy=True)
        )

        assert result.model_name == "fallback"
        assert primary.calls == []
        assert len(accurate.calls) == 4


# ============================================================================
# History and metrics
# ============================================================================


class TestExecutionHistory:
    @pytest.mark.asyncio
    async def test_one_record_per_call(self) -> None:
        primary = StubModel("primary", behaviors=[RuntimeError("x"), {"ok": 1}])
        orchestrator, _ = _orchestrator(primary)

        await orchestrator.execute_task(EMOTIONAL_TASK)

        history = orchestrator.execution_history
        assert len(history) == 1
        assert history[0].success is True
        assert history[0].task_kind is TaskKind.EMOTIONAL
        assert history[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_history_is_bounded(self) -> None:
        primary = StubModel("primary")
        orchestrator, _ = _orchestrator(primary, history_size=3)

        for _ in range(5):
            await orchestrator.execute_task(EMOTIONAL_TASK)

        assert len(orchestrator.execution_history) == 3

    @pytest.mark.asyncio
    async def test_performance_metrics(self) -> None:
        primary = StubModel(
            "primary", behaviors=[{}, {}, {}] + [RuntimeError("x")] * 4
        )
        orchestrator, _ = _orchestrator(primary)

        for _ in range(3):
            await orchestrator.execute_task(EMOTIONAL_TASK)
        with pytest.raises(ModelExecutionError):
            await orchestrator.execute_task(EMOTIONAL_TASK)

        metrics = orchestrator.get_performance_metrics()
        assert metrics.total_executions == 4
        assert metrics.success_rate == 0.75
        performance = metrics.model_performance["primary"]
        assert performance.total_executions == 4
        assert performance.success_rate == 0.75

    def test_empty_metrics(self) -> None:
        orchestrator, _ = _orchestrator(StubModel("primary"))
        metrics = orchestrator.get_performance_metrics()
        assert metrics.total_executions == 0
        assert metrics.success_rate == 0.0
        assert metrics.model_performance == {}


# ============================================================================
# Availability, health and lifecycle
# ============================================================================


class TestAvailabilityAndHealth:
    def test_available_models_list_roles(self) -> None:
        orchestrator, _ = _orchestrator(
            StubModel("primary"),
            StubModel("fallback"),
            specialized={Specialization.ACCURACY: StubModel("accurate")},
        )

        available = orchestrator.get_available_models()

        assert [(m.name, m.role) for m in available] == [
            ("primary", "primary"),
            ("fallback", "fallback"),
            ("accurate", "specialized:accuracy"),
        ]
        assert available[0].estimated_cost == 0.002
        assert available[0].estimated_time_ms == 100.0

    @pytest.mark.asyncio
    async def test_health_grouped_by_provider(self) -> None:
        orchestrator, _ = _orchestrator(
            StubModel("primary", provider="anthropic"),
            StubModel("fallback", provider="local"),
            specialized={
                Specialization.ACCURACY: StubModel(
                    "accurate", provider="anthropic", healthy=RuntimeError("unreachable")
                )
            },
        )

        report = await orchestrator.check_health()

        assert report.services["local"].status == "operational"
        assert report.services["anthropic"].status == "degraded"
        assert "unreachable" in (report.services["anthropic"].error or "")
        assert report.healthy is True

    @pytest.mark.asyncio
    async def test_all_down_is_unhealthy(self) -> None:
        orchestrator, _ = _orchestrator(StubModel("primary", provider="ollama", healthy=False))

        report = await orchestrator.check_health()

        assert report.services["ollama"].status == "down"
        assert report.healthy is False

    @pytest.mark.asyncio
    async def test_close_closes_every_model(self) -> None:
        models = [StubModel("primary"), StubModel("fallback"), StubModel("heavy")]
        orchestrator, _ = _orchestrator(
            models[0], models[1], specialized={Specialization.HEAVY_PAYLOAD: models[2]}
        )

        await orchestrator.close()

        assert all(m.closed for m in models)


class TestRegistry:
    """build_model_registry turns configuration into dispatchable models."""

    def test_default_registry_is_offline(self) -> None:
        registry = build_model_registry(RealignConfig().orchestrator)

        assert set(registry) == set(TaskKind)
        assert all(isinstance(c.primary, OfflineModel) for c in registry.values())

    def test_networked_specs_become_prompted_models(self) -> None:
        config = RealignConfig.from_yaml_string(
            """
orchestrator:
  models:
    conversational: {primary: {name: offline-conversational}}
    document:
      primary: {name: offline-document}
      specialized:
        heavy_payload: {name: "llama3.1:8b", provider: {type: ollama}}
    emotional:
      primary: {name: claude-sonnet-4-20250514, provider: {type: anthropic}}
      fallback: {name: offline-emotion}
    intent: {primary: {name: offline-intent}}
    regulatory: {primary: {name: offline-regulatory}}
"""
        ).orchestrator

        registry = build_model_registry(config)

        emotional = registry[TaskKind.EMOTIONAL]
        assert isinstance(emotional.primary, PromptedModel)
        assert emotional.primary.provider_name == "anthropic"
        assert isinstance(emotional.fallback, OfflineModel)
        heavy = registry[TaskKind.DOCUMENT].specialized[Specialization.HEAVY_PAYLOAD]
        assert heavy.provider_name == "ollama"

    def test_missing_kind_is_configuration_error(self) -> None:
        config = OrchestratorConfig(models={})
        with pytest.raises(ModelConfigurationError, match="conversational"):
            build_model_registry(config)

    @pytest.mark.asyncio
    async def test_offline_end_to_end(self) -> None:
        orchestrator = ModelOrchestrator(build_model_registry(RealignConfig().orchestrator))

        result = await orchestrator.execute_task(
            Task(kind=TaskKind.INTENT, input="can I speak to a supervisor")
        )

        assert result.data["type"] == "escalation"
        assert orchestrator.execution_history[-1].model_name == "offline-intent"
