"""Model orchestration: select a model per task kind and execute it reliably.

Dispatch flow for one task:
1. Look up the ModelConfiguration for the task kind (missing ⇒ configuration error).
2. Prefer a specialized variant when urgency is critical and its predicate holds.
3. Run the chosen model under a deadline, retrying any failure with exponential backoff.
4. On exhaustion, try the fallback model exactly once under the same deadline.
5. Record one ExecutionRecord per call in a bounded history.

Example usage:
    orchestrator = ModelOrchestrator(models=build_model_registry(config.orchestrator))
    result = await orchestrator.execute_task(
        Task(kind=TaskKind.EMOTIONAL, input={"message": text}),
        TaskContext(case_id="case-1"),
    )
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from realign.core.config import RetryConfig
from realign.core.errors import (
    ModelConfigurationError,
    ModelExecutionError,
)
from realign.core.logging import LearningContext, get_logger, new_correlation_id, with_context
from realign.models.base import (
    AIModel,
    ModelResult,
    Specialization,
    Task,
    TaskContext,
    TaskKind,
    Urgency,
)
from realign.utils.time import utc_now
from realign.utils.timeout import run_with_timeout

_logger = get_logger("orchestrator")

DEFAULT_HISTORY_SIZE = 1000
DEFAULT_HEAVY_PAYLOAD_BYTES = 1024 * 1024


@dataclass
class ModelConfiguration:
    """Models registered for one task kind."""

    primary: AIModel
    fallback: AIModel | None = None
    specialized: dict[Specialization, AIModel] = field(default_factory=dict)

    def all_models(self) -> list[tuple[str, AIModel]]:
        """Every model with its role, primary first."""
        models: list[tuple[str, AIModel]] = [("primary", self.primary)]
        if self.fallback is not None:
            models.append(("fallback", self.fallback))
        models.extend((f"specialized:{s.value}", m) for s, m in self.specialized.items())
        return models


@dataclass(frozen=True)
class ModelSelection:
    """The model chosen for one dispatch and why."""

    model: AIModel
    fallback: AIModel | None
    reason: str


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of one execute_task call. Carries no payload data."""

    task_kind: TaskKind
    model_name: str
    success: bool
    execution_time_ms: float
    timestamp: datetime
    fallback_used: bool = False


@dataclass(frozen=True)
class ModelPerformance:
    success_rate: float
    average_execution_time_ms: float
    total_executions: int


@dataclass(frozen=True)
class PerformanceMetrics:
    """Aggregate view of the execution history."""

    model_performance: dict[str, ModelPerformance]
    total_executions: int
    success_rate: float


@dataclass(frozen=True)
class ServiceStatus:
    status: Literal["operational", "degraded", "down"]
    latency_ms: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class ServiceHealth:
    healthy: bool
    services: dict[str, ServiceStatus]


@dataclass(frozen=True)
class ModelAvailability:
    name: str
    kind: TaskKind
    role: str
    provider: str
    estimated_cost: float
    estimated_time_ms: float


class ModelOrchestrator:
    """Selects and executes models per task kind with retry and fallback.

    Collaborators are injected; the orchestrator holds no global state. The
    only shared mutable state is the bounded execution history.
    """

    def __init__(
        self,
        models: Mapping[TaskKind, ModelConfiguration],
        retry: RetryConfig | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        heavy_payload_bytes: int = DEFAULT_HEAVY_PAYLOAD_BYTES,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            models: Dispatch table from task kind to model configuration.
            retry: Retry/timeout policy for primary attempts.
            history_size: Number of execution records to keep.
            heavy_payload_bytes: data_size above which the heavy-payload
                specialization is eligible.
            sleep: Backoff sleep function (injectable for tests).
        """
        self._models = dict(models)
        self._retry = retry or RetryConfig()
        self._heavy_payload_bytes = heavy_payload_bytes
        self._sleep = sleep
        # deque.append with maxlen evicts the oldest entry in one step
        self._history: deque[ExecutionRecord] = deque(maxlen=history_size)

    @property
    def execution_history(self) -> list[ExecutionRecord]:
        """Snapshot of recorded executions, oldest first."""
        return list(self._history)

    def configured_kinds(self) -> list[TaskKind]:
        return [kind for kind in TaskKind if kind in self._models]

    async def execute_task(
        self,
        task: Task,
        context: TaskContext | None = None,
    ) -> ModelResult:
        """Execute a task on the best model for its kind.

        Args:
            task: The task to run.
            context: Dispatch hints for model selection.

        Returns:
            The ModelResult of the first successful attempt.

        Raises:
            ModelConfigurationError: No model is configured for the task kind.
            ModelExecutionError: Primary and fallback attempts all failed.
        """
        context = context or TaskContext()
        execution_id = new_correlation_id(f"EXEC-{task.kind.value}")
        ctx = LearningContext(
            correlation_id=execution_id,
            case_id=context.case_id,
            component="orchestrator",
        )
        with with_context(ctx):
            return await self._execute(task, context, execution_id)

    async def _execute(
        self,
        task: Task,
        context: TaskContext,
        execution_id: str,
    ) -> ModelResult:
        selection = self.select_model(task.kind, context)
        _logger.info(
            "model_selected",
            task_kind=task.kind.value,
            model=selection.model.name,
            has_fallback=selection.fallback is not None,
            reason=selection.reason,
            urgency=context.urgency.value if context.urgency else None,
        )

        start = time.monotonic()
        try:
            result = await self._execute_with_retry(selection.model, task, context)
        except Exception as primary_error:
            _logger.warning(
                "primary_model_failed",
                task_kind=task.kind.value,
                model=selection.model.name,
                error=str(primary_error),
            )
            last_error: BaseException = primary_error
            if selection.fallback is not None:
                _logger.info("fallback_attempt", model=selection.fallback.name)
                try:
                    result = await self._execute_once(selection.fallback, task, context)
                except Exception as fallback_error:
                    _logger.error(
                        "fallback_failed",
                        model=selection.fallback.name,
                        error=str(fallback_error),
                    )
                    last_error = fallback_error
                else:
                    self._record(
                        task.kind,
                        result.model_name,
                        True,
                        result.execution_time_ms,
                        fallback_used=True,
                    )
                    return result

            self._record(
                task.kind,
                selection.model.name,
                False,
                (time.monotonic() - start) * 1000,
            )
            raise ModelExecutionError(
                f"All models failed for task kind {task.kind.value}: {last_error}",
                task_kind=task.kind.value,
                correlation_id=execution_id,
                context=context,
                cause=last_error,
            ) from last_error

        self._record(task.kind, result.model_name, True, result.execution_time_ms)
        _logger.info(
            "task_completed",
            model=result.model_name,
            confidence=result.confidence,
            execution_time_ms=round(result.execution_time_ms, 1),
        )
        return result

    def select_model(self, kind: TaskKind, context: TaskContext) -> ModelSelection:
        """Choose the model for a task kind given dispatch hints.

        Raises:
            ModelConfigurationError: No configuration exists for the kind.
        """
        config = self._models.get(kind)
        if config is None:
            raise ModelConfigurationError(f"No model configured for task kind: {kind.value}")

        if config.specialized and context.urgency is Urgency.CRITICAL:
            for specialization, model in config.specialized.items():
                if self._should_use_specialized(specialization, context):
                    return ModelSelection(
                        model=model,
                        fallback=config.fallback,
                        reason=f"specialized_{specialization.value}",
                    )

        return ModelSelection(
            model=config.primary, fallback=config.fallback, reason="primary_model"
        )

    def _should_use_specialized(
        self,
        specialization: Specialization,
        context: TaskContext,
    ) -> bool:
        if specialization is Specialization.ACCURACY:
            return context.requires_accuracy
        if specialization is Specialization.HEAVY_PAYLOAD:
            return context.data_size is not None and context.data_size > self._heavy_payload_bytes
        return False

    async def _execute_with_retry(
        self,
        model: AIModel,
        task: Task,
        context: TaskContext,
    ) -> ModelResult:
        """Run a model under a deadline, retrying every failed attempt.

        Attempt n that fails waits ``base_delay * 2**n`` seconds before
        attempt n+1. The last attempt's error propagates.
        """
        max_attempts = self._retry.max_retries + 1
        attempt = 1
        while True:
            try:
                return await self._execute_once(model, task, context)
            except Exception as e:
                if attempt >= max_attempts:
                    raise
                delay = self._retry.base_delay_seconds * (2**attempt)
                _logger.info(
                    "task_retry",
                    attempt=attempt,
                    model=model.name,
                    error_type=type(e).__name__,
                    error=str(e),
                    retriable=getattr(e, "retriable", True),
                    delay_seconds=delay,
                )
                await self._sleep(delay)
                attempt += 1

    async def _execute_once(
        self,
        model: AIModel,
        task: Task,
        context: TaskContext,
    ) -> ModelResult:
        timeout_ms = task.options.timeout_ms or self._retry.default_timeout_ms
        return await run_with_timeout(lambda: model.execute(task, context), timeout_ms / 1000)

    def _record(
        self,
        kind: TaskKind,
        model_name: str,
        success: bool,
        execution_time_ms: float,
        fallback_used: bool = False,
    ) -> None:
        self._history.append(
            ExecutionRecord(
                task_kind=kind,
                model_name=model_name,
                success=success,
                execution_time_ms=execution_time_ms,
                timestamp=utc_now(),
                fallback_used=fallback_used,
            )
        )

    def get_performance_metrics(self) -> PerformanceMetrics:
        """Aggregate the execution history into per-model statistics."""
        records = list(self._history)
        stats: dict[str, list[float]] = {}
        for record in records:
            successes, failures, total_time = stats.setdefault(record.model_name, [0, 0, 0.0])
            stats[record.model_name] = [
                successes + (1 if record.success else 0),
                failures + (0 if record.success else 1),
                total_time + record.execution_time_ms,
            ]

        performance = {}
        for model_name, (successes, failures, total_time) in stats.items():
            total = int(successes + failures)
            performance[model_name] = ModelPerformance(
                success_rate=successes / total if total else 0.0,
                average_execution_time_ms=total_time / total if total else 0.0,
                total_executions=total,
            )

        total_executions = len(records)
        total_successes = sum(1 for r in records if r.success)
        return PerformanceMetrics(
            model_performance=performance,
            total_executions=total_executions,
            success_rate=total_successes / total_executions if total_executions else 0.0,
        )

    def get_available_models(self) -> list[ModelAvailability]:
        """List every configured model with its role and estimates."""
        available = []
        for kind in self.configured_kinds():
            probe = Task(kind=kind, input="")
            for role, model in self._models[kind].all_models():
                available.append(
                    ModelAvailability(
                        name=model.name,
                        kind=kind,
                        role=role,
                        provider=model.provider_name,
                        estimated_cost=model.estimated_cost(probe),
                        estimated_time_ms=model.estimated_time(probe),
                    )
                )
        return available

    async def check_health(self) -> ServiceHealth:
        """Probe every model and report status per provider."""
        by_provider: dict[str, list[AIModel]] = {}
        for kind in self.configured_kinds():
            for _, model in self._models[kind].all_models():
                by_provider.setdefault(model.provider_name, []).append(model)

        services: dict[str, ServiceStatus] = {}
        for provider, models in by_provider.items():
            start = time.monotonic()
            results = await asyncio.gather(
                *(m.health_check() for m in models), return_exceptions=True
            )
            latency = (time.monotonic() - start) * 1000
            healthy = [r is True for r in results]
            errors = [str(r) for r in results if isinstance(r, BaseException)]
            if all(healthy):
                services[provider] = ServiceStatus("operational", latency_ms=latency)
            elif any(healthy):
                services[provider] = ServiceStatus(
                    "degraded", latency_ms=latency, error="; ".join(errors) or None
                )
            else:
                services[provider] = ServiceStatus(
                    "down", error="; ".join(errors) or "health check failed"
                )

        return ServiceHealth(
            healthy=all(s.status != "down" for s in services.values()),
            services=services,
        )

    async def close(self) -> None:
        """Release provider resources held by registered models."""
        for config in self._models.values():
            for _, model in config.all_models():
                await model.close()
