"""Shared factories for ReAlign tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from realign.learning.cases import labeled_case_from_interaction
from realign.learning.models import (
    ContentFeatures,
    ContextFeatures,
    EmotionalState,
    FeatureSet,
    HistoricalFeatures,
    Interaction,
    InteractionContext,
    InteractionOutcome,
    InteractionType,
    LabeledCase,
    OutcomeMetrics,
    Pattern,
    PatternFeatures,
    PatternOutcome,
    PatternScope,
    PatternType,
    PerformanceFeatures,
    Servicer,
    TemporalFeatures,
)
from realign.models.base import AIModel, ModelResult, Task, TaskContext, TaskKind, Urgency

BASE_TIME = datetime(2025, 3, 10, 14, 30, tzinfo=UTC)


def make_interaction(
    *,
    id: str = "int-1",
    case_id: str = "case-1",
    type: InteractionType = InteractionType.CONVERSATION,
    content: Any = "I am behind on my payments and need help with a loan modification.",
    case_stage: str = "intake",
    user_role: str = "homeowner",
    interaction_count: int = 2,
    emotional_state: EmotionalState | None = None,
    servicer_type: str | None = "bank",
    previous_outcomes: tuple[str, ...] = (),
    timestamp: datetime = BASE_TIME,
    response_time_ms: float = 1200.0,
    resolved: bool = True,
    escalated: bool = False,
) -> Interaction:
    """Build an Interaction with realistic defaults."""
    return Interaction(
        id=id,
        case_id=case_id,
        user_id="user-1",
        type=type,
        content=content,
        context=InteractionContext(
            case_stage=case_stage,
            user_role=user_role,
            interaction_count=interaction_count,
            emotional_state=emotional_state,
            servicer=(
                Servicer(id="srv-1", name="First Bank", type=servicer_type)
                if servicer_type
                else None
            ),
            previous_outcomes=previous_outcomes,
        ),
        timestamp=timestamp,
        response_time_ms=response_time_ms,
        resolved=resolved,
        escalated=escalated,
    )


def make_outcome(
    *,
    success: bool = True,
    goal_achieved: bool = True,
    escalation_required: bool = False,
    follow_up_needed: bool = False,
    user_satisfaction: float | None = 0.9,
    resolution: str | None = None,
    metric_response_ms: float | None = None,
) -> InteractionOutcome:
    return InteractionOutcome(
        success=success,
        goal_achieved=goal_achieved,
        escalation_required=escalation_required,
        follow_up_needed=follow_up_needed,
        user_satisfaction=user_satisfaction,
        resolution=resolution,
        metrics=(
            OutcomeMetrics(response_time_ms=metric_response_ms)
            if metric_response_ms is not None
            else None
        ),
    )


def make_feature_set(
    interaction: Interaction,
    *,
    sentiment: float = 0.6,
    complexity: float = 0.3,
    topics: tuple[str, ...] = ("payment_assistance",),
    urgency: Urgency = Urgency.LOW,
    confidence: float = 0.8,
) -> FeatureSet:
    """FeatureSet consistent with ``interaction``, bypassing the extractor."""
    context = interaction.context
    content = interaction.content if isinstance(interaction.content, str) else ""
    return FeatureSet(
        temporal=TemporalFeatures(
            day_of_week=interaction.timestamp.weekday(),
            hour_of_day=interaction.timestamp.hour,
            days_since_last_interaction=0,
            seasonality="spring",
        ),
        content=ContentFeatures(
            message_length=len(content),
            sentiment=sentiment,
            complexity=complexity,
            topics=topics,
            emotional_markers=1,
        ),
        context=ContextFeatures(
            case_stage=context.case_stage,
            previous_interactions=context.interaction_count,
            user_emotional_state=context.emotional_state,
            servicer_type=context.servicer.type if context.servicer else None,
            urgency_level=urgency,
            user_role=context.user_role,
        ),
        performance=PerformanceFeatures(
            response_time_ms=interaction.response_time_ms,
            resolution_achieved=interaction.resolved,
            escalation_required=interaction.escalated,
            confidence_score=confidence,
        ),
        historical=HistoricalFeatures(),
        interaction_type=interaction.type,
    )


def make_labeled_case(
    index: int,
    *,
    success: bool,
    category: str = "conversation",
    content: str = "payment plan approved thanks",
    case_stage: str = "intake",
    user_role: str = "homeowner",
    hour: int = 10,
    day: int = 0,
    response_time_ms: float = 800.0,
    distress: float = 0.1,
    escalated: bool = False,
    satisfaction: float | None = None,
) -> LabeledCase:
    """Build a labeled case through the same path the pipeline uses.

    Cases sharing every keyword argument embed to the same vector.
    """
    if satisfaction is None:
        satisfaction = 0.9 if success else 0.1
    interaction = make_interaction(
        id=f"int-{category}-{index}",
        type=InteractionType(category),
        case_id=f"case-{category}-{index}",
        content=content,
        case_stage=case_stage,
        user_role=user_role,
        timestamp=BASE_TIME.replace(hour=hour) + timedelta(days=day),
        response_time_ms=response_time_ms,
        resolved=success,
        escalated=escalated,
        emotional_state=EmotionalState(distress=distress, hope=0.5, frustration=distress),
    )
    outcome = make_outcome(
        success=success,
        goal_achieved=success,
        escalation_required=escalated,
        user_satisfaction=satisfaction,
    )
    features = make_feature_set(
        interaction,
        sentiment=0.6 if success else -0.6,
        topics=("payment_assistance",) if success else ("foreclosure",),
    )
    return labeled_case_from_interaction(interaction, outcome, features)


def make_pattern_outcome(
    success: bool, *, escalated: bool = False, index: int = 0
) -> PatternOutcome:
    return PatternOutcome(
        case_id=f"case-{index}",
        timestamp=BASE_TIME + timedelta(hours=index),
        success=success,
        user_satisfaction=0.9 if success else 0.2,
        resolution_time_ms=1000.0,
        escalated=escalated,
    )


def default_profile(**interaction_kw: Any) -> PatternFeatures:
    """Degenerate profile of one successful interaction."""
    interaction = make_interaction(**interaction_kw)
    return PatternFeatures.from_feature_set(make_feature_set(interaction), make_outcome())


def make_pattern(
    *,
    id: str = "PATTERN-test",
    type: PatternType = PatternType.SUCCESS,
    features: PatternFeatures | None = None,
    confidence: float = 0.9,
    success_rate: float = 1.0,
    outcomes: list[PatternOutcome] | None = None,
    case_types: list[str] | None = None,
    servicer_types: list[str] | None = None,
    last_seen: datetime = BASE_TIME,
    tags: list[str] | None = None,
) -> Pattern:
    outcomes = outcomes if outcomes is not None else [make_pattern_outcome(True)]
    return Pattern(
        id=id,
        type=type,
        description=f"{type.value} pattern for tests",
        features=features or default_profile(),
        confidence=confidence,
        occurrences=len(outcomes) or 1,
        success_rate=success_rate,
        predictive_power=0.5,
        outcomes=outcomes,
        tags=tags or [type.value],
        scope=PatternScope(
            case_types=case_types or ["intake"],
            servicer_types=servicer_types or ["bank"],
            user_roles=["homeowner"],
        ),
        created_at=last_seen,
        last_seen=last_seen,
    )


class StubModel(AIModel):
    """Scriptable model: each call pops the next behavior.

    A behavior is either a ModelResult-producing dict (returned as data) or an
    exception instance (raised).
    """

    def __init__(
        self,
        name: str = "stub",
        kind: TaskKind = TaskKind.EMOTIONAL,
        behaviors: list[Any] | None = None,
        provider: str = "local",
        healthy: bool | BaseException = True,
    ) -> None:
        self._name = name
        self._kind = kind
        self.behaviors = list(behaviors or [])
        self.calls: list[tuple[Task, TaskContext]] = []
        self._provider = provider
        self._healthy = healthy
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> TaskKind:
        return self._kind

    @property
    def provider_name(self) -> str:
        return self._provider

    async def execute(self, task: Task, context: TaskContext) -> ModelResult:
        self.calls.append((task, context))
        behavior = self.behaviors.pop(0) if self.behaviors else {}
        if isinstance(behavior, BaseException):
            raise behavior
        return ModelResult(
            data=behavior,
            confidence=0.8,
            execution_time_ms=5.0,
            model_name=self._name,
        )

    def estimated_cost(self, task: Task) -> float:
        return 0.002

    def estimated_time(self, task: Task) -> float:
        return 100.0

    async def health_check(self) -> bool:
        if isinstance(self._healthy, BaseException):
            raise self._healthy
        return self._healthy

    async def close(self) -> None:
        self.closed = True
