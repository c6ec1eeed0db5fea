"""Data model for continuous learning and pattern recognition.

Interactions and outcomes arrive from the conversational and document
subsystems and are read-only here. Feature sets are immutable values derived
from them. Patterns are the learned artifact: created by batch discovery or
from a single notable interaction, updated when re-observed, and superseded
rather than deleted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from realign.models.base import Urgency, clamp_unit
from realign.utils.time import utc_now


class InteractionType(str, Enum):
    CONVERSATION = "conversation"
    DOCUMENT_PROCESSING = "document_processing"
    SUBMISSION = "submission"
    ESCALATION = "escalation"
    VOICE_CALL = "voice_call"


class PatternType(str, Enum):
    """Kinds of learned patterns.

    The first five are produced from single interactions; the rest are the
    domain-specific variants produced by batch discovery.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    ESCALATION = "escalation"
    EFFICIENCY = "efficiency"
    SATISFACTION = "satisfaction"
    CONVERSATION = "conversation"
    DOCUMENT = "document"
    SUBMISSION = "submission"
    TIMING = "timing"
    EMOTIONAL = "emotional"

    @property
    def is_negative(self) -> bool:
        """True for patterns describing what to avoid."""
        return self in (PatternType.FAILURE, PatternType.ESCALATION)


class Level(str, Enum):
    """Low/medium/high scale used for hypothesis risk and effort."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExperimentStatus(str, Enum):
    PLANNED = "planned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LearningType(str, Enum):
    MODEL_IMPROVEMENT = "model_improvement"
    PROCESS_OPTIMIZATION = "process_optimization"
    ESCALATION_TRIGGER = "escalation_trigger"
    RESPONSE_STRATEGY = "response_strategy"


class RecommendationType(str, Enum):
    IMMEDIATE = "immediate"
    STRATEGIC = "strategic"
    EXPERIMENTAL = "experimental"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ─────────────────────────────────────────────────────────────────────────────
# Interactions
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmotionalState:
    distress: float = 0.0
    hope: float = 0.0
    frustration: float = 0.0


@dataclass(frozen=True)
class Servicer:
    id: str
    name: str
    type: str


@dataclass(frozen=True)
class InteractionContext:
    """Case context captured when the interaction happened."""

    case_stage: str
    user_role: str
    interaction_count: int = 0
    emotional_state: EmotionalState | None = None
    servicer: Servicer | None = None
    previous_outcomes: tuple[str, ...] = ()
    time_of_day: int | None = None
    day_of_week: int | None = None


@dataclass(frozen=True)
class Interaction:
    """One user interaction, created by upstream handlers."""

    id: str
    case_id: str
    user_id: str
    type: InteractionType
    content: Any
    context: InteractionContext
    timestamp: datetime
    response_time_ms: float
    resolved: bool = False
    escalated: bool = False
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OutcomeMetrics:
    response_time_ms: float
    accuracy_score: float = 0.0
    helpfulness_score: float = 0.0


@dataclass(frozen=True)
class InteractionOutcome:
    """How an interaction ended. Supplied together with the Interaction."""

    success: bool
    goal_achieved: bool = False
    escalation_required: bool = False
    follow_up_needed: bool = False
    user_satisfaction: float | None = None
    """User satisfaction on a 0-1 scale, when known."""

    resolution: str | None = None
    feedback: str | None = None
    metrics: OutcomeMetrics | None = None

    def __post_init__(self) -> None:
        if self.user_satisfaction is not None and not 0.0 <= self.user_satisfaction <= 1.0:
            raise ValueError(f"user_satisfaction must be in [0, 1], got {self.user_satisfaction}")


# ─────────────────────────────────────────────────────────────────────────────
# Features
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TemporalFeatures:
    day_of_week: int
    """Monday is 0."""

    hour_of_day: int
    days_since_last_interaction: int
    seasonality: str


@dataclass(frozen=True)
class ContentFeatures:
    message_length: int
    sentiment: float
    complexity: float
    topics: tuple[str, ...]
    emotional_markers: int

    @classmethod
    def neutral(cls) -> ContentFeatures:
        """Safe default used when content analysis is unavailable."""
        return cls(message_length=0, sentiment=0.0, complexity=0.5, topics=(), emotional_markers=0)


@dataclass(frozen=True)
class ContextFeatures:
    case_stage: str
    previous_interactions: int
    user_emotional_state: EmotionalState | None
    servicer_type: str | None
    urgency_level: Urgency
    user_role: str | None = None


@dataclass(frozen=True)
class PerformanceFeatures:
    response_time_ms: float
    resolution_achieved: bool
    escalation_required: bool
    confidence_score: float


@dataclass(frozen=True)
class HistoricalFeatures:
    similar_case_outcomes: tuple[float, ...] = ()
    pattern_matches: tuple[str, ...] = ()
    successful_strategies: tuple[str, ...] = ()


@dataclass(frozen=True)
class FeatureSet:
    """Comparable features of one interaction. A value; never mutated."""

    temporal: TemporalFeatures
    content: ContentFeatures
    context: ContextFeatures
    performance: PerformanceFeatures
    historical: HistoricalFeatures
    interaction_type: InteractionType = InteractionType.CONVERSATION


@dataclass(frozen=True)
class ValueRange:
    min: float
    max: float

    @classmethod
    def of(cls, values: list[float]) -> ValueRange:
        return cls(min(values), max(values)) if values else cls(0.0, 0.0)


@dataclass(frozen=True)
class TemporalProfile:
    preferred_times: tuple[int, ...]
    """Hours of day."""

    optimal_days: tuple[int, ...]
    seasonal_factors: dict[str, float]
    response_time_range: ValueRange


@dataclass(frozen=True)
class ContentProfile:
    message_length: ValueRange
    sentiment_range: ValueRange
    key_phrases: tuple[str, ...]
    topic_clusters: tuple[str, ...]
    complexity_score: float


@dataclass(frozen=True)
class ContextualProfile:
    case_stages: tuple[str, ...]
    user_emotional_states: tuple[EmotionalState, ...]
    servicer_types: tuple[str, ...]
    previous_outcomes: tuple[str, ...]
    interaction_sequence: tuple[str, ...]


@dataclass(frozen=True)
class PerformanceProfile:
    average_response_time_ms: float
    resolution_rate: float
    escalation_rate: float
    user_satisfaction_range: ValueRange
    confidence_threshold: float


@dataclass(frozen=True)
class PatternFeatures:
    """Aggregate feature profile of a pattern.

    A single interaction is represented as a degenerate profile (ranges with
    min == max) so interactions and discovered patterns share one embedding.
    """

    temporal: TemporalProfile
    content: ContentProfile
    contextual: ContextualProfile
    performance: PerformanceProfile

    @classmethod
    def from_feature_set(
        cls,
        features: FeatureSet,
        outcome: InteractionOutcome | None = None,
        previous_outcomes: tuple[str, ...] = (),
    ) -> PatternFeatures:
        satisfaction = outcome.user_satisfaction if outcome is not None else None
        content = features.content
        emotional = features.context.user_emotional_state
        return cls(
            temporal=TemporalProfile(
                preferred_times=(features.temporal.hour_of_day,),
                optimal_days=(features.temporal.day_of_week,),
                seasonal_factors={features.temporal.seasonality: 1.0},
                response_time_range=ValueRange(
                    features.performance.response_time_ms, features.performance.response_time_ms
                ),
            ),
            content=ContentProfile(
                message_length=ValueRange(content.message_length, content.message_length),
                sentiment_range=ValueRange(content.sentiment, content.sentiment),
                key_phrases=(),
                topic_clusters=content.topics,
                complexity_score=content.complexity,
            ),
            contextual=ContextualProfile(
                case_stages=(features.context.case_stage,),
                user_emotional_states=(emotional,) if emotional is not None else (),
                servicer_types=(
                    (features.context.servicer_type,) if features.context.servicer_type else ()
                ),
                previous_outcomes=previous_outcomes,
                interaction_sequence=(features.interaction_type.value,),
            ),
            performance=PerformanceProfile(
                average_response_time_ms=features.performance.response_time_ms,
                resolution_rate=1.0 if features.performance.resolution_achieved else 0.0,
                escalation_rate=1.0 if features.performance.escalation_required else 0.0,
                user_satisfaction_range=(
                    ValueRange(satisfaction, satisfaction)
                    if satisfaction is not None
                    else ValueRange(0.0, 1.0)
                ),
                confidence_threshold=features.performance.confidence_score,
            ),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Patterns
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PatternOutcome:
    """One case outcome supporting a pattern."""

    case_id: str
    timestamp: datetime
    success: bool
    user_satisfaction: float
    resolution_time_ms: float
    escalated: bool = False
    follow_up_needed: bool = False
    feedback: str | None = None

    @classmethod
    def from_interaction(
        cls, interaction: Interaction, outcome: InteractionOutcome
    ) -> PatternOutcome:
        satisfaction = outcome.user_satisfaction
        if satisfaction is None:
            satisfaction = 1.0 if outcome.success else 0.0
        return cls(
            case_id=interaction.case_id,
            timestamp=interaction.timestamp,
            success=outcome.success,
            user_satisfaction=satisfaction,
            resolution_time_ms=interaction.response_time_ms,
            escalated=outcome.escalation_required,
            follow_up_needed=outcome.follow_up_needed,
            feedback=outcome.feedback,
        )


@dataclass
class PatternScope:
    """Where a pattern applies; used for search filtering."""

    case_types: list[str] = field(default_factory=list)
    servicer_types: list[str] = field(default_factory=list)
    user_roles: list[str] = field(default_factory=list)
    seasonality: str | None = None


@dataclass
class Pattern:
    """A reusable description of conditions correlated with an outcome."""

    id: str
    type: PatternType
    description: str
    features: PatternFeatures
    confidence: float
    occurrences: int = 1
    success_rate: float = 0.0
    predictive_power: float = 0.0
    outcomes: list[PatternOutcome] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    scope: PatternScope = field(default_factory=PatternScope)
    created_at: datetime = field(default_factory=utc_now)
    last_seen: datetime = field(default_factory=utc_now)
    superseded_by: str | None = None
    """Id of the pattern that replaced this one. Superseded patterns are kept."""

    similarity: float | None = None
    """Set on search results: similarity of the query to this pattern."""

    def __post_init__(self) -> None:
        self.confidence = clamp_unit(self.confidence)
        self.success_rate = clamp_unit(self.success_rate)
        self.predictive_power = clamp_unit(self.predictive_power)


@dataclass(frozen=True)
class BiasMetrics:
    """Normalized entropy (0 = single value, 1 = uniform) of supporting cases."""

    role_balance: float
    servicer_balance: float
    temporal_balance: float


@dataclass(frozen=True)
class PatternMetadata:
    """Provenance recorded when a pattern is stored."""

    extracted_from: int
    validation_method: str
    statistical_significance: float
    confidence_interval: tuple[float, float]
    bias_metrics: BiasMetrics

    @classmethod
    def single_observation(cls, confidence: float) -> PatternMetadata:
        """Metadata for a pattern created from one interaction."""
        return cls(
            extracted_from=1,
            validation_method="single_observation",
            statistical_significance=0.0,
            confidence_interval=(confidence, confidence),
            bias_metrics=BiasMetrics(0.0, 0.0, 0.0),
        )


@dataclass(frozen=True)
class PatternSearchOptions:
    min_similarity: float = 0.75
    max_results: int = 10
    include_context: bool = True
    time_window: tuple[datetime, datetime] | None = None
    """Inclusive (start, end) bounds on the pattern's last_seen."""

    case_types: tuple[str, ...] | None = None
    servicer_types: tuple[str, ...] | None = None
    min_occurrences: int | None = None
    pattern_types: tuple[PatternType, ...] | None = None


@dataclass(frozen=True)
class LabeledCase:
    """A historical case with a known outcome, input to batch discovery."""

    case_id: str
    category: str
    features: PatternFeatures
    outcome: PatternOutcome
    user_role: str | None = None
    case_type: str | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Hypotheses, experiments, learnings
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Hypothesis:
    """A candidate improvement. Generated fresh per learning cycle."""

    id: str
    description: str
    confidence: float
    potential: float
    testable: bool
    risk_level: Level
    effort: Level
    expected_outcome: str
    learning_type: LearningType
    component: str
    related_patterns: tuple[str, ...] = ()
    supported_by_success: bool = True
    """Whether successful outcomes in related patterns count as support."""

    @property
    def ready_for_experiment(self) -> bool:
        return self.testable and self.risk_level is not Level.HIGH

    @property
    def quick_validation_eligible(self) -> bool:
        return self.risk_level is Level.LOW and self.effort is Level.LOW


@dataclass(frozen=True)
class LearningImplementation:
    component: str
    changes: tuple[str, ...]
    rollout_strategy: str


@dataclass(frozen=True)
class Learning:
    """A validated, applicable change."""

    id: str
    type: LearningType
    description: str
    confidence: float
    impact: Level
    applicability: tuple[str, ...]
    implementation: LearningImplementation
    validated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ExperimentResult:
    validated: bool
    confidence: float
    improvement_percentage: float
    statistical_significance: float
    supporting_outcomes: int = 0
    learnings: tuple[Learning, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass
class Experiment:
    """A bounded test of one hypothesis: planned → running → completed|failed."""

    id: str
    hypothesis_id: str
    description: str
    metrics: list[str]
    duration: str
    sample_size: int
    control_group: str = "control"
    test_group: str = "test"
    status: ExperimentStatus = ExperimentStatus.PLANNED
    start_date: datetime = field(default_factory=utc_now)
    end_date: datetime | None = None
    results: ExperimentResult | None = None

    @property
    def validated(self) -> bool:
        return self.results is not None and self.results.validated


@dataclass(frozen=True)
class RecommendationPlan:
    steps: tuple[str, ...]
    timeline: str
    dependencies: tuple[str, ...]


@dataclass(frozen=True)
class Recommendation:
    id: str
    type: RecommendationType
    priority: Priority
    description: str
    expected_benefit: str
    estimated_effort: str
    risk_assessment: str
    implementation: RecommendationPlan


@dataclass
class LearningResult:
    """Everything one learning cycle produced."""

    correlation_id: str
    patterns: list[Pattern] = field(default_factory=list)
    """Similar known patterns found for the interaction."""

    hypotheses: list[Hypothesis] = field(default_factory=list)
    experiments: list[Experiment] = field(default_factory=list)
    applied_learnings: list[Learning] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    confidence: float = 0.5
    improvement_areas: list[str] = field(default_factory=list)
    new_pattern: Pattern | None = None

