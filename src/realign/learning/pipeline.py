"""Continuous learning: the per-interaction entry point.

Each processed interaction is turned into features, matched against known
patterns, mined for hypotheses that are tested where cheap, and folded back
into the pattern store, the labeled case history and case memory.

Only feature extraction is fatal. Every later step degrades to an empty or
default value and logs a warning, so a learning cycle always returns a result
once features exist.
"""

from __future__ import annotations

from statistics import fmean

from realign.core.config import LearningConfig
from realign.core.errors import LearningError, PatternError
from realign.core.logging import LearningContext, get_logger, new_correlation_id, with_context
from realign.learning.cases import CaseRepository, labeled_case_from_interaction
from realign.learning.experiments import ExperimentRunner, LoggingModelUpdater, ModelUpdater
from realign.learning.features import FeatureExtractor
from realign.learning.hypotheses import HypothesisGenerator, HypothesisInput
from realign.learning.models import (
    Experiment,
    FeatureSet,
    Hypothesis,
    Interaction,
    InteractionOutcome,
    Learning,
    LearningResult,
    Level,
    Pattern,
    PatternFeatures,
    PatternOutcome,
    PatternScope,
    PatternSearchOptions,
    PatternType,
    Priority,
    Recommendation,
    RecommendationPlan,
    RecommendationType,
)
from realign.learning.recognition import PatternRecognitionEngine
from realign.memory import CaseMemory, MemoryUpdate
from realign.utils.time import ensure_aware

_logger = get_logger("learning_pipeline")

IMPROVEMENT_AREAS = ("success_rate", "escalation_prevention", "user_satisfaction", "response_time")

# Keywords in high-priority recommendations mapped onto improvement areas
_RECOMMENDATION_AREAS = (
    ("escalation", "escalation_prevention"),
    ("response time", "response_time"),
    ("satisfaction", "user_satisfaction"),
)


def is_notable(outcome: InteractionOutcome, config: LearningConfig) -> bool:
    """Whether a single interaction is worth recording as a pattern.

    Escalations always are. A success is when its satisfaction is unknown or
    at least ``notable_success_satisfaction``. A failure is unless its
    satisfaction falls in the unremarkable band; a failure with unknown
    satisfaction counts as an explicit failure.
    """
    satisfaction = outcome.user_satisfaction
    if outcome.escalation_required:
        return True
    if outcome.success:
        return satisfaction is None or satisfaction >= config.notable_success_satisfaction
    if satisfaction is None:
        return True
    return not (
        config.unremarkable_min_satisfaction
        <= satisfaction
        < config.unremarkable_max_satisfaction
    )


def interaction_pattern_type(outcome: InteractionOutcome, config: LearningConfig) -> PatternType:
    satisfaction = outcome.user_satisfaction
    if outcome.success and satisfaction is not None and satisfaction > config.high_satisfaction:
        return PatternType.SUCCESS
    if outcome.escalation_required:
        return PatternType.ESCALATION
    if not outcome.success:
        return PatternType.FAILURE
    if (
        outcome.metrics is not None
        and outcome.metrics.response_time_ms < config.efficient_response_ms
    ):
        return PatternType.EFFICIENCY
    return PatternType.SATISFACTION


def interaction_pattern_confidence(features: FeatureSet, outcome: InteractionOutcome) -> float:
    confidence = 0.5
    if outcome.user_satisfaction is not None:
        confidence += 0.2
    if outcome.success and outcome.goal_achieved:
        confidence += 0.2
    if features.context.previous_interactions > 3:
        confidence += 0.1
    return min(confidence, 1.0)


def describe_interaction_pattern(
    interaction: Interaction, outcome: InteractionOutcome, pattern_type: PatternType
) -> str:
    base = f"{pattern_type.value} pattern in {interaction.type.value} interaction"
    if pattern_type is PatternType.SUCCESS:
        return f"{base} - High user satisfaction ({outcome.user_satisfaction:.2f}) achieved"
    if pattern_type is PatternType.ESCALATION:
        cause = outcome.resolution or "unresolved issues"
        return f"{base} - Escalation triggered due to {cause}"
    if pattern_type is PatternType.FAILURE:
        return f"{base} - Goal not achieved, user satisfaction low"
    if pattern_type is PatternType.EFFICIENCY and outcome.metrics is not None:
        return f"{base} - Fast response time ({outcome.metrics.response_time_ms:.0f}ms)"
    return base


def interaction_pattern_tags(interaction: Interaction, outcome: InteractionOutcome) -> list[str]:
    context = interaction.context
    tags = [interaction.type.value, context.case_stage, context.user_role]
    if outcome.escalation_required:
        tags.append("escalation")
    if outcome.success:
        tags.append("success")
    if outcome.follow_up_needed:
        tags.append("follow_up")
    if context.servicer is not None:
        tags.append(f"servicer_{context.servicer.type}")
    return tags


def overall_confidence(
    patterns: list[Pattern], hypotheses: list[Hypothesis], experiments: list[Experiment]
) -> float:
    """Unweighted mean of pattern, hypothesis and experiment evidence.

    Each component defaults to 0.5 when its collection is empty.
    """
    pattern_part = fmean(p.confidence for p in patterns) if patterns else 0.5
    hypothesis_part = fmean(h.confidence for h in hypotheses) if hypotheses else 0.5
    experiment_part = (
        sum(1 for e in experiments if e.validated) / len(experiments) if experiments else 0.5
    )
    return (pattern_part + hypothesis_part + experiment_part) / 3


class ContinuousLearningPipeline:
    """Learns from every interaction.

    Collaborators are injected; the composition root in ``realign.services``
    wires one instance per process.
    """

    def __init__(
        self,
        recognition: PatternRecognitionEngine,
        extractor: FeatureExtractor,
        memory: CaseMemory | None = None,
        cases: CaseRepository | None = None,
        updater: ModelUpdater | None = None,
        config: LearningConfig | None = None,
        hypotheses: HypothesisGenerator | None = None,
        experiments: ExperimentRunner | None = None,
    ) -> None:
        self.config = config or LearningConfig()
        self._recognition = recognition
        self._extractor = extractor
        self._memory = memory
        self._cases = cases
        self._updater: ModelUpdater = updater or LoggingModelUpdater()
        self._hypotheses = hypotheses or HypothesisGenerator(self.config)
        self._experiments = experiments or ExperimentRunner(self.config)

    async def process_interaction(
        self,
        interaction: Interaction,
        outcome: InteractionOutcome,
    ) -> LearningResult:
        """Run one learning cycle for an interaction and its outcome.

        Args:
            interaction: The completed interaction.
            outcome: How it ended.

        Returns:
            Similar patterns, hypotheses, experiments, applied learnings,
            recommendations, overall confidence and improvement areas.

        Raises:
            LearningError: If feature extraction fails.
        """
        learning_id = new_correlation_id("LRNG")
        ctx = LearningContext(
            correlation_id=learning_id,
            case_id=interaction.case_id,
            interaction_id=interaction.id,
            component="learning_pipeline",
        )
        with with_context(ctx):
            _logger.info("learning_started", interaction_type=interaction.type.value)
            try:
                features = await self._extractor.extract(interaction)
            except Exception as e:
                _logger.error("feature_extraction_failed", error=str(e))
                raise LearningError(
                    f"Failed to extract features: {e}",
                    interaction=interaction,
                    outcome=outcome,
                    correlation_id=learning_id,
                    cause=e,
                ) from e

            profile = PatternFeatures.from_feature_set(
                features, outcome, interaction.context.previous_outcomes
            )
            patterns = await self._find_similar(profile)

            hypotheses = self._hypotheses.generate(
                HypothesisInput(
                    features=features,
                    outcome=outcome,
                    similar_patterns=patterns,
                    interaction_context=interaction.context,
                )
            )
            experiments = self._experiments.run(hypotheses, patterns)
            learnings = [
                learning
                for e in experiments
                if e.validated and e.results is not None
                for learning in e.results.learnings
            ]
            applied = await self._apply_learnings(learnings, learning_id)

            new_pattern = await self._record(interaction, outcome, features, profile)

            recommendations = self._recommendations(interaction, outcome, applied)
            result = LearningResult(
                correlation_id=learning_id,
                patterns=patterns,
                hypotheses=hypotheses,
                experiments=experiments,
                applied_learnings=applied,
                recommendations=recommendations,
                confidence=overall_confidence(patterns, hypotheses, experiments),
                improvement_areas=self._improvement_areas(interaction, outcome, recommendations),
                new_pattern=new_pattern,
            )
            await self._update_case_memory(interaction, result)

            _logger.info(
                "learning_completed",
                patterns=len(patterns),
                hypotheses=len(hypotheses),
                experiments=len(experiments),
                applied_learnings=len(applied),
                recommendations=len(recommendations),
                confidence=round(result.confidence, 3),
                new_pattern=new_pattern.id if new_pattern else None,
            )
            return result

    # ─────────────────────────────────────────────────────────────────────
    # Steps
    # ─────────────────────────────────────────────────────────────────────

    async def _find_similar(self, profile: PatternFeatures) -> list[Pattern]:
        options = PatternSearchOptions(
            min_similarity=self.config.similar_min_similarity,
            max_results=self.config.similar_max_results,
        )
        try:
            return await self._recognition.find_similar_patterns(profile, options)
        except PatternError as e:
            _logger.warning("similar_pattern_search_failed", error=str(e))
            return []

    async def _apply_learnings(self, learnings: list[Learning], learning_id: str) -> list[Learning]:
        if not learnings:
            return []
        try:
            await self._updater.update_models(learnings, learning_id)
        except Exception as e:
            _logger.warning("model_update_failed", learnings=len(learnings), error=str(e))
        return learnings

    def create_pattern(
        self,
        interaction: Interaction,
        outcome: InteractionOutcome,
        features: FeatureSet,
        profile: PatternFeatures | None = None,
    ) -> Pattern | None:
        """Build a pattern from a single interaction, or None if it is unremarkable."""
        if not is_notable(outcome, self.config):
            return None
        pattern_type = interaction_pattern_type(outcome, self.config)
        context = interaction.context
        observed = ensure_aware(interaction.timestamp)
        return Pattern(
            id=new_correlation_id("PATTERN"),
            type=pattern_type,
            description=describe_interaction_pattern(interaction, outcome, pattern_type),
            features=profile
            or PatternFeatures.from_feature_set(features, outcome, context.previous_outcomes),
            confidence=interaction_pattern_confidence(features, outcome),
            occurrences=1,
            success_rate=1.0 if outcome.success else 0.0,
            outcomes=[PatternOutcome.from_interaction(interaction, outcome)],
            tags=interaction_pattern_tags(interaction, outcome),
            scope=PatternScope(
                case_types=[context.case_stage],
                servicer_types=[context.servicer.type] if context.servicer else [],
                user_roles=[context.user_role],
            ),
            created_at=observed,
            last_seen=observed,
        )

    async def _record(
        self,
        interaction: Interaction,
        outcome: InteractionOutcome,
        features: FeatureSet,
        profile: PatternFeatures,
    ) -> Pattern | None:
        stored = None
        pattern = self.create_pattern(interaction, outcome, features, profile)
        if pattern is not None:
            try:
                stored = await self._recognition.store_pattern(pattern)
            except PatternError as e:
                _logger.warning("pattern_store_failed", pattern_id=pattern.id, error=str(e))

        if self._cases is not None:
            try:
                await self._cases.record_case(
                    labeled_case_from_interaction(interaction, outcome, features)
                )
            except Exception as e:
                _logger.warning("case_record_failed", error=str(e))
        return stored

    def _recommendations(
        self,
        interaction: Interaction,
        outcome: InteractionOutcome,
        learnings: list[Learning],
    ) -> list[Recommendation]:
        recommendations = []
        satisfaction = outcome.user_satisfaction
        high_satisfaction = (
            satisfaction is not None and satisfaction > self.config.high_satisfaction
        )
        if outcome.success and high_satisfaction:
            recommendations.append(
                Recommendation(
                    id=new_correlation_id("REC-SUCCESS"),
                    type=RecommendationType.IMMEDIATE,
                    priority=Priority.MEDIUM,
                    description="Replicate successful interaction patterns in similar contexts",
                    expected_benefit="Increased user satisfaction and resolution rates",
                    estimated_effort="Low - pattern replication",
                    risk_assessment="Low risk",
                    implementation=RecommendationPlan(
                        steps=(
                            "Identify similar cases",
                            "Apply successful pattern",
                            "Monitor outcomes",
                        ),
                        timeline="Immediate",
                        dependencies=("Pattern matching system",),
                    ),
                )
            )

        if outcome.escalation_required:
            recommendations.append(
                Recommendation(
                    id=new_correlation_id("REC-ESCALATION"),
                    type=RecommendationType.STRATEGIC,
                    priority=Priority.HIGH,
                    description="Improve early detection and prevention of escalation scenarios",
                    expected_benefit="Reduced escalation rates and improved user experience",
                    estimated_effort="Medium - model training required",
                    risk_assessment="Low risk",
                    implementation=RecommendationPlan(
                        steps=(
                            "Analyze escalation triggers",
                            "Train prevention model",
                            "Implement early warnings",
                        ),
                        timeline="2-4 weeks",
                        dependencies=("Training data", "Model deployment pipeline"),
                    ),
                )
            )

        if interaction.response_time_ms > self.config.slow_response_ms:
            recommendations.append(
                Recommendation(
                    id=new_correlation_id("REC-PERFORMANCE"),
                    type=RecommendationType.IMMEDIATE,
                    priority=Priority.MEDIUM,
                    description="Optimize response time for better user experience",
                    expected_benefit="Faster responses leading to higher satisfaction",
                    estimated_effort="Medium - performance optimization",
                    risk_assessment="Low risk",
                    implementation=RecommendationPlan(
                        steps=(
                            "Profile slow operations",
                            "Optimize bottlenecks",
                            "Implement caching",
                        ),
                        timeline="1-2 weeks",
                        dependencies=("Performance monitoring tools",),
                    ),
                )
            )

        for learning in learnings:
            if learning.impact is not Level.HIGH:
                continue
            recommendations.append(
                Recommendation(
                    id=f"REC-LEARNING-{learning.id}",
                    type=RecommendationType.STRATEGIC,
                    priority=Priority.HIGH,
                    description=f"Implement validated learning: {learning.description}",
                    expected_benefit="Proven improvement based on experimental validation",
                    estimated_effort=learning.implementation.rollout_strategy,
                    risk_assessment="Low risk - validated approach",
                    implementation=RecommendationPlan(
                        steps=("Plan rollout", "Implement changes", "Monitor results"),
                        timeline="Based on learning complexity",
                        dependencies=learning.implementation.changes,
                    ),
                )
            )
        return recommendations

    def _improvement_areas(
        self,
        interaction: Interaction,
        outcome: InteractionOutcome,
        recommendations: list[Recommendation],
    ) -> list[str]:
        areas = []
        if not outcome.success:
            areas.append("success_rate")
        if outcome.escalation_required:
            areas.append("escalation_prevention")
        satisfaction = outcome.user_satisfaction
        if satisfaction is not None and satisfaction < self.config.low_satisfaction:
            areas.append("user_satisfaction")
        slow_metric = (
            outcome.metrics is not None
            and outcome.metrics.response_time_ms > self.config.slow_metric_response_ms
        )
        if slow_metric or interaction.response_time_ms > self.config.slow_response_ms:
            areas.append("response_time")

        for recommendation in recommendations:
            if recommendation.priority not in (Priority.HIGH, Priority.CRITICAL):
                continue
            description = recommendation.description.lower()
            areas.extend(area for keyword, area in _RECOMMENDATION_AREAS if keyword in description)

        return list(dict.fromkeys(areas))

    async def _update_case_memory(self, interaction: Interaction, result: LearningResult) -> None:
        if self._memory is None:
            return
        high_impact = [
            learning for learning in result.applied_learnings if learning.impact is Level.HIGH
        ]
        summary = MemoryUpdate(
            type="learning",
            data={
                "pattern_matches": [p.id for p in result.patterns],
                "success_factors": [learning.description for learning in high_impact],
                "risk_indicators": [p.description for p in result.patterns if p.type.is_negative],
                "next_best_actions": [
                    r.description
                    for r in result.recommendations
                    if r.priority in (Priority.HIGH, Priority.CRITICAL)
                ],
                "summary": (
                    f"{len(result.patterns)} similar patterns, "
                    f"{len(result.applied_learnings)} applied learnings, "
                    f"{len(result.recommendations)} recommendations"
                ),
            },
            source="continuous_learning",
            confidence=0.9,
        )
        seen = MemoryUpdate(
            type="interaction",
            data={"interaction_id": interaction.id, "type": interaction.type.value},
            source="continuous_learning",
            timestamp=interaction.timestamp,
        )
        for update in (summary, seen):
            try:
                await self._memory.update_memory(interaction.case_id, update)
            except Exception as e:
                _logger.warning(
                    "case_memory_update_failed", update_type=update.type, error=str(e)
                )
