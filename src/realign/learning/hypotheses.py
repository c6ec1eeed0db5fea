"""Rule-based hypothesis generation.

Each rule inspects the features, the outcome and the similar known patterns
of one interaction and may propose a candidate improvement.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from realign.core.config import LearningConfig
from realign.core.logging import get_logger, new_correlation_id
from realign.learning.models import (
    FeatureSet,
    Hypothesis,
    InteractionContext,
    InteractionOutcome,
    LearningType,
    Level,
    Pattern,
)
from realign.models.base import Urgency, clamp_unit

_logger = get_logger("learning.hypotheses")

# Content complexity above which explanations are considered too dense
HIGH_COMPLEXITY = 0.7


@dataclass(frozen=True)
class HypothesisInput:
    features: FeatureSet
    outcome: InteractionOutcome
    similar_patterns: list[Pattern]
    interaction_context: InteractionContext


Rule = Callable[[HypothesisInput, LearningConfig], Hypothesis | None]


def _hypothesis_id() -> str:
    return new_correlation_id("HYP")


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def empathetic_tone(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    state = data.features.context.user_emotional_state
    distress = state.distress if state is not None else 0.0
    critical = data.features.context.urgency_level is Urgency.CRITICAL
    if not critical and distress <= config.distress_critical:
        return None
    return Hypothesis(
        id=_hypothesis_id(),
        description="Responses during high-distress windows should prioritize empathetic tone",
        confidence=clamp_unit(0.6 + 0.2 * distress),
        potential=0.8,
        testable=True,
        risk_level=Level.LOW,
        effort=Level.LOW,
        expected_outcome="Higher satisfaction and fewer escalations for distressed users",
        learning_type=LearningType.RESPONSE_STRATEGY,
        component="conversational",
    )


def early_escalation(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    if not data.outcome.escalation_required:
        return None
    related = tuple(p.id for p in data.similar_patterns if p.type.is_negative)
    return Hypothesis(
        id=_hypothesis_id(),
        description="Trigger human escalation earlier when frustration signals rise",
        confidence=0.65,
        potential=0.85,
        testable=True,
        risk_level=Level.MEDIUM,
        effort=Level.MEDIUM,
        expected_outcome="Escalations resolved sooner with less user frustration",
        learning_type=LearningType.ESCALATION_TRIGGER,
        component="escalation",
        related_patterns=related,
        supported_by_success=False,
    )


def response_caching(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    if data.features.performance.response_time_ms <= config.slow_response_ms:
        return None
    return Hypothesis(
        id=_hypothesis_id(),
        description="Caching frequent answers improves response efficiency",
        confidence=0.6,
        potential=0.75,
        testable=True,
        risk_level=Level.LOW,
        effort=Level.LOW,
        expected_outcome="Response time below the slow-response threshold",
        learning_type=LearningType.PROCESS_OPTIMIZATION,
        component="orchestrator",
    )


def avoid_failure_patterns(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    negative = [p for p in data.similar_patterns if p.type.is_negative]
    if not negative:
        return None
    return Hypothesis(
        id=_hypothesis_id(),
        description="Avoid response strategies associated with failure in similar contexts",
        confidence=clamp_unit(_mean([p.confidence for p in negative])),
        potential=0.75,
        testable=True,
        risk_level=Level.LOW,
        effort=Level.MEDIUM,
        expected_outcome="Fewer failed or escalated interactions in matching contexts",
        learning_type=LearningType.MODEL_IMPROVEMENT,
        component="conversational",
        related_patterns=tuple(p.id for p in negative),
        supported_by_success=False,
    )


def replicate_success(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    positive = [
        p for p in data.similar_patterns if not p.type.is_negative and p.success_rate >= 0.5
    ]
    if not positive:
        return None
    return Hypothesis(
        id=_hypothesis_id(),
        description="Replicate the successful strategy from similar cases",
        confidence=clamp_unit(_mean([p.confidence for p in positive])),
        potential=clamp_unit(max(p.success_rate for p in positive)),
        testable=True,
        risk_level=Level.LOW,
        effort=Level.LOW,
        expected_outcome="Success rate in line with the matched patterns",
        learning_type=LearningType.RESPONSE_STRATEGY,
        component="conversational",
        related_patterns=tuple(p.id for p in positive),
    )


def clarification_prompt(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    satisfaction = data.outcome.user_satisfaction
    if satisfaction is None or satisfaction >= config.low_satisfaction:
        return None
    if data.outcome.escalation_required:
        return None
    return Hypothesis(
        id=_hypothesis_id(),
        description="Ask a clarifying question before answering when user satisfaction is low",
        confidence=0.55,
        potential=0.7,
        testable=True,
        risk_level=Level.LOW,
        effort=Level.LOW,
        expected_outcome="Better-targeted answers and higher satisfaction",
        learning_type=LearningType.RESPONSE_STRATEGY,
        component="conversational",
    )


def simplify_explanations(data: HypothesisInput, config: LearningConfig) -> Hypothesis | None:
    if data.features.content.complexity <= HIGH_COMPLEXITY:
        return None
    return Hypothesis(
        id=_hypothesis_id(),
        description="Simplify explanations of complex loss mitigation topics",
        confidence=0.6,
        potential=0.72,
        testable=True,
        risk_level=Level.LOW,
        effort=Level.LOW,
        expected_outcome="Users understand next steps without follow-up questions",
        learning_type=LearningType.MODEL_IMPROVEMENT,
        component="conversational",
    )


DEFAULT_RULES: tuple[Rule, ...] = (
    empathetic_tone,
    early_escalation,
    response_caching,
    avoid_failure_patterns,
    replicate_success,
    clarification_prompt,
    simplify_explanations,
)


class HypothesisGenerator:
    """Applies hypothesis rules to one interaction's evidence."""

    def __init__(
        self,
        config: LearningConfig | None = None,
        rules: tuple[Rule, ...] = DEFAULT_RULES,
    ) -> None:
        self._config = config or LearningConfig()
        self._rules = rules

    def generate(self, data: HypothesisInput) -> list[Hypothesis]:
        hypotheses = []
        for rule in self._rules:
            hypothesis = rule(data, self._config)
            if hypothesis is not None:
                hypotheses.append(hypothesis)
        _logger.debug(
            "hypotheses_generated",
            count=len(hypotheses),
            high_confidence=sum(1 for h in hypotheses if h.confidence > 0.8),
            high_potential=sum(1 for h in hypotheses if h.potential > 0.7),
        )
        return hypotheses
