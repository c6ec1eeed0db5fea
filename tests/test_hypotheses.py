"""Tests for rule-based hypothesis generation."""

import pytest

from realign.core.config import LearningConfig
from realign.learning.hypotheses import (
    DEFAULT_RULES,
    HypothesisGenerator,
    HypothesisInput,
    avoid_failure_patterns,
    clarification_prompt,
    early_escalation,
    empathetic_tone,
    replicate_success,
    response_caching,
    simplify_explanations,
)
from realign.learning.models import EmotionalState, Level, LearningType, PatternType
from realign.models.base import Urgency
from tests.helpers import make_feature_set, make_interaction, make_outcome, make_pattern

CONFIG = LearningConfig()


def _input(
    *,
    interaction=None,
    outcome=None,
    patterns=None,
    urgency: Urgency = Urgency.LOW,
    complexity: float = 0.3,
) -> HypothesisInput:
    interaction = interaction or make_interaction()
    return HypothesisInput(
        features=make_feature_set(interaction, urgency=urgency, complexity=complexity),
        outcome=outcome or make_outcome(),
        similar_patterns=patterns or [],
        interaction_context=interaction.context,
    )


class TestRules:
    """Each rule fires only on its trigger."""

    def test_quiet_interaction_triggers_nothing(self) -> None:
        assert HypothesisGenerator().generate(_input()) == []

    def test_empathetic_tone_on_distress(self) -> None:
        interaction = make_interaction(emotional_state=EmotionalState(distress=0.9))

        hypothesis = empathetic_tone(_input(interaction=interaction), CONFIG)

        assert hypothesis is not None
        assert hypothesis.confidence == pytest.approx(0.78)
        assert hypothesis.learning_type is LearningType.RESPONSE_STRATEGY
        assert hypothesis.quick_validation_eligible

    def test_empathetic_tone_on_critical_urgency(self) -> None:
        hypothesis = empathetic_tone(_input(urgency=Urgency.CRITICAL), CONFIG)
        assert hypothesis is not None
        assert hypothesis.confidence == pytest.approx(0.6)

    def test_early_escalation_references_negative_patterns(self) -> None:
        data = _input(
            outcome=make_outcome(success=False, escalation_required=True),
            patterns=[
                make_pattern(id="ESC", type=PatternType.ESCALATION),
                make_pattern(id="OK"),
            ],
        )

        hypothesis = early_escalation(data, CONFIG)

        assert hypothesis is not None
        assert hypothesis.related_patterns == ("ESC",)
        assert hypothesis.supported_by_success is False
        assert hypothesis.risk_level is Level.MEDIUM
        assert "escalation" in hypothesis.description.lower()

    def test_response_caching_on_slow_response(self) -> None:
        assert response_caching(_input(), CONFIG) is None
        slow = _input(interaction=make_interaction(response_time_ms=6000.0))

        hypothesis = response_caching(slow, CONFIG)

        assert hypothesis is not None
        assert "efficiency" in hypothesis.description
        assert hypothesis.component == "orchestrator"

    def test_avoid_failure_patterns_averages_confidence(self) -> None:
        data = _input(
            patterns=[
                make_pattern(id="F1", type=PatternType.FAILURE, confidence=0.6),
                make_pattern(id="F2", type=PatternType.FAILURE, confidence=0.8),
            ]
        )

        hypothesis = avoid_failure_patterns(data, CONFIG)

        assert hypothesis is not None
        assert hypothesis.confidence == pytest.approx(0.7)
        assert hypothesis.related_patterns == ("F1", "F2")

    def test_replicate_success_needs_successful_pattern(self) -> None:
        weak = make_pattern(id="weak", success_rate=0.3)
        assert replicate_success(_input(patterns=[weak]), CONFIG) is None

        strong = make_pattern(id="strong", confidence=0.85, success_rate=0.9)
        hypothesis = replicate_success(_input(patterns=[weak, strong]), CONFIG)

        assert hypothesis is not None
        assert hypothesis.related_patterns == ("strong",)
        assert hypothesis.potential == pytest.approx(0.9)
        assert hypothesis.confidence == pytest.approx(0.85)

    def test_clarification_prompt_on_low_satisfaction(self) -> None:
        low = _input(outcome=make_outcome(success=False, user_satisfaction=0.3))
        unknown = _input(outcome=make_outcome(user_satisfaction=None))
        escalated = _input(
            outcome=make_outcome(user_satisfaction=0.3, escalation_required=True)
        )

        assert clarification_prompt(low, CONFIG) is not None
        assert clarification_prompt(unknown, CONFIG) is None
        assert clarification_prompt(escalated, CONFIG) is None

    def test_simplify_explanations_on_complex_content(self) -> None:
        assert simplify_explanations(_input(complexity=0.7), CONFIG) is None
        assert simplify_explanations(_input(complexity=0.85), CONFIG) is not None


class TestHypothesisGenerator:
    def test_rules_run_in_order(self) -> None:
        interaction = make_interaction(
            emotional_state=EmotionalState(distress=0.95), response_time_ms=7000.0
        )
        data = _input(
            interaction=interaction,
            outcome=make_outcome(success=False, escalation_required=True),
        )

        hypotheses = HypothesisGenerator().generate(data)

        assert [h.learning_type for h in hypotheses] == [
            LearningType.RESPONSE_STRATEGY,
            LearningType.ESCALATION_TRIGGER,
            LearningType.PROCESS_OPTIMIZATION,
        ]
        assert len({h.id for h in hypotheses}) == 3

    def test_custom_rules_and_config(self) -> None:
        generator = HypothesisGenerator(
            LearningConfig(slow_response_ms=1000.0), rules=(response_caching,)
        )

        hypotheses = generator.generate(_input())

        assert len(hypotheses) == 1
        assert hypotheses[0].id.startswith("HYP-")

    def test_default_rule_set(self) -> None:
        assert len(DEFAULT_RULES) == 7
