"""Experiments over hypotheses and the hand-off of validated learnings.

Low-risk, low-effort hypotheses are validated immediately against the
outcomes recorded on their related patterns. Everything else is scaffolded as
a planned experiment for out-of-band execution.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Protocol

from realign.core.config import LearningConfig
from realign.core.logging import get_logger, new_correlation_id
from realign.learning.models import (
    Experiment,
    ExperimentResult,
    ExperimentStatus,
    Hypothesis,
    Learning,
    LearningImplementation,
    Level,
    Pattern,
)
from realign.models.base import clamp_unit
from realign.utils.time import utc_now

_logger = get_logger("learning.experiments")

DURATION_BY_EFFORT = {
    Level.LOW: "1-3 days",
    Level.MEDIUM: "1-2 weeks",
    Level.HIGH: "2-4 weeks",
}

SAMPLE_SIZE_BY_EFFORT = {
    Level.LOW: 50,
    Level.MEDIUM: 200,
    Level.HIGH: 1000,
}

ROLLOUT_BY_EFFORT = {
    Level.LOW: "Low - immediate rollout",
    Level.MEDIUM: "Medium - staged rollout",
    Level.HIGH: "High - phased rollout with monitoring",
}

BASE_METRICS = ("success_rate", "user_satisfaction", "response_time")

# Minimum improvement (percentage points over chance) for a quick validation
MIN_IMPROVEMENT = 5.0
HIGH_IMPACT_IMPROVEMENT = 15.0
MIN_SUPPORTING_OUTCOMES = 3


def select_metrics(hypothesis: Hypothesis) -> list[str]:
    metrics = list(BASE_METRICS)
    description = hypothesis.description.lower()
    if "escalation" in description:
        metrics.append("escalation_rate")
    if "efficiency" in description:
        metrics.extend(["processing_time", "resource_usage"])
    return metrics


def _significance(support_rate: float, total: int) -> float:
    if total == 0:
        return 0.0
    z = (support_rate - 0.5) / math.sqrt(0.25 / total)
    return 0.5 * (1.0 + math.erf(z / math.sqrt(2)))


def _impact(improvement: float) -> Level:
    if improvement >= HIGH_IMPACT_IMPROVEMENT:
        return Level.HIGH
    if improvement >= MIN_IMPROVEMENT:
        return Level.MEDIUM
    return Level.LOW


class ExperimentRunner:
    """Creates experiments for hypotheses and runs quick validations."""

    def __init__(self, config: LearningConfig | None = None) -> None:
        self._config = config or LearningConfig()

    def is_ready(self, hypothesis: Hypothesis) -> bool:
        return (
            hypothesis.potential > self._config.experiment_min_potential
            and hypothesis.ready_for_experiment
        )

    def create_experiment(self, hypothesis: Hypothesis) -> Experiment:
        return Experiment(
            id=new_correlation_id("EXP"),
            hypothesis_id=hypothesis.id,
            description=f"Experiment for: {hypothesis.description}",
            metrics=select_metrics(hypothesis),
            duration=DURATION_BY_EFFORT[hypothesis.effort],
            sample_size=SAMPLE_SIZE_BY_EFFORT[hypothesis.effort],
        )

    def run_quick_validation(
        self,
        experiment: Experiment,
        hypothesis: Hypothesis,
        related_patterns: Sequence[Pattern],
    ) -> ExperimentResult:
        """Validate a hypothesis against the outcomes of its related patterns.

        An outcome supports the hypothesis when it is a success for
        success-backed hypotheses, or a failure or escalation otherwise.
        Improvement is the support rate above chance, in percentage points.
        Without related evidence nothing is measured, so the result is
        never validated and no learning is produced.
        """
        outcomes = [o for p in related_patterns for o in p.outcomes]
        if outcomes:
            if hypothesis.supported_by_success:
                supporting = sum(1 for o in outcomes if o.success)
            else:
                supporting = sum(1 for o in outcomes if not o.success or o.escalated)
            support_rate = supporting / len(outcomes)
            improvement = 100.0 * (support_rate - 0.5)
            validated = (
                improvement >= MIN_IMPROVEMENT and supporting >= MIN_SUPPORTING_OUTCOMES
            )
            confidence = clamp_unit((hypothesis.confidence + support_rate) / 2)
        else:
            supporting = 0
            support_rate = 0.0
            improvement = 0.0
            validated = False
            confidence = hypothesis.confidence

        learnings: tuple[Learning, ...] = ()
        if validated:
            learnings = (
                Learning(
                    id=new_correlation_id("LEARN"),
                    type=hypothesis.learning_type,
                    description=hypothesis.description,
                    confidence=confidence,
                    impact=_impact(improvement),
                    applicability=(hypothesis.component,),
                    implementation=LearningImplementation(
                        component=hypothesis.component,
                        changes=(hypothesis.description,),
                        rollout_strategy=ROLLOUT_BY_EFFORT[hypothesis.effort],
                    ),
                ),
            )

        _logger.debug(
            "quick_validation_completed",
            experiment_id=experiment.id,
            hypothesis_id=hypothesis.id,
            validated=validated,
            supporting_outcomes=supporting,
            improvement_percentage=round(improvement, 2),
        )
        return ExperimentResult(
            validated=validated,
            confidence=confidence,
            improvement_percentage=improvement,
            statistical_significance=_significance(support_rate, len(outcomes)),
            supporting_outcomes=supporting,
            learnings=learnings,
            recommendations=(hypothesis.expected_outcome,) if validated else (),
        )

    def run(
        self,
        hypotheses: Sequence[Hypothesis],
        similar_patterns: Sequence[Pattern],
    ) -> list[Experiment]:
        """Create experiments for ready hypotheses, quick-validating eligible ones.

        Args:
            hypotheses: Candidates from the hypothesis generator.
            similar_patterns: Patterns the hypotheses may reference by id.

        Returns:
            One experiment per ready hypothesis. Quick-validated experiments
            are COMPLETED (or FAILED if validation raised); the rest stay
            PLANNED.
        """
        by_id = {p.id: p for p in similar_patterns}
        experiments = []
        for hypothesis in hypotheses:
            if not self.is_ready(hypothesis):
                continue
            experiment = self.create_experiment(hypothesis)
            if hypothesis.quick_validation_eligible:
                related = [by_id[i] for i in hypothesis.related_patterns if i in by_id]
                try:
                    experiment.results = self.run_quick_validation(
                        experiment, hypothesis, related
                    )
                except Exception as e:
                    _logger.warning(
                        "quick_validation_failed",
                        experiment_id=experiment.id,
                        hypothesis_id=hypothesis.id,
                        error=str(e),
                    )
                    experiment.status = ExperimentStatus.FAILED
                else:
                    experiment.status = ExperimentStatus.COMPLETED
                experiment.end_date = utc_now()
            experiments.append(experiment)

        _logger.info(
            "experiments_created",
            candidates=len(hypotheses),
            experiments=len(experiments),
            completed=sum(1 for e in experiments if e.status is ExperimentStatus.COMPLETED),
        )
        return experiments


class ModelUpdater(Protocol):
    """Receives validated learnings for application to the models."""

    async def update_models(self, learnings: list[Learning], correlation_id: str) -> None: ...


class LoggingModelUpdater:
    """Default updater: keeps applied learnings in memory and logs them."""

    def __init__(self) -> None:
        self.applied: list[Learning] = []

    async def update_models(self, learnings: list[Learning], correlation_id: str) -> None:
        self.applied.extend(learnings)
        _logger.info(
            "models_updated",
            learning_id=correlation_id,
            learnings=len(learnings),
            components=sorted({learning.implementation.component for learning in learnings}),
        )
