"""Feature extraction from interactions.

Only the content block depends on a model call; every other field is a pure
function of the interaction and the case history, so extracting the same
interaction twice yields the same features.
"""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from realign.core.config import LearningConfig
from realign.core.logging import get_logger
from realign.learning.models import (
    ContentFeatures,
    ContextFeatures,
    FeatureSet,
    HistoricalFeatures,
    Interaction,
    PerformanceFeatures,
    TemporalFeatures,
)
from realign.memory import CaseMemory, CaseMemorySnapshot
from realign.models.base import Task, TaskContext, TaskKind, TaskOptions, Urgency, clamp_unit
from realign.utils.time import ensure_aware

if TYPE_CHECKING:
    from realign.learning.cases import CaseRepository
    from realign.orchestration.orchestrator import ModelOrchestrator

_logger = get_logger("learning.features")

# Neutral confidence when no model scored the content
DEFAULT_INTERACTION_CONFIDENCE = 0.5
SIMILAR_CASE_LIMIT = 10


def season_of(moment: datetime) -> str:
    month = moment.month
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def determine_urgency(interaction: Interaction, config: LearningConfig | None = None) -> Urgency:
    """Urgency tier from emotional-state thresholds and escalation."""
    config = config or LearningConfig()
    state = interaction.context.emotional_state
    if state is not None and state.distress > config.distress_critical:
        return Urgency.CRITICAL
    if interaction.escalated:
        return Urgency.HIGH
    if state is not None and state.frustration > config.frustration_medium:
        return Urgency.MEDIUM
    return Urgency.LOW


def message_length(content: Any) -> int:
    if isinstance(content, str):
        return len(content)
    return len(json.dumps(content, default=str, sort_keys=True))


class FeatureExtractor:
    """Turns an Interaction into a FeatureSet."""

    def __init__(
        self,
        orchestrator: ModelOrchestrator | None = None,
        memory: CaseMemory | None = None,
        cases: CaseRepository | None = None,
        config: LearningConfig | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._memory = memory
        self._cases = cases
        self._config = config or LearningConfig()

    async def extract(self, interaction: Interaction) -> FeatureSet:
        """Extract features. Model and history failures degrade to defaults;
        anything else propagates."""
        timestamp = ensure_aware(interaction.timestamp)
        snapshot = await self._load_memory(interaction.case_id)
        content, confidence = await self._analyze_content(interaction)

        return FeatureSet(
            temporal=TemporalFeatures(
                day_of_week=timestamp.weekday(),
                hour_of_day=timestamp.hour,
                days_since_last_interaction=self._days_since_last(snapshot, timestamp),
                seasonality=season_of(timestamp),
            ),
            content=content,
            context=ContextFeatures(
                case_stage=interaction.context.case_stage,
                previous_interactions=interaction.context.interaction_count,
                user_emotional_state=interaction.context.emotional_state,
                servicer_type=(
                    interaction.context.servicer.type if interaction.context.servicer else None
                ),
                urgency_level=determine_urgency(interaction, self._config),
                user_role=interaction.context.user_role,
            ),
            performance=PerformanceFeatures(
                response_time_ms=interaction.response_time_ms,
                resolution_achieved=interaction.resolved,
                escalation_required=interaction.escalated,
                confidence_score=confidence,
            ),
            historical=await self._historical(interaction, snapshot),
            interaction_type=interaction.type,
        )

    async def _analyze_content(self, interaction: Interaction) -> tuple[ContentFeatures, float]:
        length = message_length(interaction.content)
        neutral = replace(ContentFeatures.neutral(), message_length=length)
        if self._orchestrator is None:
            return neutral, DEFAULT_INTERACTION_CONFIDENCE

        content = interaction.content
        try:
            result = await self._orchestrator.execute_task(
                Task(
                    kind=TaskKind.EMOTIONAL,
                    input=content if isinstance(content, dict) else {"message": content},
                    options=TaskOptions(temperature=0.3),
                ),
                TaskContext(requires_accuracy=True, case_id=interaction.case_id,
                            user_id=interaction.user_id),
            )
            data = result.data if isinstance(result.data, dict) else {}
            features = ContentFeatures(
                message_length=length,
                sentiment=max(-1.0, min(1.0, float(data.get("sentiment", 0.0)))),
                complexity=clamp_unit(data.get("complexity", 0.5)),
                topics=tuple(str(t) for t in data.get("topics", [])),
                emotional_markers=int(data.get("emotionalMarkers", 0)),
            )
        except Exception as e:
            _logger.warning(
                "content_analysis_fallback", error_type=type(e).__name__, error=str(e)
            )
            return neutral, DEFAULT_INTERACTION_CONFIDENCE
        return features, result.confidence

    async def _load_memory(self, case_id: str) -> CaseMemorySnapshot | None:
        if self._memory is None:
            return None
        try:
            return await self._memory.get_memory(case_id)
        except Exception as e:
            _logger.warning("case_memory_unavailable", case_id=case_id, error=str(e))
            return None

    @staticmethod
    def _days_since_last(snapshot: CaseMemorySnapshot | None, timestamp: datetime) -> int:
        if snapshot is None or snapshot.last_interaction_at is None:
            return 0
        return max(0, (timestamp - ensure_aware(snapshot.last_interaction_at)).days)

    async def _historical(
        self,
        interaction: Interaction,
        snapshot: CaseMemorySnapshot | None,
    ) -> HistoricalFeatures:
        similar: tuple[float, ...] = ()
        if self._cases is not None:
            try:
                history = await self._cases.query_labeled_cases(interaction.type.value)
            except Exception as e:
                _logger.warning("case_history_unavailable", error=str(e))
            else:
                stage = interaction.context.case_stage
                similar = tuple(
                    c.outcome.user_satisfaction
                    for c in history
                    if c.case_type == stage and c.case_id != interaction.case_id
                )[-SIMILAR_CASE_LIMIT:]

        if snapshot is None:
            return HistoricalFeatures(similar_case_outcomes=similar)
        return HistoricalFeatures(
            similar_case_outcomes=similar,
            pattern_matches=tuple(snapshot.pattern_matches),
            successful_strategies=tuple(snapshot.success_factors),
        )
