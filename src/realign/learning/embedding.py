"""Fixed-length numeric embeddings of pattern features.

Layout (before padding to ``dimensions``):

    [0:6)    preferred hours, share per 4-hour bucket
    [6:13)   optimal days, one flag per weekday
    [13:18)  message length min/max, sentiment min/max, complexity
    [18:24)  response time, resolution, 1 - escalation, satisfaction min/max,
             confidence threshold
    [24:27)  mean distress, hope, frustration
    [27:35)  hashed buckets of topics, key phrases, stages and servicer types
    [35:40)  model-scored tone of the pattern's vocabulary

Every component is scaled to [0, 1]. The last block needs the emotional
analysis model; when it is unavailable the block is zeroed and the rest of the
vector is still produced.
"""

from __future__ import annotations

import zlib
from typing import TYPE_CHECKING

import numpy as np

from realign.core.logging import get_logger
from realign.learning.models import PatternFeatures
from realign.models.base import Task, TaskContext, TaskKind, TaskOptions, clamp_unit

if TYPE_CHECKING:
    from realign.orchestration.orchestrator import ModelOrchestrator

_logger = get_logger("learning.embedding")

EMBEDDING_DIMENSIONS = 50
HASH_BUCKETS = 8
SEMANTIC_SIZE = 5

# Scale factors for unbounded quantities
MESSAGE_LENGTH_SCALE = 1000.0
RESPONSE_TIME_SCALE = 10000.0


def _hash_bucket(token: str) -> int:
    return zlib.crc32(token.lower().encode("utf-8")) % HASH_BUCKETS


def structured_embedding(features: PatternFeatures) -> list[float]:
    """Deterministic encoding of the feature profile."""
    temporal = features.temporal
    content = features.content
    contextual = features.contextual
    performance = features.performance

    hours = [0.0] * 6
    for hour in temporal.preferred_times:
        hours[(int(hour) % 24) // 4] += 1.0
    if temporal.preferred_times:
        hours = [h / len(temporal.preferred_times) for h in hours]

    days = [1.0 if day in temporal.optimal_days else 0.0 for day in range(7)]

    content_block = [
        clamp_unit(content.message_length.min / MESSAGE_LENGTH_SCALE),
        clamp_unit(content.message_length.max / MESSAGE_LENGTH_SCALE),
        clamp_unit((content.sentiment_range.min + 1) / 2),
        clamp_unit((content.sentiment_range.max + 1) / 2),
        clamp_unit(content.complexity_score),
    ]

    performance_block = [
        clamp_unit(performance.average_response_time_ms / RESPONSE_TIME_SCALE),
        clamp_unit(performance.resolution_rate),
        clamp_unit(1 - performance.escalation_rate),
        clamp_unit(performance.user_satisfaction_range.min),
        clamp_unit(performance.user_satisfaction_range.max),
        clamp_unit(performance.confidence_threshold),
    ]

    states = contextual.user_emotional_states
    if states:
        emotional_block = [
            clamp_unit(sum(s.distress for s in states) / len(states)),
            clamp_unit(sum(s.hope for s in states) / len(states)),
            clamp_unit(sum(s.frustration for s in states) / len(states)),
        ]
    else:
        emotional_block = [0.0, 0.0, 0.0]

    buckets = [0.0] * HASH_BUCKETS
    tokens = [
        *content.topic_clusters,
        *content.key_phrases,
        *contextual.case_stages,
        *contextual.servicer_types,
        *contextual.interaction_sequence,
    ]
    for token in tokens:
        buckets[_hash_bucket(token)] += 1.0
    peak = max(buckets)
    if peak > 0:
        buckets = [b / peak for b in buckets]

    return hours + days + content_block + performance_block + emotional_block + buckets


def _fit(values: list[float], dimensions: int) -> np.ndarray:
    """Pad with zeros or truncate to the target size."""
    padded = values[:dimensions] + [0.0] * max(0, dimensions - len(values))
    return np.asarray(padded, dtype=float)


class PatternEmbedder:
    """Embeds PatternFeatures, optionally enriched by the emotional model."""

    def __init__(
        self,
        orchestrator: ModelOrchestrator | None = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> None:
        self._orchestrator = orchestrator
        self.dimensions = dimensions

    def fallback_embedding(self, features: PatternFeatures) -> np.ndarray:
        """Deterministic embedding with the model-scored block zeroed."""
        return _fit(structured_embedding(features) + [0.0] * SEMANTIC_SIZE, self.dimensions)

    async def embed(self, features: PatternFeatures) -> np.ndarray:
        """Embed a feature profile. Never raises for scoring failures."""
        structured = structured_embedding(features)
        if self._orchestrator is None:
            return _fit(structured + [0.0] * SEMANTIC_SIZE, self.dimensions)

        vocabulary = " ".join(
            [*features.content.topic_clusters, *features.content.key_phrases,
             *features.contextual.case_stages]
        ).replace("_", " ")
        if not vocabulary.strip():
            return _fit(structured + [0.0] * SEMANTIC_SIZE, self.dimensions)

        try:
            result = await self._orchestrator.execute_task(
                Task(
                    kind=TaskKind.EMOTIONAL,
                    input={"message": vocabulary},
                    options=TaskOptions(temperature=0.1),
                ),
                TaskContext(requires_accuracy=True),
            )
            data = result.data if isinstance(result.data, dict) else {}
            semantic = [
                clamp_unit((float(data.get("sentiment", 0.0)) + 1) / 2),
                clamp_unit(float(data.get("distress", 0.0))),
                clamp_unit(float(data.get("hope", 0.0))),
                clamp_unit(float(data.get("frustration", 0.0))),
                clamp_unit(float(data.get("complexity", 0.0))),
            ]
        except Exception as e:
            _logger.warning("embedding_fallback", error_type=type(e).__name__, error=str(e))
            return self.fallback_embedding(features)

        return _fit(structured + semantic, self.dimensions)
