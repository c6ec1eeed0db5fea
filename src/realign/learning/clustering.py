"""k-means clustering of labeled cases and centroid profiles."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from sklearn.cluster import KMeans

from realign.learning.models import (
    ContentProfile,
    ContextualProfile,
    EmotionalState,
    LabeledCase,
    PatternFeatures,
    PerformanceProfile,
    TemporalProfile,
    ValueRange,
)
from realign.learning.store import SimilarityCalculator


@dataclass
class CaseCluster:
    """One cluster of cases with its centroid."""

    indices: np.ndarray
    """Row indices of the members in the clustered matrix."""

    cases: list[LabeledCase]
    centroid: PatternFeatures
    centroid_vector: np.ndarray
    similarity: float
    """Mean cosine similarity of members to the centroid, in [0, 1]."""

    @property
    def size(self) -> int:
        return len(self.cases)

    @property
    def success_rate(self) -> float:
        if not self.cases:
            return 0.0
        return sum(1 for c in self.cases if c.outcome.success) / len(self.cases)


def cluster_count(case_count: int, max_clusters: int = 10, average_size: int = 5) -> int:
    """Dynamic k so that clusters average ``average_size`` members."""
    if case_count <= 0:
        return 0
    return max(1, min(max_clusters, math.ceil(case_count / average_size)))


def _most_common(values: Sequence[object], limit: int) -> tuple:
    return tuple(value for value, _ in Counter(values).most_common(limit))


def merge_features(profiles: Sequence[PatternFeatures]) -> PatternFeatures:
    """Field-wise aggregate of member profiles: ranges span, rates average,
    categorical fields keep their most frequent values."""
    if not profiles:
        raise ValueError("Cannot merge an empty set of feature profiles")
    n = len(profiles)

    seasons = Counter(s for p in profiles for s in p.temporal.seasonal_factors)
    season_total = sum(seasons.values()) or 1
    emotional = [s for p in profiles for s in p.contextual.user_emotional_states]

    return PatternFeatures(
        temporal=TemporalProfile(
            preferred_times=tuple(
                sorted(_most_common([h for p in profiles for h in p.temporal.preferred_times], 5))
            ),
            optimal_days=tuple(
                sorted(_most_common([d for p in profiles for d in p.temporal.optimal_days], 4))
            ),
            seasonal_factors={season: count / season_total for season, count in seasons.items()},
            response_time_range=ValueRange(
                min(p.temporal.response_time_range.min for p in profiles),
                max(p.temporal.response_time_range.max for p in profiles),
            ),
        ),
        content=ContentProfile(
            message_length=ValueRange(
                min(p.content.message_length.min for p in profiles),
                max(p.content.message_length.max for p in profiles),
            ),
            sentiment_range=ValueRange(
                min(p.content.sentiment_range.min for p in profiles),
                max(p.content.sentiment_range.max for p in profiles),
            ),
            key_phrases=_most_common([k for p in profiles for k in p.content.key_phrases], 10),
            topic_clusters=_most_common(
                [t for p in profiles for t in p.content.topic_clusters], 5
            ),
            complexity_score=sum(p.content.complexity_score for p in profiles) / n,
        ),
        contextual=ContextualProfile(
            case_stages=_most_common([s for p in profiles for s in p.contextual.case_stages], 5),
            user_emotional_states=(
                (
                    EmotionalState(
                        distress=sum(s.distress for s in emotional) / len(emotional),
                        hope=sum(s.hope for s in emotional) / len(emotional),
                        frustration=sum(s.frustration for s in emotional) / len(emotional),
                    ),
                )
                if emotional
                else ()
            ),
            servicer_types=_most_common(
                [s for p in profiles for s in p.contextual.servicer_types], 5
            ),
            previous_outcomes=_most_common(
                [o for p in profiles for o in p.contextual.previous_outcomes], 5
            ),
            interaction_sequence=_most_common(
                [i for p in profiles for i in p.contextual.interaction_sequence], 5
            ),
        ),
        performance=PerformanceProfile(
            average_response_time_ms=sum(
                p.performance.average_response_time_ms for p in profiles
            ) / n,
            resolution_rate=sum(p.performance.resolution_rate for p in profiles) / n,
            escalation_rate=sum(p.performance.escalation_rate for p in profiles) / n,
            user_satisfaction_range=ValueRange(
                min(p.performance.user_satisfaction_range.min for p in profiles),
                max(p.performance.user_satisfaction_range.max for p in profiles),
            ),
            confidence_threshold=sum(p.performance.confidence_threshold for p in profiles) / n,
        ),
    )


def cluster_cases(
    cases: Sequence[LabeledCase],
    vectors: np.ndarray,
    max_clusters: int = 10,
    average_size: int = 5,
    random_seed: int = 0,
) -> list[CaseCluster]:
    """Group cases by embedding similarity.

    Args:
        cases: Cases to cluster, aligned with ``vectors`` rows.
        vectors: Embedding matrix, one row per case.
        max_clusters: Upper bound on k.
        average_size: Target mean cluster size used to derive k.
        random_seed: Seed for k-means initialisation.

    Returns:
        Non-empty clusters, largest first.
    """
    if len(cases) != len(vectors):
        raise ValueError("cases and vectors must have the same length")
    if not cases:
        return []

    k = cluster_count(len(cases), max_clusters, average_size)
    # k-means cannot place more centroids than there are distinct points
    k = min(k, len(np.unique(vectors, axis=0)))
    labels = KMeans(n_clusters=k, n_init=10, random_state=random_seed).fit_predict(vectors)

    clusters: list[CaseCluster] = []
    for label in np.unique(labels):
        indices = np.flatnonzero(labels == label)
        members = vectors[indices]
        centroid_vector = members.mean(axis=0)
        similarities = SimilarityCalculator.cosine_to_many(members, centroid_vector)
        member_cases = [cases[i] for i in indices]
        clusters.append(
            CaseCluster(
                indices=indices,
                cases=member_cases,
                centroid=merge_features([c.features for c in member_cases]),
                centroid_vector=centroid_vector,
                similarity=float(np.clip(similarities.mean(), 0.0, 1.0)),
            )
        )

    clusters.sort(key=lambda c: c.size, reverse=True)
    return clusters
