"""k-fold cross-validation of candidate patterns against labeled history.

A pattern is treated as a classifier: a case "matches" when its embedding is
at least as close to the centroid of the training-fold members as the lower
decile of those members, and a match predicts success. Held-out accuracy is
measured against the cases' real outcomes.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from sklearn.model_selection import KFold

from realign.learning.clustering import CaseCluster
from realign.learning.models import BiasMetrics, LabeledCase
from realign.learning.store import SimilarityCalculator

# Percentile of training-member similarity used as the match threshold
MATCH_PERCENTILE = 10
_THRESHOLD_TOLERANCE = 1e-9


@dataclass(frozen=True)
class CrossValidationResult:
    fold_accuracies: tuple[float, ...]
    evaluated_cases: int

    @property
    def mean_accuracy(self) -> float:
        return float(np.mean(self.fold_accuracies)) if self.fold_accuracies else 0.0

    @property
    def consistency(self) -> float:
        """1 minus the (population) standard deviation of fold accuracies."""
        if not self.fold_accuracies:
            return 0.0
        return 1.0 - float(np.std(self.fold_accuracies))

    def confidence_interval(self) -> tuple[float, float]:
        """95% interval of the mean fold accuracy, clipped to [0, 1]."""
        k = len(self.fold_accuracies)
        if k == 0:
            return (0.0, 0.0)
        margin = 1.96 * float(np.std(self.fold_accuracies)) / math.sqrt(k)
        mean = self.mean_accuracy
        return (max(0.0, mean - margin), min(1.0, mean + margin))

    def statistical_significance(self) -> float:
        """One-sided confidence that accuracy beats chance (normal approximation)."""
        if self.evaluated_cases == 0:
            return 0.0
        z = (self.mean_accuracy - 0.5) / math.sqrt(0.25 / self.evaluated_cases)
        return 0.5 * (1.0 + math.erf(z / math.sqrt(2)))


class CrossValidator:
    """Runs k-fold validation of a cluster-derived pattern."""

    def __init__(self, folds: int = 5, random_seed: int = 0) -> None:
        self.folds = folds
        self.random_seed = random_seed

    def evaluation_indices(self, cluster: CaseCluster, vectors: np.ndarray) -> np.ndarray:
        """Cluster members plus as many of the nearest non-members."""
        members = set(int(i) for i in cluster.indices)
        others = np.array([i for i in range(len(vectors)) if i not in members], dtype=int)
        if len(others):
            similarity = SimilarityCalculator.cosine_to_many(
                vectors[others], cluster.centroid_vector
            )
            nearest = others[np.argsort(-similarity, kind="stable")[: len(members)]]
        else:
            nearest = others
        return np.concatenate([np.asarray(cluster.indices, dtype=int), nearest])

    def validate(
        self,
        cluster: CaseCluster,
        cases: Sequence[LabeledCase],
        vectors: np.ndarray,
    ) -> CrossValidationResult:
        """Cross-validate one cluster against all labeled cases.

        Args:
            cluster: Candidate cluster; its indices address ``cases``/``vectors``.
            cases: Every labeled case that was clustered.
            vectors: Embedding matrix aligned with ``cases``.
        """
        evaluation = self.evaluation_indices(cluster, vectors)
        if len(evaluation) < 2:
            return CrossValidationResult(fold_accuracies=(), evaluated_cases=0)

        members = set(int(i) for i in cluster.indices)
        labels = np.array([cases[i].outcome.success for i in evaluation], dtype=bool)
        splitter = KFold(
            n_splits=min(self.folds, len(evaluation)),
            shuffle=True,
            random_state=self.random_seed,
        )

        accuracies = []
        for train, test in splitter.split(evaluation):
            train_members = [int(i) for i in evaluation[train] if int(i) in members]
            if train_members:
                centroid = vectors[train_members].mean(axis=0)
                member_similarity = SimilarityCalculator.cosine_to_many(
                    vectors[train_members], centroid
                )
                threshold = float(np.percentile(member_similarity, MATCH_PERCENTILE))
            else:
                centroid = cluster.centroid_vector
                threshold = cluster.similarity
            test_similarity = SimilarityCalculator.cosine_to_many(
                vectors[evaluation[test]], centroid
            )
            predicted = test_similarity >= threshold - _THRESHOLD_TOLERANCE
            accuracies.append(float(np.mean(predicted == labels[test])))

        return CrossValidationResult(
            fold_accuracies=tuple(accuracies),
            evaluated_cases=len(evaluation),
        )


def normalized_entropy(values: Sequence[object]) -> float:
    """Shannon entropy of a categorical sample scaled to [0, 1]."""
    counts: dict[object, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    if len(counts) <= 1:
        return 0.0
    total = sum(counts.values())
    entropy = -sum((c / total) * math.log(c / total) for c in counts.values())
    return entropy / math.log(len(counts))


def bias_metrics(cases: Sequence[LabeledCase]) -> BiasMetrics:
    """Balance of supporting cases across roles, servicers and weekdays."""
    return BiasMetrics(
        role_balance=normalized_entropy([c.user_role or "unknown" for c in cases]),
        servicer_balance=normalized_entropy(
            [s for c in cases for s in c.features.contextual.servicer_types] or ["unknown"]
        ),
        temporal_balance=normalized_entropy(
            [d for c in cases for d in c.features.temporal.optimal_days]
        ),
    )
