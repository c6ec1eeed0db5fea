"""Pattern recognition: discover, store and search reusable patterns.

Batch discovery clusters outcome-labeled cases, turns dense clusters into
candidate patterns, keeps only those that survive k-fold cross-validation,
ranks them and publishes them to the pattern store. Similarity search embeds a
feature profile and returns stored patterns above a similarity floor.

Patterns are never deleted. Re-observing a near-duplicate updates the stored
pattern; replacing a pattern marks the old one with ``superseded_by``.
"""

from __future__ import annotations

import asyncio
import copy
from collections import Counter
from dataclasses import replace

import numpy as np

from realign.core.config import PatternRecognitionConfig
from realign.core.errors import (
    PatternAnalysisError,
    PatternError,
    PatternSearchError,
    PatternStorageError,
)
from realign.core.logging import LearningContext, get_logger, new_correlation_id, with_context
from realign.learning.cases import CaseRepository
from realign.learning.clustering import CaseCluster, cluster_cases
from realign.learning.embedding import PatternEmbedder
from realign.learning.models import (
    FeatureSet,
    LabeledCase,
    Pattern,
    PatternFeatures,
    PatternMetadata,
    PatternScope,
    PatternSearchOptions,
    PatternType,
)
from realign.learning.store import InMemoryVectorStore, MetadataFilter, VectorRecord, VectorStore
from realign.learning.validation import CrossValidationResult, CrossValidator, bias_metrics
from realign.models.base import clamp_unit
from realign.utils.time import ensure_aware, utc_now

_logger = get_logger("pattern_recognition")

# Outcomes kept on a pattern after repeated merges
MAX_PATTERN_OUTCOMES = 500


def ranking_score(pattern: Pattern) -> float:
    """Weighted score: predictive power, confidence, success rate, evidence."""
    return (
        0.4 * pattern.predictive_power
        + 0.3 * pattern.confidence
        + 0.2 * pattern.success_rate
        + 0.1 * min(pattern.occurrences / 100, 1.0)
    )


def rank_by_predictive_power(patterns: list[Pattern]) -> list[Pattern]:
    return sorted(patterns, key=ranking_score, reverse=True)


def classify_profile(features: PatternFeatures) -> PatternType:
    """Domain-specific pattern type of a cluster centroid."""
    performance = features.performance
    sequence = features.contextual.interaction_sequence
    states = features.contextual.user_emotional_states

    if performance.escalation_rate > 0.3:
        return PatternType.ESCALATION
    if "document_processing" in sequence:
        return PatternType.DOCUMENT
    if "submission" in sequence:
        return PatternType.SUBMISSION
    if states and (
        max(s.distress for s in states) > 0.6 or max(s.frustration for s in states) > 0.6
    ):
        return PatternType.EMOTIONAL
    if len(features.temporal.preferred_times) <= 2 and performance.resolution_rate >= 0.8:
        return PatternType.TIMING
    return PatternType.CONVERSATION


def build_search_filter(options: PatternSearchOptions) -> MetadataFilter:
    """Metadata predicate for a similarity query. Superseded patterns never match."""
    case_types = set(options.case_types or ())
    servicer_types = set(options.servicer_types or ())
    pattern_types = {t.value for t in options.pattern_types or ()}

    def matches(metadata: dict) -> bool:
        if metadata.get("superseded"):
            return False
        if options.time_window is not None:
            start, end = (ensure_aware(t) for t in options.time_window)
            if not start <= ensure_aware(metadata["last_seen"]) <= end:
                return False
        if case_types and not case_types & set(metadata.get("case_types", ())):
            return False
        if servicer_types and not servicer_types & set(metadata.get("servicer_types", ())):
            return False
        min_occurrences = options.min_occurrences
        if min_occurrences is not None and metadata["occurrences"] < min_occurrences:
            return False
        if pattern_types and metadata["type"] not in pattern_types:
            return False
        return True

    return matches


def _seasonality(cases: list[LabeledCase]) -> str:
    seasons = Counter(s for c in cases for s in c.features.temporal.seasonal_factors)
    if not seasons:
        return "year_round"
    season, count = seasons.most_common(1)[0]
    return season if count / sum(seasons.values()) >= 0.6 else "year_round"


class PatternRecognitionEngine:
    """Discovers patterns from labeled history and serves similarity search.

    The engine owns the pattern records; the vector store holds their
    embeddings and the metadata used for filtering. All writes go through one
    lock so an upsert is atomic per pattern id.
    """

    def __init__(
        self,
        cases: CaseRepository,
        store: VectorStore | None = None,
        embedder: PatternEmbedder | None = None,
        config: PatternRecognitionConfig | None = None,
        validator: CrossValidator | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            cases: Source of outcome-labeled cases for discovery.
            store: Vector index for pattern embeddings.
            embedder: Feature-profile embedder.
            config: Discovery and search thresholds.
            validator: Cross-validator for candidate patterns.
        """
        self.config = config or PatternRecognitionConfig()
        self._cases = cases
        self._store = store if store is not None else InMemoryVectorStore()
        self._embedder = embedder or PatternEmbedder(dimensions=self.config.embedding_dimensions)
        self._validator = validator or CrossValidator(
            folds=self.config.cv_folds, random_seed=self.config.random_seed
        )
        self._patterns: dict[str, Pattern] = {}
        self._metadata: dict[str, PatternMetadata] = {}
        self._embeddings: dict[str, np.ndarray] = {}
        self._lock = asyncio.Lock()

    # ─────────────────────────────────────────────────────────────────────
    # Discovery
    # ─────────────────────────────────────────────────────────────────────

    async def identify_success_patterns(
        self,
        case_category: str,
        min_confidence: float | None = None,
    ) -> list[Pattern]:
        """Find validated patterns that predict success for a case category.

        Args:
            case_category: Category of labeled cases to analyze.
            min_confidence: Confidence floor for returned patterns. Defaults
                to the configured value.

        Returns:
            Validated patterns ranked by predictive power. Empty when fewer
            than ``min_cases`` successful cases exist.

        Raises:
            PatternAnalysisError: If the case history or store fails.
        """
        if min_confidence is None:
            min_confidence = self.config.default_min_confidence
        analysis_id = new_correlation_id("PATTERN-ANALYSIS")
        ctx = LearningContext(correlation_id=analysis_id, component="pattern_recognition")
        with with_context(ctx):
            try:
                return await self._identify(case_category, min_confidence)
            except PatternError:
                raise
            except Exception as e:
                _logger.error("pattern_analysis_failed", case_category=case_category, error=str(e))
                raise PatternAnalysisError(
                    str(e), analysis_id=analysis_id, case_category=case_category
                ) from e

    async def _identify(self, case_category: str, min_confidence: float) -> list[Pattern]:
        config = self.config
        cases = await self._cases.query_labeled_cases(case_category)
        successful = sum(1 for c in cases if c.outcome.success)
        _logger.info(
            "pattern_analysis_started",
            case_category=case_category,
            cases=len(cases),
            successful_cases=successful,
            min_confidence=min_confidence,
        )
        if successful < config.min_cases:
            _logger.warning(
                "insufficient_cases",
                case_category=case_category,
                successful_cases=successful,
                required=config.min_cases,
            )
            return []

        vectors = np.vstack([await self._embedder.embed(c.features) for c in cases])
        clusters = cluster_cases(
            cases,
            vectors,
            max_clusters=config.max_clusters,
            average_size=config.min_cluster_size,
            random_seed=config.random_seed,
        )

        candidates: list[tuple[Pattern, CaseCluster]] = []
        for cluster in clusters:
            if cluster.size < config.min_cluster_size:
                continue
            pattern = self._pattern_from_cluster(cluster, case_category)
            if pattern.confidence >= config.min_candidate_confidence:
                candidates.append((pattern, cluster))

        validated: list[tuple[Pattern, CaseCluster, CrossValidationResult]] = []
        for pattern, cluster in candidates:
            result = self._validator.validate(cluster, cases, vectors)
            if (
                result.mean_accuracy > config.min_cv_accuracy
                and result.consistency > config.min_cv_consistency
            ):
                pattern.confidence = clamp_unit(pattern.confidence * result.mean_accuracy)
                pattern.predictive_power = clamp_unit(result.mean_accuracy)
                validated.append((pattern, cluster, result))
            else:
                _logger.debug(
                    "pattern_rejected",
                    pattern_id=pattern.id,
                    mean_accuracy=round(result.mean_accuracy, 3),
                    consistency=round(result.consistency, 3),
                )

        by_id = {p.id: (cluster, result) for p, cluster, result in validated}
        ranked = rank_by_predictive_power([p for p, _, _ in validated])
        accepted = [p for p in ranked if p.confidence >= min_confidence]

        for pattern in accepted:
            cluster, result = by_id[pattern.id]
            await self.store_pattern(
                pattern,
                PatternMetadata(
                    extracted_from=len(cases),
                    validation_method="cross_validation",
                    statistical_significance=result.statistical_significance(),
                    confidence_interval=result.confidence_interval(),
                    bias_metrics=bias_metrics(cluster.cases),
                ),
            )

        _logger.info(
            "pattern_analysis_completed",
            clusters=len(clusters),
            candidates=len(candidates),
            validated=len(validated),
            accepted=len(accepted),
        )
        return [copy.deepcopy(p) for p in accepted]

    def _pattern_from_cluster(self, cluster: CaseCluster, case_category: str) -> Pattern:
        success_rate = cluster.success_rate
        pattern_type = classify_profile(cluster.centroid)
        tags = ["validated", case_category, pattern_type.value]
        if success_rate >= 0.8:
            tags.append("high_success")
        outcomes = sorted((c.outcome for c in cluster.cases), key=lambda o: o.timestamp)
        return Pattern(
            id=new_correlation_id("PATTERN"),
            type=pattern_type,
            description=(
                f"{pattern_type.value} pattern across {cluster.size} {case_category} cases, "
                f"{cluster.similarity:.1%} similarity, {success_rate:.0%} success"
            ),
            features=cluster.centroid,
            confidence=cluster.similarity * success_rate,
            occurrences=cluster.size,
            success_rate=success_rate,
            predictive_power=cluster.similarity * success_rate,
            outcomes=list(outcomes),
            tags=tags,
            scope=PatternScope(
                case_types=sorted({c.case_type for c in cluster.cases if c.case_type}),
                servicer_types=sorted(
                    {s for c in cluster.cases for s in c.features.contextual.servicer_types}
                ),
                user_roles=sorted({c.user_role for c in cluster.cases if c.user_role}),
                seasonality=_seasonality(cluster.cases),
            ),
            last_seen=max((ensure_aware(o.timestamp) for o in outcomes), default=utc_now()),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Search
    # ─────────────────────────────────────────────────────────────────────

    async def find_similar_patterns(
        self,
        features: PatternFeatures | FeatureSet,
        options: PatternSearchOptions | None = None,
    ) -> list[Pattern]:
        """Return stored patterns similar to a feature profile.

        Each result is a copy whose ``similarity`` is set and whose
        ``confidence`` is scaled by it. Results below ``min_similarity`` are
        never returned.

        Raises:
            PatternSearchError: If the vector store query fails.
        """
        options = options or PatternSearchOptions()
        if isinstance(features, FeatureSet):
            features = PatternFeatures.from_feature_set(features)

        embedding = await self._embedder.embed(features)
        try:
            matches = await self._store.query(
                embedding,
                top_k=options.max_results * 2,
                filter=build_search_filter(options),
                include_metadata=options.include_context,
            )
        except Exception as e:
            _logger.error("pattern_search_failed", error=str(e))
            raise PatternSearchError(str(e), min_similarity=options.min_similarity) from e

        results: list[Pattern] = []
        for match in matches:
            if match.score < options.min_similarity:
                continue
            pattern = self._patterns.get(match.id)
            if pattern is None:
                continue
            found = copy.deepcopy(pattern)
            found.similarity = clamp_unit(match.score)
            found.confidence = clamp_unit(pattern.confidence * match.score)
            results.append(found)

        results.sort(key=lambda p: p.confidence, reverse=True)
        results = results[: options.max_results]
        _logger.debug(
            "pattern_search_completed",
            candidates=len(matches),
            returned=len(results),
            min_similarity=options.min_similarity,
        )
        return results

    # ─────────────────────────────────────────────────────────────────────
    # Storage
    # ─────────────────────────────────────────────────────────────────────

    async def store_pattern(
        self,
        pattern: Pattern,
        metadata: PatternMetadata | None = None,
    ) -> Pattern:
        """Persist a pattern, merging into a near-duplicate when one exists.

        Returns:
            A copy of the pattern as stored (the merged record on a merge).

        Raises:
            PatternStorageError: If the vector store write fails.
        """
        metadata = metadata or PatternMetadata.single_observation(pattern.confidence)
        embedding = await self._embedder.embed(pattern.features)
        async with self._lock:
            stored = await self._upsert_locked(pattern, embedding, metadata, allow_merge=True)
        return copy.deepcopy(stored)

    async def supersede_pattern(
        self,
        old_id: str,
        replacement: Pattern,
        metadata: PatternMetadata | None = None,
    ) -> Pattern:
        """Store ``replacement`` and mark ``old_id`` as superseded by it.

        Raises:
            PatternStorageError: If ``old_id`` is unknown or the write fails.
        """
        metadata = metadata or PatternMetadata.single_observation(replacement.confidence)
        embedding = await self._embedder.embed(replacement.features)
        async with self._lock:
            old = self._patterns.get(old_id)
            if old is None:
                raise PatternStorageError(f"Unknown pattern: {old_id}", pattern_id=old_id)
            stored = await self._upsert_locked(replacement, embedding, metadata, allow_merge=False)
            retired = replace(old, superseded_by=stored.id)
            await self._write_locked(retired, self._embeddings[old_id], self._metadata[old_id])
        _logger.info("pattern_superseded", pattern_id=old_id, superseded_by=stored.id)
        return copy.deepcopy(stored)

    async def _upsert_locked(
        self,
        pattern: Pattern,
        embedding: np.ndarray,
        metadata: PatternMetadata,
        allow_merge: bool,
    ) -> Pattern:
        if allow_merge and pattern.id not in self._patterns:
            duplicate = await self._find_duplicate(pattern, embedding)
            if duplicate is not None:
                merged = self._merge(duplicate, pattern)
                await self._write_locked(
                    merged, self._embeddings[duplicate.id], self._metadata[duplicate.id]
                )
                _logger.info(
                    "pattern_merged",
                    pattern_id=merged.id,
                    occurrences=merged.occurrences,
                    confidence=round(merged.confidence, 3),
                )
                return merged

        stored = copy.deepcopy(pattern)
        stored.similarity = None
        await self._write_locked(stored, embedding, metadata)
        _logger.info(
            "pattern_stored",
            pattern_id=stored.id,
            pattern_type=stored.type.value,
            confidence=round(stored.confidence, 3),
            occurrences=stored.occurrences,
        )
        return stored

    async def _write_locked(
        self,
        pattern: Pattern,
        embedding: np.ndarray,
        metadata: PatternMetadata,
    ) -> None:
        record = VectorRecord(
            id=pattern.id,
            vector=embedding,
            metadata={
                "type": pattern.type.value,
                "confidence": pattern.confidence,
                "success_rate": pattern.success_rate,
                "predictive_power": pattern.predictive_power,
                "occurrences": pattern.occurrences,
                "last_seen": pattern.last_seen,
                "case_types": list(pattern.scope.case_types),
                "servicer_types": list(pattern.scope.servicer_types),
                "tags": list(pattern.tags),
                "superseded": pattern.superseded_by is not None,
                "extracted_from": metadata.extracted_from,
                "validation_method": metadata.validation_method,
            },
        )
        try:
            await self._store.upsert(record)
        except Exception as e:
            _logger.error("pattern_storage_failed", pattern_id=pattern.id, error=str(e))
            raise PatternStorageError(str(e), pattern_id=pattern.id) from e
        # Record swap happens only after the index accepted the write
        self._patterns[pattern.id] = pattern
        self._metadata[pattern.id] = metadata
        self._embeddings[pattern.id] = embedding

    async def _find_duplicate(self, pattern: Pattern, embedding: np.ndarray) -> Pattern | None:
        try:
            matches = await self._store.query(
                embedding,
                top_k=1,
                filter=lambda m: not m.get("superseded") and m["type"] == pattern.type.value,
            )
        except Exception as e:
            raise PatternStorageError(str(e), pattern_id=pattern.id) from e
        if matches and matches[0].score >= self.config.duplicate_similarity:
            return self._patterns.get(matches[0].id)
        return None

    @staticmethod
    def _merge(existing: Pattern, observed: Pattern) -> Pattern:
        total = existing.occurrences + observed.occurrences

        def weighted(a: float, b: float) -> float:
            return (a * existing.occurrences + b * observed.occurrences) / total

        outcomes = sorted(
            [*existing.outcomes, *observed.outcomes], key=lambda o: ensure_aware(o.timestamp)
        )[-MAX_PATTERN_OUTCOMES:]
        return replace(
            existing,
            occurrences=total,
            confidence=weighted(existing.confidence, observed.confidence),
            success_rate=weighted(existing.success_rate, observed.success_rate),
            predictive_power=weighted(existing.predictive_power, observed.predictive_power),
            outcomes=outcomes,
            tags=list(dict.fromkeys([*existing.tags, *observed.tags])),
            last_seen=max(ensure_aware(existing.last_seen), ensure_aware(observed.last_seen)),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────────

    def get_pattern(self, pattern_id: str) -> Pattern | None:
        """Return a stored pattern, including superseded ones."""
        pattern = self._patterns.get(pattern_id)
        return copy.deepcopy(pattern) if pattern is not None else None

    def get_metadata(self, pattern_id: str) -> PatternMetadata | None:
        return self._metadata.get(pattern_id)

    def list_patterns(self, include_superseded: bool = False) -> list[Pattern]:
        return [
            copy.deepcopy(p)
            for p in self._patterns.values()
            if include_superseded or p.superseded_by is None
        ]
