"""Tests for pattern embeddings and the vector store."""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest
from structlog.testing import capture_logs

from realign.core.errors import ModelExecutionError
from realign.learning.embedding import (
    EMBEDDING_DIMENSIONS,
    PatternEmbedder,
    structured_embedding,
)
from realign.learning.store import (
    InMemoryVectorStore,
    SimilarityCalculator,
    VectorRecord,
)
from realign.models.base import ModelResult, TaskKind
from tests.helpers import default_profile

# ============================================================================
# Embedding
# ============================================================================


class TestStructuredEmbedding:
    def test_layout_and_range(self) -> None:
        values = structured_embedding(default_profile())

        assert len(values) == 35
        assert all(0.0 <= v <= 1.0 for v in values)

    def test_hour_and_day_slots(self) -> None:
        values = structured_embedding(default_profile())

        # 14:30 falls in the 12-16 bucket, BASE_TIME is a Monday
        assert values[:6] == [0.0, 0.0, 0.0, 1.0, 0.0, 0.0]
        assert values[6:13] == [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]

    def test_deterministic(self) -> None:
        assert structured_embedding(default_profile()) == structured_embedding(default_profile())

    def test_performance_block(self) -> None:
        values = structured_embedding(default_profile(response_time_ms=2500.0, escalated=True))

        assert values[18] == 0.25
        assert values[20] == 0.0


def _orchestrator(result: ModelResult | None = None, error: Exception | None = None) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.execute_task = AsyncMock(return_value=result, side_effect=error)
    return orchestrator


class TestPatternEmbedder:
    """PatternEmbedder.embed"""

    @pytest.mark.asyncio
    async def test_without_orchestrator_semantic_block_is_zero(self) -> None:
        vector = await PatternEmbedder().embed(default_profile())

        assert vector.shape == (EMBEDDING_DIMENSIONS,)
        assert np.all(vector[35:] == 0.0)

    @pytest.mark.asyncio
    async def test_semantic_block_from_emotional_model(self) -> None:
        orchestrator = _orchestrator(
            ModelResult(
                data={
                    "sentiment": 0.2,
                    "distress": 0.4,
                    "hope": 0.7,
                    "frustration": 0.1,
                    "complexity": 0.3,
                },
                confidence=0.8,
                execution_time_ms=1.0,
                model_name="emotion",
            )
        )

        vector = await PatternEmbedder(orchestrator).embed(default_profile())

        assert vector[35:40] == pytest.approx([0.6, 0.4, 0.7, 0.1, 0.3])
        assert np.all(vector[40:] == 0.0)
        task, context = orchestrator.execute_task.call_args.args
        assert task.kind is TaskKind.EMOTIONAL
        assert task.input == {"message": "payment assistance intake"}
        assert context.requires_accuracy is True

    @pytest.mark.asyncio
    async def test_model_failure_falls_back(self) -> None:
        orchestrator = _orchestrator(
            error=ModelExecutionError("down", task_kind="emotional", correlation_id="EXEC-1")
        )
        embedder = PatternEmbedder(orchestrator)
        profile = default_profile()

        with capture_logs() as logs:
            vector = await embedder.embed(profile)

        np.testing.assert_array_equal(vector, embedder.fallback_embedding(profile))
        assert [log["event"] for log in logs] == ["embedding_fallback"]
        assert logs[0]["error_type"] == "ModelExecutionError"

    @pytest.mark.asyncio
    async def test_empty_vocabulary_skips_model(self) -> None:
        orchestrator = _orchestrator()
        profile = default_profile()
        profile = replace(
            profile,
            content=replace(profile.content, topic_clusters=(), key_phrases=()),
            contextual=replace(profile.contextual, case_stages=()),
        )

        with capture_logs() as logs:
            vector = await PatternEmbedder(orchestrator).embed(profile)

        orchestrator.execute_task.assert_not_awaited()
        assert np.all(vector[35:] == 0.0)
        assert logs == []

    @pytest.mark.asyncio
    async def test_dimensions_truncate(self) -> None:
        vector = await PatternEmbedder(dimensions=20).embed(default_profile())
        assert vector.shape == (20,)


# ============================================================================
# Similarity
# ============================================================================


class TestSimilarityCalculator:
    def test_cosine(self) -> None:
        assert SimilarityCalculator.cosine(np.array([1.0, 0.0]), np.array([2.0, 0.0])) == 1.0
        assert SimilarityCalculator.cosine(np.array([1.0, 0.0]), np.array([0.0, 3.0])) == 0.0

    def test_cosine_zero_vector(self) -> None:
        assert SimilarityCalculator.cosine(np.zeros(3), np.ones(3)) == 0.0

    def test_cosine_to_many_handles_zero_rows(self) -> None:
        matrix = np.array([[1.0, 0.0], [0.0, 0.0], [1.0, 1.0]])
        scores = SimilarityCalculator.cosine_to_many(matrix, np.array([1.0, 0.0]))
        assert scores == pytest.approx([1.0, 0.0, 1 / np.sqrt(2)])

    def test_euclidean(self) -> None:
        assert SimilarityCalculator.euclidean(np.array([0, 0]), np.array([3, 4])) == 5.0

    def test_jaccard(self) -> None:
        assert SimilarityCalculator.jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert SimilarityCalculator.jaccard([], []) == 0.0


# ============================================================================
# Vector store
# ============================================================================


class TestInMemoryVectorStore:
    @pytest.mark.asyncio
    async def test_query_orders_by_score(self, vector_store: InMemoryVectorStore) -> None:
        await vector_store.upsert(VectorRecord("far", np.array([0.0, 1.0]), {"type": "success"}))
        await vector_store.upsert(VectorRecord("near", np.array([1.0, 0.1]), {"type": "success"}))
        await vector_store.upsert(VectorRecord("mid", np.array([1.0, 1.0]), {"type": "failure"}))

        matches = await vector_store.query(np.array([1.0, 0.0]), top_k=2)

        assert [m.id for m in matches] == ["near", "mid"]
        assert matches[0].score > matches[1].score
        assert matches[1].metadata == {"type": "failure"}

    @pytest.mark.asyncio
    async def test_filter_and_metadata_flag(self, vector_store: InMemoryVectorStore) -> None:
        await vector_store.upsert(VectorRecord("a", np.array([1.0, 0.0]), {"type": "success"}))
        await vector_store.upsert(VectorRecord("b", np.array([1.0, 0.0]), {"type": "failure"}))

        matches = await vector_store.query(
            np.array([1.0, 0.0]),
            top_k=5,
            filter=lambda meta: meta["type"] == "failure",
            include_metadata=False,
        )

        assert [m.id for m in matches] == ["b"]
        assert matches[0].metadata == {}

    @pytest.mark.asyncio
    async def test_empty_and_zero_top_k(self, vector_store: InMemoryVectorStore) -> None:
        assert await vector_store.query(np.array([1.0]), top_k=3) == []
        await vector_store.upsert(VectorRecord("a", np.array([1.0])))
        assert await vector_store.query(np.array([1.0]), top_k=0) == []

    @pytest.mark.asyncio
    async def test_upsert_replaces_and_delete(self, vector_store: InMemoryVectorStore) -> None:
        await vector_store.upsert(VectorRecord("a", np.array([1.0, 0.0]), {"v": 1}))
        await vector_store.upsert(VectorRecord("a", np.array([0.0, 1.0]), {"v": 2}))

        assert len(vector_store) == 1
        record = await vector_store.get("a")
        assert record is not None
        assert record.metadata == {"v": 2}

        await vector_store.delete("a")
        await vector_store.delete("missing")
        assert len(vector_store) == 0
        assert await vector_store.get("a") is None

    @pytest.mark.asyncio
    async def test_stored_metadata_is_copied(self, vector_store: InMemoryVectorStore) -> None:
        metadata = {"type": "success"}
        await vector_store.upsert(VectorRecord("a", np.array([1.0]), metadata))
        metadata["type"] = "tampered"

        matches = await vector_store.query(np.array([1.0]), top_k=1)
        matches[0].metadata["type"] = "also tampered"

        record = await vector_store.get("a")
        assert record is not None
        assert record.metadata == {"type": "success"}
