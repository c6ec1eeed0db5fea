"""Vector storage and similarity for pattern embeddings.

VectorStore is the contract the recognition engine depends on; the in-memory
implementation does a linear scan with numpy and can be replaced by an
approximate-nearest-neighbor index without changing callers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import numpy as np

MetadataFilter = Callable[[dict[str, Any]], bool]


@dataclass(frozen=True)
class VectorRecord:
    id: str
    vector: np.ndarray
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any]


class VectorStore(Protocol):
    """Keyed vector index with top-K cosine query."""

    async def upsert(self, record: VectorRecord) -> None: ...

    async def query(
        self,
        vector: np.ndarray,
        top_k: int,
        filter: MetadataFilter | None = None,
        include_metadata: bool = True,
    ) -> list[VectorMatch]: ...

    async def delete(self, id: str) -> None: ...


class SimilarityCalculator:
    """Similarity measures over embeddings and categorical sets."""

    @staticmethod
    def cosine(a: np.ndarray, b: np.ndarray) -> float:
        """Cosine similarity; 0.0 when either vector has zero magnitude."""
        norm = float(np.linalg.norm(a) * np.linalg.norm(b))
        if norm == 0.0:
            return 0.0
        return float(np.dot(a, b) / norm)

    @staticmethod
    def cosine_to_many(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        """Cosine similarity of each row of ``matrix`` to ``vector``."""
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
        dots = matrix @ vector
        return np.divide(dots, norms, out=np.zeros_like(dots, dtype=float), where=norms > 0)

    @staticmethod
    def euclidean(a: np.ndarray, b: np.ndarray) -> float:
        return float(np.linalg.norm(np.asarray(a) - np.asarray(b)))

    @staticmethod
    def jaccard(a: Iterable[Any], b: Iterable[Any]) -> float:
        set_a, set_b = set(a), set(b)
        union = set_a | set_b
        if not union:
            return 0.0
        return len(set_a & set_b) / len(union)


class InMemoryVectorStore:
    """Dict-backed VectorStore.

    Writes are serialized by a lock and replace the whole record, so a query
    never sees a half-written entry.
    """

    def __init__(self) -> None:
        self._records: dict[str, VectorRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def upsert(self, record: VectorRecord) -> None:
        vector = np.asarray(record.vector, dtype=float)
        async with self._lock:
            self._records[record.id] = VectorRecord(record.id, vector, dict(record.metadata))

    async def query(
        self,
        vector: np.ndarray,
        top_k: int,
        filter: MetadataFilter | None = None,
        include_metadata: bool = True,
    ) -> list[VectorMatch]:
        candidates = [
            r for r in list(self._records.values()) if filter is None or filter(r.metadata)
        ]
        if not candidates or top_k <= 0:
            return []

        matrix = np.vstack([r.vector for r in candidates])
        scores = SimilarityCalculator.cosine_to_many(matrix, np.asarray(vector, dtype=float))
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(
                id=candidates[i].id,
                score=float(scores[i]),
                metadata=dict(candidates[i].metadata) if include_metadata else {},
            )
            for i in order
        ]

    async def delete(self, id: str) -> None:
        async with self._lock:
            self._records.pop(id, None)

    async def get(self, id: str) -> VectorRecord | None:
        return self._records.get(id)
