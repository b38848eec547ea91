"""Vector store interface and an in-memory numpy backend.

Backends are synchronous like the Supabase client; async callers run them
through ``asyncio.to_thread``. Every operation is scoped by ``book_id``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import Counter

import numpy as np

from storyloom.core.schemas import ChunkRecord, SourceType


class VectorStore(ABC):
    """Storage for embedded chunks with nearest-neighbour lookup."""

    @abstractmethod
    def upsert(self, records: list[ChunkRecord]) -> None:
        """Insert records, replacing any with the same id."""

    @abstractmethod
    def delete(
        self,
        book_id: str,
        source_type: SourceType | str | None = None,
        source_id: str | None = None,
    ) -> int:
        """Delete chunks of a book, optionally narrowed to one type or one source.

        Returns:
            Number of chunks deleted (0 if nothing matched)
        """

    @abstractmethod
    def nearest_neighbors(
        self,
        book_id: str,
        vector: list[float],
        limit: int,
    ) -> list[tuple[ChunkRecord, float]]:
        """Closest chunks of ``book_id`` by cosine distance, ascending.

        Chunks without an embedding are never returned. Equal distances keep
        insertion order.
        """

    @abstractmethod
    def count_by_source_type(self, book_id: str) -> dict[str, int]:
        """Number of stored chunks per source type for one book."""


def cosine_distances(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Cosine distance of every row of ``matrix`` to ``vector``.

    A zero-norm row or query has distance 1.0 (similarity 0).
    """
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    dots = matrix @ vector
    safe_norms = np.where(norms > 0, norms, 1.0)
    similarities = np.where(norms > 0, dots / safe_norms, 0.0)
    return 1.0 - similarities


class InMemoryVectorStore(VectorStore):
    """Process-local store for tests and local development."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], ChunkRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, records: list[ChunkRecord]) -> None:
        with self._lock:
            for record in records:
                key = (record.book_id, record.id)
                # Replacing moves the record to the end of insertion order
                self._records.pop(key, None)
                self._records[key] = record.model_copy(deep=True)

    def delete(
        self,
        book_id: str,
        source_type: SourceType | str | None = None,
        source_id: str | None = None,
    ) -> int:
        wanted_type = SourceType(source_type) if source_type is not None else None
        with self._lock:
            doomed = [
                key
                for key, record in self._records.items()
                if record.book_id == book_id
                and (wanted_type is None or record.source_type == wanted_type)
                and (source_id is None or record.source_id == source_id)
            ]
            for key in doomed:
                del self._records[key]
        return len(doomed)

    def nearest_neighbors(
        self,
        book_id: str,
        vector: list[float],
        limit: int,
    ) -> list[tuple[ChunkRecord, float]]:
        if limit <= 0:
            return []

        with self._lock:
            candidates = [
                record
                for record in self._records.values()
                if record.book_id == book_id and record.embedding
            ]

        if not candidates:
            return []

        matrix = np.asarray([record.embedding for record in candidates], dtype=float)
        query = np.asarray(vector, dtype=float)
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match stored dimension {matrix.shape[1]}"
            )

        distances = cosine_distances(matrix, query)
        order = np.argsort(distances, kind="stable")[:limit]
        return [(candidates[i].model_copy(deep=True), float(distances[i])) for i in order]

    def count_by_source_type(self, book_id: str) -> dict[str, int]:
        with self._lock:
            counts = Counter(
                record.source_type.value
                for record in self._records.values()
                if record.book_id == book_id
            )
        return dict(counts)

    def __len__(self) -> int:
        return len(self._records)
