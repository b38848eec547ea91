"""Tests for the in-memory vector store."""

import numpy as np
import pytest

from storyloom.core.schemas import ChunkRecord, SourceType
from storyloom.core.vector_store import InMemoryVectorStore, cosine_distances


def record(book_id, source_id, index, embedding, source_type=SourceType.CHAPTER):
    return ChunkRecord(
        id=f"{source_id}_chunk_{index}",
        book_id=book_id,
        source_type=source_type,
        source_id=source_id,
        chunk_index=index,
        content=f"{source_id} part {index}",
        embedding=embedding,
    )


def test_cosine_distances_handles_zero_vectors():
    matrix = np.array([[1.0, 0.0], [0.0, 0.0], [-1.0, 0.0]])

    distances = cosine_distances(matrix, np.array([1.0, 0.0]))

    assert distances.tolist() == pytest.approx([0.0, 1.0, 2.0])


def test_nearest_neighbors_orders_by_distance():
    store = InMemoryVectorStore()
    store.upsert(
        [
            record("book-1", "far", 0, [0.0, 1.0]),
            record("book-1", "near", 0, [1.0, 0.1]),
            record("book-1", "exact", 0, [2.0, 0.0]),
        ]
    )

    results = store.nearest_neighbors("book-1", [1.0, 0.0], limit=3)

    assert [r.source_id for r, _ in results] == ["exact", "near", "far"]
    assert results[0][1] == pytest.approx(0.0)


def test_nearest_neighbors_ties_keep_insertion_order():
    store = InMemoryVectorStore()
    store.upsert([record("book-1", f"s{i}", 0, [1.0, 1.0]) for i in range(5)])

    results = store.nearest_neighbors("book-1", [1.0, 1.0], limit=5)

    assert [r.source_id for r, _ in results] == ["s0", "s1", "s2", "s3", "s4"]


def test_nearest_neighbors_scoped_to_book_and_skips_missing_embeddings():
    store = InMemoryVectorStore()
    store.upsert(
        [
            record("book-1", "mine", 0, [1.0, 0.0]),
            record("book-1", "pending", 0, None),
            record("book-2", "theirs", 0, [1.0, 0.0]),
        ]
    )

    results = store.nearest_neighbors("book-1", [1.0, 0.0], limit=10)

    assert [r.source_id for r, _ in results] == ["mine"]


def test_nearest_neighbors_limit_and_empty():
    store = InMemoryVectorStore()
    assert store.nearest_neighbors("book-1", [1.0], limit=5) == []

    store.upsert([record("book-1", f"s{i}", 0, [1.0, float(i)]) for i in range(4)])
    assert len(store.nearest_neighbors("book-1", [1.0, 0.0], limit=2)) == 2
    assert store.nearest_neighbors("book-1", [1.0, 0.0], limit=0) == []


def test_nearest_neighbors_dimension_mismatch_raises():
    store = InMemoryVectorStore()
    store.upsert([record("book-1", "a", 0, [1.0, 0.0])])

    with pytest.raises(ValueError, match="dimension"):
        store.nearest_neighbors("book-1", [1.0, 0.0, 0.0], limit=1)


def test_upsert_same_id_replaces():
    store = InMemoryVectorStore()
    store.upsert([record("book-1", "a", 0, [1.0, 0.0])])
    store.upsert([record("book-1", "a", 0, [0.0, 1.0])])

    assert len(store) == 1
    (stored, distance), = store.nearest_neighbors("book-1", [0.0, 1.0], limit=1)
    assert distance == pytest.approx(0.0)


def test_delete_narrowing():
    store = InMemoryVectorStore()
    store.upsert(
        [
            record("book-1", "ch", 0, [1.0]),
            record("book-1", "ch", 1, [1.0]),
            record("book-1", "alice", 0, [1.0], SourceType.CHARACTER),
            record("book-2", "ch", 0, [1.0]),
        ]
    )

    assert store.delete("book-1", SourceType.CHAPTER, "ch") == 2
    assert store.delete("book-1", SourceType.CHAPTER, "ch") == 0
    assert store.count_by_source_type("book-1") == {"character": 1}
    assert store.delete("book-1") == 1
    assert store.count_by_source_type("book-2") == {"chapter": 1}
