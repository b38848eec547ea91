"""Tests for the chunk store over the in-memory vector store."""

import asyncio

import pytest

from storyloom.core.chunk_store import ChunkStore
from storyloom.core.errors import ChunkStoreError, EmbeddingError
from storyloom.core.schemas import SourceType
from storyloom.core.vector_store import InMemoryVectorStore
from tests.fakes.fake_embeddings import bag_of_words_vector

DIM = 64


async def fake_embed(text: str) -> list[float]:
    return bag_of_words_vector(text, DIM)


class FlakyVectorStore(InMemoryVectorStore):
    """In-memory store whose operations can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_upsert = False
        self.fail_search = False
        self.fail_delete = False
        self.operations: list[str] = []

    def upsert(self, records):
        self.operations.append("upsert")
        if self.fail_upsert:
            raise ConnectionError("insert rejected")
        super().upsert(records)

    def delete(self, book_id, source_type=None, source_id=None):
        self.operations.append("delete")
        if self.fail_delete:
            raise ConnectionError("delete rejected")
        return super().delete(book_id, source_type, source_id)

    def nearest_neighbors(self, book_id, vector, limit):
        if self.fail_search:
            raise ConnectionError("store offline")
        return super().nearest_neighbors(book_id, vector, limit)


@pytest.fixture
def flaky_store():
    return FlakyVectorStore()


@pytest.mark.asyncio
async def test_upsert_writes_deterministic_ids(chunk_store, vector_store):
    count = await chunk_store.upsert_chunks(
        "book-1", SourceType.CHAPTER, "ch-1", ["first part", "second part"], fake_embed, {"title": "One"}
    )

    assert count == 2
    results = vector_store.nearest_neighbors("book-1", bag_of_words_vector("first part", DIM), 10)
    assert {r.id for r, _ in results} == {"ch-1_chunk_0", "ch-1_chunk_1"}
    assert all(r.metadata == {"title": "One"} for r, _ in results)
    assert {r.chunk_index for r, _ in results} == {0, 1}


@pytest.mark.asyncio
async def test_upsert_replaces_previous_chunks(chunk_store, vector_store):
    await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["a one", "a two", "a three"], fake_embed)
    await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["b only"], fake_embed)

    assert vector_store.count_by_source_type("book-1") == {"chapter": 1}
    results = await chunk_store.similarity_search("book-1", bag_of_words_vector("b only", DIM), 10)
    assert [r.content for r in results] == ["b only"]


@pytest.mark.asyncio
async def test_upsert_deletes_before_insert(flaky_store):
    store = ChunkStore(flaky_store)

    await store.upsert_chunks("book-1", "chapter", "ch-1", ["text"], fake_embed)

    assert flaky_store.operations == ["delete", "upsert"]


@pytest.mark.asyncio
async def test_embedding_failure_keeps_previous_chunks(chunk_store, vector_store):
    await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["old text"], fake_embed)

    async def failing_embed(text):
        if "second" in text:
            raise EmbeddingError("provider down")
        return bag_of_words_vector(text, DIM)

    with pytest.raises(EmbeddingError):
        await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["first", "second"], failing_embed)

    results = await chunk_store.similarity_search("book-1", bag_of_words_vector("old text", DIM), 10)
    assert [r.content for r in results] == ["old text"]


@pytest.mark.asyncio
async def test_insert_failure_raises_chunk_store_error(flaky_store):
    store = ChunkStore(flaky_store)
    await store.upsert_chunks("book-1", "chapter", "ch-1", ["old"], fake_embed)
    flaky_store.fail_upsert = True

    with pytest.raises(ChunkStoreError) as exc_info:
        await store.upsert_chunks("book-1", "chapter", "ch-1", ["new"], fake_embed)

    assert vars(exc_info.value) == {"book_id": "book-1"}
    # Delete already happened: source has no chunks until reindexed
    assert flaky_store.count_by_source_type("book-1") == {}


@pytest.mark.asyncio
async def test_delete_failure_raises_chunk_store_error(flaky_store):
    store = ChunkStore(flaky_store)
    flaky_store.fail_delete = True

    with pytest.raises(ChunkStoreError):
        await store.delete_chunks("book-1", "chapter", "ch-1")


@pytest.mark.asyncio
async def test_upsert_empty_chunk_list_clears_source(chunk_store, vector_store):
    await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["text"], fake_embed)

    assert await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", [], fake_embed) == 0
    assert vector_store.count_by_source_type("book-1") == {}


@pytest.mark.asyncio
async def test_delete_chunks_is_idempotent(chunk_store, vector_store):
    await chunk_store.upsert_chunks("book-1", "character", "c-1", ["Alice"], fake_embed)

    await chunk_store.delete_chunks("book-1", "character", "c-1")
    await chunk_store.delete_chunks("book-1", "character", "c-1")

    assert vector_store.count_by_source_type("book-1") == {}


@pytest.mark.asyncio
async def test_similarity_search_ranks_and_clamps(chunk_store):
    await chunk_store.upsert_chunks("book-1", "character", "c-1", ["baker bread oven"], fake_embed)
    await chunk_store.upsert_chunks("book-1", "location", "l-1", ["harbor ships fog"], fake_embed)

    results = await chunk_store.similarity_search("book-1", bag_of_words_vector("baker bread", DIM), 10)

    assert results[0].source_id == "c-1"
    assert results[0].source_type == SourceType.CHARACTER
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)
    assert all(0.0 <= s <= 1.0 for s in similarities)


@pytest.mark.asyncio
async def test_similarity_search_never_crosses_books(chunk_store):
    await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["secret recipe"], fake_embed)
    await chunk_store.upsert_chunks("book-2", "chapter", "ch-2", ["secret recipe"], fake_embed)

    results = await chunk_store.similarity_search("book-2", bag_of_words_vector("secret recipe", DIM), 10)

    assert [r.source_id for r in results] == ["ch-2"]


@pytest.mark.asyncio
async def test_similarity_search_store_failure_returns_empty(flaky_store):
    store = ChunkStore(flaky_store)
    await store.upsert_chunks("book-1", "chapter", "ch-1", ["text"], fake_embed)
    flaky_store.fail_search = True

    assert await store.similarity_search("book-1", bag_of_words_vector("text", DIM), 5) == []


@pytest.mark.asyncio
async def test_concurrent_writers_to_same_source_do_not_interleave(chunk_store, vector_store):
    async def slow_embed(text):
        await asyncio.sleep(0)
        return bag_of_words_vector(text, DIM)

    await asyncio.gather(
        chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["v1 a", "v1 b", "v1 c"], slow_embed),
        chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["v2 a"], slow_embed),
    )

    results = await chunk_store.similarity_search("book-1", bag_of_words_vector("a", DIM), 10)
    versions = {r.content.split()[0] for r in results}
    assert len(versions) == 1
    assert len(results) == (3 if versions == {"v1"} else 1)

    assert chunk_store._source_locks == {}


@pytest.mark.asyncio
async def test_source_locks_released_after_sequential_writes(chunk_store):
    for i in range(50):
        await chunk_store.upsert_chunks("book-1", "character", f"c-{i}", [f"Character {i}"], fake_embed)
        await chunk_store.delete_chunks("book-1", "character", f"c-{i}")

    assert chunk_store._source_locks == {}


@pytest.mark.asyncio
async def test_source_lock_released_after_failed_write(flaky_store):
    store = ChunkStore(flaky_store)
    flaky_store.fail_upsert = True

    with pytest.raises(ChunkStoreError):
        await store.upsert_chunks("book-1", "chapter", "ch-1", ["text"], fake_embed)

    assert store._source_locks == {}


@pytest.mark.asyncio
async def test_count_by_source_type(chunk_store):
    await chunk_store.upsert_chunks("book-1", "chapter", "ch-1", ["a", "b"], fake_embed)
    await chunk_store.upsert_chunks("book-1", "character", "c-1", ["c"], fake_embed)

    assert await chunk_store.count_by_source_type("book-1") == {"chapter": 2, "character": 1}
