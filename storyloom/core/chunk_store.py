"""Chunk store: atomic-per-source upserts and book-scoped similarity search."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from storyloom.core.errors import ChunkStoreError
from storyloom.core.logging import get_logger, log_with_context
from storyloom.core.schemas import ChunkRecord, SearchResult, SourceType, chunk_id
from storyloom.core.vector_store import VectorStore

logger = get_logger(__name__)

EmbedFn = Callable[[str], Awaitable[list[float]]]


@dataclass
class _SourceLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # holders plus waiters
    users: int = 0


def _clamp_similarity(distance: float) -> float:
    return max(0.0, min(1.0, 1.0 - distance))


class ChunkStore:
    """Async facade over a synchronous VectorStore backend.

    All chunks of one ``(book_id, source_type, source_id)`` are replaced
    together. Writers to the same source are serialised inside this process;
    concurrent writers in other processes race and the last write wins.
    """

    def __init__(self, vector_store: VectorStore):
        self.vector_store = vector_store
        self._source_locks: dict[tuple[str, str, str], _SourceLock] = {}

    @asynccontextmanager
    async def _lock_for(self, book_id: str, source_type: SourceType, source_id: str):
        """Hold the source's lock; the entry is dropped once nobody holds or awaits it."""
        key = (book_id, source_type.value, source_id)
        entry = self._source_locks.get(key)
        if entry is None:
            entry = self._source_locks[key] = _SourceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._source_locks[key]

    async def upsert_chunks(
        self,
        book_id: str,
        source_type: SourceType | str,
        source_id: str,
        chunks: list[str],
        embed: EmbedFn,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """
        Replace every chunk of one source with freshly embedded ``chunks``.

        All embeddings are computed before anything is deleted, so an
        embedding failure leaves the previous chunks in place.

        Args:
            book_id: Book UUID
            source_type: Entity kind
            source_id: Entity id
            chunks: Chunk texts in order
            embed: Async callable embedding one text
            metadata: Metadata copied onto every chunk

        Returns:
            Number of chunks written

        Raises:
            EmbeddingError: If any chunk could not be embedded (nothing deleted)
            ChunkStoreError: If the delete or insert was rejected
        """
        source_type = SourceType(source_type)

        async with self._lock_for(book_id, source_type, source_id):
            embeddings = [await embed(chunk) for chunk in chunks]

            now = datetime.now(timezone.utc).isoformat()
            records = [
                ChunkRecord(
                    id=chunk_id(source_id, index),
                    book_id=book_id,
                    source_type=source_type,
                    source_id=source_id,
                    chunk_index=index,
                    content=content,
                    metadata=dict(metadata or {}),
                    embedding=embedding,
                    created_at=now,
                    updated_at=now,
                )
                for index, (content, embedding) in enumerate(zip(chunks, embeddings, strict=True))
            ]

            await self._delete(book_id, source_type, source_id)

            if not records:
                return 0

            try:
                await asyncio.to_thread(self.vector_store.upsert, records)
            except Exception as e:
                log_with_context(
                    logger,
                    logging.ERROR,
                    f"Chunk insert failed after delete; source has no chunks until reindexed: {e}",
                    book_id=book_id,
                    source_type=source_type.value,
                    source_id=source_id,
                )
                raise ChunkStoreError(
                    f"Failed to insert chunks for {source_type.value}:{source_id}: {e}",
                    book_id=book_id,
                ) from e

        logger.debug(
            f"Stored {len(records)} chunks for {source_type.value}:{source_id}",
            extra={"book_id": book_id},
        )
        return len(records)

    async def delete_chunks(
        self,
        book_id: str,
        source_type: SourceType | str,
        source_id: str,
    ) -> None:
        """Delete all chunks of one source. Deleting a missing source is a no-op."""
        source_type = SourceType(source_type)
        async with self._lock_for(book_id, source_type, source_id):
            await self._delete(book_id, source_type, source_id)

    async def delete_book_chunks(self, book_id: str) -> int:
        """Delete every chunk of a book.

        Raises:
            ChunkStoreError: If the store rejected the delete
        """
        try:
            deleted = await asyncio.to_thread(self.vector_store.delete, book_id)
        except Exception as e:
            raise ChunkStoreError(f"Failed to clear chunks for book {book_id}: {e}", book_id=book_id) from e
        logger.info(f"Cleared {deleted} chunks", extra={"book_id": book_id})
        return deleted

    async def _delete(self, book_id: str, source_type: SourceType, source_id: str) -> None:
        try:
            await asyncio.to_thread(self.vector_store.delete, book_id, source_type, source_id)
        except Exception as e:
            raise ChunkStoreError(
                f"Failed to delete chunks for {source_type.value}:{source_id}: {e}",
                book_id=book_id,
            ) from e

    async def similarity_search(
        self,
        book_id: str,
        query_vector: list[float],
        limit: int = 20,
    ) -> list[SearchResult]:
        """
        Nearest chunks of one book, most similar first.

        Store failures are logged and yield an empty list.

        Args:
            book_id: Book UUID (results never cross books)
            query_vector: Query embedding
            limit: Maximum number of results

        Returns:
            SearchResult list ordered by descending similarity
        """
        if limit <= 0:
            return []

        try:
            neighbors = await asyncio.to_thread(
                self.vector_store.nearest_neighbors, book_id, query_vector, limit
            )
        except Exception as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Similarity search failed: {e}",
                book_id=book_id,
                event="similarity_search_failed",
            )
            return []

        return [
            SearchResult(
                id=record.id,
                source_type=record.source_type,
                source_id=record.source_id,
                content=record.content,
                metadata=record.metadata,
                similarity=_clamp_similarity(distance),
            )
            for record, distance in neighbors
        ]

    async def count_by_source_type(self, book_id: str) -> dict[str, int]:
        """Stored chunk counts per source type.

        Raises:
            ChunkStoreError: If the store could not be read
        """
        try:
            return await asyncio.to_thread(self.vector_store.count_by_source_type, book_id)
        except Exception as e:
            raise ChunkStoreError(f"Failed to count chunks: {e}", book_id=book_id) from e
