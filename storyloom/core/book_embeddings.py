"""Unified retrieval over all planning content of a book.

Every entity (chapter, character, location, ...) is rendered to text,
chunked, embedded and stored as chunks tagged with its source type, so one
similarity search covers the whole book.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from storyloom.core.chunk_store import ChunkStore
from storyloom.core.chunking import chunk_text
from storyloom.core.config import Settings, get_settings
from storyloom.core.embeddings import (
    EmbeddingAdapter,
    EmbeddingConfig,
    EmbeddingFallbackEvent,
    get_default_adapter,
    resolve_embedding_config,
)
from storyloom.core.errors import ProviderNotConfiguredError
from storyloom.core.logging import get_logger, log_with_context
from storyloom.core.schemas import IndexReport, SearchResult, SourceType
from storyloom.core.source_text import build_source_metadata, build_source_text
from storyloom.db.book_content import BookContentSource

logger = get_logger(__name__)


class BookEmbeddingService:
    """Indexes book entities into the chunk store and searches them."""

    def __init__(
        self,
        source: BookContentSource,
        chunk_store: ChunkStore,
        adapter: EmbeddingAdapter,
        settings: Settings | None = None,
    ):
        self.source = source
        self.chunk_store = chunk_store
        self.adapter = adapter
        self.settings = settings or get_settings()

    async def resolve_config(self, book_id: str) -> EmbeddingConfig | None:
        """Resolve the book owner's alternate embedding config, if any.

        A failed preference lookup is logged and treated as "no alternate".
        """
        try:
            preferences = await asyncio.to_thread(self.source.get_embedding_preferences, book_id)
        except Exception as e:
            logger.warning(
                f"Could not load embedding preferences, using default provider: {e}",
                extra={"book_id": book_id},
            )
            return None
        return resolve_embedding_config(preferences, self.settings)

    def _embed_fn(
        self,
        book_id: str,
        config: EmbeddingConfig | None,
        on_fallback: Callable[[EmbeddingFallbackEvent], None] | None = None,
    ):
        async def embed(text: str) -> list[float]:
            return await self.adapter.embed(text, config, book_id=book_id, on_fallback=on_fallback)

        return embed

    async def _write_source(
        self,
        book_id: str,
        source_type: SourceType,
        source_id: str,
        row: dict[str, Any],
        text: str,
        config: EmbeddingConfig | None,
        on_fallback: Callable[[EmbeddingFallbackEvent], None] | None = None,
    ) -> int:
        chunks = chunk_text(text, self.settings.CHUNK_SIZE, self.settings.CHUNK_OVERLAP)
        return await self.chunk_store.upsert_chunks(
            book_id,
            source_type,
            source_id,
            chunks,
            embed=self._embed_fn(book_id, config, on_fallback),
            metadata=build_source_metadata(source_type, row),
        )

    async def reindex_book(
        self,
        book_id: str,
        config: EmbeddingConfig | None = None,
    ) -> IndexReport:
        """
        Rebuild every chunk of a book from its current entities.

        Clears the book, then embeds all entities of every source type with
        bounded concurrency. One entity failing is logged and counted; the
        rest still get indexed. Entities that were embedded by the default
        provider after the alternate one failed are counted as fallbacks.

        Args:
            book_id: Book UUID
            config: Alternate embedding config (resolved from the owner if None)

        Returns:
            IndexReport with per-source-type counts

        Raises:
            ProviderNotConfiguredError: If no embedding provider is available
            ChunkStoreError: If the book could not be cleared
        """
        if config is None:
            config = await self.resolve_config(book_id)
        if not self.adapter.can_embed(config):
            raise ProviderNotConfiguredError()

        report = IndexReport(book_id=book_id)
        await self.chunk_store.delete_book_chunks(book_id)

        source_types = list(SourceType)
        rows_by_type = await asyncio.gather(
            *(
                asyncio.to_thread(self.source.list_source_rows, book_id, source_type)
                for source_type in source_types
            )
        )

        semaphore = asyncio.Semaphore(max(1, self.settings.REINDEX_CONCURRENCY))

        async def _index(source_type: SourceType, row: dict[str, Any]) -> None:
            counts = report.counts(source_type)
            source_id = row.get("id")
            text = build_source_text(source_type, row)
            if not source_id or not text:
                counts.skipped += 1
                return

            source_id = str(source_id)
            fallbacks: list[EmbeddingFallbackEvent] = []
            async with semaphore:
                try:
                    written = await self._write_source(
                        book_id, source_type, source_id, row, text, config, fallbacks.append
                    )
                except Exception as e:
                    counts.failed += 1
                    report.failed_sources.append(f"{source_type.value}:{source_id}")
                    log_with_context(
                        logger,
                        logging.ERROR,
                        f"Failed to index source: {e}",
                        book_id=book_id,
                        source_type=source_type.value,
                        source_id=source_id,
                    )
                    return

            counts.indexed += 1
            counts.chunks += written
            if fallbacks:
                counts.fallbacks += 1

        await asyncio.gather(
            *(
                _index(source_type, row)
                for source_type, rows in zip(source_types, rows_by_type, strict=True)
                for row in rows
            )
        )

        log_with_context(
            logger,
            logging.INFO,
            f"Reindexed book: {report.total_indexed} sources, {report.total_chunks} chunks, "
            f"{report.total_failed} failed",
            book_id=book_id,
            event="book_reindexed",
        )
        if report.total_fallbacks:
            log_with_context(
                logger,
                logging.WARNING,
                f"{report.total_fallbacks} sources were embedded by the default provider; "
                f"the book's chunks mix embedding models",
                book_id=book_id,
                event="book_reindexed_mixed_models",
            )
        return report

    async def search(
        self,
        book_id: str,
        query: str,
        limit: int | None = None,
        config: EmbeddingConfig | None = None,
    ) -> list[SearchResult]:
        """
        Semantic search across all source types of one book.

        Args:
            book_id: Book UUID
            query: Natural-language query
            limit: Max results (defaults to SEARCH_DEFAULT_LIMIT)
            config: Alternate embedding config (resolved from the owner if None)

        Returns:
            Results ordered by descending similarity ([] if the store fails)

        Raises:
            ValueError: If the query is empty
            EmbeddingError: If the query could not be embedded
        """
        if not query or not query.strip():
            raise ValueError("Search query must not be empty")

        if limit is None:
            limit = self.settings.SEARCH_DEFAULT_LIMIT
        if config is None:
            config = await self.resolve_config(book_id)

        query_vector = await self.adapter.embed(query, config, book_id=book_id)
        results = await self.chunk_store.similarity_search(book_id, query_vector, limit)
        logger.info(f"Found {len(results)} relevant chunks", extra={"book_id": book_id})
        return results

    async def update_source_embeddings(
        self,
        book_id: str,
        source_type: SourceType | str,
        entity: dict[str, Any],
        config: EmbeddingConfig | None = None,
    ) -> int:
        """
        Re-embed one entity after it was created or edited.

        Args:
            book_id: Book UUID
            source_type: Entity kind
            entity: Current entity row (must include ``id``)
            config: Alternate embedding config (resolved from the owner if None)

        Returns:
            Number of chunks now stored for the entity (0 if it has no text)

        Raises:
            ValueError: If the entity has no id
            EmbeddingError: If embedding failed (previous chunks are kept)
            ChunkStoreError: If the store rejected the write
        """
        source_type = SourceType(source_type)
        source_id = entity.get("id")
        if not source_id:
            raise ValueError(f"{source_type.value} entity has no id")
        source_id = str(source_id)

        text = build_source_text(source_type, entity)
        if not text:
            await self.chunk_store.delete_chunks(book_id, source_type, source_id)
            logger.info(
                f"No content to embed for {source_type.value}:{source_id}",
                extra={"book_id": book_id},
            )
            return 0

        if config is None:
            config = await self.resolve_config(book_id)
        return await self._write_source(book_id, source_type, source_id, entity, text, config)

    async def delete_source_embeddings(
        self,
        book_id: str,
        source_type: SourceType | str,
        source_id: str,
    ) -> None:
        """Drop all chunks of one entity (called when the entity is deleted)."""
        await self.chunk_store.delete_chunks(book_id, source_type, str(source_id))

    async def index_stats(self, book_id: str) -> dict[str, int]:
        """Stored chunk counts per source type for one book."""
        return await self.chunk_store.count_by_source_type(book_id)


def get_book_embedding_service(settings: Settings | None = None) -> BookEmbeddingService:
    """Wire the service against Supabase and the default embedding adapter."""
    from storyloom.db.book_chunks import SupabaseVectorStore
    from storyloom.db.book_content import SupabaseBookContentSource

    settings = settings or get_settings()
    return BookEmbeddingService(
        source=SupabaseBookContentSource(),
        chunk_store=ChunkStore(SupabaseVectorStore()),
        adapter=get_default_adapter(settings),
        settings=settings,
    )
