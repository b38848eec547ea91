"""Supabase/pgvector backend for the book chunk store.

Chunks live in ``book_embedding_chunks``; nearest neighbours come from the
``match_book_chunks`` RPC (see docs/vector_store.md for the SQL contract).
"""

from typing import Any

from supabase import Client

from storyloom.core.logging import get_logger
from storyloom.core.schemas import ChunkRecord, SourceType
from storyloom.core.vector_store import VectorStore
from storyloom.db.supabase_client import get_supabase

logger = get_logger(__name__)

CHUNK_TABLE = "book_embedding_chunks"
MATCH_RPC = "match_book_chunks"


class SupabaseVectorStore(VectorStore):
    """VectorStore over the book_embedding_chunks table."""

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def upsert(self, records: list[ChunkRecord]) -> None:
        """
        Insert chunk rows, replacing rows with the same id.

        Args:
            records: Chunks to write

        Raises:
            Exception: If the insert fails
        """
        if not records:
            return

        rows = [record.to_row() for record in records]
        try:
            self.client.table(CHUNK_TABLE).upsert(rows, on_conflict="id").execute()
        except Exception as e:
            logger.error(
                f"Failed to upsert {len(rows)} chunks: {e}",
                extra={"book_id": records[0].book_id},
            )
            raise

    def delete(
        self,
        book_id: str,
        source_type: SourceType | str | None = None,
        source_id: str | None = None,
    ) -> int:
        query = self.client.table(CHUNK_TABLE).delete().eq("book_id", book_id)
        if source_type is not None:
            query = query.eq("source_type", SourceType(source_type).value)
        if source_id is not None:
            query = query.eq("source_id", source_id)

        try:
            response = query.execute()
        except Exception as e:
            logger.error(f"Failed to delete chunks: {e}", extra={"book_id": book_id})
            raise
        return len(response.data or [])

    def nearest_neighbors(
        self,
        book_id: str,
        vector: list[float],
        limit: int,
    ) -> list[tuple[ChunkRecord, float]]:
        """
        Call match_book_chunks and map rows back to (chunk, distance) pairs.

        Args:
            book_id: Book UUID the RPC filters on
            vector: Query embedding
            limit: match_count

        Returns:
            Pairs ordered by ascending cosine distance

        Raises:
            Exception: If the RPC fails
        """
        response = self.client.rpc(
            MATCH_RPC,
            {
                "query_embedding": vector,
                "match_count": limit,
                "filter_book_id": book_id,
            },
        ).execute()

        rows: list[dict[str, Any]] = response.data or []
        logger.debug(f"{MATCH_RPC} returned {len(rows)} rows", extra={"book_id": book_id})

        results = []
        for row in rows:
            record = ChunkRecord(
                id=row["id"],
                book_id=row.get("book_id") or book_id,
                source_type=row["source_type"],
                source_id=row["source_id"],
                chunk_index=row.get("chunk_index", 0),
                content=row.get("content") or "",
                metadata=row.get("metadata") or {},
            )
            results.append((record, 1.0 - float(row.get("similarity") or 0.0)))
        return results

    def count_by_source_type(self, book_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for source_type in SourceType:
            response = (
                self.client.table(CHUNK_TABLE)
                .select("id", count="exact")
                .eq("book_id", book_id)
                .eq("source_type", source_type.value)
                .limit(1)
                .execute()
            )
            if response.count:
                counts[source_type.value] = response.count
        return counts
