"""Read access to book planning data: entity rows, planning projections, owner preferences."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from supabase import Client

from storyloom.core.logging import get_logger
from storyloom.core.schemas import SourceType
from storyloom.core.source_text import get_source_spec
from storyloom.db.supabase_client import get_supabase

logger = get_logger(__name__)


class BookContentSource(ABC):
    """Where the engine reads a book's entities from.

    Implementations are synchronous; async callers use ``asyncio.to_thread``.
    """

    @abstractmethod
    def list_source_rows(self, book_id: str, source_type: SourceType | str) -> list[dict[str, Any]]:
        """Full rows of one entity kind, with the columns the text renderer reads."""

    @abstractmethod
    def list_planning_rows(self, book_id: str, category: SourceType | str) -> list[dict[str, Any]]:
        """Small projections of one planning category, in display order."""

    @abstractmethod
    def get_embedding_preferences(self, book_id: str) -> dict[str, Any] | None:
        """The book owner's stored embedding preferences, or None."""

    @abstractmethod
    def list_book_ids(self) -> list[str]:
        """Every book id (bulk backfill)."""


@dataclass(frozen=True)
class PlanningQuery:
    """Projection and order used to fetch one planning category."""

    table: str
    columns: str
    order_by: str | None = None
    desc: bool = False


# Planning projections per category, in the order the rows are displayed
PLANNING_QUERIES: dict[SourceType, PlanningQuery] = {
    SourceType.PLOT_POINT: PlanningQuery(
        "plot_points", "id, title, description, order_index, updated_at", "order_index"
    ),
    SourceType.TIMELINE: PlanningQuery(
        "timeline_events", "id, title, description, event_date, updated_at", "event_date"
    ),
    SourceType.CHARACTER: PlanningQuery(
        "characters", "id, name, description, role, updated_at"
    ),
    SourceType.LOCATION: PlanningQuery("locations", "id, name, description, updated_at"),
    SourceType.BRAINSTORMING: PlanningQuery(
        "brainstorming_notes", "id, title, content, tags, updated_at", "created_at", desc=True
    ),
    SourceType.SCENE_CARD: PlanningQuery(
        "scene_cards", "id, title, description, updated_at", "created_at", desc=True
    ),
    SourceType.RESEARCH: PlanningQuery(
        "research_results", "id, title, summary, tags, updated_at", "created_at", desc=True
    ),
    SourceType.CHAPTER: PlanningQuery(
        "chapters", "id, title, description, order_index, updated_at", "order_index"
    ),
}


class SupabaseBookContentSource(BookContentSource):
    """BookContentSource backed by the application's Supabase tables."""

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def list_source_rows(self, book_id: str, source_type: SourceType | str) -> list[dict[str, Any]]:
        """
        Fetch all entities of one kind for a book.

        Args:
            book_id: Book UUID
            source_type: Entity kind

        Returns:
            Rows with the columns of the kind's text spec

        Raises:
            Exception: If the query fails
        """
        spec = get_source_spec(source_type)
        try:
            response = (
                self.client.table(spec.table)
                .select(", ".join(spec.columns))
                .eq("book_id", book_id)
                .execute()
            )
            rows = response.data or []
            logger.debug(f"Fetched {len(rows)} {spec.table} rows", extra={"book_id": book_id})
            return rows
        except Exception as e:
            logger.error(f"Failed to list {spec.table} rows: {e}", extra={"book_id": book_id})
            raise

    def list_planning_rows(self, book_id: str, category: SourceType | str) -> list[dict[str, Any]]:
        query_spec = PLANNING_QUERIES[SourceType(category)]
        try:
            query = (
                self.client.table(query_spec.table)
                .select(query_spec.columns)
                .eq("book_id", book_id)
            )
            if query_spec.order_by:
                query = query.order(query_spec.order_by, desc=query_spec.desc)
            response = query.execute()
            return response.data or []
        except Exception as e:
            logger.error(
                f"Failed to load planning rows from {query_spec.table}: {e}",
                extra={"book_id": book_id},
            )
            raise

    def get_embedding_preferences(self, book_id: str) -> dict[str, Any] | None:
        """
        Look up the book owner's OpenRouter embedding preferences.

        Args:
            book_id: Book UUID

        Returns:
            Dict with openrouter_api_key and openrouter_embedding_model, or None
            if the book or its owner does not exist
        """
        book = (
            self.client.table("books").select("user_id").eq("id", book_id).limit(1).execute()
        )
        if not book.data or not book.data[0].get("user_id"):
            return None

        user = (
            self.client.table("users")
            .select("openrouter_api_key, openrouter_embedding_model")
            .eq("id", book.data[0]["user_id"])
            .limit(1)
            .execute()
        )
        return user.data[0] if user.data else None

    def list_book_ids(self) -> list[str]:
        response = self.client.table("books").select("id").order("created_at").execute()
        return [row["id"] for row in response.data or []]
