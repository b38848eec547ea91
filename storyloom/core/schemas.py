"""Pydantic schemas for book chunks, search results and index reports."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    """Kinds of book entities that get embedded."""

    CHAPTER = "chapter"
    BRAINSTORMING = "brainstorming"
    CHARACTER = "character"
    LOCATION = "location"
    PLOT_POINT = "plotPoint"
    TIMELINE = "timeline"
    SCENE_CARD = "sceneCard"
    RESEARCH = "research"


def chunk_id(source_id: str, chunk_index: int) -> str:
    """Deterministic chunk id; re-indexing a source overwrites its chunks."""
    return f"{source_id}_chunk_{chunk_index}"


class ChunkRecord(BaseModel):
    """One stored chunk, matching the book_embedding_chunks row shape."""

    id: str = Field(..., description="Chunk id, '{source_id}_chunk_{chunk_index}'")
    book_id: str = Field(..., description="Owning book id")
    source_type: SourceType = Field(..., description="Entity kind the chunk came from")
    source_id: str = Field(..., description="Entity id the chunk came from")
    chunk_index: int = Field(..., ge=0, description="0-based position within the source")
    content: str = Field(..., description="Chunk text")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Per-type metadata")
    embedding: list[float] | None = Field(None, description="Embedding vector")
    created_at: str | None = Field(None, description="Creation timestamp")
    updated_at: str | None = Field(None, description="Last update timestamp")

    def to_row(self) -> dict[str, Any]:
        """Row payload for the chunk table."""
        row = self.model_dump(mode="json")
        return {key: value for key, value in row.items() if value is not None}


class SearchResult(BaseModel):
    """A ranked chunk returned by similarity search."""

    id: str
    source_type: SourceType
    source_id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity: float = Field(..., ge=0.0, le=1.0, description="1 - cosine distance, clamped")


class SourceTypeCounts(BaseModel):
    """Per-source-type tallies inside an IndexReport."""

    indexed: int = 0
    chunks: int = 0
    skipped: int = 0
    failed: int = 0
    # indexed sources embedded by the default provider after the alternate failed
    fallbacks: int = 0


class IndexReport(BaseModel):
    """Outcome of a full book reindex."""

    book_id: str
    by_source_type: dict[str, SourceTypeCounts] = Field(default_factory=dict)
    failed_sources: list[str] = Field(
        default_factory=list, description="'{source_type}:{source_id}' of failed entities"
    )

    def counts(self, source_type: SourceType | str) -> SourceTypeCounts:
        key = SourceType(source_type).value
        if key not in self.by_source_type:
            self.by_source_type[key] = SourceTypeCounts()
        return self.by_source_type[key]

    @property
    def total_indexed(self) -> int:
        return sum(c.indexed for c in self.by_source_type.values())

    @property
    def total_chunks(self) -> int:
        return sum(c.chunks for c in self.by_source_type.values())

    @property
    def total_failed(self) -> int:
        return sum(c.failed for c in self.by_source_type.values())

    @property
    def total_fallbacks(self) -> int:
        return sum(c.fallbacks for c in self.by_source_type.values())
