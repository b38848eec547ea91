"""Per-source-type text representations for book embeddings.

Each book entity is rendered to one text before chunking. The rendering is
driven by ``SOURCE_TEXT_SPECS``: a heading, an ordered list of labelled
fields, and a metadata builder. Empty fields are left out and the parts are
joined by a blank line. Adding a new source type is a new table entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from storyloom.core.schemas import SourceType


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _chapter_number(row: dict) -> int | None:
    order_index = row.get("order_index")
    return order_index + 1 if isinstance(order_index, int) else None


def _time_range(row: dict) -> str | None:
    start, end = row.get("start_time"), row.get("end_time")
    if not _present(start) and not _present(end):
        return None
    return f"{start or '?'} - {end or '?'}"


@dataclass(frozen=True)
class SourceTextSpec:
    """How one source type is fetched, rendered and described."""

    table: str
    heading: Callable[[dict], str | None]
    # (label, value getter); a None label emits the bare value
    fields: tuple[tuple[str | None, Callable[[dict], Any]], ...]
    metadata: Callable[[dict], dict[str, Any]]
    # Rows without this field are not embedded at all
    requires: str | None = None
    columns: tuple[str, ...] = field(default_factory=tuple)


def _get(name: str) -> Callable[[dict], Any]:
    return lambda row: row.get(name)


def _titled(prefix: str, key: str = "title") -> Callable[[dict], str | None]:
    return lambda row: f"{prefix}: {row[key]}" if _present(row.get(key)) else None


SOURCE_TEXT_SPECS: dict[SourceType, SourceTextSpec] = {
    SourceType.CHAPTER: SourceTextSpec(
        table="chapters",
        heading=lambda row: f"Chapter {_chapter_number(row) or '?'}: {row.get('title') or 'Untitled'}",
        fields=((None, _get("content")),),
        metadata=lambda row: {
            "title": row.get("title"),
            "orderIndex": row.get("order_index"),
            "chapterNumber": _chapter_number(row),
        },
        requires="content",
        columns=("id", "title", "content", "order_index", "updated_at"),
    ),
    SourceType.BRAINSTORMING: SourceTextSpec(
        table="brainstorming_notes",
        heading=_titled("Brainstorm"),
        fields=((None, _get("content")),),
        metadata=lambda row: {"title": row.get("title"), "tags": row.get("tags") or []},
        columns=("id", "title", "content", "tags", "updated_at"),
    ),
    SourceType.CHARACTER: SourceTextSpec(
        table="characters",
        heading=_titled("Character", "name"),
        fields=(
            ("Role", _get("role")),
            ("Description", _get("description")),
            ("Appearance", _get("appearance")),
            ("Personality", _get("personality")),
            ("Backstory", _get("backstory")),
        ),
        metadata=lambda row: {"name": row.get("name"), "role": row.get("role")},
        columns=(
            "id", "name", "role", "description", "appearance", "personality", "backstory",
            "updated_at",
        ),
    ),
    SourceType.LOCATION: SourceTextSpec(
        table="locations",
        heading=_titled("Location", "name"),
        fields=(
            ("Description", _get("description")),
            ("Geography", _get("geography")),
            ("Culture", _get("culture")),
        ),
        metadata=lambda row: {"name": row.get("name")},
        columns=("id", "name", "description", "geography", "culture", "updated_at"),
    ),
    SourceType.PLOT_POINT: SourceTextSpec(
        table="plot_points",
        heading=_titled("Plot Point"),
        fields=(
            ("Type", _get("type")),
            (None, _get("description")),
        ),
        metadata=lambda row: {
            "title": row.get("title"),
            "type": row.get("type"),
            "orderIndex": row.get("order_index"),
        },
        columns=("id", "title", "type", "description", "order_index", "updated_at"),
    ),
    SourceType.TIMELINE: SourceTextSpec(
        table="timeline_events",
        heading=_titled("Timeline Event"),
        fields=(
            ("Date", _get("event_date")),
            ("Time", _time_range),
            (None, _get("description")),
        ),
        metadata=lambda row: {
            "title": row.get("title"),
            "eventDate": row.get("event_date"),
            "startTime": row.get("start_time"),
            "endTime": row.get("end_time"),
        },
        columns=(
            "id", "title", "description", "event_date", "start_time", "end_time", "updated_at",
        ),
    ),
    SourceType.SCENE_CARD: SourceTextSpec(
        table="scene_cards",
        heading=_titled("Scene"),
        fields=(
            ("Description", _get("description")),
            ("Purpose", _get("purpose")),
            ("Conflict", _get("conflict")),
            ("Outcome", _get("outcome")),
        ),
        metadata=lambda row: {"title": row.get("title")},
        columns=(
            "id", "title", "description", "purpose", "conflict", "outcome", "updated_at",
        ),
    ),
    SourceType.RESEARCH: SourceTextSpec(
        table="research_results",
        heading=_titled("Research"),
        fields=(
            (None, _get("summary")),
            (None, _get("content")),
        ),
        metadata=lambda row: {"title": row.get("title")},
        columns=("id", "title", "summary", "content", "updated_at"),
    ),
}


def get_source_spec(source_type: SourceType | str) -> SourceTextSpec:
    """
    Look up the rendering spec for a source type.

    Raises:
        ValueError: If the source type is unknown
    """
    return SOURCE_TEXT_SPECS[SourceType(source_type)]


def build_source_text(source_type: SourceType | str, row: dict[str, Any]) -> str:
    """
    Render one entity row to the text that gets chunked and embedded.

    Args:
        source_type: Entity kind
        row: Entity row (snake_case columns)

    Returns:
        Blank-line separated representation, or "" if there is nothing to embed
    """
    spec = get_source_spec(source_type)
    if spec.requires and not _present(row.get(spec.requires)):
        return ""

    parts: list[str] = []
    heading = spec.heading(row)
    if _present(heading):
        parts.append(heading)

    for label, getter in spec.fields:
        value = getter(row)
        if not _present(value):
            continue
        text = str(value).strip()
        parts.append(f"{label}: {text}" if label else text)

    return "\n\n".join(parts)


def build_source_metadata(source_type: SourceType | str, row: dict[str, Any]) -> dict[str, Any]:
    """Per-type metadata stored alongside every chunk of the entity."""
    return get_source_spec(source_type).metadata(row)
