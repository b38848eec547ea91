"""Planning context assembly for LLM prompts.

Builds one bounded text blob summarising all planning categories of a book
(plot points, characters, chapters, locations, brainstorming, timeline,
scene cards, research). When the raw content would exceed the character
budget, per-row snippets are shortened by a step function of the category's
row count, and sections that still do not fit are dropped in reverse
priority order.

Deterministic: no model calls, no caching.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
from dataclasses import dataclass
from typing import Any, Callable

from storyloom.core.config import Settings, get_settings
from storyloom.core.errors import BudgetEstimationError
from storyloom.core.logging import get_logger
from storyloom.core.schemas import SourceType
from storyloom.db.book_content import BookContentSource

logger = get_logger(__name__)

NO_PLANNING_DATA = "No planning data available yet. Book is in early stages."
ELLIPSIS = "..."
SECTION_SEPARATOR = "\n\n"

# (max rows, factor) steps applied to a section's base cap under truncation
TRUNCATION_STEPS: tuple[tuple[int, float], ...] = ((10, 1.0), (20, 0.7), (50, 0.5))
MIN_TRUNCATION_FACTOR = 0.3


def truncation_factor(row_count: int) -> float:
    """Share of the base cap kept per row, shrinking as the category grows."""
    for max_rows, factor in TRUNCATION_STEPS:
        if row_count <= max_rows:
            return factor
    return MIN_TRUNCATION_FACTOR


def snippet(text: str | None, cap: int | None) -> str:
    """Cut ``text`` to ``cap`` characters, marking the cut with an ellipsis.

    ``cap=None`` means no truncation. Negative caps clamp to zero.
    """
    text = (text or "").strip()
    if cap is None or len(text) <= cap:
        return text
    return text[: max(0, cap)].rstrip() + ELLIPSIS


def _tags(row: dict) -> str:
    tags = row.get("tags") or []
    return f" [{', '.join(str(t) for t in tags)}]" if tags else ""


@dataclass(frozen=True)
class PlanningSection:
    """One category of the planning context."""

    category: SourceType
    label: str
    title_field: str
    text_field: str
    base_cap: int
    overhead: int
    # (row, snippet) -> line body without the "N. " prefix
    render: Callable[[dict, str], str]

    def estimate(self, rows: list[dict]) -> int:
        """Raw size estimate of this category before any truncation."""
        return sum(
            len(row.get(self.title_field) or "") + len(row.get(self.text_field) or "") + self.overhead
            for row in rows
        )

    def cap_for(self, row_count: int, truncating: bool) -> int | None:
        if not truncating:
            return None
        # Products like 150 * 0.7 can land a hair below the integer
        return max(0, math.floor(self.base_cap * truncation_factor(row_count) + 1e-9))

    def build(self, rows: list[dict], truncating: bool) -> str:
        cap = self.cap_for(len(rows), truncating)
        lines = [
            f"{i}. {self.render(row, snippet(row.get(self.text_field), cap))}"
            for i, row in enumerate(rows, start=1)
        ]
        return f"{self.header(len(rows))}\n" + "\n".join(lines)

    def header(self, row_count: int) -> str:
        return f"{self.label} ({row_count} total):"

    def presence_line(self, row_count: int) -> str:
        return f"{self.header(row_count)} [omitted to fit the planning budget]"


def _with_text(separator: str) -> Callable[[str, str], str]:
    return lambda head, text: f"{head}{separator}{text}" if text else head


_colon = _with_text(": ")
_dash = _with_text(" - ")

# Fixed priority order: earlier sections survive longer under budget pressure
PLANNING_SECTIONS: tuple[PlanningSection, ...] = (
    PlanningSection(
        SourceType.PLOT_POINT, "PLOT POINTS", "title", "description", 150, 10,
        lambda row, text: _colon(row.get("title") or "Untitled", text),
    ),
    PlanningSection(
        SourceType.CHARACTER, "CHARACTERS", "name", "description", 120, 20,
        lambda row, text: _colon(
            f"{row.get('name') or 'Unnamed'} ({row.get('role') or 'No role'})", text
        ),
    ),
    PlanningSection(
        SourceType.CHAPTER, "CHAPTERS", "title", "description", 80, 10,
        lambda row, text: _dash(row.get("title") or "Untitled", text),
    ),
    PlanningSection(
        SourceType.LOCATION, "LOCATIONS", "name", "description", 120, 10,
        lambda row, text: _colon(row.get("name") or "Unnamed", text),
    ),
    PlanningSection(
        SourceType.BRAINSTORMING, "EXISTING BRAINSTORMING IDEAS", "title", "content", 100, 20,
        lambda row, text: _colon(f'"{row.get("title") or "Untitled"}"', text) + _tags(row),
    ),
    PlanningSection(
        SourceType.TIMELINE, "TIMELINE", "title", "description", 100, 20,
        lambda row, text: _colon(
            f"{row.get('title') or 'Untitled'} ({row.get('event_date') or 'No date'})", text
        ),
    ),
    PlanningSection(
        SourceType.SCENE_CARD, "SCENE CARDS", "title", "description", 100, 10,
        lambda row, text: _colon(row.get("title") or "Untitled Scene", text),
    ),
    PlanningSection(
        SourceType.RESEARCH, "RESEARCH", "title", "summary", 100, 10,
        lambda row, text: _colon(row.get("title") or "Untitled", text),
    ),
)


async def fetch_planning_snapshot(
    book_id: str,
    source: BookContentSource,
) -> dict[SourceType, list[dict[str, Any]]]:
    """Load every planning category in parallel.

    Raises:
        Exception: If any category query fails
    """
    categories = [section.category for section in PLANNING_SECTIONS]
    results = await asyncio.gather(
        *(asyncio.to_thread(source.list_planning_rows, book_id, category) for category in categories)
    )
    return dict(zip(categories, (rows or [] for rows in results), strict=True))


class PlanningContextBuilder:
    """Assembles the planning context blob within a character budget."""

    def __init__(
        self,
        max_chars: int,
        chars_per_token: int = 4,
        sections: tuple[PlanningSection, ...] = PLANNING_SECTIONS,
    ):
        if chars_per_token < 1:
            raise BudgetEstimationError(f"chars_per_token must be at least 1, got {chars_per_token}")
        self.max_chars = max(0, max_chars)
        self.chars_per_token = chars_per_token
        self.sections = sections

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PlanningContextBuilder:
        settings = settings or get_settings()
        return cls(settings.max_planning_chars, settings.PLANNING_CHARS_PER_TOKEN)

    def estimate(self, snapshot: dict[SourceType, list[dict]]) -> int:
        return sum(section.estimate(snapshot.get(section.category) or []) for section in self.sections)

    def build(self, snapshot: dict[SourceType, list[dict]], book_id: str | None = None) -> str:
        """
        Render a snapshot to the planning context text.

        Args:
            snapshot: Rows per category, already in display order
            book_id: Only used for logging

        Returns:
            Planning context, or NO_PLANNING_DATA when every category is empty
        """
        populated = [
            (section, snapshot.get(section.category) or [])
            for section in self.sections
            if snapshot.get(section.category)
        ]
        if not populated:
            return NO_PLANNING_DATA

        raw_size = self.estimate(snapshot)
        truncating = raw_size > self.max_chars

        parts: list[str] = []
        current_length = 0
        first_section: str | None = None

        for section, rows in populated:
            text = section.build(rows, truncating)
            if first_section is None:
                first_section = text

            if self._fits(current_length, text, parts):
                current_length = self._append(parts, current_length, text)
                continue

            presence = section.presence_line(len(rows))
            if self._fits(current_length, presence, parts):
                current_length = self._append(parts, current_length, presence)
            logger.debug(
                f"Planning section {section.label} skipped ({len(text)} chars over budget)",
                extra={"book_id": book_id},
            )

        if not parts:
            # Not even one section fits; return the top-priority one alone
            logger.warning(
                f"Planning budget ({self.max_chars} chars) smaller than the first section",
                extra={"book_id": book_id},
            )
            return first_section

        context = SECTION_SEPARATOR.join(parts)
        self._log_summary(context, raw_size, truncating, book_id)
        return context

    def _fits(self, current_length: int, text: str, parts: list[str]) -> bool:
        separator = len(SECTION_SEPARATOR) if parts else 0
        return current_length + separator + len(text) <= self.max_chars

    def _append(self, parts: list[str], current_length: int, text: str) -> int:
        separator = len(SECTION_SEPARATOR) if parts else 0
        parts.append(text)
        return current_length + separator + len(text)

    def _log_summary(self, context: str, raw_size: int, truncating: bool, book_id: str | None) -> None:
        tokens = math.ceil(len(context) / self.chars_per_token)
        budget_tokens = max(1, self.max_chars // self.chars_per_token)
        logger.info(
            f"Planning context built: {len(context)} chars (~{tokens}/{budget_tokens} tokens, "
            f"{round(tokens / budget_tokens * 100)}% of budget), raw={raw_size}, "
            f"truncated={truncating}",
            extra={"book_id": book_id},
        )


def _default_source() -> BookContentSource:
    from storyloom.db.book_content import SupabaseBookContentSource

    return SupabaseBookContentSource()


async def build_planning_context(
    book_id: str,
    source: BookContentSource | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Build the planning context for one book from its current data.

    Args:
        book_id: Book UUID
        source: Content source (Supabase by default)
        settings: Optional settings override

    Returns:
        Planning context text, or NO_PLANNING_DATA for a book with no rows

    Raises:
        Exception: If a category query fails
    """
    source = source or _default_source()
    snapshot = await fetch_planning_snapshot(book_id, source)
    return PlanningContextBuilder.from_settings(settings).build(snapshot, book_id=book_id)


async def compute_planning_hash(
    book_id: str,
    source: BookContentSource | None = None,
) -> str:
    """
    Fingerprint of a book's planning data for external cache invalidation.

    Changes whenever a category gains or loses rows or a row's ``updated_at``
    moves.

    Args:
        book_id: Book UUID
        source: Content source (Supabase by default)

    Returns:
        SHA-256 hex digest
    """
    source = source or _default_source()
    snapshot = await fetch_planning_snapshot(book_id, source)

    payload = {
        category.value: {
            "count": len(rows),
            "updated": sorted(str(row.get("updated_at") or "") for row in rows),
        }
        for category, rows in snapshot.items()
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
