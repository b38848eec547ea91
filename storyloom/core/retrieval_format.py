"""Render search results as grouped prompt context."""

from storyloom.core.planning_context import snippet
from storyloom.core.schemas import SearchResult, SourceType

NO_RELEVANT_CONTENT = "No relevant book content found."
GROUP_SEPARATOR = "\n\n---\n\n"

# Display order of result groups
RESULT_GROUPS: tuple[tuple[SourceType, str], ...] = (
    (SourceType.CHAPTER, "CHAPTERS"),
    (SourceType.CHARACTER, "CHARACTERS"),
    (SourceType.LOCATION, "LOCATIONS"),
    (SourceType.PLOT_POINT, "PLOT POINTS"),
    (SourceType.TIMELINE, "TIMELINE"),
    (SourceType.BRAINSTORMING, "BRAINSTORMING IDEAS"),
    (SourceType.SCENE_CARD, "SCENES"),
    (SourceType.RESEARCH, "RESEARCH"),
)


def _render_result(result: SearchResult) -> str:
    if result.source_type == SourceType.CHAPTER:
        number = result.metadata.get("chapterNumber") or "?"
        title = result.metadata.get("title") or "Untitled"
        return f'Chapter {number} - "{title}":\n{result.content}'
    return result.content


def _render(results: list[SearchResult]) -> str:
    grouped: dict[SourceType, list[SearchResult]] = {}
    for result in results:
        grouped.setdefault(result.source_type, []).append(result)

    parts = []
    for source_type, label in RESULT_GROUPS:
        group = grouped.get(source_type)
        if group:
            body = "\n\n".join(_render_result(r) for r in group)
            parts.append(f"{label}:\n{body}")
    return GROUP_SEPARATOR.join(parts)


def format_search_results(results: list[SearchResult], max_chars: int | None = None) -> str:
    """
    Group ranked search results by source type for a chat prompt.

    Args:
        results: Results in ranked order (most similar first)
        max_chars: Optional size limit; lowest-ranked results are dropped first

    Returns:
        Grouped context text, or NO_RELEVANT_CONTENT when there are no results
    """
    if not results:
        return NO_RELEVANT_CONTENT

    kept = list(results)
    text = _render(kept)
    if max_chars is None:
        return text

    while len(text) > max_chars and len(kept) > 1:
        kept.pop()
        text = _render(kept)

    if len(text) > max_chars:
        # Only the best result is left and it is still too long
        return snippet(text, max(0, max_chars - 3))
    return text
