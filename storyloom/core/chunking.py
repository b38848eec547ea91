"""Text chunking utilities for book content embeddings."""

from typing import Any

from storyloom.core.logging import get_logger

logger = get_logger(__name__)


def _window_step(chunk_size: int, overlap: int) -> int:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size ({chunk_size}) must be positive")
    if overlap < 0:
        raise ValueError(f"overlap ({overlap}) must not be negative")

    step = chunk_size - overlap
    if step <= 0:
        logger.warning(
            f"overlap ({overlap}) >= chunk_size ({chunk_size}); chunking without overlap"
        )
        step = chunk_size
    return step


def chunk_spans(
    text: str,
    chunk_size: int = 800,
    overlap: int = 100,
) -> list[dict[str, Any]]:
    """
    Split text into overlapping windows, keeping character offsets.

    Each window is stripped of surrounding whitespace; windows that are
    empty after stripping are dropped and do not consume a chunk index.

    Args:
        text: Text to chunk
        chunk_size: Maximum characters per chunk
        overlap: Number of characters shared by consecutive windows

    Returns:
        List of chunk dicts with:
            - chunk_index: int (0-based)
            - content: str
            - start_char: int (window start)
            - end_char: int (window end, exclusive)

    Raises:
        ValueError: If chunk_size is not positive or overlap is negative
    """
    step = _window_step(chunk_size, overlap)

    if not text or not text.strip():
        return []

    chunks: list[dict[str, Any]] = []
    start = 0
    text_length = len(text)

    while start < text_length:
        end = min(start + chunk_size, text_length)
        content = text[start:end].strip()

        if content:
            chunks.append(
                {
                    "chunk_index": len(chunks),
                    "content": content,
                    "start_char": start,
                    "end_char": end,
                }
            )

        # The window reached the end of the text
        if end >= text_length:
            break

        start += step

    return chunks


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 100) -> list[str]:
    """
    Split text into overlapping chunks suitable for embedding.

    Pure function: the same input always yields the same chunks. Empty or
    whitespace-only text yields no chunks; text shorter than ``chunk_size``
    yields a single stripped chunk.

    Args:
        text: Text to chunk
        chunk_size: Maximum characters per chunk
        overlap: Number of characters shared by consecutive chunks

    Returns:
        List of chunk strings, each at most ``chunk_size`` characters
    """
    return [span["content"] for span in chunk_spans(text, chunk_size, overlap)]
