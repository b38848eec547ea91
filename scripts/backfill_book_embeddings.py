#!/usr/bin/env python3
"""
Backfill book_embedding_chunks for one or all books.

Clears and rebuilds the chunks of each book from its current chapters,
characters, locations, plot points, timeline events, scene cards,
brainstorming notes and research.

Usage:
    python scripts/backfill_book_embeddings.py --book-id BOOK_ID
    python scripts/backfill_book_embeddings.py --all [--concurrency 8]

Options:
    --book-id: Reindex only this book (repeatable)
    --all: Reindex every book
    --concurrency: Entities embedded concurrently per book (default: REINDEX_CONCURRENCY)
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storyloom.core.book_embeddings import BookEmbeddingService, get_book_embedding_service
from storyloom.core.config import get_settings
from storyloom.core.errors import ProviderNotConfiguredError
from storyloom.core.logging import get_logger

logger = get_logger(__name__)


async def run_backfill(service: BookEmbeddingService, book_ids: list[str]) -> list[str]:
    """
    Reindex books one after another.

    Args:
        service: Configured BookEmbeddingService
        book_ids: Books to reindex

    Returns:
        Ids of books whose reindex failed outright

    Raises:
        ProviderNotConfiguredError: If no embedding provider is available
    """
    failed_books: list[str] = []

    for position, book_id in enumerate(book_ids, start=1):
        logger.info(f"[{position}/{len(book_ids)}] Reindexing book {book_id}")
        try:
            report = await service.reindex_book(book_id)
        except ProviderNotConfiguredError:
            raise
        except Exception as e:
            logger.error(f"Reindex failed: {e}", extra={"book_id": book_id})
            failed_books.append(book_id)
            continue

        for source_type, counts in sorted(report.by_source_type.items()):
            logger.info(
                f"  {source_type}: {counts.indexed} indexed, {counts.chunks} chunks, "
                f"{counts.skipped} skipped, {counts.failed} failed"
            )
        if report.failed_sources:
            logger.warning(f"  Failed sources: {', '.join(report.failed_sources)}")
        if report.total_fallbacks:
            logger.warning(
                f"  {report.total_fallbacks} sources fell back to the default provider; "
                f"embeddings are mixed, rerun once the owner's provider is healthy"
            )

    return failed_books


def main():
    """Main backfill function."""
    parser = argparse.ArgumentParser(description="Rebuild book embedding chunks")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--book-id",
        action="append",
        dest="book_ids",
        help="Book UUID to reindex (may be given more than once)",
    )
    target.add_argument("--all", action="store_true", help="Reindex every book")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Entities embedded concurrently per book (default: REINDEX_CONCURRENCY)",
    )

    args = parser.parse_args()

    settings = get_settings()
    if args.concurrency is not None:
        if args.concurrency < 1:
            parser.error("--concurrency must be at least 1")
        settings = settings.model_copy(update={"REINDEX_CONCURRENCY": args.concurrency})

    service = get_book_embedding_service(settings)
    book_ids = service.source.list_book_ids() if args.all else args.book_ids

    logger.info("=" * 60)
    logger.info("BOOK EMBEDDINGS BACKFILL")
    logger.info(f"Books: {len(book_ids)}, concurrency: {settings.REINDEX_CONCURRENCY}")
    logger.info("=" * 60)

    try:
        failed_books = asyncio.run(run_backfill(service, book_ids))
    except ProviderNotConfiguredError as e:
        logger.error(f"Backfill aborted: {e}. Set OPENAI_API_KEY or owner preferences.")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info(f"BACKFILL COMPLETE - {len(book_ids) - len(failed_books)}/{len(book_ids)} books")
    logger.info("=" * 60)

    if failed_books:
        sys.exit(1)


if __name__ == "__main__":
    main()
