"""Tests for the book embeddings backfill script."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from scripts.backfill_book_embeddings import run_backfill
from storyloom.core.errors import ProviderNotConfiguredError
from storyloom.core.schemas import IndexReport, SourceTypeCounts


def report_for(book_id):
    return IndexReport(book_id=book_id, by_source_type={"chapter": SourceTypeCounts(indexed=2, chunks=3)})


@pytest.mark.asyncio
async def test_backfill_continues_past_failed_book():
    service = MagicMock()
    service.reindex_book = AsyncMock(
        side_effect=[report_for("a"), ConnectionError("db down"), report_for("c")]
    )

    failed = await run_backfill(service, ["a", "b", "c"])

    assert failed == ["b"]
    assert [c.args[0] for c in service.reindex_book.call_args_list] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_backfill_aborts_without_provider():
    service = MagicMock()
    service.reindex_book = AsyncMock(side_effect=ProviderNotConfiguredError())

    with pytest.raises(ProviderNotConfiguredError):
        await run_backfill(service, ["a", "b"])

    service.reindex_book.assert_awaited_once_with("a")


@pytest.mark.asyncio
async def test_backfill_warns_when_book_mixes_embedding_models(caplog):
    report = IndexReport(
        book_id="a", by_source_type={"location": SourceTypeCounts(indexed=3, chunks=3, fallbacks=2)}
    )
    service = MagicMock()
    service.reindex_book = AsyncMock(return_value=report)

    with caplog.at_level(logging.WARNING):
        failed = await run_backfill(service, ["a"])

    assert failed == []
    assert any("2 sources fell back to the default provider" in r.getMessage() for r in caplog.records)
