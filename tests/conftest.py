"""Pytest configuration and fixtures."""

import os

import pytest

from storyloom.core.chunk_store import ChunkStore
from storyloom.core.config import Settings
from storyloom.core.embeddings import EmbeddingAdapter
from storyloom.core.vector_store import InMemoryVectorStore
from tests.fakes.fake_book_source import FakeBookSource
from tests.fakes.fake_embeddings import TEST_DIM, FakeEmbeddingProvider


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["STORYLOOM_ENV"] = "test"


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        SUPABASE_URL="https://test.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="test-key",
        OPENAI_API_KEY="test-openai-key",
        STORYLOOM_ENV="test",
        EMBEDDING_DIM=TEST_DIM,
        REINDEX_CONCURRENCY=3,
    )


@pytest.fixture
def default_provider():
    return FakeEmbeddingProvider(name="openai", dim=TEST_DIM)


@pytest.fixture
def adapter(default_provider):
    return EmbeddingAdapter(
        default_provider=default_provider,
        default_model="text-embedding-ada-002",
        expected_dim=TEST_DIM,
    )


@pytest.fixture
def vector_store():
    return InMemoryVectorStore()


@pytest.fixture
def chunk_store(vector_store):
    return ChunkStore(vector_store)


@pytest.fixture
def book_source():
    return FakeBookSource()
