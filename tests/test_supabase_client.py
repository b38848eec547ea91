"""Tests for Supabase client construction."""

from unittest.mock import patch

import pytest

from storyloom.db import supabase_client


@pytest.fixture(autouse=True)
def clear_cache():
    supabase_client.get_supabase.cache_clear()
    yield
    supabase_client.get_supabase.cache_clear()


def test_missing_configuration_raises(settings):
    unconfigured = settings.model_copy(update={"SUPABASE_URL": ""})

    with patch.object(supabase_client, "get_settings", return_value=unconfigured):
        with pytest.raises(RuntimeError, match="SUPABASE_URL"):
            supabase_client.get_supabase()


def test_client_cached(settings):
    with (
        patch.object(supabase_client, "get_settings", return_value=settings),
        patch.object(supabase_client, "create_client") as mock_create,
    ):
        first = supabase_client.get_supabase()
        second = supabase_client.get_supabase()

    assert first is second
    mock_create.assert_called_once_with(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


def test_client_creation_failure_wrapped(settings):
    with (
        patch.object(supabase_client, "get_settings", return_value=settings),
        patch.object(supabase_client, "create_client", side_effect=ValueError("bad key")),
    ):
        with pytest.raises(RuntimeError, match="bad key"):
            supabase_client.get_supabase()
