"""
Tests for library settings and store fallbacks.
"""

import pytest
from pydantic import ValidationError

from conftest import AuthorsStore, make_store_class
from reststores import StoreConfigurationError, StoreSettings, get_settings
from reststores.persistence import InMemoryBackend


@pytest.fixture
def fresh_settings():
    """Clear the settings cache around a test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestStoreSettings:
    """Tests for the settings model."""

    def test_defaults(self):
        settings = StoreSettings()
        assert settings.chain_errors == "none"
        assert settings.hard_limit_on_queries == 50
        assert settings.default_query_limit == 50
        assert settings.echo_after_write is True
        assert settings.debug is False

    def test_invalid_chain_mode(self):
        with pytest.raises(ValidationError):
            StoreSettings(chain_errors="sometimes")

    def test_hard_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            StoreSettings(hard_limit_on_queries=0)

    def test_settings_are_frozen(self):
        settings = StoreSettings()
        with pytest.raises(ValidationError):
            settings.debug = True

    def test_frozen_through_model_config(self):
        assert StoreSettings.model_config["frozen"] is True
        assert not hasattr(StoreSettings, "Config")


class TestGetSettings:
    """Tests for reading RESTSTORES_* variables."""

    def test_reads_environment(self, monkeypatch, fresh_settings):
        monkeypatch.setenv("RESTSTORES_CHAIN_ERRORS", "nonhttp")
        monkeypatch.setenv("RESTSTORES_HARD_LIMIT_ON_QUERIES", "10")
        monkeypatch.setenv("RESTSTORES_ECHO_AFTER_WRITE", "false")
        monkeypatch.setenv("RESTSTORES_DEBUG", "1")

        settings = get_settings()

        assert settings.chain_errors == "nonhttp"
        assert settings.hard_limit_on_queries == 10
        assert settings.echo_after_write is False
        assert settings.debug is True

    def test_cached(self, fresh_settings):
        assert get_settings() is get_settings()


class TestStoreFallbacks:
    """Store attributes left as None take the settings' values."""

    def test_fallbacks_applied(self, registry):
        settings = StoreSettings(
            chain_errors="all",
            hard_limit_on_queries=5,
            default_query_limit=3,
            echo_after_write=False,
        )
        store = AuthorsStore(InMemoryBackend(), registry, settings=settings)

        assert store.chain_errors == "all"
        assert store.hard_limit_on_queries == 5
        assert store.default_query_limit == 3
        assert store.echo_after_post is False
        assert store.echo_after_put is False
        assert store.echo_after_delete is False

    def test_store_declaration_wins(self, registry, settings):
        Custom = make_store_class(
            AuthorsStore,
            chain_errors="nonhttp",
            hard_limit_on_queries=500,
            echo_after_post=False,
        )
        store = Custom(InMemoryBackend(), registry, settings=settings)

        assert store.chain_errors == "nonhttp"
        assert store.hard_limit_on_queries == 500
        assert store.echo_after_post is False
        assert store.echo_after_put is True

    def test_invalid_store_chain_mode(self, registry, settings):
        Custom = make_store_class(AuthorsStore, chain_errors="sometimes")
        with pytest.raises(StoreConfigurationError, match="chain_errors"):
            Custom(InMemoryBackend(), registry, settings=settings)
