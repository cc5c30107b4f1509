"""
Unit Tests: Configuration

Tests:
    - Defaults validate
    - Environment overrides
    - Invariant violations
"""

import dataclasses

import pytest

from history_fetch.core.config import FetchConfig, HistoryConfig, ServiceConfig


class TestHistoryConfig:
    """Tests for HistoryConfig."""

    def test_defaults_are_valid(self):
        config = HistoryConfig()
        assert config.validate().is_ok()
        assert config.fetch.page_size == 100
        assert config.service.base_url == "https://ps.pndsn.com"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HISTORY_ORIGIN", "history.example.com")
        monkeypatch.setenv("HISTORY_SUBSCRIBE_KEY", "sub-c-42")
        monkeypatch.setenv("HISTORY_SECURE", "false")
        monkeypatch.setenv("HISTORY_PAGE_SIZE", "25")
        monkeypatch.setenv("HISTORY_LOG_LEVEL", "debug")
        monkeypatch.setenv("HISTORY_LOG_JSON", "0")

        config = HistoryConfig.from_env().unwrap()

        assert config.service.base_url == "http://history.example.com"
        assert config.service.subscribe_key == "sub-c-42"
        assert config.fetch.page_size == 25
        assert config.observability.log_level == "DEBUG"
        assert not config.observability.log_json
        assert config.validate().is_ok()

    def test_from_env_bad_number(self, monkeypatch):
        monkeypatch.setenv("HISTORY_PAGE_SIZE", "lots")
        result = HistoryConfig.from_env()
        assert result.is_err()
        assert "Configuration error" in result.error

    @pytest.mark.parametrize("config", [
        HistoryConfig(fetch=FetchConfig(page_size=0)),
        HistoryConfig(fetch=FetchConfig(page_size=101)),
        HistoryConfig(service=ServiceConfig(subscribe_key="")),
        HistoryConfig(service=ServiceConfig(request_timeout_s=0)),
        HistoryConfig(service=ServiceConfig(max_connections=0)),
    ])
    def test_invalid(self, config):
        assert config.validate().is_err()

    def test_unknown_log_level(self):
        config = HistoryConfig()
        config = dataclasses.replace(
            config,
            observability=dataclasses.replace(config.observability, log_level="LOUD"),
        )
        assert config.validate().is_err()

    def test_origin_with_scheme_is_kept(self):
        assert ServiceConfig(origin="http://localhost:8080/").base_url == "http://localhost:8080"
