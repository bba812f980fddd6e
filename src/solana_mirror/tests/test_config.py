"""Tests for the layered application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from solana_mirror.config import settings


def _isolate(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # keep a developer's .env out of the way
    monkeypatch.chdir(tmp_path)
    for name in (
        "RPC",
        "COINGECKO_API_KEY",
        "APP_PROFILE",
        "MIRROR_RPC__PRIMARY_URL",
        "MIRROR_RPC__REQUEST_TIMEOUT",
        "MIRROR_DATA_SOURCES__COINGECKO_API_KEY",
        "MIRROR_CHART__MAX_DAY_RANGE",
    ):
        monkeypatch.delenv(name, raising=False)


def test_app_config_loads_profiles_and_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _isolate(monkeypatch, tmp_path)
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.rpc]
primary_url = "https://rpc.default.example"
request_timeout = 9.5

[default.chart]
max_day_range = 120

[archive.rpc]
primary_url = "https://rpc.archive.example"
"""
    )

    monkeypatch.setenv("APP_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("APP_PROFILE", "archive")
    monkeypatch.setenv("MIRROR_RPC__REQUEST_TIMEOUT", "18")

    settings.get_app_config.cache_clear()
    cfg = settings.get_app_config()

    assert cfg.profile.active == "archive"
    assert cfg.profile.config_file == config_path
    assert "rpc.archive.example" in str(cfg.rpc.primary_url)
    assert cfg.rpc.request_timeout == 18.0
    assert cfg.chart.max_day_range == 120
    assert cfg.rpc.transaction_batch_size == 900

    settings.get_app_config.cache_clear()


def test_default_profile_without_config_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))

    settings.get_app_config.cache_clear()
    cfg = settings.get_app_config()

    assert cfg.profile.active == settings.DEFAULT_PROFILE
    assert cfg.profile.config_file is None
    assert cfg.rpc.signature_page_limit == 1000
    assert cfg.rpc.max_rate_limit_attempts == 3
    assert cfg.chart.daily_granularity_threshold_days == 90

    settings.get_app_config.cache_clear()


def test_legacy_rpc_and_coingecko_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.setenv("RPC", "https://rpc.legacy.example")
    monkeypatch.setenv("COINGECKO_API_KEY", "demo-key")

    settings.get_app_config.cache_clear()
    cfg = settings.get_app_config()

    assert str(cfg.rpc.primary_url) == "https://rpc.legacy.example"
    assert cfg.data_sources.coingecko_api_key == "demo-key"

    settings.get_app_config.cache_clear()


def test_explicit_coingecko_key_beats_legacy_variable(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.setenv("COINGECKO_API_KEY", "legacy")
    monkeypatch.setenv("MIRROR_DATA_SOURCES__COINGECKO_API_KEY", "explicit")

    settings.get_app_config.cache_clear()
    cfg = settings.get_app_config()

    assert cfg.data_sources.coingecko_api_key == "explicit"

    settings.get_app_config.cache_clear()


def test_deep_merge_keeps_nested_defaults() -> None:
    merged = settings._deep_merge(
        {"rpc": {"primary_url": "a", "commitment": "confirmed"}},
        {"rpc": {"primary_url": "b"}},
    )
    assert merged == {"rpc": {"primary_url": "b", "commitment": "confirmed"}}
