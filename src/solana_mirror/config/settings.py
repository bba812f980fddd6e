"""Configuration management for the wallet mirror services."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "APP_PROFILE"
DEFAULT_PROFILE = "default"
ENV_PREFIX = "MIRROR_"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _requested_profile(base_section: Dict[str, Any]) -> str:
    requested = os.getenv(PROFILE_ENV_VAR)
    if not requested:
        profile_section = base_section.get("profile")
        if isinstance(profile_section, dict):
            requested = cast(Optional[str], profile_section.get("active"))
        elif isinstance(profile_section, str):
            requested = profile_section
    return (requested or DEFAULT_PROFILE).lower()


def _select_profile(data: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
    if not data:
        return {}, DEFAULT_PROFILE
    base_section = cast(Dict[str, Any], data.get(DEFAULT_PROFILE, {}))
    requested = _requested_profile(base_section)

    if requested != DEFAULT_PROFILE and requested in data:
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested])), requested
    if base_section:
        return base_section, DEFAULT_PROFILE
    return data, DEFAULT_PROFILE


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged, active = _select_profile(payload)
    merged = {k: v for k, v in merged.items() if k != "profile"}
    merged["profile"] = {"active": active, "config_file": str(path)}
    return merged, path


class ProfileConfig(BaseModel):
    """Which configuration profile is active and where it came from."""

    active: str = Field(default=DEFAULT_PROFILE)
    config_file: Optional[Path] = None


class RPCConfig(BaseModel):
    """JSON-RPC endpoint and fetch behaviour."""

    primary_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    request_timeout: float = Field(default=30.0, ge=1.0, le=120.0)
    commitment: str = Field(default="confirmed")
    signature_page_limit: int = Field(default=1000, ge=1, le=1000)
    transaction_batch_size: int = Field(default=900, ge=1, le=1000)
    max_rate_limit_attempts: int = Field(default=3, ge=1, le=10)
    rate_limit_wait_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    request_concurrency: int = Field(default=4, ge=1, le=64)
    max_supported_transaction_version: int = Field(default=0, ge=0)

    @field_validator("request_timeout", mode="before")
    @classmethod
    def _parse_request_timeout(cls, value) -> float:
        if isinstance(value, str):
            return float(value)
        return value


class DataSourceConfig(BaseModel):
    """Price feed endpoints."""

    coingecko_base_url: AnyHttpUrl = Field(default="https://api.coingecko.com/api/v3")
    coingecko_api_key: Optional[str] = None
    coingecko_ids_path: Optional[Path] = None
    jupiter_quote_url: AnyHttpUrl = Field(default="https://quote-api.jup.ag/v6")
    http_timeout: float = Field(default=10.0, ge=1.0, le=45.0)
    cache_ttl_seconds: int = Field(default=30, ge=1, le=3_600)
    price_concurrency: int = Field(default=4, ge=1, le=32)


class ChartConfig(BaseModel):
    """Bounds for balance history requests."""

    max_hour_range: int = Field(default=255, ge=1)
    max_day_range: int = Field(default=255, ge=1)
    daily_granularity_threshold_days: int = Field(default=90, ge=1)


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    profile: ProfileConfig = Field(default_factory=ProfileConfig)
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    data_sources: DataSourceConfig = Field(default_factory=DataSourceConfig)
    chart: ChartConfig = Field(default_factory=ChartConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, _ = _load_toml_config()
            return payload

        # Environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_legacy_env(self) -> "AppConfig":
        rpc_url = os.getenv("RPC")
        if rpc_url and rpc_url.strip():
            self.rpc.primary_url = rpc_url.strip()
        api_key = os.getenv("COINGECKO_API_KEY")
        if api_key and not self.data_sources.coingecko_api_key:
            self.data_sources.coingecko_api_key = api_key.strip()
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "ChartConfig",
    "DataSourceConfig",
    "MonitoringConfig",
    "ProfileConfig",
    "RPCConfig",
    "get_app_config",
]
