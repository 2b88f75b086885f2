# src/finditfast/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/finditfast/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `FINDITFAST_LOG_LEVEL`, `FINDITFAST_STORE_PATH`)
- an external YAML file via `FINDITFAST_CONFIG_PATH`

Design rule:
- Thresholds (flagging, re-verification, expiry) live in YAML, not hard-coded in business logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from finditfast.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `finditfast.config`."""
    text = resources.files("finditfast.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "FindItFast"
    log_level: str = "INFO"


class StorageSettings(BaseModel):
    backend: Literal["memory", "json"] = "json"
    path: str = "data/finditfast.json"


class StaticPlatformSettings(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    permission: Literal["granted", "denied", "prompt"] = "granted"


class HttpPlatformSettings(BaseModel):
    url: str = "https://ipapi.co/json/"
    poll_interval_seconds: float = Field(default=30.0, gt=0)


class LocationSettings(BaseModel):
    platform: Literal["none", "static", "http"] = "static"
    enable_high_accuracy: bool = True
    timeout_ms: int = Field(default=10_000, gt=0)
    max_cached_age_ms: int = Field(default=300_000, ge=0)
    static: StaticPlatformSettings = Field(default_factory=StaticPlatformSettings)
    http: HttpPlatformSettings = Field(default_factory=HttpPlatformSettings)


class ReportSettings(BaseModel):
    flag_min_negative: int = Field(default=3, ge=1)
    default_flag_reason: str = "Multiple negative reports"
    recent_days: int = Field(default=7, ge=1)
    recent_limit: int = Field(default=50, ge=1)


class VerificationSettings(BaseModel):
    review_threshold: int = Field(default=3, ge=1)
    max_age_days: int = Field(default=30, ge=1)


class RankingSettings(BaseModel):
    max_distance_km: float | None = Field(default=None, gt=0)
    nearby_limit: int = Field(default=20, ge=1)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    reports: ReportSettings = Field(default_factory=ReportSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    ranking: RankingSettings = Field(default_factory=RankingSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("FINDITFAST_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    backend = os.getenv("FINDITFAST_STORE_BACKEND")
    if backend:
        data.setdefault("storage", {})["backend"] = backend

    store_path = os.getenv("FINDITFAST_STORE_PATH")
    if store_path:
        data.setdefault("storage", {})["path"] = store_path

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("FINDITFAST_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
