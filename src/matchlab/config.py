"""Environment-driven configuration helpers for matchlab."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or .env files."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    engine_version: str = Field(default="2.1.0")
    catalog_path: Path | None = Field(default=None)

    goal_grid_max: int = Field(default=10, ge=4, le=20)
    first_half_goal_share: float = Field(default=0.45, gt=0.0, lt=1.0)
    relevance_floor: float = Field(default=0.10, ge=0.0, lt=0.5)
    probability_precision: int = Field(default=4, ge=2, le=10)

    min_corners_expected: float = Field(default=5.0, ge=0.0)
    min_cards_expected: float = Field(default=2.0, ge=0.0)
    default_cards_std: float = Field(default=1.5, gt=0.0)

    small_sample_penalty: float = Field(default=0.05, ge=0.0, le=1.0)
    high_variance_penalty: float = Field(default=0.03, ge=0.0, le=1.0)
    half_split_penalty: float = Field(default=0.02, ge=0.0, le=1.0)
    normal_approximation_margin: float = Field(default=0.02, ge=0.0, le=1.0)

    ultra_safe_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    safe_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    balanced_threshold: float = Field(default=0.55, ge=0.0, le=1.0)
    max_pool_combinations: int = Field(default=5000, ge=1)

    log_level: str = Field(default="INFO")
    matchlab_api_key: str = Field(default="", validation_alias="MATCHLAB_API_KEY")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]


def get_api_access_key() -> str:
    key = os.getenv("MATCHLAB_API_KEY") or get_settings().matchlab_api_key
    if not key:
        raise RuntimeError(
            "MATCHLAB_API_KEY is not configured. Set it in .env or in the service environment."
        )
    return key
