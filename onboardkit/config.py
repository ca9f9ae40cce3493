from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_ACTIVITY_EXTENSION_MINUTES,
    DEFAULT_CACHE_KEY_PREFIX,
    DEFAULT_PROGRESS_TTL_SECONDS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_WATERMARK_MAX_ATTEMPTS,
)


class RedisConfig(BaseModel):
    """Connection settings for the Redis cache backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class CacheConfig(BaseModel):
    """Progress cache settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = Field(default_factory=RedisConfig)
    ttl_seconds: int = Field(default=DEFAULT_PROGRESS_TTL_SECONDS, gt=0)
    key_prefix: str = DEFAULT_CACHE_KEY_PREFIX


class PhaseConfig(BaseModel):
    """One row of the phase table.

    ``required_fields`` of ``None`` marks a phase whose field count varies and
    which is left out of the percentage denominator.
    """

    name: str
    required_fields: Optional[int] = Field(default=None, ge=0)
    baseline_minutes: int = Field(default=0, ge=0)


def default_phases() -> List[PhaseConfig]:
    return [
        PhaseConfig(name="welcome", required_fields=0, baseline_minutes=1),
        PhaseConfig(name="parent_info", required_fields=6, baseline_minutes=2),
        PhaseConfig(name="child_info", required_fields=4, baseline_minutes=3),
        PhaseConfig(name="concerns", required_fields=1, baseline_minutes=2),
        PhaseConfig(name="insurance", required_fields=3, baseline_minutes=4),
        PhaseConfig(name="assessment", required_fields=None, baseline_minutes=5),
    ]


class ProgressConfig(BaseModel):
    """Progress computation settings."""

    phases: List[PhaseConfig] = Field(default_factory=default_phases)
    watermark_max_attempts: int = Field(default=DEFAULT_WATERMARK_MAX_ATTEMPTS, ge=1)
    retry_base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY, ge=0)


class SessionConfig(BaseModel):
    """Session lifetime settings."""

    activity_extension_minutes: int = Field(
        default=DEFAULT_ACTIVITY_EXTENSION_MINUTES, gt=0
    )
    retention_days: int = Field(default=DEFAULT_RETENTION_DAYS, gt=0)


class OnboardkitConfig(BaseModel):
    """Top-level configuration model."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> OnboardkitConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ONBOARDKIT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ONBOARDKIT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OnboardkitConfig(**data)
    else:
        config = OnboardkitConfig()

    env_db_url = os.getenv("ONBOARDKIT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_cache = os.getenv("ONBOARDKIT_CACHE")
    if env_cache:
        config.cache.backend = env_cache.lower()
    return config
