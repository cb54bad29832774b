from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_BUSY_POLICY, DEFAULT_CONFIG_PATH, DEFAULT_MAX_CONCURRENCY


class RedisConfig(BaseModel):
    """Configuration for the Redis snapshot store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class EngineConfig(BaseModel):
    """Execution engine settings."""

    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    busy_policy: Literal["queue", "reject"] = DEFAULT_BUSY_POLICY


class DurastepConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    redis: RedisConfig = RedisConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> DurastepConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to DURASTEP_CONFIG env
            variable or 'durastep.yaml' in the current directory.
    """

    config_path = path or os.getenv("DURASTEP_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = DurastepConfig(**data)
    else:
        config = DurastepConfig()

    env_db_url = os.getenv("DURASTEP_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("DURASTEP_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
