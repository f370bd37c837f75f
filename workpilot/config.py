from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import DEFAULT_AUTO_APPROVAL_THRESHOLD, DEFAULT_STALE_AFTER_HOURS
from .errors import ConfigurationError


class AIConfig(BaseModel):
    """Team-wide AI defaults used when building ``AISettings``."""

    auto_approval_threshold: float = Field(
        default=DEFAULT_AUTO_APPROVAL_THRESHOLD, ge=0.0, le=1.0
    )
    daily_budget: Optional[float] = None
    monthly_budget: Optional[float] = None


class WorkpilotConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    ai: AIConfig = AIConfig()
    stale_after_hours: int = DEFAULT_STALE_AFTER_HOURS


def load_config(path: Optional[str] = None) -> WorkpilotConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to WORKPILOT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("WORKPILOT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        try:
            config = WorkpilotConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid config file {config_path}: {exc}") from exc
    else:
        config = WorkpilotConfig()

    env_db_url = os.getenv("WORKPILOT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
