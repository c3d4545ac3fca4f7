from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Configuration for one message channel's provider gateway."""

    backend: Literal["inmemory", "http"] = "inmemory"
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0
    max_attempts: int = 3


class ProvidersConfig(BaseModel):
    email: ProviderConfig = ProviderConfig()
    whatsapp: ProviderConfig = ProviderConfig()


class BookingsConfig(BaseModel):
    """Where booking records are read from."""

    backend: Literal["inmemory", "http"] = "inmemory"
    base_url: Optional[str] = None
    timeout: float = 10.0


class DispatchConfig(BaseModel):
    batch_size: int = Field(default=100, ge=1)


class BackfillConfig(BaseModel):
    concurrency: int = Field(default=10, ge=1)


class FollowupConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    providers: ProvidersConfig = ProvidersConfig()
    bookings: BookingsConfig = BookingsConfig()
    dispatch: DispatchConfig = DispatchConfig()
    backfill: BackfillConfig = BackfillConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> FollowupConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FOLLOWUP_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("FOLLOWUP_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FollowupConfig(**data)
    else:
        config = FollowupConfig()

    env_db_url = os.getenv("FOLLOWUP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
