from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    topic: str = "triggers"


class EngineConfig(BaseModel):
    """Workflow engine execution settings.

    Retry delays are the short backoff between attempts of a failing step and
    are unrelated to the business delays expressed as sleep steps.
    """

    lease_seconds: float = 300.0
    max_concurrency: int = 16
    retry_base_delay: float = 2.0
    retry_max_delay: float = 45.0
    retry_jitter: float = 0.5


class SchedulerConfig(BaseModel):
    """Settings for the wake-up scan loop."""

    interval: float = 5.0
    batch_size: int = 100
    stale_after: float = 600.0


class BridgeConfig(BaseModel):
    """Event bridge delivery settings."""

    business_id: str = "default"
    source: str = "intent-executor"
    delivery: Literal["direct", "transport"] = "direct"
    publish_attempts: int = 3


class IntentflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    bridge: BridgeConfig = BridgeConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> IntentflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to INTENTFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("INTENTFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = IntentflowConfig(**data)
    else:
        config = IntentflowConfig()

    env_db_url = os.getenv("INTENTFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_transport = os.getenv("INTENTFLOW_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport.lower()
    return config
