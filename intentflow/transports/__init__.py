"""Trigger transports and backend selection."""

from __future__ import annotations

import os
from typing import Callable, Dict, Optional

from ..config import IntentflowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def _inmemory(config: IntentflowConfig) -> BaseTransport:
    return InMemoryTransport()


def _redis(config: IntentflowConfig) -> BaseTransport:
    from .redis import RedisTransport

    conf = config.transport.redis
    return RedisTransport(host=conf.host, port=conf.port, db=conf.db, password=conf.password)


TRANSPORT_BACKENDS: Dict[str, Callable[[IntentflowConfig], BaseTransport]] = {
    "inmemory": _inmemory,
    "redis": _redis,
}


def get_transport(
    backend: Optional[str] = None, config: Optional[IntentflowConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, ``INTENTFLOW_TRANSPORT`` or the config."""
    config = config or load_config()
    name = (backend or os.getenv("INTENTFLOW_TRANSPORT") or config.transport.backend).lower()
    try:
        factory = TRANSPORT_BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unsupported transport backend: {name}") from None
    return factory(config)


__all__ = ["BaseTransport", "InMemoryTransport", "TRANSPORT_BACKENDS", "get_transport"]
