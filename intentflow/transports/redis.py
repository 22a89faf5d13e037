"""Redis transport for cross-process trigger delivery.

Each topic is a Redis list. Consumers move a payload atomically onto the
topic's processing list and only drop it from there on ack, so a worker that
dies mid-ingestion leaves its trigger recoverable with :meth:`requeue_inflight`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis

from ..contracts import TriggerEvent
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[Tuple[str, str]]):
    """Reliable Redis list queue; raw messages are ``(queue name, payload)``."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        block_timeout: float = 1.0,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.block_timeout = block_timeout
        self._redis: Optional[Any] = None

    @staticmethod
    def queue_name(topic: str) -> str:
        return f"intentflow:{topic}"

    @staticmethod
    def processing_name(queue_name: str) -> str:
        return f"{queue_name}:processing"

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def publish(self, topic: str, trigger: TriggerEvent) -> None:
        client = await self._client()
        await client.lpush(self.queue_name(topic), self.encode(trigger))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, str], TriggerEvent]]:
        client = await self._client()
        queue_name = self.queue_name(topic)
        processing = self.processing_name(queue_name)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            # Oldest payload sits at the right end since publishers LPUSH.
            payload = await client.blmove(
                queue_name, processing, self.block_timeout, src="RIGHT", dest="LEFT"
            )
            if payload is None:
                continue
            try:
                trigger = self.decode(payload)
            except ValueError as e:
                logger.error(f"Dropping malformed trigger on {queue_name}: {e}")
                await client.lrem(processing, 1, payload)
                continue
            yield (queue_name, payload), trigger

    async def ack(self, raw_message: Tuple[str, str]) -> None:
        queue_name, payload = raw_message
        client = await self._client()
        await client.lrem(self.processing_name(queue_name), 1, payload)

    async def nack(self, raw_message: Tuple[str, str], requeue: bool = True) -> None:
        """Drop the in-flight copy and, when ``requeue`` is set, make it next in line."""
        queue_name, payload = raw_message
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_name(queue_name), 1, payload)
            if requeue:
                pipe.rpush(queue_name, payload)
            await pipe.execute()

    async def requeue_inflight(self, topic: str) -> int:
        """Move payloads left on the processing list back onto the queue.

        Only safe when no other consumer of ``topic`` is alive.
        """
        client = await self._client()
        queue_name = self.queue_name(topic)
        processing = self.processing_name(queue_name)
        moved = 0
        # Newest first, so the oldest ends up at the consuming end.
        while await client.lmove(processing, queue_name, src="LEFT", dest="RIGHT"):
            moved += 1
        if moved:
            logger.info(f"Requeued {moved} in-flight trigger(s) on {queue_name}")
        return moved
