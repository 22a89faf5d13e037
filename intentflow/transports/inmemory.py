"""In-memory transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Dict, Optional, Tuple

from ..contracts import TriggerEvent
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, str]]):
    """Per-topic asyncio queues of serialized triggers.

    Payloads are kept as JSON so consumers decode exactly what a broker would
    hand them. ``poll_interval`` bounds how long a subscriber waits before
    re-checking its lifespan.
    """

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._topics: Dict[str, asyncio.Queue] = {}
        self._poll_interval = poll_interval

    def _queue(self, topic: str) -> asyncio.Queue:
        if topic not in self._topics:
            self._topics[topic] = asyncio.Queue()
        return self._topics[topic]

    def pending(self, topic: str) -> int:
        return self._queue(topic).qsize()

    async def publish(self, topic: str, trigger: TriggerEvent) -> None:
        self._queue(topic).put_nowait(self.encode(trigger))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, str], TriggerEvent]]:
        queue = self._queue(topic)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            timeout = self._poll_interval
            if deadline is not None:
                timeout = max(min(timeout, deadline - loop.time()), 0)
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                continue
            yield (topic, payload), self.decode(payload)

    async def ack(self, raw_message: Tuple[str, str]) -> None:
        pass

    async def nack(self, raw_message: Tuple[str, str], requeue: bool = True) -> None:
        if requeue:
            topic, payload = raw_message
            self._queue(topic).put_nowait(payload)
