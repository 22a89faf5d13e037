"""Transport seam between the event bridge and ingestion workers.

A transport moves serialized :class:`TriggerEvent` envelopes from the process
that executed an intent to the process that runs workflows. Delivery is at
least once, so ingestion may see the same trigger twice.
"""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import TriggerEvent

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Publish and consume triggers on named topics."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    async def __aenter__(self) -> "BaseTransport[RawMessageT]":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @staticmethod
    def encode(trigger: TriggerEvent) -> str:
        return trigger.to_json()

    @staticmethod
    def decode(payload: str | bytes) -> TriggerEvent:
        """Parse a serialized trigger; raises ``ValueError`` when malformed."""
        return TriggerEvent.model_validate_json(payload)

    @abc.abstractmethod
    async def publish(self, topic: str, trigger: TriggerEvent) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, TriggerEvent]]:
        """Yield ``(raw message, trigger)`` pairs until ``lifespan`` seconds pass.

        ``raw message`` is what :meth:`ack` and :meth:`nack` expect back.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Hand a message back after a failed ingestion (acks when unsupported)."""
        await self.ack(raw_message)

    async def requeue_inflight(self, topic: str) -> int:
        """Return triggers a dead consumer left unacknowledged to ``topic``.

        Returns how many were moved; transports without in-flight tracking
        have nothing to recover.
        """
        return 0
