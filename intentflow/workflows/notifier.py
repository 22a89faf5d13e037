"""Outbound notification boundary used by workflow steps."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from ..contracts import utcnow

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    channel: str
    recipient: Optional[str] = None
    template: str
    data: Dict[str, Any] = Field(default_factory=dict)
    sent_at: Any = Field(default_factory=utcnow)


class Notifier(Protocol):
    """Email, SMS and business notification provider.

    Implementations are opaque side-effecting calls; raising from any of them
    is what the step retry policy reacts to.
    """

    async def send_email(self, to: Optional[str], template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def send_sms(self, to: Optional[str], template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def notify_business(self, business_id: str, template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def record(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...


class LoggingNotifier:
    """Notifier that logs each message and keeps it in ``sent``."""

    def __init__(self) -> None:
        self.sent: List[Notification] = []

    def _keep(self, channel: str, recipient: Optional[str], template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.sent.append(
            Notification(channel=channel, recipient=recipient, template=template, data=dict(data))
        )
        logger.info(f"[{channel}] {template} -> {recipient}")
        return {"sent": True, "channel": channel, "template": template}

    async def send_email(self, to: Optional[str], template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._keep("email", to, template, data)

    async def send_sms(self, to: Optional[str], template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._keep("sms", to, template, data)

    async def notify_business(self, business_id: str, template: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._keep("business", business_id, template, data)

    async def record(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._keep("log", None, kind, data)

    def templates(self, channel: Optional[str] = None) -> List[str]:
        return [n.template for n in self.sent if channel is None or n.channel == channel]
