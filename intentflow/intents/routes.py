"""Static intent dispatch table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..capabilities import Capability, CapabilityRegistry
from ..contracts import EmittedEvent, Intent, IntentResult
from ..errors import ConfigurationError
from ..utils.aio import maybe_await

logger = logging.getLogger(__name__)


@dataclass
class IntentContext:
    """Everything a handler may use while executing one intent."""

    intent: Intent
    capabilities: CapabilityRegistry
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def payload(self) -> Dict[str, Any]:
        return dict(self.intent.payload)

    def manager(self, capability: Capability) -> Any:
        return self.capabilities.require(capability)

    def optional(self, capability: Capability) -> Any | None:
        return self.capabilities.get(capability)

    async def call(self, capability: Capability, method: str, *args: Any) -> Any:
        """Invoke ``method`` on the manager for ``capability``."""
        return await maybe_await(getattr(self.manager(capability), method)(*args))

    def event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> EmittedEvent:
        return EmittedEvent(name=name, payload=payload if payload is not None else self.payload)

    def with_payload(self, payload: Dict[str, Any]) -> "IntentContext":
        return IntentContext(
            intent=Intent(name=self.intent.name, payload=payload),
            capabilities=self.capabilities,
            context=self.context,
        )


IntentHandler = Callable[[IntentContext], Awaitable[IntentResult]]


@dataclass(frozen=True)
class IntentRoute:
    name: str
    handler: IntentHandler
    requires: Tuple[Capability, ...] = ()


class IntentRouteTable:
    """Explicit name -> route registry.

    Built once at startup. ``validate`` reports routes whose capabilities are
    not registered and aliases that point at unknown routes so that wiring
    gaps are visible before the first click.
    """

    def __init__(self, routes: Iterable[IntentRoute] = (), aliases: Optional[Mapping[str, str]] = None) -> None:
        self._routes: Dict[str, IntentRoute] = {}
        self.aliases: Dict[str, str] = dict(aliases or {})
        for route in routes:
            self.add(route)

    def add(self, route: IntentRoute) -> None:
        if route.name in self._routes:
            raise ConfigurationError(f"Duplicate intent route: {route.name}")
        self._routes[route.name] = route

    def get(self, name: str) -> Optional[IntentRoute]:
        return self._routes.get(name)

    def names(self) -> List[str]:
        return sorted(self._routes)

    def __contains__(self, name: object) -> bool:
        return name in self._routes

    def __len__(self) -> int:
        return len(self._routes)

    def validate(self, capabilities: CapabilityRegistry, strict: bool = False) -> List[str]:
        problems: List[str] = []
        for alias, target in self.aliases.items():
            if target not in self._routes:
                problems.append(f"alias {alias!r} points at unknown intent {target!r}")
        for route in self._routes.values():
            missing = capabilities.missing(route.requires)
            if missing:
                names = ", ".join(c.value for c in missing)
                problems.append(f"intent {route.name!r} requires unregistered capabilities: {names}")
        if problems and strict:
            raise ConfigurationError("; ".join(problems))
        for problem in problems:
            logger.warning(f"Intent routing gap: {problem}")
        return problems


# ---------------------------------------------------------------------------
# UI directives are ordinary intents dispatched after the main handler.

def toast(message: str, type: str = "info", duration: Optional[int] = None) -> Intent:
    payload: Dict[str, Any] = {"type": type, "message": message}
    if duration is not None:
        payload["duration"] = duration
    return Intent(name="toast.show", payload=payload)


def open_overlay(overlay_id: str, **payload: Any) -> Intent:
    return Intent(name="overlay.open", payload={"id": overlay_id, **payload})


def close_overlay(overlay_id: str) -> Intent:
    return Intent(name="overlay.close", payload={"id": overlay_id})


def navigate(path: str) -> Intent:
    return Intent(name="nav.goto", payload={"path": path})


def scroll_to(anchor: str) -> Intent:
    return Intent(name="nav.anchor", payload={"anchor": anchor})
