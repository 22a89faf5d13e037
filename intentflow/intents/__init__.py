"""Intent routing and execution."""

from __future__ import annotations

from .aliases import INTENT_ALIASES, normalize_intent
from .executor import IntentExecutor
from .handlers import AUTOMATION_EVENT_INTENTS, default_route_table, default_routes
from .routes import IntentContext, IntentRoute, IntentRouteTable

__all__ = [
    "AUTOMATION_EVENT_INTENTS",
    "INTENT_ALIASES",
    "IntentContext",
    "IntentExecutor",
    "IntentRoute",
    "IntentRouteTable",
    "default_route_table",
    "default_routes",
    "normalize_intent",
]
