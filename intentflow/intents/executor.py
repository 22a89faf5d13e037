"""Single entry point for executing UI intents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..capabilities import CapabilityRegistry
from ..contracts import ErrorKind, Intent, IntentResult
from .aliases import normalize_intent
from .handlers import default_route_table
from .routes import IntentContext, IntentRouteTable, toast

if TYPE_CHECKING:
    from ..bridge import BridgeContext, EventBridge

logger = logging.getLogger(__name__)


class IntentExecutor:
    """Dispatch intents to capability handlers and hand off emitted events.

    ``execute`` never raises: unknown names, missing capabilities and manager
    exceptions all come back as a failed :class:`IntentResult`. Emitted events
    are passed to the bridge without waiting for workflow ingestion.
    """

    def __init__(
        self,
        capabilities: CapabilityRegistry,
        routes: Optional[IntentRouteTable] = None,
        bridge: Optional["EventBridge"] = None,
        context: Optional["BridgeContext"] = None,
        strict: bool = False,
    ) -> None:
        self._capabilities = capabilities
        self._routes = routes or default_route_table()
        self._bridge = bridge
        self._context = context
        self._routes.validate(capabilities, strict=strict)

    @property
    def routes(self) -> IntentRouteTable:
        return self._routes

    def normalize(self, name: str) -> str:
        return normalize_intent(name, canonical=self._routes, aliases=self._routes.aliases)

    def can_handle(self, name: str) -> bool:
        return self.normalize(name) in self._routes

    def supported_intents(self) -> List[str]:
        return self._routes.names()

    async def execute(
        self,
        intent: Intent | str,
        payload: Optional[Dict[str, Any]] = None,
        context: Optional["BridgeContext"] = None,
    ) -> IntentResult:
        """Execute ``intent`` and return its structured result."""
        if isinstance(intent, str):
            intent = Intent(name=intent, payload=payload or {})

        name = self.normalize(intent.name)
        if name != intent.name:
            intent = Intent(name=name, payload=intent.payload)
        logger.info(f"Executing intent {intent.name}")

        result = await self._invoke(intent)
        await self._apply_directives(result)

        if result.events and self._bridge is not None:
            self._bridge.publish(result.events, context or self._context)
        return result

    async def _invoke(self, intent: Intent) -> IntentResult:
        route = self._routes.get(intent.name)
        if route is None:
            logger.warning(f"No handler for intent: {intent.name}")
            result = IntentResult.fail(
                ErrorKind.UNKNOWN_INTENT, f"Unknown intent: {intent.name}"
            )
            return result.model_copy(update={"intent": intent.name})

        missing = self._capabilities.missing(route.requires)
        if missing:
            names = ", ".join(c.value for c in missing)
            logger.error(f"Intent {intent.name} requires unregistered capabilities: {names}")
            result = IntentResult.fail(
                ErrorKind.MANAGER_FAILURE,
                f"Capabilities not registered: {names}",
                directives=[toast("Something went wrong. Please try again.", "error")],
            )
            return result.model_copy(update={"intent": intent.name})

        ctx = IntentContext(
            intent=intent,
            capabilities=self._capabilities,
            context=self._context.model_dump() if self._context is not None else {},
        )
        try:
            result = await route.handler(ctx)
        except Exception as e:
            logger.exception(f"Error executing intent {intent.name}: {e}")
            result = IntentResult.fail(
                ErrorKind.MANAGER_FAILURE,
                str(e) or e.__class__.__name__,
                directives=[toast("Something went wrong. Please try again.", "error")],
            )
        return result.model_copy(update={"intent": intent.name})

    async def _apply_directives(self, result: IntentResult) -> None:
        """Dispatch UI directives through the same route table.

        A directive whose capability is absent is skipped; a failing directive
        is logged and does not change the outcome of the original intent.
        """
        for directive in result.directives:
            route = self._routes.get(directive.name)
            if route is None or self._capabilities.missing(route.requires):
                logger.debug(f"Skipping directive {directive.name}: no capability registered")
                continue
            outcome = await self._invoke(directive)
            if not outcome.success:
                logger.warning(
                    f"Directive {directive.name} failed: "
                    f"{outcome.error.message if outcome.error else 'unknown error'}"
                )
