"""Explicitly constructed set of domain managers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..errors import CapabilityNotRegistered, ConfigurationError
from .base import CAPABILITY_PROTOCOLS, Capability

logger = logging.getLogger(__name__)


def _protocol_methods(protocol: type) -> List[str]:
    return [
        name
        for name, value in vars(protocol).items()
        if callable(value) and not name.startswith("_")
    ]


class CapabilityRegistry:
    """Maps :class:`Capability` names to host-supplied managers.

    Managers are checked against their protocol's method surface when
    registered so that a half-implemented manager fails at startup rather
    than on the first intent that needs it.
    """

    def __init__(self, managers: Optional[Dict[Capability, Any]] = None) -> None:
        self._managers: Dict[Capability, Any] = {}
        for capability, manager in (managers or {}).items():
            self.register(capability, manager)

    def register(self, capability: Capability | str, manager: Any) -> None:
        capability = Capability(capability)
        missing = [
            name
            for name in _protocol_methods(CAPABILITY_PROTOCOLS[capability])
            if not callable(getattr(manager, name, None))
        ]
        if missing:
            raise ConfigurationError(
                f"Manager for {capability.value} is missing methods: {', '.join(missing)}"
            )
        if capability in self._managers:
            logger.info(f"Replacing manager for capability {capability.value}")
        self._managers[capability] = manager

    def unregister(self, capability: Capability | str) -> None:
        self._managers.pop(Capability(capability), None)

    def get(self, capability: Capability | str) -> Any | None:
        return self._managers.get(Capability(capability))

    def require(self, capability: Capability | str) -> Any:
        manager = self.get(capability)
        if manager is None:
            raise CapabilityNotRegistered(Capability(capability).value)
        return manager

    def missing(self, required: Iterable[Capability]) -> List[Capability]:
        return [c for c in required if c not in self._managers]

    def __contains__(self, capability: object) -> bool:
        try:
            return Capability(capability) in self._managers
        except ValueError:
            return False

    def __iter__(self):
        return iter(self._managers)

    def __len__(self) -> int:
        return len(self._managers)
