"""Exception types raised inside intentflow."""

from __future__ import annotations


class IntentflowError(Exception):
    """Base class for intentflow errors."""


class ConfigurationError(IntentflowError):
    """Static wiring (routes, capabilities, mappings, definitions) is invalid."""


class CapabilityNotRegistered(IntentflowError):
    """An intent needs a capability the host did not register."""

    def __init__(self, capability: str) -> None:
        super().__init__(f"Capability not registered: {capability}")
        self.capability = capability


class DefinitionNotFound(IntentflowError):
    """A run references a workflow definition that is not registered."""

    def __init__(self, definition_id: str) -> None:
        super().__init__(f"Workflow definition not registered: {definition_id}")
        self.definition_id = definition_id


class StepError(IntentflowError):
    """Base class for errors raised by workflow step bodies."""


class TransientStepError(StepError):
    """Retryable step failure, counted against ``max_retries``."""


class FatalStepError(StepError):
    """Non-retryable step failure; the run fails after this attempt."""


class PublishError(IntentflowError):
    """A transport could not deliver a trigger after all attempts."""
