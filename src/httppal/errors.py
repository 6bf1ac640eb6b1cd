from __future__ import annotations


class EngineError(Exception):
    """Base class for batch-level engine errors."""


class RequestValidationError(EngineError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Concurrent execution validation failed: " + "; ".join(self.errors))


class FatalSchedulingError(EngineError):
    """The run could not be scheduled or its workers broke down; no result exists."""


class CallAborted(EngineError):
    """Raised by a transport when cancellation interrupts an in-flight call."""
