"""
Loop Errors
===========

Error taxonomy for the iteration loop.

Failures local to a single work item (transport, gates) are absorbed into
that item's trajectory. Missing work items are always surfaced to the
caller, and a failed durable write halts the loop.
"""

from typing import List, Optional


class LoopForgeError(Exception):
    """Base class for all loop errors."""


class NotFoundError(LoopForgeError):
    """A referenced work item id does not exist in the registry."""

    def __init__(self, item_id: str):
        super().__init__(f"Work item not found: {item_id}")
        self.item_id = item_id


class TransportError(LoopForgeError):
    """The text-generation call failed or timed out."""

    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out

    @property
    def reason(self) -> str:
        return "timeout" if self.timed_out else str(self)


class GateFailure(LoopForgeError):
    """One or more quality gates failed."""

    def __init__(self, gates: List[str], details: Optional[str] = None):
        message = f"Quality gates failed: {', '.join(gates)}"
        if details:
            message = f"{message} ({details})"
        super().__init__(message)
        self.gates = list(gates)
        self.details = details


class PersistenceError(LoopForgeError):
    """A durable write failed. The loop must stop."""

    def __init__(self, target: str, cause: Optional[BaseException] = None):
        message = f"Failed to persist {target}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.target = target
        self.cause = cause
