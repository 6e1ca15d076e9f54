"""
Stance Core - Error Taxonomy

All errors are synchronous and surfaced to the caller; nothing in the core
retries. A coherence reset is a state transition, not an error.
"""

from typing import Any, List, Optional


class StanceError(Exception):
    """Base class for stance core errors."""


class NotFoundError(StanceError, KeyError):
    """Unknown conversation, model, history, branch or checkpoint id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return f"{self.kind} {self.identifier} not found"


class ValidationError(StanceError, ValueError):
    """
    A constructed Stance, delta or mode config is out of contract.

    For stances built by the controller this means an internal invariant
    was violated, since every merge clamps.
    """

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class VersionControlError(StanceError):
    """Refused version-control operation (duplicate branch, protected branch, ...)."""


class MergeConflictUnresolved(StanceError, UserWarning):
    """
    Warning category for conflicts the requested strategy cannot resolve.

    Emitted through warnings.warn; resolution falls back to 'latest'.
    """
