"""Structured error kinds raised by the simulation core.

Callers translate ``kind`` into user-facing messages; the core never
returns prose.
"""

from __future__ import annotations

from typing import Any


class CoreError(Exception):
    kind = "core"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.kind, "details": dict(self.details)}


class ValidationError(CoreError):
    kind = "validation"


class UnknownSpeciesError(ValidationError):
    pass


class ResourceExhaustedError(CoreError):
    kind = "resource_exhausted"


class InsufficientDeviceError(ResourceExhaustedError):
    pass


class ConflictError(CoreError):
    kind = "conflict"


class DuplicateTicketError(ConflictError):
    pass


class InvalidTransitionError(ConflictError):
    pass


class SessionClosedError(ConflictError):
    """Raised for any operation on a session in a terminal state."""


class AlreadyFinishedError(SessionClosedError):
    pass


class NotFoundError(CoreError):
    kind = "not_found"
