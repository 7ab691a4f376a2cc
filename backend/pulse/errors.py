"""Error taxonomy for the RSVP core.

The HTTP-facing errors subclass ``HTTPException`` so services can raise them
directly and FastAPI renders them with the right status code.
``CollaboratorUnavailable`` is internal only: notifiers raise it and the
dispatcher logs it.
"""
from fastapi import HTTPException, status


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class InvalidState(HTTPException):
    """Operation does not apply to the current state (e.g. joining a cancelled event)."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class Unauthenticated(HTTPException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class VersionMismatch(HTTPException):
    """Client sent a stale event version."""

    def __init__(self, expected: int, got: int):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Version mismatch: expected {expected}, got {got}. Re-fetch and retry.",
        )


class ConcurrencyConflict(HTTPException):
    """A racing writer invalidated the capacity check.

    Retried inside the arbiter; only reaches the client once attempts run out.
    """

    def __init__(self, event_id: str, attempts: int = 0):
        self.event_id = event_id
        self.attempts = attempts
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="RSVP could not be recorded due to concurrent updates. Please retry.",
            headers={"Retry-After": "1"},
        )


class CollaboratorUnavailable(Exception):
    """An external collaborator (notification delivery) failed."""
