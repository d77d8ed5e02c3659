"""DK-API outcomes: error taxonomy, Result container, and HTTP status mapping.

Gate, orchestrator, history and caller functions return a Result instead of
raising for expected failures, so the degrade-to-fallback policy is an
explicit branch at each call site.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------
class ErrorKind(str, Enum):
    """Every failure a request can end in."""

    EMPTY_MESSAGE = "EmptyMessage"
    UNKNOWN_MODEL = "UnknownModel"
    MISSING_SESSION = "MissingSession"
    INVALID_SESSION = "InvalidSession"
    MISSING_SESSION_ID = "MissingSessionId"
    SESSION_NOT_FOUND = "SessionNotFound"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    STORE_UNAVAILABLE = "StoreUnavailable"
    UNEXPECTED = "Unexpected"


# HTTP status per kind when surfaced to a caller.  ProviderUnavailable is
# never surfaced (it folds into a 200 with erro=true).
HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.EMPTY_MESSAGE: 400,
    ErrorKind.UNKNOWN_MODEL: 400,
    ErrorKind.MISSING_SESSION: 401,
    ErrorKind.INVALID_SESSION: 401,
    ErrorKind.MISSING_SESSION_ID: 400,
    ErrorKind.SESSION_NOT_FOUND: 404,
    ErrorKind.PROVIDER_UNAVAILABLE: 200,
    ErrorKind.STORE_UNAVAILABLE: 500,
    ErrorKind.UNEXPECTED: 500,
}


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an ErrorKind with a caller-safe message."""

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""  # Caller-facing text (already localized).
    detail: Any = None  # Internal diagnostic; logged, never returned to clients.

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> int:
        """HTTP status for this result (200 when ok)."""
        if self.error is None:
            return 200
        return HTTP_STATUS.get(self.error, 500)

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "", detail: Any = None) -> "Result[T]":
        return cls(error=error, message=message, detail=detail)
