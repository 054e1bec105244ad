"""Classification of VIES failures into recoverable and terminal kinds.

VIES reports problems as free text that embeds an error code
(e.g. "MS_UNAVAILABLE"). The code is located by substring match against an
ordered keyword table; the first match wins. Transport failures that carry
no code fall back to a few heuristics on the message text.

Recoverability decides what the check cycle does with a failed check:
recoverable kinds are retried on the next cycle, everything else is parked
in the error bin.
"""

from __future__ import annotations

from enum import Enum


class ValidityErrorKind(str, Enum):
    """Kinds of failure reported by the validity check."""

    SERVICE_UNAVAILABLE = "service_unavailable"
    ENDPOINT_UNAVAILABLE = "endpoint_unavailable"  # member state backend down
    RATE_LIMITED_ENDPOINT = "rate_limited_endpoint"
    RATE_LIMITED_GLOBAL = "rate_limited_global"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"

    @property
    def recoverable(self) -> bool:
        return self not in _TERMINAL_KINDS


_TERMINAL_KINDS = frozenset({ValidityErrorKind.INVALID_INPUT, ValidityErrorKind.UNKNOWN})

# Order matters: first match wins.
KEYWORD_TABLE: tuple[tuple[str, ValidityErrorKind], ...] = (
    ("SERVICE_UNAVAILABLE", ValidityErrorKind.SERVICE_UNAVAILABLE),
    ("MS_UNAVAILABLE", ValidityErrorKind.ENDPOINT_UNAVAILABLE),
    ("MS_MAX_CONCURRENT_REQ", ValidityErrorKind.RATE_LIMITED_ENDPOINT),
    ("GLOBAL_MAX_CONCURRENT_REQ", ValidityErrorKind.RATE_LIMITED_GLOBAL),
    ("TIMEOUT", ValidityErrorKind.TIMEOUT),
    ("CONNECTION_ERROR", ValidityErrorKind.CONNECTION_ERROR),
    ("INVALID_INPUT", ValidityErrorKind.INVALID_INPUT),
)

# Lower-case fragments, checked only when no keyword matched.
_MALFORMED_RESPONSE_HINTS = (
    "expecting value",
    "unexpected response",
    "malformed",
    "invalid json",
    "unexpected token",
    "<html",
)
_CONNECTION_RESET_HINTS = (
    "econnreset",
    "connection reset",
    "connection aborted",
    "server disconnected",
    "remote end closed",
)
_DEADLINE_HINTS = (
    "etimedout",
    "timed out",
    "deadline exceeded",
)


def classify(message: str | None) -> ValidityErrorKind:
    """Map a raw failure message to a ValidityErrorKind."""
    if not message:
        return ValidityErrorKind.UNKNOWN

    for keyword, kind in KEYWORD_TABLE:
        if keyword in message:
            return kind

    lowered = message.lower()
    if any(hint in lowered for hint in _MALFORMED_RESPONSE_HINTS):
        return ValidityErrorKind.SERVICE_UNAVAILABLE
    if any(hint in lowered for hint in _CONNECTION_RESET_HINTS):
        return ValidityErrorKind.CONNECTION_ERROR
    if any(hint in lowered for hint in _DEADLINE_HINTS):
        return ValidityErrorKind.TIMEOUT
    return ValidityErrorKind.UNKNOWN


class ValidityCheckError(Exception):
    """A validity check failed.

    One type for every failure; callers branch on ``kind`` and
    ``recoverable`` instead of on subclasses. When ``kind`` is not given it
    is derived from the message.
    """

    def __init__(self, message: str, kind: ValidityErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind if kind is not None else classify(message)

    @property
    def recoverable(self) -> bool:
        return self.kind.recoverable

    @classmethod
    def from_exception(cls, exc: BaseException) -> ValidityCheckError:
        """Wrap an arbitrary exception raised by the check, classifying its text."""
        if isinstance(exc, cls):
            return exc
        return cls(str(exc) or type(exc).__name__)

    def __repr__(self) -> str:
        return f"<ValidityCheckError kind={self.kind.value} message={self.message!r}>"
