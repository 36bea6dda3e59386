"""Decide whether a failed tool call or agent run is worth retrying.

Transient infrastructure problems (rate limits, timeouts, dropped
connections, DNS hiccups, upstream 5xx) are RECOVERABLE. Everything else
is FATAL: retrying the same input would fail the same way.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class Recoverability(str, Enum):
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


# Matched as lowercase substrings of the error message.
RECOVERABLE_PATTERNS = (
    "rate limit",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "enotfound",
    "name or service not known",
    "getaddrinfo",
    "429",
    "502",
    "503",
    "temporarily unavailable",
)


@dataclass(frozen=True)
class ErrorDescription:
    """An error reduced to what classification needs."""
    kind: str
    message: str


def describe_error(error: Any) -> ErrorDescription:
    """Normalize an exception, a runtime error payload, or a plain string."""
    if isinstance(error, ErrorDescription):
        return error
    if isinstance(error, BaseException):
        return ErrorDescription(kind=type(error).__name__, message=str(error))
    if isinstance(error, Mapping):
        message = error.get("message") or error.get("error") or ""
        kind = error.get("type") or error.get("name") or "Error"
        return ErrorDescription(kind=str(kind), message=str(message))
    return ErrorDescription(kind="Error", message="" if error is None else str(error))


def classify_error(error: ErrorDescription) -> Recoverability:
    # Builtin network errors often carry no message; the class name counts too.
    haystack = f"{error.kind} {error.message}".lower()
    if any(pattern in haystack for pattern in RECOVERABLE_PATTERNS):
        return Recoverability.RECOVERABLE
    if error.kind == "ConnectionResetError":
        return Recoverability.RECOVERABLE
    return Recoverability.FATAL


def is_recoverable(error: Any) -> bool:
    return classify_error(describe_error(error)) is Recoverability.RECOVERABLE
