"""Domain exceptions and failure classification helpers.

The resilience core never wraps a failing operation's exception when it
surfaces it. Instead the retry engine annotates the original exception with
the terminal outcome and attempt count (`retry_outcome`, `retry_attempts`)
and a PEP 678 note, so callers keep `except SomeError` semantics and can
still inspect what happened via `error_kind()` and `attempts_of()`.
"""

from enum import StrEnum
from typing import Optional

from dogs_service.core.models.problem import ProblemResponse


class ErrorKind(StrEnum):
    retryable = "retryable"
    non_retryable = "non_retryable"
    exhausted = "exhausted"
    cancelled = "cancelled"
    gate_closed = "gate_closed"
    retry_internal = "retry_internal"


class ResilienceError(Exception):
    """Base class for failures raised by the resilience core itself."""

    kind: ErrorKind


class GateClosed(ResilienceError):
    """Admission was attempted after the gate was shut down."""

    kind = ErrorKind.gate_closed

    def __init__(self, gate_name: str):
        self.gate_name = gate_name
        super().__init__(f"Admission gate '{gate_name}' is closed")


class CallCancelled(ResilienceError):
    """The call's cancellation signal fired at a suspension point.

    The most recent in-flight failure, if any, is chained as ``__cause__``.
    """

    kind = ErrorKind.cancelled

    def __init__(self, message: str = "Call cancelled", attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class RetryInternal(ResilienceError):
    """An invariant of the retry engine was violated (e.g. the timer failed)."""

    kind = ErrorKind.retry_internal


class OperationWrapperError(Exception):
    """Generic container error hiding the real failure in ``__cause__``.

    Raise it as ``raise OperationWrapperError(...) from original``; the retry
    engine classifies the original, not the container.
    """


# --- Upstream / domain errors ---

class UpstreamError(Exception):
    """Outbound HTTP call failed; carries a problem body for the web layer."""

    def __init__(self, response: ProblemResponse):
        self.response = response
        super().__init__(f"{response.title} ({response.status}): {response.detail}")


class TransientUpstreamError(UpstreamError):
    """Upstream failure worth retrying (timeouts, connection errors, 502/503/504)."""

    pass


class BadError(Exception):
    """Failure raised by the risky demo client; retryable by declaration."""

    pass


# --- Outcome annotation ---

_OUTCOME_ATTR = "retry_outcome"
_ATTEMPTS_ATTR = "retry_attempts"


def annotate(exc: BaseException, kind: ErrorKind, attempts: int) -> BaseException:
    """Tag an exception with its terminal outcome without changing its identity.

    The note is added once; a re-raised or nested exception only has its
    attributes refreshed.
    """
    annotated = hasattr(exc, _OUTCOME_ATTR)
    setattr(exc, _OUTCOME_ATTR, kind)
    setattr(exc, _ATTEMPTS_ATTR, attempts)
    if not annotated:
        exc.add_note(f"[resilience] outcome={kind} attempts={attempts}")
    return exc


def error_kind(exc: BaseException) -> Optional[ErrorKind]:
    if isinstance(exc, ResilienceError):
        return exc.kind
    return getattr(exc, _OUTCOME_ATTR, None)


def attempts_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, CallCancelled):
        return exc.attempts
    return getattr(exc, _ATTEMPTS_ATTR, None)


def unwrap(
    exc: BaseException,
    wrapper_types: tuple[type[BaseException], ...] = (),
) -> BaseException:
    """Peel generic containers so classification sees the original failure.

    Single-member exception groups are replaced by their member; instances of
    `OperationWrapperError` (or of `wrapper_types`) by their ``__cause__``.
    """
    wrappers = (OperationWrapperError, *wrapper_types)
    seen: set[int] = set()
    current = exc
    while id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, BaseExceptionGroup) and len(current.exceptions) == 1:
            current = current.exceptions[0]
        elif isinstance(current, wrappers) and current.__cause__ is not None:
            current = current.__cause__
        else:
            break
    return current
