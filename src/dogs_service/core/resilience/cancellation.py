"""Per-call cancellation tokens.

A token is the caller's way of saying "I no longer want the result". It is
observed at the suspension points of a protected call: waiting for a gate
permit and the backoff between attempts. An attempt that is already running
is never interrupted.

Tokens travel either explicitly (``token=`` arguments) or ambiently through
the `current_token` context variable, the same way the correlation id travels
through log records.
"""

from __future__ import annotations

import asyncio
import contextvars
from contextlib import contextmanager
from typing import Any, Awaitable, Iterator, Optional

current_token: contextvars.ContextVar[Optional["CancellationToken"]] = contextvars.ContextVar(
    "cancellation_token", default=None
)


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the signal and wake every waiter. Idempotent."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel_after(self, seconds: float) -> "CancellationToken":
        """Arm a deadline on the running loop; returns self for chaining."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(seconds, self.cancel, "deadline exceeded")
        return self

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"


def resolve_token(token: Optional[CancellationToken] = None) -> Optional[CancellationToken]:
    """Explicit token wins over the ambient one."""
    return token if token is not None else current_token.get()


@contextmanager
def cancellation_scope(token: Optional[CancellationToken] = None) -> Iterator[CancellationToken]:
    """Install ``token`` (or a fresh one) as the ambient token for this context."""
    token = token or CancellationToken()
    reset = current_token.set(token)
    try:
        yield token
    finally:
        current_token.reset(reset)


async def wait_cancellable(aw: Awaitable[Any], token: Optional[CancellationToken]) -> bool:
    """Await ``aw`` unless ``token`` fires first.

    Returns True when ``aw`` completed (its exception, if any, propagates) and
    False when the token fired first, in which case ``aw`` is cancelled. If
    both settle in the same loop iteration, completion wins.
    """
    if token is None:
        await aw
        return True
    if token.cancelled:
        if asyncio.iscoroutine(aw):
            aw.close()
        elif isinstance(aw, asyncio.Future):
            aw.cancel()
        return False

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise
    if task in done:
        waiter.cancel()
        task.result()
        return True
    task.cancel()
    return False
