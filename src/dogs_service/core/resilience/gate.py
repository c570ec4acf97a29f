"""Admission gate: bounded concurrency for a protected operation.

A counting semaphore with strict FIFO hand-off. When a permit is released and
callers are queued, the permit goes directly to the oldest live waiter, so a
burst of late arrivals can never overtake an early caller.

All state is mutated from the event loop thread only; that single thread is
the gate's synchronisation.

Lifecycle: open -> draining (after `shutdown()`) -> closed (once the last
outstanding permit is returned). Only an open gate admits new callers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import AsyncIterator, Deque, Optional

from dogs_service.core.exceptions import CallCancelled, GateClosed
from dogs_service.core.models.policies import GatePolicy
from dogs_service.core.resilience.cancellation import (
    CancellationToken,
    resolve_token,
    wait_cancellable,
)

logger = logging.getLogger(__name__)


class GateState(StrEnum):
    open = "open"
    draining = "draining"
    closed = "closed"


class Permit:
    """Right to run one call. Only its count matters; release it exactly once."""

    __slots__ = ("_gate", "released")

    def __init__(self, gate: "AdmissionGate"):
        self._gate = gate
        self.released = False

    @property
    def gate_name(self) -> str:
        return self._gate.name

    def __repr__(self) -> str:
        return f"<Permit gate={self._gate.name!r} released={self.released}>"


@dataclass(frozen=True)
class GateStats:
    name: str
    state: GateState
    limit: int
    in_flight: int
    waiting: int
    acquired_total: int
    rejected_total: int
    cancelled_total: int
    peak_in_flight: int


class AdmissionGate:
    def __init__(self, policy: GatePolicy, name: str = "gate") -> None:
        self.policy = policy
        self.name = name
        self._available = policy.limit
        self._in_flight = 0
        self._waiters: Deque[asyncio.Future[Permit]] = deque()
        self._state = GateState.open
        self._acquired_total = 0
        self._rejected_total = 0
        self._cancelled_total = 0
        self._peak_in_flight = 0

    @property
    def limit(self) -> int:
        return self.policy.limit

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    def stats(self) -> GateStats:
        return GateStats(
            name=self.name,
            state=self._state,
            limit=self.limit,
            in_flight=self._in_flight,
            waiting=self.waiting,
            acquired_total=self._acquired_total,
            rejected_total=self._rejected_total,
            cancelled_total=self._cancelled_total,
            peak_in_flight=self._peak_in_flight,
        )

    def _issue(self) -> Permit:
        self._in_flight += 1
        self._acquired_total += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        return Permit(self)

    async def acquire(self, token: Optional[CancellationToken] = None) -> Permit:
        """Wait for a permit in arrival order.

        Raises:
            GateClosed: the gate is draining or closed.
            CallCancelled: the token fired while waiting.
        """
        if self._state is not GateState.open:
            self._rejected_total += 1
            raise GateClosed(self.name)

        token = resolve_token(token)
        if token is not None and token.cancelled:
            self._cancelled_total += 1
            raise CallCancelled(f"Cancelled before entering gate '{self.name}'")

        if self._available > 0 and not self.waiting:
            self._available -= 1
            return self._issue()

        fut: asyncio.Future[Permit] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug(
            f"[gate:wait] name={self.name} in_flight={self._in_flight} waiting={len(self._waiters)}"
        )
        try:
            granted = await wait_cancellable(fut, token)
        except asyncio.CancelledError:
            self._abandon(fut)
            raise
        except GateClosed:
            self._rejected_total += 1
            raise

        if not granted:
            self._abandon(fut)
            self._cancelled_total += 1
            logger.debug(f"[gate:cancelled] name={self.name} reason={token.reason if token else None}")
            raise CallCancelled(f"Cancelled while waiting for gate '{self.name}'")
        return fut.result()

    def _abandon(self, fut: asyncio.Future[Permit]) -> None:
        """Forget a waiter that gave up; hand back a permit granted in the meantime."""
        try:
            self._waiters.remove(fut)
        except ValueError:
            pass
        if fut.done() and not fut.cancelled() and fut.exception() is None:
            self.release(fut.result())
        elif not fut.done():
            fut.cancel()

    def release(self, permit: Permit) -> None:
        """Return a permit. Never blocks; a second release is ignored."""
        if permit._gate is not self:
            raise ValueError(f"Permit was not issued by gate '{self.name}'")
        if permit.released:
            logger.warning(f"[gate:release] duplicate release ignored name={self.name}")
            return
        permit.released = True
        self._in_flight -= 1

        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(self._issue())
                return

        self._available += 1
        if self._state is GateState.draining and self._in_flight == 0:
            self._state = GateState.closed
            logger.info(f"[gate:closed] name={self.name}")

    def shutdown(self) -> None:
        """Refuse new callers; queued callers fail with `GateClosed`."""
        if self._state is not GateState.open:
            return
        self._state = GateState.draining
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_exception(GateClosed(self.name))
        if self._in_flight == 0:
            self._state = GateState.closed
        logger.info(f"[gate:shutdown] name={self.name} state={self._state} in_flight={self._in_flight}")

    @asynccontextmanager
    async def permit(self, token: Optional[CancellationToken] = None) -> AsyncIterator[Permit]:
        p = await self.acquire(token)
        try:
            yield p
        finally:
            self.release(p)
