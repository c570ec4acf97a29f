"""Shared fixtures for the resilience tests."""

import asyncio
from typing import Callable

import pytest

from dogs_service.adapters.clock import VirtualClock
from dogs_service.adapters.retry_tenacity import TenacityRetryAdapter
from dogs_service.core.exceptions import BadError
from dogs_service.core.resilience.events import RecordingCallEventSink


class FlakyOperation:
    """Async operation failing ``failures`` times before returning ``result``.

    Every raised error is kept in ``errors`` so tests can check identity.
    """

    def __init__(self, failures: int, error_cls: type[BaseException] = BadError, result: object = "ok"):
        self.failures = failures
        self.error_cls = error_cls
        self.result = result
        self.calls = 0
        self.errors: list[BaseException] = []

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            err = self.error_cls(f"attempt {self.calls}")
            self.errors.append(err)
            raise err
        return self.result


async def spin_until(predicate: Callable[[], bool], spins: int = 1000) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(spins):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached while spinning the event loop")


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def engine(clock):
    return TenacityRetryAdapter(clock=clock)


@pytest.fixture
def sink():
    return RecordingCallEventSink()
