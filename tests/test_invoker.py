"""End-to-end tests for the policy-decorated invoker (gate outside retry).

The first six tests are the seed scenarios: eventual success, exhausted
retries, non-retryable short-circuit, the concurrency bound, cancellation
during backoff and FIFO fairness at the gate.
"""

import asyncio
import threading
import time

import pytest
from tenacity import wait_fixed

from conftest import FlakyOperation, spin_until
from dogs_service.core.exceptions import (
    BadError,
    CallCancelled,
    ErrorKind,
    GateClosed,
    attempts_of,
    error_kind,
)
from dogs_service.core.models.call_record import CallOutcome
from dogs_service.core.models.policies import GatePolicy, RetryPolicy, include_types
from dogs_service.core.resilience.cancellation import CancellationToken
from dogs_service.core.resilience.gate import AdmissionGate
from dogs_service.core.resilience.invoker import ResilientInvoker


class OtherError(Exception):
    pass


def bad_policy(max_attempts: int = 4, **kwargs) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, inclusion=include_types(BadError), **kwargs)


def gate_of(limit: int) -> AdmissionGate:
    return AdmissionGate(GatePolicy(limit=limit), name=f"gate-{limit}")


# --- Seed scenarios ---

async def test_eventual_success(engine, sink):
    op = FlakyOperation(failures=2)
    invoker = ResilientInvoker(op, retry_policy=bad_policy(), gate=gate_of(10), retry=engine, sink=sink)

    assert await invoker.invoke() == "ok"

    assert op.calls == 3
    assert sink.outcomes() == [
        (1, CallOutcome.retry),
        (2, CallOutcome.retry),
        (3, CallOutcome.success),
    ]
    assert len({r.call_id for r in sink.records}) == 1


async def test_retries_exhausted(engine, sink):
    op = FlakyOperation(failures=100)
    invoker = ResilientInvoker(op, retry_policy=bad_policy(), retry=engine, sink=sink)

    with pytest.raises(BadError) as excinfo:
        await invoker.invoke()

    assert op.calls == 4
    assert excinfo.value is op.errors[3]
    assert error_kind(excinfo.value) == ErrorKind.exhausted
    assert attempts_of(excinfo.value) == 4
    assert [o for _, o in sink.outcomes()] == [CallOutcome.retry] * 3 + [CallOutcome.exhausted]


async def test_non_retryable_failure_short_circuits(engine, sink):
    op = FlakyOperation(failures=100, error_cls=OtherError)
    invoker = ResilientInvoker(op, retry_policy=bad_policy(), retry=engine, sink=sink)

    with pytest.raises(OtherError) as excinfo:
        await invoker.invoke()

    assert op.calls == 1
    assert excinfo.value is op.errors[0]
    assert error_kind(excinfo.value) == ErrorKind.non_retryable
    assert sink.outcomes() == [(1, CallOutcome.non_retryable)]


async def test_concurrency_bound_holds():
    gate = gate_of(10)
    release = asyncio.Event()
    active = 0
    peak = 0

    async def op():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await release.wait()
        active -= 1
        return "done"

    invoker = ResilientInvoker(op, gate=gate)
    tasks = [asyncio.create_task(invoker.invoke()) for _ in range(50)]
    await spin_until(lambda: gate.waiting == 40)

    assert active == 10
    release.set()
    results = await asyncio.gather(*tasks)

    assert results == ["done"] * 50
    assert peak == 10
    stats = gate.stats()
    assert stats.peak_in_flight == 10
    assert stats.acquired_total == 50
    assert stats.in_flight == 0


async def test_cancellation_during_backoff(engine, clock, sink):
    op = FlakyOperation(failures=100)
    token = CancellationToken()
    invoker = ResilientInvoker(
        op,
        retry_policy=bad_policy(max_attempts=3, backoff=wait_fixed(0.1)),
        gate=gate_of(1),
        retry=engine,
        sink=sink,
    )

    task = asyncio.create_task(invoker.invoke(token))
    await clock.wait_for_sleepers(1)
    await clock.advance(0.05)
    token.cancel()

    with pytest.raises(CallCancelled) as excinfo:
        await task

    assert op.calls == 1
    assert excinfo.value.__cause__ is op.errors[0]
    assert sink.records[-1].outcome == CallOutcome.cancelled
    assert invoker.gate.in_flight == 0


async def test_fifo_fairness_at_the_gate():
    gate = gate_of(1)
    holder = await gate.acquire()
    order = []

    def make_invoker(i: int) -> ResilientInvoker:
        async def op():
            order.append(i)

        return ResilientInvoker(op, gate=gate)

    tasks = []
    for i in range(5):
        tasks.append(asyncio.create_task(make_invoker(i).invoke()))
        await spin_until(lambda: gate.waiting == i + 1)

    gate.release(holder)
    await asyncio.gather(*tasks)

    assert order == [0, 1, 2, 3, 4]


# --- Composition ---

async def test_permit_is_held_once_per_call_not_per_attempt(engine):
    gate = gate_of(1)
    op = FlakyOperation(failures=2)
    other = FlakyOperation(failures=0, result="other")
    retrying = ResilientInvoker(op, retry_policy=bad_policy(), gate=gate, retry=engine)
    plain = ResilientInvoker(other, gate=gate, retry=engine)

    results = await asyncio.gather(retrying.invoke(), plain.invoke())

    assert results == ["ok", "other"]
    # three attempts of the first call used a single permit
    assert gate.stats().acquired_total == 2
    assert gate.stats().peak_in_flight == 1


async def test_result_is_returned_untouched(engine):
    payload = {"facts": [1, 2, 3]}

    async def op():
        return payload

    result = await ResilientInvoker(op, retry_policy=bad_policy(), gate=gate_of(2), retry=engine).invoke()
    assert result is payload


async def test_single_attempt_matches_unwrapped_call(engine):
    op = FlakyOperation(failures=1, error_cls=OtherError)
    invoker = ResilientInvoker(op, retry_policy=RetryPolicy(max_attempts=1, inclusion=lambda e: True), retry=engine)

    with pytest.raises(OtherError) as excinfo:
        await invoker.invoke()
    assert excinfo.value is op.errors[0]
    assert op.calls == 1
    assert await invoker.invoke() == "ok"


async def test_permit_released_on_every_exit_path(engine):
    gate = gate_of(1)

    for op in (FlakyOperation(failures=100), FlakyOperation(failures=100, error_cls=OtherError), FlakyOperation(0)):
        invoker = ResilientInvoker(op, retry_policy=bad_policy(max_attempts=2), gate=gate, retry=engine)
        try:
            await invoker.invoke()
        except (BadError, OtherError):
            pass
        assert gate.in_flight == 0

    assert gate.stats().acquired_total == 3


async def test_gate_closed_is_recorded(engine, sink):
    gate = gate_of(1)
    gate.shutdown()
    op = FlakyOperation(failures=0)

    with pytest.raises(GateClosed):
        await ResilientInvoker(op, gate=gate, retry=engine, sink=sink).invoke()

    assert op.calls == 0
    assert sink.outcomes() == [(0, CallOutcome.gate_closed)]


async def test_cancelled_at_gate_never_runs_operation(engine, sink):
    gate = gate_of(1)
    holder = await gate.acquire()
    op = FlakyOperation(failures=0)
    token = CancellationToken()
    invoker = ResilientInvoker(op, gate=gate, retry=engine, sink=sink)

    task = asyncio.create_task(invoker.invoke(token))
    await spin_until(lambda: gate.waiting == 1)
    token.cancel()

    with pytest.raises(CallCancelled):
        await task

    gate.release(holder)
    assert op.calls == 0
    assert sink.records[-1].outcome == CallOutcome.cancelled


async def test_failing_sink_does_not_break_the_call(engine):
    class ExplodingSink:
        def on_call_event(self, record):
            raise RuntimeError("sink down")

    op = FlakyOperation(failures=1)
    invoker = ResilientInvoker(op, retry_policy=bad_policy(), retry=engine, sink=ExplodingSink())

    assert await invoker.invoke() == "ok"


async def test_sync_operations_run_on_worker_threads():
    gate = gate_of(3)
    lock = threading.Lock()
    active = 0
    peak = 0
    threads = set()

    def blocking_op():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
            threads.add(threading.get_ident())
        time.sleep(0.01)
        with lock:
            active -= 1
        return "done"

    invoker = ResilientInvoker(blocking_op, gate=gate)
    results = await asyncio.gather(*(invoker.invoke() for _ in range(12)))

    assert results == ["done"] * 12
    assert peak <= 3
    assert threading.get_ident() not in threads


async def test_cancelling_the_caller_stops_retrying_and_frees_the_permit(engine):
    gate = gate_of(1)
    started = asyncio.Event()
    calls = 0

    async def op():
        nonlocal calls
        calls += 1
        started.set()
        await asyncio.Event().wait()

    invoker = ResilientInvoker(
        op,
        retry_policy=RetryPolicy(max_attempts=5, inclusion=lambda e: True),
        gate=gate,
        retry=engine,
    )
    task = asyncio.create_task(invoker.invoke())
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls == 1
    assert gate.in_flight == 0
