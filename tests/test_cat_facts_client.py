"""Tests for the cat facts client and its protection policies."""

import asyncio

import pytest
from aioresponses import aioresponses
from yarl import URL

from conftest import spin_until
from dogs_service.adapters.aiohttp_client_adapter import AioHttpClientAdapter
from dogs_service.adapters.cat_facts_client import CatFactsHttpClient
from dogs_service.core.config import ResilienceConfig
from dogs_service.core.exceptions import (
    ErrorKind,
    GateClosed,
    TransientUpstreamError,
    UpstreamError,
    attempts_of,
    error_kind,
)
from dogs_service.core.interfaces.http_client import HttpClientPort
from dogs_service.core.models.call_record import CallOutcome
from dogs_service.core.models.problem import ProblemResponse

FACTS_URL = "http://cat-facts.test/facts"

FACTS_PAYLOAD = {
    "facts": [
        {"fact_number": 1, "fact": "Cats sleep 70% of their lives."},
        {"fact_number": 2, "fact": "A group of cats is called a clowder."},
    ]
}


class ScriptedHttpClient(HttpClientPort):
    """HttpClientPort that replays a script of payloads and exceptions."""

    def __init__(self, script, hold: asyncio.Event | None = None):
        self.script = list(script)
        self.hold = hold
        self.requests = []
        self.active = 0
        self.peak = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.hold is not None:
                await self.hold.wait()
            step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
            if isinstance(step, BaseException):
                raise step
            return step
        finally:
            self.active -= 1

    async def close(self):
        pass


def transient(status=503):
    return TransientUpstreamError(ProblemResponse(title="Upstream HTTP Error", status=status, detail=f"status {status}"))


def permanent(status=404):
    return UpstreamError(ProblemResponse(title="Upstream HTTP Error", status=status, detail=f"status {status}"))


async def test_facts_are_parsed(engine):
    http = ScriptedHttpClient([FACTS_PAYLOAD])
    client = CatFactsHttpClient(http, FACTS_URL, timeout=3.0, retry=engine)

    response = await client.facts()

    assert [f.fact_number for f in response.facts] == [1, 2]
    assert http.requests == [(FACTS_URL, 3.0)]


async def test_transient_failures_are_retried(engine, sink):
    http = ScriptedHttpClient([transient(), transient(504), FACTS_PAYLOAD])
    client = CatFactsHttpClient(http, FACTS_URL, retry=engine, call_events=sink)

    response = await client.facts()

    assert len(response.facts) == 2
    assert len(http.requests) == 3
    assert [o for _, o in sink.outcomes()] == [CallOutcome.retry, CallOutcome.retry, CallOutcome.success]
    assert sink.records[-1].operation == "CatFactsHttpClient.facts"


async def test_permanent_failure_is_not_retried(engine):
    error = permanent()
    http = ScriptedHttpClient([error])
    client = CatFactsHttpClient(http, FACTS_URL, retry=engine)

    with pytest.raises(UpstreamError) as excinfo:
        await client.facts()

    assert excinfo.value is error
    assert len(http.requests) == 1
    assert error_kind(excinfo.value) == ErrorKind.non_retryable


async def test_retries_are_bounded_by_config(engine):
    http = ScriptedHttpClient([transient()])
    config = ResilienceConfig(cat_facts_max_attempts=2)
    client = CatFactsHttpClient(http, FACTS_URL, config=config, retry=engine)

    with pytest.raises(TransientUpstreamError) as excinfo:
        await client.facts()

    assert len(http.requests) == 2
    assert error_kind(excinfo.value) == ErrorKind.exhausted
    assert attempts_of(excinfo.value) == 2


async def test_invalid_payload_is_bad_gateway(engine):
    http = ScriptedHttpClient([{"facts": [{"number": "one"}]}])
    client = CatFactsHttpClient(http, FACTS_URL, retry=engine)

    with pytest.raises(UpstreamError) as excinfo:
        await client.facts()

    assert excinfo.value.response.status == 502
    assert len(http.requests) == 1


async def test_concurrent_requests_are_bounded(engine):
    hold = asyncio.Event()
    http = ScriptedHttpClient([FACTS_PAYLOAD], hold=hold)
    client = CatFactsHttpClient(http, FACTS_URL, config=ResilienceConfig(cat_facts_concurrency=3), retry=engine)

    tasks = [asyncio.create_task(client.facts()) for _ in range(8)]
    await spin_until(lambda: client.gate.waiting == 5)

    assert http.active == 3
    hold.set()
    await asyncio.gather(*tasks)
    assert http.peak == 3
    assert len(http.requests) == 8


async def test_close_refuses_further_requests(engine):
    http = ScriptedHttpClient([FACTS_PAYLOAD])
    client = CatFactsHttpClient(http, FACTS_URL, retry=engine)

    client.close()

    with pytest.raises(GateClosed):
        await client.facts()
    assert http.requests == []


async def test_end_to_end_with_aiohttp_retries_on_503(engine):
    with aioresponses() as m:
        m.get(FACTS_URL, status=503, body="busy")
        m.get(FACTS_URL, status=503, body="busy")
        m.get(FACTS_URL, payload=FACTS_PAYLOAD, status=200)

        async with AioHttpClientAdapter() as http:
            client = CatFactsHttpClient(http, FACTS_URL, retry=engine)
            response = await client.facts()

        assert len(response.facts) == 2
        assert len(m.requests[("GET", URL(FACTS_URL))]) == 3


async def test_end_to_end_with_aiohttp_does_not_retry_404(engine):
    with aioresponses() as m:
        m.get(FACTS_URL, status=404, body="missing")
        m.get(FACTS_URL, payload=FACTS_PAYLOAD, status=200)

        async with AioHttpClientAdapter() as http:
            client = CatFactsHttpClient(http, FACTS_URL, retry=engine)
            with pytest.raises(UpstreamError) as excinfo:
                await client.facts()

        assert excinfo.value.response.status == 404
        assert len(m.requests[("GET", URL(FACTS_URL))]) == 1
