"""HTTP client for the external cat facts API.

`facts()` is protected at construction time: an admission gate bounds the
number of concurrent requests and transient upstream failures are retried.
"""

from typing import Optional

from pydantic import ValidationError

from dogs_service.core.config import ResilienceConfig
from dogs_service.core.exceptions import UpstreamError
from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.interfaces.clock import ClockPort
from dogs_service.core.interfaces.http_client import HttpClientPort
from dogs_service.core.interfaces.retry import RetryPort
from dogs_service.core.models.cat_fact import CatFactsResponse
from dogs_service.core.models.problem import ProblemResponse
from dogs_service.core.resilience.binding import protect
from dogs_service.core.resilience.gate import AdmissionGate
from dogs_service.core.settings import logger


class CatFactsHttpClient:
    def __init__(
        self,
        http_client: HttpClientPort,
        url: str,
        config: Optional[ResilienceConfig] = None,
        timeout: float | None = None,
        call_events: Optional[CallEventSink] = None,
        retry: Optional[RetryPort] = None,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self._http = http_client
        self.url = url
        self.timeout = timeout
        self.config = config or ResilienceConfig()
        self.facts = protect(
            self._fetch_facts,
            gate_policy=self.config.cat_facts_gate_policy(),
            retry_policy=self.config.cat_facts_retry_policy(),
            retry=retry,
            sink=call_events,
            clock=clock,
            name="CatFactsHttpClient.facts",
        )

    @property
    def gate(self) -> AdmissionGate:
        return self.facts.gate

    async def _fetch_facts(self) -> CatFactsResponse:
        logger.debug(f"[cat-facts:get] url={self.url}")
        payload = await self._http.get(self.url, timeout=self.timeout)
        try:
            return CatFactsResponse.model_validate(payload)
        except ValidationError as exc:
            logger.error(f"[cat-facts:parse] unexpected payload url={self.url} error={exc}")
            raise UpstreamError(
                ProblemResponse(
                    title="Invalid Response Content",
                    status=502,
                    detail="The cat facts service returned an unexpected payload.",
                )
            ) from exc

    def close(self) -> None:
        self.gate.shutdown()
