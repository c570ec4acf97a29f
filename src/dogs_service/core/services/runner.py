"""Startup runner: exercises the catalog, the cat facts API and the risky client once."""

from typing import List, Optional

from pydantic import BaseModel, Field

from dogs_service.core.exceptions import CallCancelled, GateClosed, UpstreamError
from dogs_service.core.interfaces.cat_facts import CatFactsPort
from dogs_service.core.interfaces.dog_repository import DogRepositoryPort
from dogs_service.core.models.cat_fact import CatFact
from dogs_service.core.models.dog import Dog
from dogs_service.core.services.risky_client import RiskyClient
from dogs_service.core.settings import logger


class StartupReport(BaseModel):
    dogs: List[Dog] = Field(default_factory=list)
    prancers: List[Dog] = Field(default_factory=list)
    facts: List[CatFact] = Field(default_factory=list)
    facts_error: Optional[str] = None
    risky_attempts: int = 0


class StartupRunner:
    def __init__(
        self,
        repository: DogRepositoryPort,
        facts: CatFactsPort,
        client: RiskyClient,
        search_name: str = "Prancer",
    ) -> None:
        self._repo = repository
        self._facts = facts
        self._client = client
        self.search_name = search_name

    async def run(self) -> StartupReport:
        report = StartupReport()

        report.dogs = list(await self._repo.find_all())
        for dog in report.dogs:
            logger.info(f"[runner:dog] {dog}")

        report.prancers = list(await self._repo.find_by_name(self.search_name))
        for dog in report.prancers:
            logger.info(f"[runner:search] name={self.search_name} {dog}")

        try:
            response = await self._facts.facts()
            report.facts = list(response.facts)
            for fact in report.facts:
                logger.info(f"[runner:fact] {fact.fact_number}: {fact.fact}")
        except (UpstreamError, GateClosed, CallCancelled) as exc:
            # the external API being down must not keep the service from starting
            report.facts_error = str(exc)
            logger.warning(f"[runner:fact] cat facts unavailable error={exc}")

        await self._client.do_something_that_might_fail()
        report.risky_attempts = self._client.count
        return report
