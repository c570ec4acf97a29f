from typing import Protocol

from dogs_service.core.models.cat_fact import CatFactsResponse


class CatFactsPort(Protocol):
    async def facts(self) -> CatFactsResponse:  # pragma: no cover - protocol
        """Fetch the current list of cat facts from the external API."""
        ...
