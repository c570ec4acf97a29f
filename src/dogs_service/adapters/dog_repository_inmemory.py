"""In-memory implementation of DogRepositoryPort.

Async-safe using an asyncio.Lock. Seeded with a small catalog; suitable for
local runs and tests.
"""
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

from dogs_service.core.interfaces.dog_repository import DogRepositoryPort
from dogs_service.core.models.dog import Dog

DEFAULT_DOGS = (
    Dog(id=1, name="Dasher", description="a fast dog"),
    Dog(id=2, name="Dancer", description="a graceful dog"),
    Dog(id=3, name="Prancer", description="a demonic, neurotic, man hating, animal hating, children hating dog"),
    Dog(id=4, name="Vixen", description="a clever dog"),
)


class InMemoryDogRepository(DogRepositoryPort):
    def __init__(self, dogs: Iterable[Dog] | None = None) -> None:
        self._dogs: Dict[int, Dog] = {}
        self._lock = asyncio.Lock()
        for dog in DEFAULT_DOGS if dogs is None else dogs:
            if dog.id in self._dogs:
                raise ValueError(f"Dog already exists: {dog.id}")
            self._dogs[dog.id] = dog

    async def find_all(self) -> Sequence[Dog]:
        async with self._lock:
            return [self._dogs[k] for k in sorted(self._dogs)]

    async def find_by_id(self, dog_id: int) -> Optional[Dog]:
        async with self._lock:
            return self._dogs.get(dog_id)

    async def find_by_name(self, name: str) -> Sequence[Dog]:
        async with self._lock:
            result: List[Dog] = [d for d in self._dogs.values() if d.name == name]
            return sorted(result, key=lambda d: d.id)
