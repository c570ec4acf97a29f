"""DogRepositoryPort: port for reading the dog catalog.

Async methods anticipate DB-backed adapters; the in-memory implementation
still uses async for interface uniformity.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from dogs_service.core.models.dog import Dog


class DogRepositoryPort(ABC):
	"""Port abstraction for the dog catalog."""

	@abstractmethod
	async def find_all(self) -> Sequence[Dog]:
		"""Return every dog ordered by id."""
		raise NotImplementedError

	@abstractmethod
	async def find_by_id(self, dog_id: int) -> Optional[Dog]:
		"""Return Dog or None if not found."""
		raise NotImplementedError

	@abstractmethod
	async def find_by_name(self, name: str) -> Sequence[Dog]:
		"""Return dogs whose name equals ``name`` exactly."""
		raise NotImplementedError
