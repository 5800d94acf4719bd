# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Abstract storage interfaces.

``MemoryRepository`` persists memory records; ``VectorIndex`` owns the
user-partitioned similarity index.  The services only talk to these
interfaces so tests can substitute fakes or ``AsyncMock(spec=...)``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..models.memory import Memory
from ..models.search import SearchFilters


@dataclass
class VectorMatch:
    """One nearest-neighbour hit returned by the vector index."""

    memory_id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    point_id: str | None = None


class MemoryRepository(ABC):
    """Persistence contract for memory records. Every call is scoped to an owner."""

    async def initialize(self) -> None:
        """Prepare the backing store (idempotent)."""

    @abstractmethod
    async def create(self, memory: Memory) -> Memory:
        """Insert a new record and return it."""

    @abstractmethod
    async def get(self, memory_id: str, owner_id: str) -> Memory | None:
        """Fetch one record, or None if it does not exist for this owner."""

    @abstractmethod
    async def get_many(self, memory_ids: list[str], owner_id: str) -> list[Memory]:
        """Fetch records in the order of ``memory_ids``, skipping unknown ids."""

    @abstractmethod
    async def list_memories(self, owner_id: str, limit: int = 50, offset: int = 0, kind: str | None = None) -> list[Memory]:
        """List records newest first."""

    @abstractmethod
    async def count(self, owner_id: str, kind: str | None = None) -> int:
        """Count records matching the same filters as ``list_memories``."""

    @abstractmethod
    async def update(self, memory: Memory) -> Memory:
        """Replace the mutable fields of an existing record."""

    @abstractmethod
    async def touch(self, memory_id: str, owner_id: str) -> None:
        """Refresh ``last_accessed_at``."""

    @abstractmethod
    async def delete(self, memory_id: str, owner_id: str) -> bool:
        """Delete a record; returns False when it did not exist."""

    @abstractmethod
    async def text_search(
        self,
        owner_id: str,
        query: str,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[Memory]:
        """Records whose title or content contains ``query`` (case-insensitive), newest first."""

    @abstractmethod
    async def list_unembedded(self, owner_id: str | None = None, limit: int = 100) -> list[Memory]:
        """Records without an embedding reference, oldest first."""

    async def close(self) -> None:
        """Release resources."""


class VectorIndex(ABC):
    """Contract for the nearest-neighbour index."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """True once the index has been provisioned and is serving requests."""

    @abstractmethod
    async def ensure_index(self) -> None:
        """Create the index if it does not exist (idempotent)."""

    @abstractmethod
    async def upsert(self, vector: list[float], metadata: dict[str, Any], point_id: str | None = None) -> str:
        """Write or overwrite one entry and return its id."""

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        user_id: str,
        top_k: int,
        filters: SearchFilters | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours owned by ``user_id``, best first."""

    @abstractmethod
    async def update_metadata(self, point_id: str, metadata: dict[str, Any]) -> None:
        """Overwrite payload fields of an existing entry."""

    @abstractmethod
    async def delete(self, point_id: str) -> None:
        """Remove one entry; deleting an unknown id is not an error."""

    @abstractmethod
    async def fetch(self, point_id: str) -> VectorMatch | None:
        """Fetch one entry by id."""

    async def health(self) -> dict[str, Any]:
        return {"available": self.is_available}

    async def close(self) -> None:
        """Release resources."""
