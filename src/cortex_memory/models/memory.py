"""Memory-related data models.

``Memory`` is the persisted record; ``MemoryCreate`` and ``MemoryUpdate`` are the
write payloads accepted by the HTTP layer.  Python attributes are snake_case,
the wire format is camelCase (``userId``, ``type``, ``embeddingId`` ...).
"""

import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .validators import EpochMillis, MemoryKind, Tags


def now_millis() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChecklistItem(BaseModel):
    """A single entry of a checklist memory."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    text: str
    completed: bool = False


class Memory(BaseModel):
    """A user-owned note, task, checklist or reminder."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1, alias="userId")
    kind: MemoryKind = Field(alias="type")
    title: str | None = None
    content: str = Field(min_length=1)
    tags: Tags = []
    items: list[ChecklistItem] | None = None
    reminder_at: EpochMillis | None = None
    is_pinned: bool = False

    # Reference to the vector point holding this memory's embedding
    embedding_ref: str | None = Field(default=None, alias="embeddingId")
    # Advisory only: targets may have been deleted since
    linked_memory_ids: list[str] = Field(default_factory=list)

    timestamp: EpochMillis = Field(default_factory=now_millis)
    last_accessed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def effective_text(self) -> str:
        """Text that gets embedded: title and content joined, trimmed."""
        return f"{self.title or ''} {self.content}".strip()

    def vector_metadata(self) -> dict[str, Any]:
        """Payload stored next to this memory's vector in the index."""
        return {
            "memoryId": self.id,
            "userId": self.owner_id,
            "type": self.kind,
            "tags": list(self.tags),
            "timestamp": self.timestamp,
        }


class MemoryCreate(BaseModel):
    """Request body for creating a memory."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    kind: MemoryKind = Field(default="note", alias="type")
    title: str | None = None
    content: str = Field(..., description="The memory body; required and non-blank")
    tags: Tags = []
    items: list[ChecklistItem] | None = None
    reminder_at: EpochMillis | None = None
    generate_embedding: bool = True

    @field_validator("title")
    @classmethod
    def blank_title_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class MemoryUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    kind: MemoryKind | None = Field(default=None, alias="type")
    title: str | None = None
    content: str | None = None
    tags: Tags | None = None
    items: list[ChecklistItem] | None = None
    reminder_at: EpochMillis | None = None
    is_pinned: bool | None = None
    generate_embedding: bool = True
