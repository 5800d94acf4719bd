"""HTTP response envelopes.

Typed Pydantic models for every route so FastAPI renders the camelCase wire
format and callers get attribute access instead of dict lookups.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .memory import Memory
from .validators import EdgeType, MemoryKind, Tags, UnitFloat


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class MemoryEnvelope(_CamelModel):
    memory: Memory


class MemoryCreateResponse(_CamelModel):
    memory: Memory
    related_memories: list[Memory] = Field(default_factory=list)


class MemoryListResponse(_CamelModel):
    memories: list[Memory]
    total: int


class RelatedMemoriesResponse(_CamelModel):
    memories: list[Memory]


class ErrorResponse(_CamelModel):
    error: str


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class GraphNode(_CamelModel):
    id: str
    label: str
    type: MemoryKind
    tags: Tags = []
    timestamp: int


class GraphEdge(_CamelModel):
    source: str
    target: str
    weight: UnitFloat
    type: EdgeType


class GraphResponse(_CamelModel):
    nodes: list[GraphNode]
    edges: list[GraphEdge]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(_CamelModel):
    status: str
    timestamp: str
    version: str
    vector_index: dict[str, object] = Field(default_factory=dict)
