"""Search request/response models.

``SearchFilters`` is a closed set: unknown filter keys are rejected instead of
being passed through to the vector index.
"""

from datetime import datetime, timezone
from typing import Any, Self

from dateutil import parser as dateutil_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .memory import Memory
from .validators import MatchType, MemoryKind, SearchType, Tags

MAX_SEARCH_LIMIT = 100


def _to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class DateRange(BaseModel):
    """Inclusive creation-time window; either bound may be omitted."""

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_iso(cls, v: Any) -> Any:
        # Accept plain dates ("2024-05-01") as well as full ISO-8601 timestamps
        if isinstance(v, str):
            try:
                return dateutil_parser.isoparse(v)
            except (ValueError, OverflowError) as e:
                raise ValueError(f"Invalid ISO-8601 date: {v}") from e
        return v

    @model_validator(mode="after")
    def check_order(self) -> Self:
        if self.start and self.end and self.start_millis > self.end_millis:
            raise ValueError("dateRange.start must not be after dateRange.end")
        return self

    @property
    def start_millis(self) -> int | None:
        return _to_millis(self.start) if self.start else None

    @property
    def end_millis(self) -> int | None:
        return _to_millis(self.end) if self.end else None


class SearchFilters(BaseModel):
    """Recognised search filters, applied conjunctively."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="forbid")

    kind: MemoryKind | None = Field(default=None, alias="type")
    # Matches memories carrying ANY of these tags
    tags: Tags | None = None
    date_range: DateRange | None = None

    @property
    def is_empty(self) -> bool:
        return self.kind is None and not self.tags and self.date_range is None


class SearchRequest(BaseModel):
    """Request body for ``POST /api/search``."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="forbid")

    query: str
    search_type: SearchType = "hybrid"
    limit: int = Field(default=20, ge=1, le=MAX_SEARCH_LIMIT)
    filters: SearchFilters | None = None

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be empty")
        return v


class SearchResult(BaseModel):
    """One ranked hit. Transient, never persisted."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    memory: Memory
    # Raw index similarity for semantic hits, [0, 1] for text and hybrid hits
    score: float
    match_type: MatchType


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    results: list[SearchResult]
    total: int
    took_ms: float
