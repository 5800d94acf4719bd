from .memory import ChecklistItem, Memory, MemoryCreate, MemoryUpdate
from .search import DateRange, SearchFilters, SearchRequest, SearchResponse, SearchResult

__all__ = [
    "ChecklistItem",
    "DateRange",
    "Memory",
    "MemoryCreate",
    "MemoryUpdate",
    "SearchFilters",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
]
