"""Translate ``SearchFilters`` into backend predicates.

Both the vector index and the relational store receive the same closed set of
filters (kind equality, any-tag match, creation-time range) so the semantic
and lexical paths of a hybrid search see the same candidate population.
"""

from typing import Any

from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue, Range

from ..models.search import SearchFilters

USER_ID_KEY = "userId"
MEMORY_ID_KEY = "memoryId"
TYPE_KEY = "type"
TAGS_KEY = "tags"
TIMESTAMP_KEY = "timestamp"


def to_qdrant_filter(user_id: str, filters: SearchFilters | None = None) -> Filter:
    """Build a Qdrant ``Filter`` that always pins ``userId``.

    Args:
        user_id: Owner whose vectors may be returned; never optional
        filters: Additional constraints, applied conjunctively

    Returns:
        Filter with every condition under ``must``
    """
    if not user_id:
        raise ValueError("user_id is required for vector queries")

    must: list[Any] = [FieldCondition(key=USER_ID_KEY, match=MatchValue(value=user_id))]

    if filters is not None:
        if filters.kind:
            must.append(FieldCondition(key=TYPE_KEY, match=MatchValue(value=filters.kind)))
        if filters.tags:
            # MatchAny on an array payload field: at least one tag in common
            must.append(FieldCondition(key=TAGS_KEY, match=MatchAny(any=list(filters.tags))))
        if filters.date_range is not None:
            start = filters.date_range.start_millis
            end = filters.date_range.end_millis
            if start is not None or end is not None:
                must.append(FieldCondition(key=TIMESTAMP_KEY, range=Range(gte=start, lte=end)))

    return Filter(must=must)


def to_sql_clauses(filters: SearchFilters | None) -> tuple[list[str], list[Any]]:
    """Build SQL ``WHERE`` fragments and bound parameters for the memories table.

    Returns:
        (clauses, params) to be AND-ed onto an existing owner-scoped query
    """
    clauses: list[str] = []
    params: list[Any] = []
    if filters is None:
        return clauses, params

    if filters.kind:
        clauses.append("kind = ?")
        params.append(filters.kind)
    if filters.tags:
        placeholders = ", ".join("?" for _ in filters.tags)
        clauses.append(f"EXISTS (SELECT 1 FROM json_each(memories.tags) WHERE json_each.value IN ({placeholders}))")
        params.extend(filters.tags)
    if filters.date_range is not None:
        if filters.date_range.start_millis is not None:
            clauses.append("timestamp >= ?")
            params.append(filters.date_range.start_millis)
        if filters.date_range.end_millis is not None:
            clauses.append("timestamp <= ?")
            params.append(filters.date_range.end_millis)

    return clauses, params
