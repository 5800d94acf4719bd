"""
Hybrid search scoring utilities.

Pure functions shared by the retrieval engine:
- Lexical scoring with fixed additive weights
- Fusion of semantic and lexical result lists by memory id
- Stable ranking and truncation
"""

from ..models.memory import Memory
from ..models.search import SearchResult

# Lexical score weights
TITLE_MATCH_WEIGHT = 0.8
CONTENT_MATCH_WEIGHT = 0.5
EXACT_MATCH_BONUS = 0.3
MAX_TEXT_SCORE = 1.0


def calculate_text_score(title: str | None, content: str, query: str) -> float:
    """
    Deterministic lexical relevance in [0, 1].

    +0.8 if the title contains the query, +0.5 if the content contains it,
    +0.3 if either equals it exactly (all case-insensitive), clamped to 1.0.

    Args:
        title: Memory title (may be None)
        content: Memory body
        query: Raw query text

    Returns:
        Score between 0.0 and 1.0
    """
    lower_query = query.lower()
    lower_title = (title or "").lower()
    lower_content = content.lower()

    score = 0.0
    if lower_query in lower_title:
        score += TITLE_MATCH_WEIGHT
    if lower_query in lower_content:
        score += CONTENT_MATCH_WEIGHT
    if lower_title == lower_query or lower_content == lower_query:
        score += EXACT_MATCH_BONUS

    return min(score, MAX_TEXT_SCORE)


def score_text_matches(memories: list[Memory], query: str) -> list[SearchResult]:
    """Wrap lexical matches as ``text`` results."""
    return [
        SearchResult(
            memory=memory,
            score=calculate_text_score(memory.title, memory.content, query),
            match_type="text",
        )
        for memory in memories
    ]


def merge_results(semantic_results: list[SearchResult], text_results: list[SearchResult]) -> list[SearchResult]:
    """
    Fuse two result lists by memory id.

    An id found by one path keeps its score and match type.  An id found by
    both gets the arithmetic mean of the two scores and match type ``hybrid``.
    Discovery order (semantic first, then new text hits) is preserved.

    Returns:
        New list; the inputs are not mutated
    """
    merged: dict[str, SearchResult] = {}

    for result in semantic_results:
        merged.setdefault(result.memory.id, result)

    for result in text_results:
        existing = merged.get(result.memory.id)
        if existing is None:
            merged[result.memory.id] = result
        else:
            merged[result.memory.id] = SearchResult(
                memory=existing.memory,
                score=(existing.score + result.score) / 2,
                match_type="hybrid",
            )

    return list(merged.values())


def rank_results(results: list[SearchResult], limit: int) -> list[SearchResult]:
    """Sort by score descending (stable, so ties keep discovery order) and truncate."""
    if limit <= 0:
        return []
    return sorted(results, key=lambda r: r.score, reverse=True)[:limit]
