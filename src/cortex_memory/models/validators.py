"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped floats and Literal enums so
every model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean, de-duplicated ``list[str]``.

    * ``"a, b, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b ", "a"]`` → ``["a", "b"]``
    * ``None`` → ``[]``

    First-seen order is kept for display.
    """
    if v is None:
        return []
    if isinstance(v, str):
        items = v.split(",")
    elif isinstance(v, list | tuple | set):
        items = [item for item in v if item is not None]
    else:
        return []

    tags: list[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list or None and always yields list[str]."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float within [0.0, 1.0], used for scores and similarities."""

EpochMillis = Annotated[int, Field(ge=0)]
"""Unix epoch timestamp in milliseconds."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

MemoryKind = Literal["note", "task", "checklist", "reminder"]
SearchType = Literal["semantic", "text", "hybrid"]
MatchType = Literal["semantic", "text", "hybrid"]
EdgeType = Literal["semantic", "manual", "tag-based"]
