"""
Graph view over a user's memories.

Nodes are memories; edges come from two sources:
- ``semantic``: the links stored at write time (``linked_memory_ids``)
- ``tag-based``: pairs of memories sharing tags, weighted by Jaccard overlap

Edges are undirected and deduplicated.  Links pointing at memories outside
the loaded window (or deleted since) are skipped.
"""

import logging
from itertools import combinations

from ..models.memory import Memory
from ..models.responses import GraphEdge, GraphNode, GraphResponse
from ..storage.base import MemoryRepository

logger = logging.getLogger(__name__)

LABEL_MAX_CHARS = 50
SEMANTIC_EDGE_WEIGHT = 1.0


def _label(memory: Memory) -> str:
    if memory.title:
        return memory.title
    content = memory.content.strip()
    if len(content) <= LABEL_MAX_CHARS:
        return content
    return content[:LABEL_MAX_CHARS].rstrip() + "..."


def tag_similarity(tags_a: list[str], tags_b: list[str]) -> float:
    """Jaccard similarity of two tag sets (0.0 when either is empty)."""
    set_a, set_b = set(tags_a), set(tags_b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


class GraphService:
    """Builds the node/edge view rendered by the graph UI."""

    def __init__(self, repository: MemoryRepository):
        self.repository = repository

    async def build_graph(self, owner_id: str, limit: int = 200) -> GraphResponse:
        memories = await self.repository.list_memories(owner_id, limit=limit, offset=0)
        nodes = [
            GraphNode(id=m.id, label=_label(m), type=m.kind, tags=m.tags, timestamp=m.timestamp) for m in memories
        ]

        known_ids = {m.id for m in memories}
        edges: list[GraphEdge] = []
        seen: set[frozenset[str]] = set()

        for memory in memories:
            for target in memory.linked_memory_ids:
                pair = frozenset((memory.id, target))
                if target not in known_ids or len(pair) < 2 or pair in seen:
                    continue
                seen.add(pair)
                edges.append(GraphEdge(source=memory.id, target=target, weight=SEMANTIC_EDGE_WEIGHT, type="semantic"))

        for a, b in combinations(memories, 2):
            pair = frozenset((a.id, b.id))
            if pair in seen:
                continue
            weight = tag_similarity(a.tags, b.tags)
            if weight > 0:
                seen.add(pair)
                edges.append(GraphEdge(source=a.id, target=b.id, weight=round(weight, 4), type="tag-based"))

        logger.debug(f"Graph for user {owner_id}: {len(nodes)} nodes, {len(edges)} edges")
        return GraphResponse(nodes=nodes, edges=edges)
