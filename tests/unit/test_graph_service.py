"""Unit tests for the memory graph view."""

import pytest

from cortex_memory.models.memory import Memory
from cortex_memory.services.graph_service import tag_similarity


async def _add(repository, memory_id: str, content: str = "x", **fields) -> Memory:
    memory = Memory(id=memory_id, owner_id="alice", kind=fields.pop("kind", "note"), content=content, **fields)
    return await repository.create(memory)


class TestTagSimilarity:
    def test_jaccard(self):
        assert tag_similarity(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)

    def test_identical(self):
        assert tag_similarity(["a"], ["a"]) == 1.0

    def test_empty(self):
        assert tag_similarity([], ["a"]) == 0.0


class TestBuildGraph:
    async def test_semantic_edges_are_undirected_and_deduplicated(self, repository, graph_service):
        await _add(repository, "m1", linked_memory_ids=["m2"])
        await _add(repository, "m2", linked_memory_ids=["m1"])

        graph = await graph_service.build_graph("alice")

        assert {n.id for n in graph.nodes} == {"m1", "m2"}
        assert len(graph.edges) == 1
        edge = graph.edges[0]
        assert edge.type == "semantic"
        assert edge.weight == 1.0
        assert {edge.source, edge.target} == {"m1", "m2"}

    async def test_dangling_links_skipped(self, repository, graph_service):
        await _add(repository, "m1", linked_memory_ids=["deleted"])

        graph = await graph_service.build_graph("alice")
        assert graph.edges == []

    async def test_tag_edges(self, repository, graph_service):
        await _add(repository, "m1", tags=["work", "urgent"])
        await _add(repository, "m2", tags=["work"])
        await _add(repository, "m3", tags=["home"])

        graph = await graph_service.build_graph("alice")

        assert len(graph.edges) == 1
        edge = graph.edges[0]
        assert edge.type == "tag-based"
        assert edge.weight == pytest.approx(0.5)

    async def test_semantic_edge_wins_over_tag_edge(self, repository, graph_service):
        await _add(repository, "m1", tags=["work"], linked_memory_ids=["m2"])
        await _add(repository, "m2", tags=["work"])

        graph = await graph_service.build_graph("alice")
        assert [e.type for e in graph.edges] == ["semantic"]

    async def test_labels(self, repository, graph_service):
        await _add(repository, "m1", content="body", title="Title")
        await _add(repository, "m2", content="y" * 80)

        labels = {n.id: n.label for n in (await graph_service.build_graph("alice")).nodes}
        assert labels["m1"] == "Title"
        assert labels["m2"] == "y" * 50 + "..."

    async def test_scoped_to_owner(self, repository, graph_service):
        await _add(repository, "m1")
        await repository.create(Memory(id="b1", owner_id="bob", kind="note", content="x"))

        graph = await graph_service.build_graph("alice")
        assert [n.id for n in graph.nodes] == ["m1"]
