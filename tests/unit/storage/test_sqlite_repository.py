"""Tests for the aiosqlite memory repository."""

import pytest

from cortex_memory.exceptions import MemoryNotFoundError
from cortex_memory.models.memory import ChecklistItem, Memory
from cortex_memory.models.search import SearchFilters
from cortex_memory.storage.sqlite_repository import SQLiteMemoryRepository


def _memory(memory_id: str, owner_id: str = "alice", timestamp: int = 1_700_000_000_000, **fields) -> Memory:
    fields.setdefault("content", f"content of {memory_id}")
    return Memory(id=memory_id, owner_id=owner_id, kind=fields.pop("kind", "note"), timestamp=timestamp, **fields)


async def test_initialize_is_idempotent(tmp_path):
    repo = SQLiteMemoryRepository(str(tmp_path / "nested" / "db.sqlite"))
    await repo.initialize()
    await repo.initialize()
    assert (tmp_path / "nested" / "db.sqlite").exists()


async def test_round_trip_preserves_fields(repository):
    memory = _memory(
        "m1",
        title="Packing",
        kind="checklist",
        tags=["travel"],
        items=[ChecklistItem(id="i1", text="passport", completed=True)],
        reminder_at=1_700_000_100_000,
        is_pinned=True,
        embedding_ref="p1",
        linked_memory_ids=["m0"],
    )
    await repository.create(memory)

    stored = await repository.get("m1", "alice")

    assert stored == memory


async def test_get_is_owner_scoped(repository):
    await repository.create(_memory("m1"))
    assert await repository.get("m1", "bob") is None


async def test_get_many_keeps_input_order_and_skips_unknown(repository):
    for memory_id in ("a", "b", "c"):
        await repository.create(_memory(memory_id))
    await repository.create(_memory("x", owner_id="bob"))

    result = await repository.get_many(["c", "missing", "a", "x", "c"], "alice")

    assert [m.id for m in result] == ["c", "a"]


async def test_list_newest_first_with_paging(repository):
    for i in range(5):
        await repository.create(_memory(f"m{i}", timestamp=1_700_000_000_000 + i))

    page = await repository.list_memories("alice", limit=2, offset=1)

    assert [m.id for m in page] == ["m3", "m2"]
    assert await repository.count("alice") == 5


async def test_list_by_kind(repository):
    await repository.create(_memory("n1"))
    await repository.create(_memory("t1", kind="task"))

    assert [m.id for m in await repository.list_memories("alice", kind="task")] == ["t1"]
    assert await repository.count("alice", kind="note") == 1


async def test_update_and_missing_update(repository):
    memory = await repository.create(_memory("m1"))
    await repository.update(memory.model_copy(update={"content": "changed", "linked_memory_ids": ["m2"]}))

    stored = await repository.get("m1", "alice")
    assert stored.content == "changed"
    assert stored.linked_memory_ids == ["m2"]

    with pytest.raises(MemoryNotFoundError):
        await repository.update(_memory("ghost"))


async def test_touch_sets_last_accessed(repository):
    await repository.create(_memory("m1"))
    await repository.touch("m1", "alice")
    assert (await repository.get("m1", "alice")).last_accessed_at is not None


async def test_delete(repository):
    await repository.create(_memory("m1"))
    assert await repository.delete("m1", "bob") is False
    assert await repository.delete("m1", "alice") is True
    assert await repository.delete("m1", "alice") is False


class TestTextSearch:
    async def test_case_insensitive_substring_on_title_or_content(self, repository):
        await repository.create(_memory("m1", title="Buy MILK", content="errand"))
        await repository.create(_memory("m2", content="oat milk is fine"))
        await repository.create(_memory("m3", content="bread"))

        result = await repository.text_search("alice", "milk", 10)
        assert {m.id for m in result} == {"m1", "m2"}

    async def test_newest_first_and_limited(self, repository):
        for i in range(4):
            await repository.create(_memory(f"m{i}", content="milk", timestamp=1_700_000_000_000 + i))

        result = await repository.text_search("alice", "milk", 2)
        assert [m.id for m in result] == ["m3", "m2"]

    async def test_owner_scoped(self, repository):
        await repository.create(_memory("m1", owner_id="bob", content="milk"))
        assert await repository.text_search("alice", "milk", 10) == []

    async def test_filters(self, repository):
        await repository.create(_memory("m1", content="plan", kind="task", tags=["work"], timestamp=1_704_067_200_000))
        await repository.create(_memory("m2", content="plan", kind="note", tags=["home"], timestamp=1_706_745_600_000))

        by_kind = await repository.text_search("alice", "plan", 10, SearchFilters(kind="task"))
        by_tag = await repository.text_search("alice", "plan", 10, SearchFilters(tags=["home", "other"]))
        by_date = await repository.text_search(
            "alice", "plan", 10, SearchFilters.model_validate({"dateRange": {"end": "2024-01-15"}})
        )

        assert [m.id for m in by_kind] == ["m1"]
        assert [m.id for m in by_tag] == ["m2"]
        assert [m.id for m in by_date] == ["m1"]

    async def test_like_wildcards_are_literal(self, repository):
        await repository.create(_memory("m1", content="100% done"))
        await repository.create(_memory("m2", content="1000 done"))

        assert [m.id for m in await repository.text_search("alice", "0%", 10)] == ["m1"]

    async def test_non_ascii_case_folding(self, repository):
        await repository.create(_memory("m1", title="ÄPFEL kaufen", content="Einkauf ÉCOLE"))
        await repository.create(_memory("m2", content="Birnen"))

        assert [m.id for m in await repository.text_search("alice", "äpfel", 10)] == ["m1"]
        assert [m.id for m in await repository.text_search("alice", "école", 10)] == ["m1"]
        assert [m.id for m in await repository.text_search("alice", "ÉcOlE", 10)] == ["m1"]


async def test_list_unembedded_oldest_first(repository):
    await repository.create(_memory("new", timestamp=2))
    await repository.create(_memory("old", timestamp=1))
    await repository.create(_memory("done", timestamp=0, embedding_ref="p1"))
    await repository.create(_memory("bob", owner_id="bob", timestamp=0))

    assert [m.id for m in await repository.list_unembedded()] == ["bob", "old", "new"]
    assert [m.id for m in await repository.list_unembedded("alice", limit=1)] == ["old"]
