# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
SQLite memory repository.

Persists memory records with aiosqlite.  Every query is scoped to the owning
user.  Tags, checklist items and link lists are stored as JSON text; tag
filters use SQLite's ``json_each``.
"""

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import aiosqlite

from ..exceptions import MemoryNotFoundError, UpstreamFailureError
from ..models.memory import ChecklistItem, Memory, utc_now
from ..models.search import SearchFilters
from ..utils.filters import to_sql_clauses
from .base import MemoryRepository

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, owner_id, kind, title, content, tags, items, reminder_at, is_pinned, "
    "embedding_ref, linked_memory_ids, timestamp, last_accessed_at, created_at, updated_at"
)


def _dt_to_str(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _str_to_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _unicode_lower(value: str | None) -> str | None:
    # SQLite's built-in lower() only folds ASCII
    return value.lower() if value is not None else None


class SQLiteMemoryRepository(MemoryRepository):
    """Async SQLite store for memory records."""

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = str(db_path)
        self._initialized = False

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                await db.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)
                yield db
        except aiosqlite.Error as e:
            logger.error(f"Memory store error ({self.db_path}): {e}")
            raise UpstreamFailureError(f"Memory store error: {e}") from e

    async def initialize(self) -> None:
        """Create the schema if it does not exist."""
        if self._initialized:
            return

        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with self._connect() as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    title TEXT,
                    content TEXT NOT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',
                    items TEXT,
                    reminder_at INTEGER,
                    is_pinned INTEGER NOT NULL DEFAULT 0,
                    embedding_ref TEXT,
                    linked_memory_ids TEXT NOT NULL DEFAULT '[]',
                    timestamp INTEGER NOT NULL,
                    last_accessed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_memories_owner_ts ON memories(owner_id, timestamp DESC)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_memories_owner_kind ON memories(owner_id, kind)")
            await db.commit()

        self._initialized = True
        logger.info(f"Memory store initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(memory: Memory) -> tuple[Any, ...]:
        items = json.dumps([item.model_dump() for item in memory.items]) if memory.items is not None else None
        return (
            memory.id,
            memory.owner_id,
            memory.kind,
            memory.title,
            memory.content,
            json.dumps(memory.tags),
            items,
            memory.reminder_at,
            int(memory.is_pinned),
            memory.embedding_ref,
            json.dumps(memory.linked_memory_ids),
            memory.timestamp,
            _dt_to_str(memory.last_accessed_at),
            _dt_to_str(memory.created_at),
            _dt_to_str(memory.updated_at),
        )

    @staticmethod
    def _from_row(row: aiosqlite.Row) -> Memory:
        items = json.loads(row["items"]) if row["items"] else None
        return Memory(
            id=row["id"],
            owner_id=row["owner_id"],
            kind=row["kind"],
            title=row["title"],
            content=row["content"],
            tags=json.loads(row["tags"] or "[]"),
            items=[ChecklistItem(**item) for item in items] if items is not None else None,
            reminder_at=row["reminder_at"],
            is_pinned=bool(row["is_pinned"]),
            embedding_ref=row["embedding_ref"],
            linked_memory_ids=json.loads(row["linked_memory_ids"] or "[]"),
            timestamp=row["timestamp"],
            last_accessed_at=_str_to_dt(row["last_accessed_at"]),
            created_at=_str_to_dt(row["created_at"]),
            updated_at=_str_to_dt(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, memory: Memory) -> Memory:
        async with self._connect() as db:
            await db.execute(f"INSERT INTO memories ({_COLUMNS}) VALUES ({', '.join('?' * 15)})", self._to_row(memory))
            await db.commit()
        logger.debug(f"Created memory {memory.id} for user {memory.owner_id}")
        return memory

    async def get(self, memory_id: str, owner_id: str) -> Memory | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ? AND owner_id = ?",
                (memory_id, owner_id),
            )
            row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def get_many(self, memory_ids: list[str], owner_id: str) -> list[Memory]:
        if not memory_ids:
            return []

        unique_ids = list(dict.fromkeys(memory_ids))
        placeholders = ", ".join("?" for _ in unique_ids)
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE owner_id = ? AND id IN ({placeholders})",
                (owner_id, *unique_ids),
            )
            rows = await cursor.fetchall()

        by_id = {row["id"]: self._from_row(row) for row in rows}
        return [by_id[memory_id] for memory_id in unique_ids if memory_id in by_id]

    async def list_memories(self, owner_id: str, limit: int = 50, offset: int = 0, kind: str | None = None) -> list[Memory]:
        where, params = self._owner_clause(owner_id, kind)
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE {where} ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            )
            rows = await cursor.fetchall()
        return [self._from_row(row) for row in rows]

    async def count(self, owner_id: str, kind: str | None = None) -> int:
        where, params = self._owner_clause(owner_id, kind)
        async with self._connect() as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM memories WHERE {where}", params)
            row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _owner_clause(owner_id: str, kind: str | None) -> tuple[str, tuple[Any, ...]]:
        if kind:
            return "owner_id = ? AND kind = ?", (owner_id, kind)
        return "owner_id = ?", (owner_id,)

    async def update(self, memory: Memory) -> Memory:
        row = self._to_row(memory)
        async with self._connect() as db:
            cursor = await db.execute(
                """
                UPDATE memories SET
                    kind = ?, title = ?, content = ?, tags = ?, items = ?, reminder_at = ?, is_pinned = ?,
                    embedding_ref = ?, linked_memory_ids = ?, last_accessed_at = ?, updated_at = ?
                WHERE id = ? AND owner_id = ?
            """,
                (*row[2:11], row[12], row[14], memory.id, memory.owner_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise MemoryNotFoundError(memory.id)
        return memory

    async def touch(self, memory_id: str, owner_id: str) -> None:
        async with self._connect() as db:
            await db.execute(
                "UPDATE memories SET last_accessed_at = ? WHERE id = ? AND owner_id = ?",
                (_dt_to_str(utc_now()), memory_id, owner_id),
            )
            await db.commit()

    async def delete(self, memory_id: str, owner_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM memories WHERE id = ? AND owner_id = ?", (memory_id, owner_id))
            await db.commit()
            deleted = cursor.rowcount > 0
        logger.debug(f"Deleted memory {memory_id}: {deleted}")
        return deleted

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def text_search(
        self,
        owner_id: str,
        query: str,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[Memory]:
        """
        Plain case-insensitive substring match on title or content.

        No tokenisation or stemming; ranking is done by the caller.
        """
        needle = query.lower()
        clauses = [
            "owner_id = ?",
            "(instr(unicode_lower(coalesce(title, '')), ?) > 0 OR instr(unicode_lower(content), ?) > 0)",
        ]
        params: list[Any] = [owner_id, needle, needle]

        filter_clauses, filter_params = to_sql_clauses(filters)
        clauses.extend(filter_clauses)
        params.extend(filter_params)

        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE {' AND '.join(clauses)} "
                f"ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (*params, limit),
            )
            rows = await cursor.fetchall()
        return [self._from_row(row) for row in rows]

    async def list_unembedded(self, owner_id: str | None = None, limit: int = 100) -> list[Memory]:
        clauses = ["embedding_ref IS NULL"]
        params: list[Any] = []
        if owner_id:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE {' AND '.join(clauses)} ORDER BY timestamp ASC, rowid ASC LIMIT ?",
                (*params, limit),
            )
            rows = await cursor.fetchall()
        return [self._from_row(row) for row in rows]

    async def close(self) -> None:
        # aiosqlite connections are opened per operation; nothing to close
        pass
