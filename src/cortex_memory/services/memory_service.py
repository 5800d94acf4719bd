"""
Memory Service - CRUD orchestration around the retrieval engine.

Persists records through the repository and delegates embedding, vector
upserts and neighbour discovery to ``RetrievalEngine.link_memory``.  The
record is created first so the vector payload always carries the final
memory id; links and the embedding reference are written back afterwards.
"""

import logging
import uuid
from typing import Any

from ..exceptions import EmbeddingUnavailableError, IndexUnavailableError, MemoryNotFoundError, ValidationFailureError
from ..models.memory import Memory, MemoryCreate, MemoryUpdate, utc_now
from ..storage.base import MemoryRepository, VectorIndex
from .retrieval_engine import LinkResult, RetrievalEngine

logger = logging.getLogger(__name__)


def _new_memory_id() -> str:
    return str(uuid.uuid4())


class MemoryService:
    """Create, read, update and delete memories for one owner at a time."""

    def __init__(self, repository: MemoryRepository, vector_index: VectorIndex, engine: RetrievalEngine):
        self.repository = repository
        self.vector_index = vector_index
        self.engine = engine

    async def create_memory(self, owner_id: str, data: MemoryCreate) -> tuple[Memory, list[Memory]]:
        """
        Store a new memory and link it to its nearest neighbours.

        Embedding and linking are best effort: the memory is created even when
        the embedding provider or the vector index is down.

        Returns:
            (memory, related memories resolved from linked_memory_ids)

        Raises:
            ValidationFailureError: If content is blank
        """
        if not data.content or not data.content.strip():
            raise ValidationFailureError("content is required")

        memory = Memory(
            id=_new_memory_id(),
            owner_id=owner_id,
            kind=data.kind,
            title=data.title,
            content=data.content,
            tags=data.tags,
            items=data.items,
            reminder_at=data.reminder_at,
        )
        memory = await self.repository.create(memory)
        logger.info(f"Created memory {memory.id} ({memory.kind}) for user {owner_id}")

        link = await self.engine.link_memory(memory, generate_embedding=data.generate_embedding)
        if link.embedding_ref is None:
            return memory, []

        memory = await self._apply_link(memory, link)
        related = await self.repository.get_many(memory.linked_memory_ids, owner_id)
        return memory, related

    async def _apply_link(self, memory: Memory, link: LinkResult, previous: Memory | None = None) -> Memory:
        """
        Persist the embedding reference and links on the record.

        If the write fails, a freshly created vector is removed again so no
        vector is left without a record pointing at it.  A vector that was
        overwritten in place is put back to ``previous``, the record as stored.
        """
        updated = memory.model_copy(
            update={
                "embedding_ref": link.embedding_ref,
                "linked_memory_ids": link.linked_memory_ids,
                "updated_at": utc_now(),
            }
        )
        try:
            return await self.repository.update(updated)
        except Exception:
            if previous is not None and link.embedding_ref == previous.embedding_ref:
                await self._restore_vector(previous)
            elif link.embedding_ref:
                try:
                    await self.vector_index.delete(link.embedding_ref)
                except IndexUnavailableError as cleanup_error:
                    logger.error(f"Orphaned vector {link.embedding_ref} for memory {memory.id}: {cleanup_error}")
            raise

    async def _restore_vector(self, previous: Memory) -> None:
        """Re-embed the stored text into the memory's existing vector."""
        try:
            vector = await self.engine.embedder.embed(previous.effective_text)
            await self.vector_index.upsert(vector, previous.vector_metadata(), point_id=previous.embedding_ref)
        except (EmbeddingUnavailableError, IndexUnavailableError) as e:
            logger.error(f"Vector {previous.embedding_ref} no longer matches stored memory {previous.id}: {e}")
            return
        logger.info(f"Restored vector {previous.embedding_ref} for memory {previous.id}")

    async def list_memories(
        self, owner_id: str, limit: int = 50, offset: int = 0, kind: str | None = None
    ) -> tuple[list[Memory], int]:
        """Newest-first page of memories and the total matching count."""
        memories = await self.repository.list_memories(owner_id, limit=limit, offset=offset, kind=kind)
        total = await self.repository.count(owner_id, kind=kind)
        return memories, total

    async def get_memory(self, owner_id: str, memory_id: str) -> Memory:
        """
        Fetch one memory and record the access.

        Raises:
            MemoryNotFoundError: If the memory does not exist for this owner
        """
        memory = await self.repository.get(memory_id, owner_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)

        try:
            await self.repository.touch(memory_id, owner_id)
        except Exception as e:
            logger.warning(f"Failed to update last access time for memory {memory_id}: {e}")
        return memory

    async def get_related_memories(self, owner_id: str, memory_id: str) -> list[Memory]:
        """Resolve a memory's stored links, skipping targets deleted since."""
        memory = await self.repository.get(memory_id, owner_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)
        return await self.repository.get_many(memory.linked_memory_ids, owner_id)

    async def update_memory(self, owner_id: str, memory_id: str, data: MemoryUpdate) -> Memory:
        """
        Apply a partial update.

        A change to the embedded text (title or content) re-embeds into the
        existing vector and recomputes links.  A change to kind or tags alone
        refreshes the vector payload so index filters stay accurate.

        Raises:
            MemoryNotFoundError: If the memory does not exist for this owner
            ValidationFailureError: If the update blanks the content
        """
        memory = await self.repository.get(memory_id, owner_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)

        changes: dict[str, Any] = {
            name: getattr(data, name) for name in data.model_fields_set if name != "generate_embedding"
        }
        if "content" in changes and (changes["content"] is None or not changes["content"].strip()):
            raise ValidationFailureError("content must not be empty")
        # Non-nullable fields: an explicit null means "leave as is"
        for required in ("kind", "tags", "is_pinned"):
            if required in changes and changes[required] is None:
                changes.pop(required)
        if "title" in changes and changes["title"] is not None and not changes["title"].strip():
            changes["title"] = None

        updated = memory.model_copy(update={**changes, "updated_at": utc_now()})

        text_changed = updated.effective_text != memory.effective_text
        metadata_changed = updated.kind != memory.kind or updated.tags != memory.tags

        if text_changed and data.generate_embedding:
            link = await self.engine.link_memory(updated, embedding_ref=memory.embedding_ref)
            if link.embedding_ref is not None:
                logger.info(f"Re-embedded memory {memory_id} with {len(link.linked_memory_ids)} links")
                return await self._apply_link(updated, link, previous=memory)
            logger.warning(f"Memory {memory_id} updated without a fresh embedding; keeping previous vector")
        if metadata_changed and updated.embedding_ref:
            try:
                await self.vector_index.update_metadata(updated.embedding_ref, updated.vector_metadata())
            except IndexUnavailableError as e:
                logger.warning(f"Vector payload refresh skipped for memory {memory_id}: {e}")

        return await self.repository.update(updated)

    async def delete_memory(self, owner_id: str, memory_id: str) -> None:
        """
        Delete a memory, removing its vector first.

        Raises:
            MemoryNotFoundError: If the memory does not exist for this owner
            IndexUnavailableError: If the vector cannot be removed (the record is kept)
        """
        memory = await self.repository.get(memory_id, owner_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)

        if memory.embedding_ref:
            await self.vector_index.delete(memory.embedding_ref)

        if not await self.repository.delete(memory_id, owner_id):
            raise MemoryNotFoundError(memory_id)
        logger.info(f"Deleted memory {memory_id} for user {owner_id}")

    async def backfill_embeddings(self, owner_id: str | None = None, batch_size: int = 32) -> dict[str, int]:
        """
        Embed and link every memory that has no embedding yet.

        Uses one batched embedding call per page.  Stops at the first page the
        provider or the index cannot handle; the remaining memories keep no
        embedding and are reported as failed.

        Returns:
            Counts of embedded and failed memories
        """
        embedded = 0
        failed = 0

        while True:
            page = await self.repository.list_unembedded(owner_id, limit=batch_size)
            if not page:
                break

            try:
                vectors = await self.engine.embedder.batch_embed([m.effective_text for m in page])
            except EmbeddingUnavailableError as e:
                logger.error(f"Batch embedding failed for {len(page)} memories: {e}")
                failed += len(page)
                break

            done = 0
            try:
                for memory, vector in zip(page, vectors, strict=True):
                    ref = await self.vector_index.upsert(vector, memory.vector_metadata())
                    links = await self.engine.find_neighbours(memory, vector, ref)
                    await self._apply_link(memory, LinkResult(embedding_ref=ref, linked_memory_ids=links))
                    done += 1
            except IndexUnavailableError as e:
                logger.error(f"Vector index unavailable during backfill: {e}")
                embedded += done
                failed += len(page) - done
                break
            embedded += done

        logger.info(f"Backfill complete: {embedded} embedded, {failed} failed")
        return {"embedded": embedded, "failed": failed}
