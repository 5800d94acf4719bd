"""
Retrieval Engine - hybrid search and write-time memory linking.

Orchestrates the embedding gateway, the vector index and the memory
repository.  Holds no per-request state: every call is independent and
reproducible given the same index and store contents.  Collaborators are
injected once at process start.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from ..embeddings.service import EmbeddingService
from ..exceptions import EmbeddingUnavailableError, IndexUnavailableError
from ..models.memory import Memory
from ..models.search import SearchFilters, SearchRequest, SearchResponse, SearchResult
from ..storage.base import MemoryRepository, VectorIndex
from ..utils.hybrid_search import merge_results, rank_results, score_text_matches

logger = logging.getLogger(__name__)

DEFAULT_LINK_TOP_K = 5


@dataclass
class LinkResult:
    """Outcome of the linking sub-routine for one memory."""

    embedding_ref: str | None = None
    linked_memory_ids: list[str] = field(default_factory=list)


class RetrievalEngine:
    """Semantic, lexical and hybrid retrieval plus auto-linking."""

    def __init__(
        self,
        embedder: EmbeddingService,
        vector_index: VectorIndex,
        repository: MemoryRepository,
        link_top_k: int = DEFAULT_LINK_TOP_K,
        max_limit: int = 100,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.repository = repository
        self.link_top_k = link_top_k
        self.max_limit = max_limit

    # ------------------------------------------------------------------
    # Linking (write path)
    # ------------------------------------------------------------------

    async def link_memory(
        self,
        memory: Memory,
        generate_embedding: bool = True,
        embedding_ref: str | None = None,
    ) -> LinkResult:
        """
        Embed a persisted memory, upsert its vector and find its nearest neighbours.

        Best effort: embedding or index failures are logged and yield an empty
        result, never an exception.

        Args:
            memory: The memory, already persisted so its id is final
            generate_embedding: Skip everything when False
            embedding_ref: Existing vector id to overwrite (re-embedding on update)

        Returns:
            LinkResult with the vector id (None if nothing was stored) and up to
            ``link_top_k`` neighbour ids, never including the memory itself
        """
        if not generate_embedding:
            return LinkResult()

        try:
            vector = await self.embedder.embed(memory.effective_text)
        except EmbeddingUnavailableError as e:
            logger.warning(f"Embedding skipped for memory {memory.id}: {e}")
            return LinkResult()

        try:
            ref = await self.vector_index.upsert(vector, memory.vector_metadata(), point_id=embedding_ref)
        except (IndexUnavailableError, ValueError) as e:
            logger.warning(f"Vector upsert skipped for memory {memory.id}: {e}")
            return LinkResult()

        try:
            linked = await self.find_neighbours(memory, vector, ref)
        except IndexUnavailableError as e:
            logger.warning(f"Neighbour lookup skipped for memory {memory.id}: {e}")
            return LinkResult(embedding_ref=ref)

        logger.debug(f"Linked memory {memory.id} to {len(linked)} neighbours")
        return LinkResult(embedding_ref=ref, linked_memory_ids=linked)

    async def find_neighbours(self, memory: Memory, vector: list[float], embedding_ref: str | None) -> list[str]:
        """
        Ids of the ``link_top_k`` nearest memories of the same owner, excluding itself.

        Raises:
            IndexUnavailableError: If the index cannot be queried
        """
        if self.link_top_k <= 0:
            return []

        # One extra slot: the memory's own vector is visible to its query
        matches = await self.vector_index.query(vector, memory.owner_id, self.link_top_k + 1)

        linked: list[str] = []
        for match in matches:
            if match.memory_id == memory.id or (embedding_ref and match.point_id == embedding_ref):
                continue
            if match.memory_id in linked:
                continue
            linked.append(match.memory_id)
            if len(linked) >= self.link_top_k:
                break
        return linked

    # ------------------------------------------------------------------
    # Search (read path)
    # ------------------------------------------------------------------

    async def semantic_search(
        self,
        owner_id: str,
        query: str,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """
        Vector similarity search resolved to full memory snapshots.

        Vectors whose memory no longer exists are dropped.

        Raises:
            EmbeddingUnavailableError: If the query cannot be embedded
            IndexUnavailableError: If the index cannot be queried
        """
        query_vector = await self.embedder.embed_query(query)
        matches = await self.vector_index.query(query_vector, owner_id, limit, filters)
        if not matches:
            return []

        memories = await self.repository.get_many([m.memory_id for m in matches], owner_id)
        by_id = {memory.id: memory for memory in memories}

        results: list[SearchResult] = []
        seen: set[str] = set()
        for match in matches:
            memory = by_id.get(match.memory_id)
            if memory is None:
                logger.debug(f"Dropping vector hit for missing memory {match.memory_id}")
                continue
            if memory.id in seen:
                continue
            seen.add(memory.id)
            results.append(SearchResult(memory=memory, score=match.score, match_type="semantic"))
        return results

    async def text_search(
        self,
        owner_id: str,
        query: str,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """Case-insensitive substring search with deterministic lexical scores."""
        memories = await self.repository.text_search(owner_id, query, limit, filters)
        return score_text_matches(memories, query)

    async def search(self, owner_id: str, request: SearchRequest) -> SearchResponse:
        """
        Run a semantic, text or hybrid search.

        In hybrid mode both paths run concurrently; if one fails the other's
        results are still returned.  In single-path modes the failure
        propagates to the caller.
        """
        started = time.perf_counter()
        limit = min(request.limit, self.max_limit)
        query = request.query
        filters = request.filters

        if request.search_type == "semantic":
            results = await self.semantic_search(owner_id, query, limit, filters)
        elif request.search_type == "text":
            results = await self.text_search(owner_id, query, limit, filters)
        else:
            semantic_outcome, text_outcome = await asyncio.gather(
                self.semantic_search(owner_id, query, limit, filters),
                self.text_search(owner_id, query, limit, filters),
                return_exceptions=True,
            )
            if isinstance(semantic_outcome, BaseException) and isinstance(text_outcome, BaseException):
                logger.error(f"Both search paths failed for user {owner_id}: {semantic_outcome}; {text_outcome}")
                raise semantic_outcome
            if isinstance(semantic_outcome, BaseException):
                logger.warning(f"Semantic path failed, returning text matches only: {semantic_outcome}")
                semantic_outcome = []
            if isinstance(text_outcome, BaseException):
                logger.warning(f"Text path failed, returning semantic matches only: {text_outcome}")
                text_outcome = []
            results = merge_results(semantic_outcome, text_outcome)

        ranked = rank_results(results, limit)
        took_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(f"{request.search_type} search for user {owner_id}: {len(ranked)} results in {took_ms}ms")
        return SearchResponse(results=ranked, total=len(ranked), took_ms=took_ms)
