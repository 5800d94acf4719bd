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
Qdrant-backed vector index gateway.

Owns one named collection of (id, vector, payload) points partitioned by
``userId``.  Every query carries a ``userId`` equality condition, so one user's
search can never surface another user's vectors.  Provides circuit breaker
protection and retries for transient 5xx errors.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.models import Distance, PayloadSchemaType, PointStruct, VectorParams
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..exceptions import IndexUnavailableError
from ..models.search import SearchFilters
from ..utils.filters import MEMORY_ID_KEY, TAGS_KEY, TIMESTAMP_KEY, TYPE_KEY, USER_ID_KEY, to_qdrant_filter
from .base import VectorIndex, VectorMatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Payload fields that receive an index; userId is hit by every query
PAYLOAD_INDEXES = {
    USER_ID_KEY: PayloadSchemaType.KEYWORD,
    MEMORY_ID_KEY: PayloadSchemaType.KEYWORD,
    TYPE_KEY: PayloadSchemaType.KEYWORD,
    TAGS_KEY: PayloadSchemaType.KEYWORD,
    TIMESTAMP_KEY: PayloadSchemaType.INTEGER,
}


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if an exception is retryable (transient 5xx server errors only).

    4xx client errors are permanent (configuration/validation) and NOT retryable.
    """
    if isinstance(exception, qdrant_exceptions.UnexpectedResponse):
        return hasattr(exception, "status_code") and 500 <= exception.status_code < 600
    return False


class QdrantVectorIndex(VectorIndex):
    """
    Qdrant collection wrapper in server, embedded, or in-process mode.

    The collection is NOT created in the constructor: call ``ensure_index()``
    once at startup.  Until it succeeds, every operation raises
    ``IndexUnavailableError`` so callers can degrade to lexical search.  A
    failed provisioning is retried by the next call after the circuit timeout.
    """

    def __init__(
        self,
        vector_size: int,
        collection_name: str = "cortex-memories",
        url: str | None = None,
        storage_path: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        client: QdrantClient | None = None,
    ):
        """
        Args:
            vector_size: Dimensions of the embedding vectors
            collection_name: Qdrant collection name
            url: Qdrant server URL, or ":memory:" for an in-process index
            storage_path: Path to Qdrant storage directory (embedded mode)
            api_key: Optional API key for Qdrant Cloud
            timeout_seconds: Upper bound for a single index call
            client: Pre-built client (tests)
        """
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        if client is None and not url and not storage_path:
            raise ValueError("Must specify either url (server mode) or storage_path (embedded mode).")
        if vector_size <= 0:
            raise ValueError(f"vector_size must be positive, got {vector_size}")

        self.url = url
        self.storage_path = storage_path
        self.api_key = api_key
        self.collection_name = collection_name
        self.vector_size = vector_size
        self.timeout_seconds = timeout_seconds

        self.client = client
        self._available = False

        # Circuit breaker state
        self._failure_count = 0
        self._circuit_open_until: datetime | None = None
        self._failure_threshold = 5  # Open circuit after 5 consecutive failures
        self._circuit_timeout = 60  # Reclose circuit after 60 seconds
        # Set after a failed ensure_index(); provisioning is retried once it passes
        self._next_provision_attempt: datetime | None = None

        if self.url == ":memory:":
            mode = "in-process"
        else:
            mode = "server" if self.url else "embedded"
        self.mode = mode
        logger.info(
            f"Configured QdrantVectorIndex: mode={mode}, location={self.url or self.storage_path}, "
            f"collection={collection_name}, vector_size={vector_size}"
        )

    @property
    def is_available(self) -> bool:
        return self._available

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def _build_client(self) -> QdrantClient:
        if self.url == ":memory:":
            return QdrantClient(location=":memory:")
        if self.url:
            return QdrantClient(url=self.url, api_key=self.api_key, timeout=int(self.timeout_seconds))
        return QdrantClient(path=self.storage_path)

    async def ensure_index(self) -> None:
        """
        Create the collection and its payload indexes if missing.

        Idempotent, and tolerant of another process creating the collection
        between our existence check and our create call.

        Raises:
            IndexUnavailableError: If the index cannot be reached or created, or
                the existing collection has different dimensions
        """
        loop = asyncio.get_running_loop()
        try:
            if self.client is None:
                self.client = await loop.run_in_executor(None, self._build_client)

            if await self._collection_exists():
                logger.info(f"Collection '{self.collection_name}' exists, verifying vector dimensions")
                await self._verify_dimensions()
            else:
                await self._create_collection()

            await self._ensure_payload_indexes()
        except IndexUnavailableError:
            self._available = False
            self._schedule_reprovision()
            raise
        except Exception as e:
            self._available = False
            self._schedule_reprovision()
            logger.error(f"Failed to provision vector index '{self.collection_name}': {e}")
            raise IndexUnavailableError(f"Vector index '{self.collection_name}' could not be provisioned: {e}") from e

        self._available = True
        self._next_provision_attempt = None
        self._record_success()
        logger.info(f"Vector index '{self.collection_name}' ready")

    def _schedule_reprovision(self) -> None:
        self._next_provision_attempt = datetime.now() + timedelta(seconds=self._circuit_timeout)

    async def _reprovision_if_due(self) -> None:
        """Retry a failed startup provisioning once the retry delay has passed."""
        if self._available or self._next_provision_attempt is None:
            return
        if datetime.now() < self._next_provision_attempt:
            return
        logger.info(f"Retrying provisioning of vector index '{self.collection_name}'")
        try:
            await self.ensure_index()
        except IndexUnavailableError as e:
            logger.warning(f"Vector index still unavailable: {e}")

    async def _collection_exists(self) -> bool:
        loop = asyncio.get_running_loop()
        collections = await loop.run_in_executor(None, self.client.get_collections)
        exists = self.collection_name in [col.name for col in collections.collections]
        logger.debug(f"Collection '{self.collection_name}' exists: {exists}")
        return exists

    async def _create_collection(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info(f"Creating collection '{self.collection_name}' with vector size {self.vector_size}")
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                ),
            )
        except Exception as e:
            # Lost a creation race with another process: the collection is there now
            if await self._collection_exists():
                logger.info(f"Collection '{self.collection_name}' was created concurrently: {e}")
                await self._verify_dimensions()
                return
            raise

    async def _verify_dimensions(self) -> None:
        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, self.client.get_collection, self.collection_name)
        vectors = getattr(getattr(info.config, "params", None), "vectors", None)
        size = getattr(vectors, "size", None)
        if size is not None and size != self.vector_size:
            raise IndexUnavailableError(
                f"Collection '{self.collection_name}' has vector size {size}, "
                f"but the embedding model produces {self.vector_size}. "
                f"Re-embed into a new collection or configure CORTEX_QDRANT_COLLECTION_NAME."
            )

    async def _ensure_payload_indexes(self) -> None:
        """Qdrant ignores create_payload_index when the index already exists."""
        loop = asyncio.get_running_loop()
        for field_name, schema in PAYLOAD_INDEXES.items():
            await loop.run_in_executor(
                None,
                lambda f=field_name, s=schema: self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=f,
                    field_schema=s,
                ),
            )
        logger.debug(f"Ensured payload indexes: {', '.join(PAYLOAD_INDEXES)}")

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _check_available(self) -> None:
        """
        Fail fast when the index was never provisioned or the circuit is open.

        Raises:
            IndexUnavailableError: If the index cannot serve requests right now
        """
        if not self._available or self.client is None:
            raise IndexUnavailableError(f"Vector index '{self.collection_name}' is not provisioned")

        if self._circuit_open_until is not None:
            if datetime.now() < self._circuit_open_until:
                retry_time = self._circuit_open_until.strftime("%Y-%m-%d %H:%M:%S")
                raise IndexUnavailableError(f"Circuit breaker is open until {retry_time}. Vector index temporarily unavailable.")
            logger.info("Circuit breaker timeout expired, resetting to closed state")
            self._circuit_open_until = None
            self._failure_count = 0

    def _record_failure(self) -> None:
        """Record a failure and open the circuit breaker if the threshold is reached."""
        self._failure_count += 1
        logger.warning(f"Recorded vector index failure #{self._failure_count}")

        if self._failure_count >= self._failure_threshold:
            self._circuit_open_until = datetime.now() + timedelta(seconds=self._circuit_timeout)
            logger.error(
                f"Circuit breaker opened after {self._failure_count} consecutive failures. "
                f"Will retry at {self._circuit_open_until.strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _record_success(self) -> None:
        if self._failure_count > 0:
            logger.info(f"Operation successful, resetting circuit breaker (was at {self._failure_count} failures)")
        self._failure_count = 0
        self._circuit_open_until = None

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _run(self, fn: Callable[[], T]) -> T:
        """Run a blocking client call in the executor, bounded by the configured timeout."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(None, fn), timeout=self.timeout_seconds)

    async def _guarded(self, operation: str, fn: Callable[[], T]) -> T:
        await self._reprovision_if_due()
        self._check_available()
        try:
            result = await self._run(fn)
        except Exception as e:
            self._record_failure()
            logger.error(f"Vector index {operation} failed: {e.__class__.__name__}: {e}")
            raise IndexUnavailableError(f"Vector index {operation} failed: {e}") from e
        self._record_success()
        return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def upsert(self, vector: list[float], metadata: dict[str, Any], point_id: str | None = None) -> str:
        """
        Write or overwrite one point.

        Args:
            vector: Embedding, must match the collection's dimensions
            metadata: Payload; must carry memoryId and userId
            point_id: Existing point to overwrite; a UUID4 is generated when omitted

        Returns:
            The point id
        """
        if len(vector) != self.vector_size:
            raise ValueError(f"Embedding dimension mismatch: expected {self.vector_size}, got {len(vector)}")
        if not metadata.get(USER_ID_KEY) or not metadata.get(MEMORY_ID_KEY):
            raise ValueError("Vector metadata must include userId and memoryId")

        point_id = point_id or str(uuid.uuid4())
        point = PointStruct(id=point_id, vector=vector, payload=dict(metadata))
        await self._guarded(
            "upsert",
            lambda: self.client.upsert(collection_name=self.collection_name, points=[point], wait=True),
        )
        logger.debug(f"Upserted vector {point_id} for memory {metadata[MEMORY_ID_KEY]}")
        return point_id

    async def query(
        self,
        vector: list[float],
        user_id: str,
        top_k: int,
        filters: SearchFilters | None = None,
    ) -> list[VectorMatch]:
        """
        Nearest neighbours of ``vector`` among ``user_id``'s points.

        Returns:
            Matches ordered by descending cosine similarity
        """
        if top_k <= 0:
            return []

        query_filter = to_qdrant_filter(user_id, filters)
        response = await self._guarded(
            "query",
            lambda: self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=query_filter,
                limit=top_k,
                with_payload=True,
                with_vectors=False,
            ),
        )

        matches = []
        for scored_point in response.points:
            payload = scored_point.payload or {}
            memory_id = payload.get(MEMORY_ID_KEY)
            if not memory_id:
                logger.warning(f"Skipping vector {scored_point.id} without memoryId payload")
                continue
            matches.append(
                VectorMatch(
                    memory_id=memory_id,
                    score=float(scored_point.score),
                    metadata=payload,
                    point_id=str(scored_point.id),
                )
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    async def update_metadata(self, point_id: str, metadata: dict[str, Any]) -> None:
        await self._guarded(
            "update_metadata",
            lambda: self.client.set_payload(collection_name=self.collection_name, payload=dict(metadata), points=[point_id]),
        )
        logger.debug(f"Updated payload of vector {point_id}")

    async def delete(self, point_id: str) -> None:
        await self._guarded(
            "delete",
            lambda: self.client.delete(collection_name=self.collection_name, points_selector=[point_id], wait=True),
        )
        logger.debug(f"Deleted vector {point_id}")

    async def fetch(self, point_id: str) -> VectorMatch | None:
        points = await self._guarded(
            "fetch",
            lambda: self.client.retrieve(
                collection_name=self.collection_name, ids=[point_id], with_payload=True, with_vectors=False
            ),
        )
        if not points:
            return None
        payload = points[0].payload or {}
        return VectorMatch(
            memory_id=payload.get(MEMORY_ID_KEY, ""),
            score=1.0,
            metadata=payload,
            point_id=str(points[0].id),
        )

    async def health(self) -> dict[str, Any]:
        await self._reprovision_if_due()
        status: dict[str, Any] = {
            "available": self._available,
            "collection": self.collection_name,
            "mode": self.mode,
            "circuit_open": self._circuit_open_until is not None and datetime.now() < self._circuit_open_until,
        }
        if self._available:
            try:
                info = await self._run(lambda: self.client.get_collection(self.collection_name))
                status["points"] = info.points_count
            except Exception as e:
                status["error"] = str(e)
        return status

    async def close(self) -> None:
        if self.client is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.client.close)
            self.client = None
        self._available = False
        self._next_provision_attempt = None
        logger.info("Closed QdrantVectorIndex")
