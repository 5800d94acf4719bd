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
Component factory for the Cortex Memory Service.

Builds the gateways and services once per process from ``Settings`` and
wires them together.  The HTTP app and the maintenance scripts both start
from here.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from ..config import Settings
from ..embeddings.service import EmbeddingService
from ..exceptions import IndexUnavailableError
from ..services.graph_service import GraphService
from ..services.memory_service import MemoryService
from ..services.retrieval_engine import RetrievalEngine
from .base import MemoryRepository, VectorIndex
from .sqlite_repository import SQLiteMemoryRepository
from .vector_index import QdrantVectorIndex

logger = logging.getLogger(__name__)

DEFAULT_QDRANT_STORAGE_PATH = "./data/qdrant"


@dataclass
class ServiceComponents:
    """Everything a request handler or script needs, built once."""

    embedder: EmbeddingService
    vector_index: VectorIndex
    repository: MemoryRepository
    engine: RetrievalEngine
    memory_service: MemoryService
    graph_service: GraphService

    async def close(self) -> None:
        await self.vector_index.close()
        await self.repository.close()


def create_vector_index(settings: Settings, vector_size: int) -> QdrantVectorIndex:
    """Qdrant index in server mode (url) or embedded mode (storage_path, the default)."""
    qdrant = settings.qdrant
    if qdrant.url:
        logger.info(f"Using Qdrant server mode: {qdrant.url}")
        return QdrantVectorIndex(
            vector_size=vector_size,
            collection_name=qdrant.collection_name,
            url=qdrant.url,
            api_key=qdrant.api_key,
            timeout_seconds=qdrant.timeout_seconds,
        )

    storage_path = qdrant.storage_path or DEFAULT_QDRANT_STORAGE_PATH
    Path(storage_path).mkdir(parents=True, exist_ok=True)
    logger.info(f"Using Qdrant embedded mode: {storage_path}")
    return QdrantVectorIndex(
        vector_size=vector_size,
        collection_name=qdrant.collection_name,
        storage_path=storage_path,
        timeout_seconds=qdrant.timeout_seconds,
    )


def build_components(
    settings: Settings,
    embedder: EmbeddingService | None = None,
    vector_index: VectorIndex | None = None,
    repository: MemoryRepository | None = None,
) -> ServiceComponents:
    """
    Wire gateways and services without touching the network.

    Any gateway may be supplied pre-built (tests pass fakes here).
    """
    if embedder is None:
        embedder = EmbeddingService(
            model_name=settings.embedding.model_name,
            device=settings.embedding.device,
            timeout_seconds=settings.embedding.timeout_seconds,
            batch_size=settings.embedding.batch_size,
        )
    if vector_index is None:
        vector_size = settings.qdrant.vector_size or embedder.dimensions
        vector_index = create_vector_index(settings, vector_size)
    if repository is None:
        db_path = settings.database.path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        repository = SQLiteMemoryRepository(str(db_path))

    engine = RetrievalEngine(
        embedder=embedder,
        vector_index=vector_index,
        repository=repository,
        link_top_k=settings.search.link_top_k,
        max_limit=settings.search.max_limit,
    )
    return ServiceComponents(
        embedder=embedder,
        vector_index=vector_index,
        repository=repository,
        engine=engine,
        memory_service=MemoryService(repository, vector_index, engine),
        graph_service=GraphService(repository),
    )


async def initialize_components(components: ServiceComponents, strict: bool = False) -> None:
    """
    Prepare the memory store and provision the vector index.

    The store must come up.  An index that cannot be provisioned is logged
    and the service runs lexical-only, unless ``strict`` is set.

    Raises:
        IndexUnavailableError: If provisioning fails and ``strict`` is True
    """
    await components.repository.initialize()
    logger.info("Memory store initialized")

    try:
        await components.vector_index.ensure_index()
        logger.info("Vector index ready")
    except IndexUnavailableError as e:
        if strict:
            logger.error(f"Vector index provisioning failed (strict startup): {e}")
            raise
        logger.warning(f"Vector index unavailable, serving lexical search only: {e}")

