import os

import pytest

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

# Keep any Settings() built during tests off the embedded on-disk Qdrant
if "CORTEX_QDRANT_URL" not in os.environ and "CORTEX_QDRANT_STORAGE_PATH" not in os.environ:
    os.environ["CORTEX_QDRANT_URL"] = ":memory:"

from cortex_memory.config import DatabaseSettings, QdrantSettings, SearchSettings, Settings  # noqa: E402
from cortex_memory.services.graph_service import GraphService  # noqa: E402
from cortex_memory.services.memory_service import MemoryService  # noqa: E402
from cortex_memory.services.retrieval_engine import RetrievalEngine  # noqa: E402
from cortex_memory.storage.sqlite_repository import SQLiteMemoryRepository  # noqa: E402
from fakes import HashEmbedder, InMemoryVectorIndex  # noqa: E402


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database=DatabaseSettings(path=tmp_path / "cortex.db"),
        qdrant=QdrantSettings(url=":memory:"),
        search=SearchSettings(link_top_k=3),
    )


@pytest.fixture
async def repository(tmp_path):
    repo = SQLiteMemoryRepository(str(tmp_path / "memories.db"))
    await repo.initialize()
    yield repo
    await repo.close()


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
async def vector_index() -> InMemoryVectorIndex:
    index = InMemoryVectorIndex()
    await index.ensure_index()
    return index


@pytest.fixture
def engine(embedder, vector_index, repository) -> RetrievalEngine:
    return RetrievalEngine(embedder=embedder, vector_index=vector_index, repository=repository, link_top_k=3)


@pytest.fixture
def memory_service(repository, vector_index, engine) -> MemoryService:
    return MemoryService(repository, vector_index, engine)


@pytest.fixture
def graph_service(repository) -> GraphService:
    return GraphService(repository)
