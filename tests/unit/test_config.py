"""Unit tests for pydantic-settings configuration."""

import pytest
from pydantic import ValidationError

from cortex_memory.config import EmbeddingSettings, QdrantSettings, SearchSettings, ServerSettings, Settings


class TestDefaults:
    def test_search_defaults(self):
        search = SearchSettings()
        assert search.default_limit == 20
        assert search.max_limit == 100
        assert search.link_top_k == 5
        assert search.list_default_limit == 50

    def test_server_defaults(self, monkeypatch):
        monkeypatch.delenv("CORTEX_SERVER_USER_HEADER", raising=False)
        server = ServerSettings()
        assert server.user_header == "X-User-Id"
        assert server.port == 8000

    def test_qdrant_strict_startup_off_by_default(self, monkeypatch):
        monkeypatch.delenv("CORTEX_QDRANT_STRICT_STARTUP", raising=False)
        assert QdrantSettings().strict_startup is False


class TestEnvironment:
    def test_env_prefix_per_concern(self, monkeypatch):
        monkeypatch.setenv("CORTEX_EMBEDDING_MODEL_NAME", "intfloat/e5-small")
        monkeypatch.setenv("CORTEX_SEARCH_LINK_TOP_K", "3")
        monkeypatch.setenv("CORTEX_QDRANT_COLLECTION_NAME", "test-memories")

        settings = Settings()

        assert settings.embedding.model_name == "intfloat/e5-small"
        assert settings.search.link_top_k == 3
        assert settings.qdrant.collection_name == "test-memories"

    def test_origins_split_on_commas(self, monkeypatch):
        monkeypatch.setenv("CORTEX_SERVER_ALLOWED_ORIGINS", "http://a.test, http://b.test,")
        assert ServerSettings().origins == ["http://a.test", "http://b.test"]


class TestValidation:
    def test_url_and_storage_path_exclusive(self):
        with pytest.raises(ValidationError, match="Cannot specify both"):
            QdrantSettings(url="http://localhost:6333", storage_path="/tmp/qdrant")

    def test_default_limit_cannot_exceed_max(self):
        with pytest.raises(ValidationError):
            SearchSettings(default_limit=200, max_limit=100)

    def test_log_level_normalised(self):
        assert ServerSettings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            ServerSettings(log_level="chatty")

    def test_embedding_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            EmbeddingSettings(timeout_seconds=0)
