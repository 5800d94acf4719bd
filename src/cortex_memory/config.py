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
Configuration for the Cortex Memory Service.

Each concern gets its own ``BaseSettings`` class with a dedicated environment
prefix (``CORTEX_QDRANT_URL``, ``CORTEX_EMBEDDING_MODEL_NAME`` ...).  The
aggregate ``settings`` object is built once at import time; components receive
the sub-settings they need explicitly rather than reaching for globals.
"""

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    model_config = SettingsConfigDict(env_prefix="CORTEX_EMBEDDING_", extra="ignore")

    model_name: str = Field(
        default="sentence-transformers/all-mpnet-base-v2",
        description="sentence-transformers model used to embed memory text and queries",
    )
    device: str = Field(default="cpu", description="Torch device for the embedding model")
    timeout_seconds: float = Field(default=10.0, gt=0.0, description="Upper bound for a single embed call")
    batch_size: int = Field(default=32, ge=1, description="Texts per forward pass in batch_embed")


class QdrantSettings(BaseSettings):
    """Vector index configuration."""

    model_config = SettingsConfigDict(env_prefix="CORTEX_QDRANT_", extra="ignore")

    url: str | None = Field(default=None, description="Qdrant server URL, or ':memory:' for an in-process index")
    storage_path: str | None = Field(default=None, description="Embedded Qdrant storage directory")
    api_key: str | None = Field(default=None, description="Qdrant Cloud API key")
    collection_name: str = Field(default="cortex-memories")
    vector_size: int | None = Field(default=None, ge=1, description="Override the detected embedding dimensions")
    timeout_seconds: float = Field(default=10.0, gt=0.0, description="Upper bound for a single index call")
    strict_startup: bool = Field(
        default=False,
        description="Fail startup when the index cannot be provisioned instead of serving lexical search only",
    )

    @model_validator(mode="after")
    def check_mode(self) -> "QdrantSettings":
        if self.url and self.storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        return self


class DatabaseSettings(BaseSettings):
    """Relational memory store configuration."""

    model_config = SettingsConfigDict(env_prefix="CORTEX_DB_", extra="ignore")

    path: Path = Field(default=Path("./data/cortex_memory.db"))


class SearchSettings(BaseSettings):
    """Retrieval engine knobs."""

    model_config = SettingsConfigDict(env_prefix="CORTEX_SEARCH_", extra="ignore")

    default_limit: int = Field(default=20, ge=1)
    max_limit: int = Field(default=100, ge=1)
    link_top_k: int = Field(default=5, ge=0, description="Neighbours attached to a memory at write time")
    list_default_limit: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def check_limits(self) -> "SearchSettings":
        if self.default_limit > self.max_limit:
            raise ValueError(f"default_limit ({self.default_limit}) cannot exceed max_limit ({self.max_limit})")
        return self


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="CORTEX_SERVER_", extra="ignore")

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    allowed_origins: str = Field(default="http://localhost:5173", description="Comma-separated CORS origins")
    user_header: str = Field(default="X-User-Id", description="Header carrying the verified user id")
    log_level: str = "INFO"
    version: str = "1.0.0"

    @property
    def origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Aggregate settings object."""

    model_config = SettingsConfigDict(extra="ignore")

    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


settings = Settings()
