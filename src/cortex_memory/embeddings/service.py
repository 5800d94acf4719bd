"""
Embedding gateway.

Turns text into fixed-dimension vectors with a sentence-transformers model.
The model is loaded lazily on first use (thread-safe) and inference runs in
the default executor so the event loop is never blocked.

Embedding is an optional enhancement for the rest of the service: every
failure surfaces as ``EmbeddingUnavailableError`` and callers decide whether
to degrade.  No retries happen here.
"""

import asyncio
import logging
import threading
from typing import Any

from ..exceptions import EmbeddingUnavailableError

# Import sentence transformers with fallback
try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False

logger = logging.getLogger(__name__)

if not SENTENCE_TRANSFORMERS_AVAILABLE:
    logger.warning("sentence_transformers not available. Install for embedding support.")

# Known output dimensions; avoids loading the model just to size the index
MODEL_DIMENSIONS = {
    "all-MiniLM-L6-v2": 384,
    "all-MiniLM-L12-v2": 384,
    "all-mpnet-base-v2": 768,
    "intfloat/e5-small": 384,
    "intfloat/e5-base": 768,
    "intfloat/e5-large": 1024,
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "nomic-ai/nomic-embed-text-v1.5": 768,
    "Snowflake/snowflake-arctic-embed-s-v2.0": 384,
    "Snowflake/snowflake-arctic-embed-m-v2.0": 768,
    "Snowflake/snowflake-arctic-embed-l-v2.0": 1024,
}


class EmbeddingService:
    """Async facade over a sentence-transformers model."""

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-mpnet-base-v2",
        device: str = "cpu",
        timeout_seconds: float = 10.0,
        batch_size: int = 32,
    ):
        self.model_name = model_name
        self.device = device
        self.timeout_seconds = timeout_seconds
        self.batch_size = batch_size

        self._model: Any = None
        self._model_lock = threading.Lock()
        self._dimensions: int | None = None

    @property
    def dimensions(self) -> int:
        """
        Output dimensionality of the model.

        Uses the known-model table first and only loads the model for unknown names.
        """
        if self._dimensions is not None:
            return self._dimensions

        for known_model, dims in MODEL_DIMENSIONS.items():
            if self.model_name.endswith(known_model):
                logger.info(f"Using known dimensions for model {self.model_name}: {dims}")
                self._dimensions = dims
                return dims

        model = self._load_model()
        self._dimensions = int(model.get_sentence_embedding_dimension())
        logger.info(f"Detected dimensions for model {self.model_name}: {self._dimensions}")
        return self._dimensions

    def _load_model(self) -> Any:
        """Load the model once; concurrent callers wait on the lock."""
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            raise EmbeddingUnavailableError(
                "sentence_transformers not installed. Install with: pip install sentence-transformers"
            )

        if self._model is None:
            with self._model_lock:
                # Double-check after acquiring lock (another thread may have loaded it)
                if self._model is None:
                    logger.info(f"Loading embedding model: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name, device=self.device, trust_remote_code=True)
                    logger.info(f"Loaded model: {self.model_name} on device: {self.device}")
        return self._model

    def _encode(self, texts: list[str], prompt_name: str | None) -> list[list[float]]:
        model = self._load_model()

        # Instruction-tuned models (E5, Nomic, Arctic) ship named prompts
        prompts = getattr(model, "prompts", None) or {}
        if prompt_name and prompt_name in prompts:
            embeddings = model.encode(texts, prompt_name=prompt_name, batch_size=self.batch_size, convert_to_tensor=False)
        else:
            embeddings = model.encode(texts, batch_size=self.batch_size, convert_to_tensor=False)

        return [e.tolist() if hasattr(e, "tolist") else list(e) for e in embeddings]

    async def _encode_async(self, texts: list[str], prompt_name: str | None) -> list[list[float]]:
        loop = asyncio.get_running_loop()
        try:
            vectors = await asyncio.wait_for(
                loop.run_in_executor(None, self._encode, texts, prompt_name),
                timeout=self.timeout_seconds,
            )
        except EmbeddingUnavailableError:
            raise
        except TimeoutError as e:
            logger.warning(f"Embedding timed out after {self.timeout_seconds}s")
            raise EmbeddingUnavailableError(f"Embedding timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e.__class__.__name__}: {e}")
            raise EmbeddingUnavailableError(f"Failed to generate embedding: {e}") from e

        if len(vectors) != len(texts) or any(not vector for vector in vectors):
            raise EmbeddingUnavailableError("Embedding provider returned no vector")

        if self._dimensions is None:
            self._dimensions = len(vectors[0])
        return vectors

    async def embed(self, text: str, prompt_name: str | None = "passage") -> list[float]:
        """
        Embed one text.

        Args:
            text: Text to embed
            prompt_name: "passage" for stored documents, "query" for search queries

        Raises:
            EmbeddingUnavailableError: If the text is blank or the provider fails
        """
        if not text or not text.strip():
            raise EmbeddingUnavailableError("Cannot embed empty text")
        vectors = await self._encode_async([text], prompt_name)
        return vectors[0]

    async def embed_query(self, query: str) -> list[float]:
        return await self.embed(query, prompt_name="query")

    async def batch_embed(self, texts: list[str], prompt_name: str | None = "passage") -> list[list[float]]:
        """
        Embed many texts in one batched forward pass.

        Returns:
            One vector per input, in input order
        """
        if not texts:
            return []
        if any(not text or not text.strip() for text in texts):
            raise EmbeddingUnavailableError("Cannot embed empty text")
        return await self._encode_async(list(texts), prompt_name)
