from .service import EmbeddingService

__all__ = ["EmbeddingService"]
