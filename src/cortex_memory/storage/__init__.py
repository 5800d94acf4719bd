from .base import MemoryRepository, VectorIndex, VectorMatch

__all__ = ["MemoryRepository", "VectorIndex", "VectorMatch"]
