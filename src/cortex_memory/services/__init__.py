from .graph_service import GraphService
from .memory_service import MemoryService
from .retrieval_engine import LinkResult, RetrievalEngine

__all__ = ["GraphService", "LinkResult", "MemoryService", "RetrievalEngine"]
