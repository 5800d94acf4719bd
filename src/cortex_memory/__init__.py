"""Cortex Memory Service: personal memories with hybrid semantic/lexical retrieval."""

__version__ = "1.0.0"
