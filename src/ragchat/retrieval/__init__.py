"""Retrieval components."""

from .service import RetrievalConfig, Retriever

__all__ = ["RetrievalConfig", "Retriever"]
