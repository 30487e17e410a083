"""Embedding providers and the query embedding cache."""

from .cache import EmbeddingCache
from .service import AzureOpenAIEmbeddingBackend, EmbeddingBackend, EmbeddingConfig, HashEmbeddingBackend

__all__ = [
    "AzureOpenAIEmbeddingBackend",
    "EmbeddingBackend",
    "EmbeddingCache",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
]
