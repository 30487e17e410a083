"""Search index backends."""

from .store import ChromaSearchIndex, SearchHit, SearchIndex

__all__ = ["ChromaSearchIndex", "SearchHit", "SearchIndex"]
