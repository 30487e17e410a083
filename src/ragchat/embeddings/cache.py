"""Process-wide cache for query embeddings."""

from __future__ import annotations

from collections import OrderedDict

from ragchat.embeddings.service import EmbeddingBackend, Vector, prepare_input
from ragchat.metrics.observability import PipelineMetrics, get_logger

DEFAULT_CAPACITY = 1000


class EmbeddingCache:
    """Bounded text to vector memo in front of an embedding backend.

    Eviction is by insertion order: a hit does not refresh its entry, so the
    oldest-inserted key is always the next to go once the capacity is exceeded.
    Keys are the exact input strings; the provider sees them with newlines
    replaced by spaces. The instance is shared by every request of
    the process and is not locked; all access happens on one event loop.
    """

    def __init__(self, backend: EmbeddingBackend, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"Invalid cache capacity: {capacity}")
        self._backend = backend
        self._capacity = capacity
        self._entries: OrderedDict[str, Vector] = OrderedDict()
        self._logger = get_logger("embeddings.cache")

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: object) -> bool:
        return text in self._entries

    async def get_embedding(self, text: str) -> Vector:
        cached = self._entries.get(text)
        if cached is not None:
            PipelineMetrics.embedding_cache_hits.inc()
            return cached

        PipelineMetrics.embedding_cache_misses.inc()
        vector = await self._backend.embed(prepare_input(text))
        self._entries[text] = vector
        if len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._logger.info("embedding_cache.evicted", size=len(self._entries), evicted_length=len(evicted))
        return vector

    def clear(self) -> None:
        self._entries.clear()
