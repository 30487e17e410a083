"""Query-time retrieval of context passages."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Sequence

from ragchat.embeddings.cache import EmbeddingCache
from ragchat.errors import SearchFilterError
from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.models import ERROR_ID, NO_RESULTS_ID, RetrievedPassage
from ragchat.search.store import SearchHit, SearchIndex

NO_RESULTS_TEXT = "No relevant documents were found in the knowledge base."
ERROR_TEXT = "No relevant information found. There was an issue connecting to the knowledge base."


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 5
    candidates: int = 5


class Retriever:
    """Retrieve the passages most relevant to a query, scoped to a project.

    The retriever never raises. An empty result set yields a single
    ``no-results`` passage and any failure yields a single ``error`` passage,
    so callers can always build a prompt from the returned list.
    """

    def __init__(self, index: SearchIndex, cache: EmbeddingCache, config: RetrievalConfig | None = None) -> None:
        self._index = index
        self._cache = cache
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    async def retrieve(self, query: str, project_id: str | None = None) -> List[RetrievedPassage]:
        start = time.perf_counter()
        try:
            vector = await self._cache.get_embedding(query)
            hits = self._search(query, vector, project_id)
        except Exception as exc:
            PipelineMetrics.retrieval_failures.inc()
            self._logger.error("retrieval.failed", project_id=project_id, error=str(exc))
            return [RetrievedPassage(id=ERROR_ID, text=ERROR_TEXT)]

        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(hits), (hit.score for hit in hits))
        self._logger.info(
            "retrieval.complete",
            project_id=project_id,
            passage_count=len(hits),
            duration_seconds=duration,
        )
        if not hits:
            return [RetrievedPassage(id=NO_RESULTS_ID, text=NO_RESULTS_TEXT)]
        return [
            RetrievedPassage(id=hit.id, text=hit.content, source_file=hit.source_file, score=hit.score)
            for hit in hits
        ]

    def _search(self, query: str, vector: Sequence[float], project_id: str | None) -> Sequence[SearchHit]:
        top_k = self._config.top_k
        candidates = max(self._config.candidates, top_k)
        try:
            return self._index.search(query, vector=vector, top_k=top_k, candidates=candidates, project_id=project_id)
        except SearchFilterError as exc:
            if not project_id:
                raise
            self._logger.warning("retrieval.filter_unsupported", project_id=project_id, error=str(exc))

        # Index cannot filter: search unscoped and keep hits whose source path names the project.
        needle = project_id.lower()
        hits = self._index.search(query, vector=vector, top_k=candidates, candidates=candidates)
        return [hit for hit in hits if needle in hit.source_file.lower()][:top_k]
