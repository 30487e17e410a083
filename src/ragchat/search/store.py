"""Search index implementations."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from ragchat.errors import SearchFilterError
from ragchat.models import DocumentChunk, DocumentRef

GET_PAGE_SIZE = 1000


@dataclass(frozen=True)
class SearchHit:
    """Single ranked result returned by the search index."""

    id: str
    content: str
    source_file: str
    score: float


class SearchIndex(Protocol):
    """Protocol for the vector/lexical search service holding document chunks."""

    def upsert(self, chunks: Sequence[DocumentChunk], vectors: Sequence[Sequence[float]]) -> Sequence[str]:
        """Persist chunks together with their embedding vectors."""

    def search(
        self,
        query: str,
        *,
        vector: Sequence[float] | None = None,
        top_k: int = 5,
        candidates: int | None = None,
        project_id: str | None = None,
    ) -> Sequence[SearchHit]:
        """Return the top-k hits for the query, optionally restricted to a project."""

    def list_sources(self, project_id: str) -> Sequence[DocumentRef]:
        """Return one entry per original document of a project."""

    def get_chunks(self, original_file_id: str) -> Sequence[DocumentChunk]:
        """Return every chunk of an original document in order."""

    def delete_source(self, original_file_id: str) -> int:
        """Remove every chunk of an original document and return how many were removed."""

    def count(self) -> int:
        """Return total number of stored chunks."""


class ChromaSearchIndex:
    """Chroma-backed hybrid search index."""

    def __init__(
        self,
        collection_name: str = "ragchat-chunks",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        lexical_weight: float = 0.35,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self._lexical_weight = _clamp_weight(lexical_weight)

    def upsert(self, chunks: Sequence[DocumentChunk], vectors: Sequence[Sequence[float]]) -> Sequence[str]:
        if len(chunks) != len(vectors):
            raise ValueError("Mismatch between number of chunks and embedding vectors")
        if not chunks:
            return []
        ids = [chunk.id for chunk in chunks]
        self._collection.upsert(
            ids=ids,
            documents=[chunk.text for chunk in chunks],
            embeddings=[list(vector) for vector in vectors],
            metadatas=[self._serialize_chunk(chunk) for chunk in chunks],
        )
        return ids

    def search(
        self,
        query: str,
        *,
        vector: Sequence[float] | None = None,
        top_k: int = 5,
        candidates: int | None = None,
        project_id: str | None = None,
    ) -> Sequence[SearchHit]:
        if top_k <= 0 or vector is None:
            return []
        pool = max(top_k, candidates or top_k)
        where = {"project_id": project_id} if project_id else None
        try:
            results = self._collection.query(
                query_embeddings=[list(vector)],
                n_results=pool,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except ValueError as exc:
            if where is None:
                raise
            raise SearchFilterError(f"Cannot filter on project_id: {exc}") from exc
        hits = self._deserialize_results(results)
        return self._blend_lexical(query, hits)[:top_k]

    def list_sources(self, project_id: str) -> Sequence[DocumentRef]:
        seen: dict[str, DocumentRef] = {}
        for metadata in self._iter_metadatas(where={"project_id": project_id}):
            original_file_id = str(metadata.get("original_file_id", ""))
            source_file = str(metadata.get("source_file", ""))
            if not original_file_id or not source_file:
                continue
            seen.setdefault(original_file_id, DocumentRef(id=original_file_id, name=source_file))
        return list(seen.values())

    def get_chunks(self, original_file_id: str) -> Sequence[DocumentChunk]:
        batch = self._collection.get(
            where={"original_file_id": original_file_id},
            include=["documents", "metadatas"],
        )
        ids = batch.get("ids") or []
        documents = batch.get("documents") or []
        metadatas = batch.get("metadatas") or []
        chunks = [
            self._deserialize_chunk(chunk_id, document, metadata)
            for chunk_id, document, metadata in zip(ids, documents, metadatas, strict=False)
        ]
        return sorted(chunks, key=lambda chunk: chunk.order)

    def delete_source(self, original_file_id: str) -> int:
        batch = self._collection.get(where={"original_file_id": original_file_id}, include=["metadatas"])
        ids = batch.get("ids") or []
        if ids:
            self._collection.delete(ids=ids)
        return len(ids)

    def count(self) -> int:
        try:
            return int(self._collection.count())
        except Exception:
            return 0

    def _iter_metadatas(self, *, where: Mapping[str, object]) -> Iterable[Mapping[str, object]]:
        offset = 0
        while True:
            batch = self._collection.get(where=dict(where), include=["metadatas"], limit=GET_PAGE_SIZE, offset=offset)
            metadatas = batch.get("metadatas") or []
            for metadata in metadatas:
                if isinstance(metadata, Mapping):
                    yield metadata
            if len(metadatas) < GET_PAGE_SIZE:
                break
            offset += GET_PAGE_SIZE

    def _blend_lexical(self, query: str, hits: Sequence[SearchHit]) -> list[SearchHit]:
        if not hits or not self._lexical_weight:
            return list(hits)
        tokens = set(query.lower().split())
        blended = [
            SearchHit(
                id=hit.id,
                content=hit.content,
                source_file=hit.source_file,
                score=(1.0 - self._lexical_weight) * hit.score
                + self._lexical_weight * _token_overlap_score(tokens, hit.content),
            )
            for hit in hits
        ]
        blended.sort(key=lambda hit: hit.score, reverse=True)
        return blended

    @staticmethod
    def _serialize_chunk(chunk: DocumentChunk) -> MutableMapping[str, object]:
        return {
            "project_id": chunk.project_id,
            "source_file": chunk.source_file,
            "original_file_id": chunk.original_file_id,
            "order": chunk.order,
        }

    @staticmethod
    def _deserialize_chunk(chunk_id: str, document: str, metadata: Mapping[str, object]) -> DocumentChunk:
        return DocumentChunk(
            id=chunk_id,
            text=document or "",
            source_file=str(metadata.get("source_file", "")),
            project_id=str(metadata.get("project_id", "")),
            original_file_id=str(metadata.get("original_file_id", "")),
            order=int(metadata.get("order", 0)),
        )

    def _deserialize_results(self, results: Mapping[str, object]) -> list[SearchHit]:
        ids = _first(results.get("ids", []))
        documents = _first(results.get("documents", []))
        metadatas = _first(results.get("metadatas", []))
        distances = _first(results.get("distances", []))
        hits: list[SearchHit] = []
        for index, chunk_id in enumerate(ids):
            document = documents[index] if index < len(documents) else ""
            metadata = metadatas[index] if index < len(metadatas) and metadatas[index] else {}
            distance = distances[index] if index < len(distances) else None
            hits.append(
                SearchHit(
                    id=chunk_id,
                    content=document or "",
                    source_file=str(metadata.get("source_file", "")),
                    score=1.0 - float(distance) if distance is not None else 0.0,
                )
            )
        return hits


def _first(value: object) -> list:
    if isinstance(value, list):
        return list(value[0]) if value and value[0] is not None else []
    return []


def _clamp_weight(weight: float) -> float:
    if weight < 0.0:
        return 0.0
    if weight > 1.0:
        return 1.0
    return weight


def _token_overlap_score(query_tokens: set[str], text: str) -> float:
    tokens = set(text.lower().split())
    if not tokens:
        return 0.0
    overlap = len(query_tokens.intersection(tokens))
    return overlap / max(len(query_tokens), 1)
