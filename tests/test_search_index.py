from __future__ import annotations

import asyncio
from uuid import uuid4

import chromadb

from ragchat.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from ragchat.models import DocumentChunk
from ragchat.search import ChromaSearchIndex


def _chunk(file_id: str, project_id: str, order: int, text: str) -> DocumentChunk:
    return DocumentChunk(
        id=f"{file_id}_chunk_{order}",
        text=text,
        source_file=f"{project_id}/{file_id}.txt",
        project_id=project_id,
        original_file_id=file_id,
        order=order,
    )


def _index_with(chunks: list[DocumentChunk]) -> ChromaSearchIndex:
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    index = ChromaSearchIndex(f"test-index-{uuid4().hex}", client=chromadb.EphemeralClient())
    index.upsert(chunks, asyncio.run(backend.embed_many([chunk.text for chunk in chunks])))
    return index


def test_upsert_search_and_project_filter():
    index = _index_with(
        [
            _chunk("f1", "p1", 0, "alpha beta gamma"),
            _chunk("f1", "p1", 1, "delta epsilon"),
            _chunk("f2", "p2", 0, "alpha lorem ipsum"),
        ]
    )
    vector = asyncio.run(HashEmbeddingBackend(EmbeddingConfig(dim=16)).embed("alpha"))

    assert index.count() == 3
    scoped = index.search("alpha", vector=vector, top_k=5, project_id="p1")
    assert scoped
    assert {hit.source_file for hit in scoped} == {"p1/f1.txt"}
    assert len(index.search("alpha", vector=vector, top_k=2)) == 2
    assert index.search("alpha", vector=None, top_k=2) == []


def test_list_sources_get_chunks_and_delete():
    index = _index_with(
        [
            _chunk("f1", "p1", 1, "second"),
            _chunk("f1", "p1", 0, "first"),
            _chunk("f2", "p1", 0, "other document"),
        ]
    )

    sources = index.list_sources("p1")
    assert sorted(ref.id for ref in sources) == ["f1", "f2"]
    assert {ref.name for ref in sources} == {"p1/f1.txt", "p1/f2.txt"}

    assert [chunk.text for chunk in index.get_chunks("f1")] == ["first", "second"]

    assert index.delete_source("f1") == 2
    assert index.get_chunks("f1") == []
    assert index.delete_source("missing") == 0
    assert [ref.id for ref in index.list_sources("p1")] == ["f2"]
