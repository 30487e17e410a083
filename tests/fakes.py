"""Test doubles for the LLM, embedding and search collaborators."""

from __future__ import annotations

from typing import Callable, Sequence

from ragchat.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from ragchat.errors import ConfigurationError, SearchFilterError
from ragchat.models import DocumentRef
from ragchat.search.store import SearchHit

Responder = Callable[[str, "str | None"], str]


class FakeLLM:
    """Scripted LLM: ``responder(prompt, system)`` returns text or raises."""

    def __init__(
        self,
        responder: Responder | None = None,
        stream_tokens: Sequence[str] | None = None,
        configured: bool = True,
    ) -> None:
        self._responder = responder or (lambda prompt, system: "")
        self.stream_tokens = list(stream_tokens or ["Hello", " there."])
        self.configured = configured
        self.complete_calls: list[dict] = []
        self.stream_calls: list[dict] = []

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("Azure OpenAI chat settings are incomplete: missing endpoint")

    async def complete(self, prompt, *, system=None, temperature=0.3, max_tokens=4000):
        self.complete_calls.append(
            {"prompt": prompt, "system": system, "temperature": temperature, "max_tokens": max_tokens}
        )
        return self._responder(prompt, system)

    async def stream(self, prompt, *, system=None, temperature=0.3, max_tokens=4000, on_finish=None):
        self.stream_calls.append(
            {"prompt": prompt, "system": system, "temperature": temperature, "max_tokens": max_tokens}
        )
        for token in self.stream_tokens:
            yield token
        if on_finish is not None:
            on_finish("".join(self.stream_tokens))


class RecordingEmbedder(HashEmbeddingBackend):
    def __init__(self, dim: int = 16, fail: bool = False) -> None:
        super().__init__(EmbeddingConfig(dim=dim))
        self.calls: list[str] = []
        self.fail = fail

    async def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return await super().embed(text)


class FakeSearchIndex:
    """In-memory index returning canned hits."""

    def __init__(self, hits: Sequence[SearchHit] = (), *, reject_filter: bool = False, fail: bool = False) -> None:
        self.hits = list(hits)
        self.reject_filter = reject_filter
        self.fail = fail
        self.calls: list[dict] = []

    def search(self, query, *, vector=None, top_k=5, candidates=None, project_id=None):
        self.calls.append({"query": query, "top_k": top_k, "candidates": candidates, "project_id": project_id})
        if self.fail:
            raise ConnectionError("search service unreachable")
        if project_id and self.reject_filter:
            raise SearchFilterError("field project_id is not filterable")
        return self.hits[:top_k]

    def count(self) -> int:
        return len(self.hits)


class FakeDocumentStore:
    def __init__(self, documents: dict[str, tuple[str, str | None]], unreadable: Sequence[str] = ()) -> None:
        self._documents = documents
        self.unreadable = set(unreadable)
        self.text_requests: list[str] = []

    def list_documents(self, project_id):
        return [DocumentRef(id=doc_id, name=name) for doc_id, (name, _) in self._documents.items()]

    def get_document_text(self, document_id):
        self.text_requests.append(document_id)
        if document_id in self.unreadable:
            raise ConnectionError("index unreachable")
        return self._documents[document_id][1]
