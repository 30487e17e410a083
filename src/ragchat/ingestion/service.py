"""Source document ingestion for ragchat."""

from __future__ import annotations

import hashlib
import re
import time
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Sequence

from langchain_community.document_loaders import BSHTMLLoader, Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader

from ragchat.embeddings.service import EmbeddingBackend
from ragchat.errors import IngestionError, UnsupportedFileTypeError
from ragchat.ingestion.chunker import CHUNK_OVERLAP, MAX_CHUNK_SIZE, chunk_text
from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.models import DocumentChunk
from ragchat.search.store import SearchIndex


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for document ingestion."""

    chunk_size: int = MAX_CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    encoding: str = "utf-8"


@dataclass(frozen=True)
class IngestionResult:
    original_file_id: str
    file_name: str
    project_id: str
    chunk_count: int


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"[ \t\r\f\v]+", " ", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def original_file_id_for(project_id: str, file_name: str, file_size: int) -> str:
    digest = hashlib.sha256(f"{project_id}{file_name}{file_size}".encode("utf-8")).hexdigest()
    return digest[:24]


def build_chunks(text: str, *, project_id: str, file_name: str, original_file_id: str, config: IngestionConfig) -> List[DocumentChunk]:
    source_file = f"{project_id}/{file_name}"
    return [
        DocumentChunk(
            id=f"{original_file_id}_chunk_{order}",
            text=window,
            source_file=source_file,
            project_id=project_id,
            original_file_id=original_file_id,
            order=order,
        )
        for order, window in enumerate(
            chunk_text(text, size=config.chunk_size, overlap=config.chunk_overlap)
        )
    ]


class SourceIngestor:
    """Extract, chunk, embed and index uploaded source documents."""

    _LOADERS: Mapping[str, type[BaseLoader]] = {
        ".pdf": PyPDFLoader,
        ".docx": Docx2txtLoader,
        ".txt": TextLoader,
        ".md": TextLoader,
        ".html": BSHTMLLoader,
        ".htm": BSHTMLLoader,
    }

    def __init__(
        self,
        index: SearchIndex,
        embedder: EmbeddingBackend,
        config: IngestionConfig | None = None,
    ) -> None:
        self._index = index
        self._embedder = embedder
        self._config = config or IngestionConfig()
        self._logger = get_logger("ingestion")

    @property
    def supported_extensions(self) -> Sequence[str]:
        return tuple(self._LOADERS)

    def extract_text(self, path: Path) -> str:
        suffix = path.suffix.lower()
        loader_cls = self._LOADERS.get(suffix)
        if loader_cls is None:
            raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
        try:
            documents = self._build_loader(loader_cls, path).load()
        except Exception as exc:  # pragma: no cover - loader specific errors
            raise IngestionError(f"Failed to load {path.name}: {exc}") from exc
        return _normalize_text("\n\n".join(document.page_content for document in documents))

    async def ingest_file(self, path: Path, *, file_name: str, project_id: str) -> IngestionResult:
        start = time.perf_counter()
        file_size = path.stat().st_size
        original_file_id = original_file_id_for(project_id, file_name, file_size)
        text = self.extract_text(path)
        if not text:
            self._logger.warning("ingestion.empty", file_name=file_name, project_id=project_id)
            return IngestionResult(original_file_id, file_name, project_id, chunk_count=0)
        return await self._index_text(text, file_name=file_name, project_id=project_id, original_file_id=original_file_id, start=start)

    async def ingest_text(self, text: str, *, file_name: str, project_id: str) -> IngestionResult:
        start = time.perf_counter()
        original_file_id = original_file_id_for(project_id, file_name, len(text.encode("utf-8")))
        normalized = _normalize_text(text)
        if not normalized:
            return IngestionResult(original_file_id, file_name, project_id, chunk_count=0)
        return await self._index_text(normalized, file_name=file_name, project_id=project_id, original_file_id=original_file_id, start=start)

    async def _index_text(
        self,
        text: str,
        *,
        file_name: str,
        project_id: str,
        original_file_id: str,
        start: float,
    ) -> IngestionResult:
        chunks = build_chunks(
            text,
            project_id=project_id,
            file_name=file_name,
            original_file_id=original_file_id,
            config=self._config,
        )
        vectors = await self._embedder.embed_many([chunk.text for chunk in chunks])
        self._index.upsert(chunks, vectors)

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        self._logger.info(
            "ingestion.complete",
            file_name=file_name,
            project_id=project_id,
            original_file_id=original_file_id,
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return IngestionResult(original_file_id, file_name, project_id, chunk_count=len(chunks))

    def _build_loader(self, loader_cls: type[BaseLoader], path: Path) -> BaseLoader:
        if loader_cls is TextLoader:
            return loader_cls(str(path), encoding=self._config.encoding)
        return loader_cls(str(path))
