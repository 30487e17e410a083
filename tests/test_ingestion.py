"""Tests for source ingestion."""

from __future__ import annotations

import asyncio
from pathlib import Path
from uuid import uuid4

import chromadb
import pytest

from fakes import RecordingEmbedder
from ragchat.errors import UnsupportedFileTypeError
from ragchat.ingestion import IngestionConfig, SourceIngestor, build_chunks, original_file_id_for
from ragchat.search import ChromaSearchIndex


def _ingestor(chunk_size: int = 2000, chunk_overlap: int = 200) -> tuple[SourceIngestor, ChromaSearchIndex]:
    index = ChromaSearchIndex(f"test-ingest-{uuid4().hex}", client=chromadb.EphemeralClient())
    config = IngestionConfig(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return SourceIngestor(index, RecordingEmbedder(), config), index


def test_original_file_id_is_stable_and_short():
    first = original_file_id_for("p1", "report.pdf", 1024)
    assert first == original_file_id_for("p1", "report.pdf", 1024)
    assert first != original_file_id_for("p2", "report.pdf", 1024)
    assert len(first) == 24


def test_build_chunks_tags_ids_and_source_file():
    chunks = build_chunks(
        "a" * 4500,
        project_id="p1",
        file_name="report.txt",
        original_file_id="abc",
        config=IngestionConfig(),
    )
    assert [chunk.id for chunk in chunks] == ["abc_chunk_0", "abc_chunk_1", "abc_chunk_2"]
    assert {chunk.source_file for chunk in chunks} == {"p1/report.txt"}
    assert [chunk.order for chunk in chunks] == [0, 1, 2]


def test_ingest_text_file_indexes_every_chunk(tmp_path: Path) -> None:
    document = tmp_path / "notes.txt"
    document.write_text("Revenue grew strongly. " * 40, encoding="utf-8")
    ingestor, index = _ingestor(chunk_size=300, chunk_overlap=50)

    result = asyncio.run(ingestor.ingest_file(document, file_name="notes.txt", project_id="p1"))

    assert result.chunk_count > 1
    assert index.count() == result.chunk_count
    assert [ref.id for ref in index.list_sources("p1")] == [result.original_file_id]
    assert index.get_chunks(result.original_file_id)[0].id == f"{result.original_file_id}_chunk_0"


def test_blank_document_reports_zero_chunks(tmp_path: Path) -> None:
    document = tmp_path / "blank.txt"
    document.write_text("   \n\n  ", encoding="utf-8")
    ingestor, index = _ingestor()

    result = asyncio.run(ingestor.ingest_file(document, file_name="blank.txt", project_id="p1"))

    assert result.chunk_count == 0
    assert index.count() == 0


def test_unsupported_extension_is_rejected(tmp_path: Path) -> None:
    document = tmp_path / "sheet.xlsx"
    document.write_bytes(b"not really a spreadsheet")
    ingestor, _ = _ingestor()
    with pytest.raises(UnsupportedFileTypeError):
        asyncio.run(ingestor.ingest_file(document, file_name="sheet.xlsx", project_id="p1"))
