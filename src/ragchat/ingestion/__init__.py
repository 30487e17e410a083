"""Document ingestion pipeline."""

from .chunker import chunk_text
from .service import IngestionConfig, IngestionResult, SourceIngestor, build_chunks, original_file_id_for

__all__ = [
    "IngestionConfig",
    "IngestionResult",
    "SourceIngestor",
    "build_chunks",
    "chunk_text",
    "original_file_id_for",
]
