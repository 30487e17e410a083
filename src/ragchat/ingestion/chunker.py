"""Fixed-size sliding-window text splitter."""

from __future__ import annotations

from typing import List

MAX_CHUNK_SIZE = 2000
CHUNK_OVERLAP = 200


def chunk_text(text: str, size: int = MAX_CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[str]:
    """Split ``text`` into windows of ``size`` characters sharing ``overlap`` characters.

    The input is stripped first. Windows advance by ``size - overlap`` and the
    last window always ends at the end of the text, so two consecutive windows
    share exactly ``overlap`` characters. Whitespace-only windows are dropped.
    Sentence and paragraph boundaries are ignored.
    """

    if size <= 0:
        raise ValueError(f"Invalid chunk size: {size}")
    if overlap < 0:
        raise ValueError(f"Invalid chunk overlap: {overlap}")
    if overlap >= size:
        raise ValueError(f"Overlap must be smaller than chunk size (overlap={overlap}, size={size})")

    text = (text or "").strip()
    if not text:
        return []

    step = size - overlap
    chunks: List[str] = []
    start = 0
    while True:
        end = min(start + size, len(text))
        window = text[start:end]
        if window.strip():
            chunks.append(window)
        if end >= len(text):
            break
        start += step
    return chunks
