"""Extraction of source citations from model output."""

from __future__ import annotations

import re
from typing import List, Protocol

SOURCE_ID_PATTERN = re.compile(r"\[Source ID:\s*([^,\]]+?)\s*(?:,\s*sourcefile:\s*[^\]]*)?\]")


class CitationParser(Protocol):
    """Protocol describing citation extraction."""

    def parse(self, text: str) -> List[str]:
        """Return the cited source ids in first-seen order without duplicates."""


class SourceIdCitationParser:
    """Parses ``[Source ID: <id>]`` and ``[Source ID: <id>, sourcefile: <file>]`` markers."""

    def __init__(self, pattern: re.Pattern[str] = SOURCE_ID_PATTERN) -> None:
        self._pattern = pattern

    def parse(self, text: str) -> List[str]:
        seen: dict[str, None] = {}
        for match in self._pattern.finditer(text or ""):
            seen.setdefault(match.group(1), None)
        return list(seen)
