"""Shared domain models used across the ragchat pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

Role = Literal["user", "assistant", "system"]

NO_RESULTS_ID = "no-results"
ERROR_ID = "error"
SENTINEL_IDS = frozenset({NO_RESULTS_ID, ERROR_ID})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DocumentChunk:
    """Fixed-size window of a source document, as stored in the search index."""

    id: str
    text: str
    source_file: str
    project_id: str
    original_file_id: str
    order: int = 0


@dataclass(frozen=True)
class DocumentRef:
    """Identifier and display name of a document belonging to a project."""

    id: str
    name: str


@dataclass(frozen=True)
class RetrievedPassage:
    """Passage returned by the retriever for a single query."""

    id: str
    text: str
    source_file: str = ""
    score: float = 0.0

    @property
    def is_sentinel(self) -> bool:
        return self.id in SENTINEL_IDS


@dataclass(frozen=True)
class MapPhaseResult:
    """Per-document output of the map phase of a deep analysis."""

    document_name: str
    analysis_text: str


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: str


@dataclass
class ProjectPrompt:
    id: str
    project_id: str
    name: str
    content: str
    is_default: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Project:
    id: str
    name: str
    description: str | None = None
    active_project_prompt_id: str | None = None
    active_global_prompt_name: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ProjectSettings:
    """Effective generation settings after project overrides are applied."""

    system_prompt: str
    temperature: float
    max_tokens: int


def latest_user_message(messages: list[ConversationMessage]) -> ConversationMessage | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def prior_messages(messages: list[ConversationMessage]) -> list[ConversationMessage]:
    """Return every message that precedes the latest user turn."""

    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role == "user":
            return list(messages[:index])
    return list(messages)
