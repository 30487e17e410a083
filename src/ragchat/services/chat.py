"""Standard retrieval-augmented chat path."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Sequence, Union

from ragchat.metrics.observability import get_logger
from ragchat.models import ConversationMessage, ProjectSettings, RetrievedPassage, latest_user_message, prior_messages
from ragchat.services.deep_analysis import CompleteEvent, TokenEvent
from ragchat.services.llm import LLMProvider
from ragchat.services.prompts import PromptAssembler


@dataclass(frozen=True)
class SourcesEvent:
    sources: tuple[RetrievedPassage, ...]


ChatEvent = Union[SourcesEvent, TokenEvent, CompleteEvent]


class PassageRetriever(Protocol):
    async def retrieve(self, query: str, project_id: str | None = None) -> Sequence[RetrievedPassage]:
        """Return passages for a query."""


class SettingsResolver(Protocol):
    def resolve_settings(self, project_id: str | None) -> ProjectSettings:
        """Return the effective generation settings for a project."""


class ChatService:
    """Orchestrates retrieval and one streamed answer for a chat turn."""

    def __init__(
        self,
        retriever: PassageRetriever,
        llm: LLMProvider,
        settings: SettingsResolver,
        assembler: PromptAssembler | None = None,
    ) -> None:
        self._retriever = retriever
        self._llm = llm
        self._settings = settings
        self._assembler = assembler or PromptAssembler()
        self._logger = get_logger("chat")

    async def stream_chat(
        self,
        messages: Sequence[ConversationMessage],
        project_id: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        messages = list(messages)
        latest = latest_user_message(messages)
        if latest is None:
            raise ValueError("Conversation does not contain a user message")
        settings = self._settings.resolve_settings(project_id)

        try:
            passages = list(await self._retriever.retrieve(latest.content, project_id))
        except Exception as exc:
            self._logger.warning("chat.retrieval_failed", project_id=project_id, error=str(exc))
            passages = []
        sources = tuple(passage for passage in passages if not passage.is_sentinel)
        if sources:
            yield SourcesEvent(sources)

        prompt = self._assembler.build_prompt(passages, latest.content, prior_messages(messages))
        start = time.perf_counter()
        async for token in self._llm.stream(
            prompt,
            system=settings.system_prompt,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        ):
            yield TokenEvent(token)
        self._logger.info(
            "chat.complete",
            project_id=project_id,
            source_count=len(sources),
            duration_seconds=time.perf_counter() - start,
        )
        yield CompleteEvent()
