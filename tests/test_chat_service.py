from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fakes import FakeLLM, FakeSearchIndex, RecordingEmbedder
from ragchat.embeddings import EmbeddingCache
from ragchat.models import ConversationMessage
from ragchat.projects import ProjectStore
from ragchat.retrieval import Retriever
from ragchat.search import SearchHit
from ragchat.services.chat import ChatService, SourcesEvent
from ragchat.services.deep_analysis import CompleteEvent, TokenEvent
from ragchat.services.prompts import DEFAULT_SYSTEM_PROMPT, NO_CONTEXT_TEXT


def _service(tmp_path: Path, hits=(), llm: FakeLLM | None = None) -> tuple[ChatService, FakeLLM, ProjectStore]:
    llm = llm or FakeLLM()
    store = ProjectStore(tmp_path)
    retriever = Retriever(FakeSearchIndex(list(hits)), EmbeddingCache(RecordingEmbedder()))
    return ChatService(retriever, llm, store), llm, store


def _collect(service: ChatService, messages, project_id=None) -> list:
    async def scenario() -> list:
        return [event async for event in service.stream_chat(messages, project_id)]

    return asyncio.run(scenario())


def test_hello_without_documents_streams_uncited_answer(tmp_path: Path) -> None:
    service, llm, _ = _service(tmp_path, llm=FakeLLM(stream_tokens=["Hello!", " How can I help?"]))

    events = _collect(service, [ConversationMessage(role="user", content="Hello")])

    assert not any(isinstance(event, SourcesEvent) for event in events)
    answer = "".join(event.text for event in events if isinstance(event, TokenEvent))
    assert answer == "Hello! How can I help?"
    assert "[Source ID:" not in answer
    assert isinstance(events[-1], CompleteEvent)

    prompt = llm.stream_calls[0]["prompt"]
    assert NO_CONTEXT_TEXT in prompt
    assert "[Source ID: no-results" not in prompt
    assert llm.stream_calls[0]["system"] == DEFAULT_SYSTEM_PROMPT


def test_sources_are_emitted_before_tokens(tmp_path: Path) -> None:
    hits = [SearchHit(id="doc_chunk_0", content="Revenue grew 12%.", source_file="p1/report.pdf", score=0.8)]
    service, llm, _ = _service(tmp_path, hits=hits)

    events = _collect(service, [ConversationMessage(role="user", content="How did revenue develop?")])

    assert isinstance(events[0], SourcesEvent)
    assert [source.id for source in events[0].sources] == ["doc_chunk_0"]
    assert events[0].sources[0].source_file == "p1/report.pdf"
    assert "[Source ID: doc_chunk_0, sourcefile: p1/report.pdf] Revenue grew 12%." in llm.stream_calls[0]["prompt"]


def test_project_settings_override_defaults(tmp_path: Path) -> None:
    service, llm, store = _service(tmp_path)
    project = store.create_project("Earnings")
    prompt = store.create_prompt(project.id, "Terse", "Answer in one sentence.")
    store.update_settings(project.id, active_project_prompt_id=prompt.id, temperature=0.7, max_tokens=500)

    _collect(service, [ConversationMessage(role="user", content="Summary?")], project.id)

    call = llm.stream_calls[0]
    assert call["system"] == "Answer in one sentence."
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 500


def test_history_before_latest_user_turn_is_included(tmp_path: Path) -> None:
    service, llm, _ = _service(tmp_path)
    messages = [
        ConversationMessage(role="user", content="What about Q1?"),
        ConversationMessage(role="assistant", content="Q1 was flat."),
        ConversationMessage(role="user", content="And Q2?"),
    ]

    _collect(service, messages)

    prompt = llm.stream_calls[0]["prompt"]
    assert "user: What about Q1?\nassistant: Q1 was flat." in prompt
    assert prompt.rstrip().endswith("Question: And Q2?")


def test_conversation_without_user_turn_is_rejected(tmp_path: Path) -> None:
    service, _, _ = _service(tmp_path)
    with pytest.raises(ValueError):
        _collect(service, [ConversationMessage(role="assistant", content="Hi")])
