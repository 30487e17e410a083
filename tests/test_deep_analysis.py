from __future__ import annotations

import asyncio

import pytest

from fakes import FakeDocumentStore, FakeLLM
from ragchat.models import ConversationMessage
from ragchat.services.deep_analysis import (
    MAP_ERROR_PREFIX,
    MISSING_TEXT_MARKER,
    NO_DOCUMENTS_ANSWER,
    CitationsEvent,
    CompleteEvent,
    ErrorEvent,
    MapReduceOrchestrator,
    MapResultEvent,
    StatusEvent,
    TokenEvent,
    summarize_conversation,
)
from ragchat.services.templates import (
    CITATION_PRESERVATION_RULE,
    FALLBACK_REDUCE_PROMPT,
    MAP_PLACEHOLDER,
    ReducePromptGenerator,
    TemplateGenerator,
)

A_TEXT = "[Source ID: a_chunk_0, sourcefile: p1/A.pdf] The main financial risk is currency exposure."
B_TEXT = "[Source ID: b_chunk_0, sourcefile: p1/B.pdf] The cafeteria menu changes weekly."
NOTHING_RELEVANT = "No information relevant to the user's query was found in this document."


def scripted(prompt: str, system: str | None) -> str:
    if "Generated Map Prompt" in prompt:
        return f"List every financial risk with its Source ID.\n---\n{MAP_PLACEHOLDER}\n---"
    if "Generated Reduce System Prompt" in prompt:
        return "Combine the extracted risks into one answer."
    if "currency exposure" in prompt:
        return "Financial Risk: currency exposure [Source ID: a_chunk_0]"
    return NOTHING_RELEVANT


def _orchestrator(store: FakeDocumentStore, llm: FakeLLM, prompt_llm: FakeLLM | None = None) -> MapReduceOrchestrator:
    prompt_llm = prompt_llm or llm
    return MapReduceOrchestrator(store, llm, TemplateGenerator(prompt_llm), ReducePromptGenerator(prompt_llm))


def _collect(orchestrator: MapReduceOrchestrator, query: str, history=()) -> list:
    async def scenario() -> list:
        return [event async for event in orchestrator.run(query, "p1", history)]

    return asyncio.run(scenario())


def test_end_to_end_risks_are_found_only_in_relevant_document():
    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT), "b": ("B.pdf", B_TEXT)})
    llm = FakeLLM(scripted, stream_tokens=["Currency exposure is the only risk, found in A.pdf ", "[Source ID: a_chunk_0]."])

    events = _collect(_orchestrator(store, llm), "What are the financial risks?")

    results = [event.result for event in events if isinstance(event, MapResultEvent)]
    assert [result.document_name for result in results] == ["A.pdf", "B.pdf"]
    assert "[Source ID: a_chunk_0]" in results[0].analysis_text
    assert results[1].analysis_text == NOTHING_RELEVANT

    answer = "".join(event.text for event in events if isinstance(event, TokenEvent))
    assert "[Source ID: a_chunk_0]" in answer
    assert "A.pdf" in answer and "B.pdf" not in answer
    assert events[-2] == CitationsEvent(("a_chunk_0",))
    assert isinstance(events[-1], CompleteEvent)

    reduce_call = llm.stream_calls[0]
    assert reduce_call["system"].endswith(CITATION_PRESERVATION_RULE)
    assert reduce_call["prompt"].index("Analysis of document: A.pdf") < reduce_call["prompt"].index(
        "Analysis of document: B.pdf"
    )


def test_map_calls_are_sequential_with_low_temperature():
    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT), "b": ("B.pdf", B_TEXT)})
    llm = FakeLLM(scripted)

    _collect(_orchestrator(store, llm), "What are the financial risks?")

    map_calls = [call for call in llm.complete_calls if "Source ID: " in call["prompt"] and "Generated" not in call["prompt"]]
    assert len(map_calls) == 2
    assert A_TEXT in map_calls[0]["prompt"] and B_TEXT in map_calls[1]["prompt"]
    assert {call["temperature"] for call in map_calls} == {0.1}
    assert store.text_requests == ["a", "b"]


def test_empty_project_answers_without_any_llm_call():
    llm = FakeLLM(scripted)
    events = _collect(_orchestrator(FakeDocumentStore({}), llm), "Anything?")

    assert isinstance(events[0], StatusEvent)
    assert events[1] == TokenEvent(NO_DOCUMENTS_ANSWER)
    assert isinstance(events[-1], CompleteEvent)
    assert not any(isinstance(event, ErrorEvent) for event in events)
    assert llm.complete_calls == [] and llm.stream_calls == []


def test_template_without_placeholder_stops_before_mapping():
    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT)})
    llm = FakeLLM(lambda prompt, system: "Just summarise the document.")

    events = _collect(_orchestrator(store, llm), "q")

    errors = [event for event in events if isinstance(event, ErrorEvent)]
    assert len(errors) == 1 and errors[0].error == "generation_error"
    assert len(llm.complete_calls) == 1
    assert llm.stream_calls == []
    assert store.text_requests == []
    assert not any(isinstance(event, (MapResultEvent, CompleteEvent)) for event in events)


def test_missing_text_records_marker_and_skips_the_call():
    store = FakeDocumentStore({"a": ("A.pdf", None), "b": ("B.pdf", B_TEXT)})
    llm = FakeLLM(scripted)

    events = _collect(_orchestrator(store, llm), "q")

    results = [event.result for event in events if isinstance(event, MapResultEvent)]
    assert results[0].analysis_text == MISSING_TEXT_MARKER
    assert not any(A_TEXT in call["prompt"] for call in llm.complete_calls)
    assert MISSING_TEXT_MARKER in llm.stream_calls[0]["prompt"]


def test_failed_document_becomes_placeholder_and_batch_continues():
    def flaky(prompt: str, system: str | None) -> str:
        if "cafeteria" in prompt and "Generated" not in prompt:
            raise RuntimeError("rate limited")
        return scripted(prompt, system)

    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT), "b": ("B.pdf", B_TEXT)})
    llm = FakeLLM(flaky)

    events = _collect(_orchestrator(store, llm), "q")

    results = [event.result for event in events if isinstance(event, MapResultEvent)]
    assert results[1].analysis_text == f"{MAP_ERROR_PREFIX}rate limited"
    assert f"{MAP_ERROR_PREFIX}rate limited" in llm.stream_calls[0]["prompt"]
    assert isinstance(events[-1], CompleteEvent)


def test_unreadable_document_becomes_placeholder_and_batch_continues():
    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT), "b": ("B.pdf", B_TEXT)}, unreadable=["a"])
    llm = FakeLLM(scripted)

    events = _collect(_orchestrator(store, llm), "q")

    results = [event.result for event in events if isinstance(event, MapResultEvent)]
    assert [result.document_name for result in results] == ["A.pdf", "B.pdf"]
    assert results[0].analysis_text == f"{MAP_ERROR_PREFIX}index unreachable"
    assert results[1].analysis_text == NOTHING_RELEVANT
    assert store.text_requests == ["a", "b"]
    assert isinstance(events[-1], CompleteEvent)


def test_reduce_prompt_generation_failure_uses_fallback():
    def no_reduce(prompt: str, system: str | None) -> str:
        if "Generated Reduce System Prompt" in prompt:
            raise RuntimeError("prompt deployment down")
        return scripted(prompt, system)

    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT)})
    llm = FakeLLM(no_reduce)

    _collect(_orchestrator(store, llm), "q")

    assert llm.stream_calls[0]["system"] == f"{FALLBACK_REDUCE_PROMPT}\n\n{CITATION_PRESERVATION_RULE}"


def test_reduce_failure_propagates():
    class BrokenStream(FakeLLM):
        async def stream(self, prompt, **kwargs):
            raise RuntimeError("stream reset")
            yield  # pragma: no cover

    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT)})
    with pytest.raises(RuntimeError, match="stream reset"):
        _collect(_orchestrator(store, BrokenStream(scripted)), "q")


def test_status_precedes_each_map_result():
    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT), "b": ("B.pdf", B_TEXT)})
    events = _collect(_orchestrator(store, FakeLLM(scripted)), "q")

    kinds = [type(event).__name__ for event in events]
    first_map = kinds.index("MapResultEvent")
    assert kinds[first_map - 1] == "StatusEvent"
    assert kinds.count("MapResultEvent") == 2
    assert kinds.index("TokenEvent") > kinds.index("MapResultEvent")


def test_prior_conversation_reaches_template_generation():
    store = FakeDocumentStore({"a": ("A.pdf", A_TEXT)})
    llm = FakeLLM(scripted)
    history = [
        ConversationMessage(role="user", content="Tell me about 2023."),
        ConversationMessage(role="assistant", content="2023 was stable."),
    ]

    _collect(_orchestrator(store, llm), "And the risks?", history)

    assert "user: Tell me about 2023." in llm.complete_calls[0]["prompt"]


def test_conversation_summary_keeps_most_recent_characters():
    history = [ConversationMessage(role="user", content="x" * 50), ConversationMessage(role="assistant", content="tail")]
    summary = summarize_conversation(history, 10)
    assert len(summary) == 10
    assert summary == "tant: tail"
