from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from structlog.testing import capture_logs

from ragchat.errors import ConfigurationError
from ragchat.services.llm import AzureOpenAIProvider, LLMConfig


def _chunk(content: str | None, *, empty: bool = False) -> SimpleNamespace:
    choices = [] if empty else [SimpleNamespace(delta=SimpleNamespace(content=content))]
    return SimpleNamespace(choices=choices)


class FakeCompletions:
    def __init__(self, chunks) -> None:
        self.chunks = chunks
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)

        async def frames():
            for chunk in self.chunks:
                yield chunk

        return frames()


def _provider(chunks) -> tuple[AzureOpenAIProvider, FakeCompletions]:
    completions = FakeCompletions(chunks)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return AzureOpenAIProvider(LLMConfig(deployment="gpt-4o"), client=client), completions


def test_stream_skips_filter_frames_and_logs_completion():
    finished: list[str] = []

    async def scenario() -> list[str]:
        return [
            token
            async for token in provider.stream("Hi", system="Be brief.", on_finish=finished.append)
        ]

    provider, completions = _provider([_chunk(None, empty=True), _chunk("Hel"), _chunk(None), _chunk("lo")])
    with capture_logs() as logs:
        tokens = asyncio.run(scenario())

    assert tokens == ["Hel", "lo"]
    assert finished == ["Hello"]
    assert completions.requests[0]["stream"] is True
    assert completions.requests[0]["messages"][0] == {"role": "system", "content": "Be brief."}
    events = [entry for entry in logs if entry["event"] == "llm.stream.complete"]
    assert events and events[0]["token_count"] == 2
    assert events[0]["deployment"] == "gpt-4o"


def test_missing_settings_are_reported_by_name():
    provider = AzureOpenAIProvider(LLMConfig(endpoint="https://example.openai.azure.com"), mode="prompt_generation")
    with pytest.raises(ConfigurationError, match="missing api key, deployment"):
        provider.ensure_configured()
