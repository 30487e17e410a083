"""Chat-completion providers for ragchat."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Protocol

from openai import AsyncAzureOpenAI

from ragchat.errors import ConfigurationError
from ragchat.metrics.observability import PipelineMetrics, get_logger


@dataclass(frozen=True)
class LLMConfig:
    """Connection settings for one Azure OpenAI chat deployment."""

    endpoint: str | None = None
    api_key: str | None = None
    api_version: str = "2024-06-01"
    deployment: str | None = None


class LLMProvider(Protocol):
    """Protocol describing chat-completion behaviour."""

    def ensure_configured(self) -> None:
        """Raise ``ConfigurationError`` when the provider cannot be called."""

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Return the full answer to a single prompt."""

    def stream(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        on_finish: Callable[[str], None] | None = None,
    ) -> AsyncIterator[str]:
        """Yield answer tokens as they arrive; ``on_finish`` receives the full text."""


def build_messages(prompt: str, system: str | None) -> List[dict[str, str]]:
    messages: List[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


class AzureOpenAIProvider:
    """LLM provider calling an Azure OpenAI chat deployment."""

    def __init__(self, config: LLMConfig, client: AsyncAzureOpenAI | None = None, *, mode: str = "chat") -> None:
        self._config = config
        self._client = client
        self._mode = mode
        self._logger = get_logger("llm")

    def ensure_configured(self) -> None:
        """Raise ``ConfigurationError`` unless endpoint, key and deployment are all set."""

        if self._client is not None and self._config.deployment:
            return
        missing = [
            name
            for name, value in (
                ("endpoint", self._config.endpoint),
                ("api key", self._config.api_key),
                ("deployment", self._config.deployment),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Azure OpenAI {self._mode} settings are incomplete: missing {', '.join(missing)}")

    def _ensure_client(self) -> AsyncAzureOpenAI:
        self.ensure_configured()
        if self._client is None:
            self._client = AsyncAzureOpenAI(
                azure_endpoint=self._config.endpoint,
                api_key=self._config.api_key,
                api_version=self._config.api_version,
            )
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        client = self._ensure_client()
        start = time.perf_counter()
        response = await client.chat.completions.create(
            model=self._config.deployment,
            messages=build_messages(prompt, system),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        PipelineMetrics.observe_generation(self._mode, time.perf_counter() - start)
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def stream(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        on_finish: Callable[[str], None] | None = None,
    ) -> AsyncIterator[str]:
        client = self._ensure_client()
        start = time.perf_counter()
        response = await client.chat.completions.create(
            model=self._config.deployment,
            messages=build_messages(prompt, system),
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )
        parts: List[str] = []
        async for chunk in response:
            # Azure sends content-filter frames without choices.
            if not chunk.choices:
                continue
            token = chunk.choices[0].delta.content
            if token:
                parts.append(token)
                yield token
        PipelineMetrics.observe_generation(self._mode, time.perf_counter() - start)
        self._logger.info(
            "llm.stream.complete",
            mode=self._mode,
            deployment=self._config.deployment,
            token_count=len(parts),
        )
        if on_finish is not None:
            on_finish("".join(parts))
