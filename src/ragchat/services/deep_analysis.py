"""Map/reduce deep analysis over every document of a project."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, List, Protocol, Sequence, Union

from ragchat.errors import TemplateGenerationError
from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.models import ConversationMessage, DocumentRef, MapPhaseResult, ProjectSettings, RetrievedPassage
from ragchat.search.store import SearchIndex
from ragchat.services.citations import CitationParser, SourceIdCitationParser
from ragchat.services.llm import LLMProvider
from ragchat.services.prompts import PromptAssembler, format_history
from ragchat.services.templates import MapPromptTemplate, ReducePromptGenerator, TemplateGenerator

NO_DOCUMENTS_ANSWER = "There are no documents in this project to analyze. Upload documents to the project and try again."
MISSING_TEXT_MARKER = "No content could be retrieved for this document."
MAP_ERROR_PREFIX = "Error analyzing this document: "


@dataclass(frozen=True)
class StatusEvent:
    message: str


@dataclass(frozen=True)
class MapResultEvent:
    result: MapPhaseResult


@dataclass(frozen=True)
class TokenEvent:
    text: str


@dataclass(frozen=True)
class CitationsEvent:
    source_ids: tuple[str, ...]


@dataclass(frozen=True)
class ErrorEvent:
    error: str
    details: str = ""


@dataclass(frozen=True)
class CompleteEvent:
    pass


AnalysisEvent = Union[StatusEvent, MapResultEvent, TokenEvent, CitationsEvent, ErrorEvent, CompleteEvent]


class DocumentStore(Protocol):
    """Protocol for enumerating a project's documents and loading their text."""

    def list_documents(self, project_id: str) -> Sequence[DocumentRef]:
        """Return the documents of a project in a stable order."""

    def get_document_text(self, document_id: str) -> str | None:
        """Return the full text of a document, or ``None`` when nothing is stored."""


class IndexDocumentStore:
    """Document store backed by the chunks held in the search index.

    Document text is rebuilt from the stored chunks, each prefixed with its
    source tag so that map-phase analyses can cite chunk ids.
    """

    def __init__(self, index: SearchIndex, assembler: PromptAssembler | None = None) -> None:
        self._index = index
        self._assembler = assembler or PromptAssembler()

    def list_documents(self, project_id: str) -> Sequence[DocumentRef]:
        return self._index.list_sources(project_id)

    def get_document_text(self, document_id: str) -> str | None:
        chunks = self._index.get_chunks(document_id)
        if not chunks:
            return None
        return "\n\n".join(
            self._assembler.format_passage(RetrievedPassage(id=chunk.id, text=chunk.text, source_file=chunk.source_file))
            for chunk in chunks
        )


def summarize_conversation(history: Sequence[ConversationMessage], limit: int) -> str:
    """Render prior turns as ``role: content`` lines, keeping the most recent ``limit`` characters."""

    summary = format_history(history)
    if limit > 0 and len(summary) > limit:
        return summary[-limit:]
    return summary


def combine_map_results(query: str, results: Sequence[MapPhaseResult]) -> str:
    blocks = [f"User query: {query}"]
    for result in results:
        blocks.append(f"--- Analysis of document: {result.document_name} ---\n{result.analysis_text}")
    return "\n\n".join(blocks)


class MapReduceOrchestrator:
    """Runs the deep-analysis pipeline and reports progress as events."""

    def __init__(
        self,
        documents: DocumentStore,
        llm: LLMProvider,
        template_generator: TemplateGenerator,
        reduce_generator: ReducePromptGenerator,
        citation_parser: CitationParser | None = None,
        *,
        map_temperature: float = 0.1,
        map_max_tokens: int = 2000,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        summary_chars: int = 4000,
    ) -> None:
        self._documents = documents
        self._llm = llm
        self._template_generator = template_generator
        self._reduce_generator = reduce_generator
        self._citation_parser = citation_parser or SourceIdCitationParser()
        self._map_temperature = map_temperature
        self._map_max_tokens = map_max_tokens
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._summary_chars = summary_chars
        self._logger = get_logger("deep_analysis")

    async def run(
        self,
        query: str,
        project_id: str,
        history: Sequence[ConversationMessage] = (),
        settings: ProjectSettings | None = None,
    ) -> AsyncIterator[AnalysisEvent]:
        documents = list(self._documents.list_documents(project_id))
        if not documents:
            self._logger.info("deep_analysis.no_documents", project_id=project_id)
            yield StatusEvent("No documents found for this project.")
            yield TokenEvent(NO_DOCUMENTS_ANSWER)
            yield CompleteEvent()
            return

        yield StatusEvent(f"Found {len(documents)} documents. Generating analysis template...")
        conversation_summary = summarize_conversation(history, self._summary_chars)
        try:
            template = await self._template_generator.generate(query, conversation_summary)
        except TemplateGenerationError as exc:
            self._logger.error("deep_analysis.template_failed", project_id=project_id, error=str(exc))
            yield ErrorEvent("generation_error", str(exc))
            return

        results: List[MapPhaseResult] = []
        for position, document in enumerate(documents, start=1):
            yield StatusEvent(f"Analyzing document {position} of {len(documents)}: {document.name}")
            result = await self._map_document(document, template)
            results.append(result)
            yield MapResultEvent(result)

        yield StatusEvent(f"Synthesizing results from {len(results)} documents...")
        reduce_prompt = await self._reduce_generator.generate(
            query,
            f"Per-document extractions relevant to the query from {len(results)} documents, "
            "each detail paired with its [Source ID: ...] marker.",
            conversation_summary,
        )
        temperature = settings.temperature if settings else self._temperature
        max_tokens = settings.max_tokens if settings else self._max_tokens
        start = time.perf_counter()
        parts: List[str] = []
        async for token in self._llm.stream(
            combine_map_results(query, results),
            system=reduce_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        ):
            parts.append(token)
            yield TokenEvent(token)

        source_ids = self._citation_parser.parse("".join(parts))
        self._logger.info(
            "deep_analysis.complete",
            project_id=project_id,
            document_count=len(documents),
            citation_count=len(source_ids),
            reduce_seconds=time.perf_counter() - start,
        )
        yield CitationsEvent(tuple(source_ids))
        yield CompleteEvent()

    async def _map_document(self, document: DocumentRef, template: MapPromptTemplate) -> MapPhaseResult:
        start = time.perf_counter()
        try:
            text = self._documents.get_document_text(document.id)
            if not text:
                outcome, analysis = "missing", MISSING_TEXT_MARKER
            else:
                analysis = await self._llm.complete(
                    template.render(text),
                    temperature=self._map_temperature,
                    max_tokens=self._map_max_tokens,
                )
                outcome = "ok"
        except Exception as exc:
            outcome, analysis = "error", f"{MAP_ERROR_PREFIX}{exc}"
        duration = time.perf_counter() - start
        PipelineMetrics.observe_map_document(outcome, duration)
        self._logger.info(
            "deep_analysis.map.document",
            document_id=document.id,
            document_name=document.name,
            outcome=outcome,
            duration_seconds=duration,
        )
        return MapPhaseResult(document_name=document.name, analysis_text=analysis)
