"""Chat, deep analysis and prompt services."""

from .chat import ChatService, SourcesEvent
from .citations import CitationParser, SourceIdCitationParser
from .deep_analysis import (
    CitationsEvent,
    CompleteEvent,
    ErrorEvent,
    IndexDocumentStore,
    MapReduceOrchestrator,
    MapResultEvent,
    StatusEvent,
    TokenEvent,
)
from .llm import AzureOpenAIProvider, LLMConfig, LLMProvider
from .prompts import PromptAssembler
from .templates import MapPromptTemplate, PromptStructurer, ReducePromptGenerator, TemplateGenerator

__all__ = [
    "AzureOpenAIProvider",
    "ChatService",
    "CitationParser",
    "CitationsEvent",
    "CompleteEvent",
    "ErrorEvent",
    "IndexDocumentStore",
    "LLMConfig",
    "LLMProvider",
    "MapPromptTemplate",
    "MapReduceOrchestrator",
    "MapResultEvent",
    "PromptAssembler",
    "PromptStructurer",
    "ReducePromptGenerator",
    "SourceIdCitationParser",
    "SourcesEvent",
    "StatusEvent",
    "TemplateGenerator",
    "TokenEvent",
]
