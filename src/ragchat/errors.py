"""Exception hierarchy shared across ragchat services."""

from __future__ import annotations


class RagChatError(RuntimeError):
    """Base class for errors raised by ragchat."""


class ConfigurationError(RagChatError):
    """Raised when credentials or endpoints required for a call are missing."""


class TemplateGenerationError(RagChatError):
    """Raised when an LLM-authored prompt template cannot be produced or is malformed."""


class SearchFilterError(RagChatError):
    """Raised by a search index that cannot apply the requested filter."""


class IngestionError(RagChatError):
    """Raised when ingestion fails for a particular document."""


class UnsupportedFileTypeError(IngestionError):
    """Raised when a document extension is not supported by the ingestor."""


class ProjectNotFoundError(RagChatError):
    """Raised when a project id does not exist."""


class PromptNotFoundError(RagChatError):
    """Raised when a project prompt id does not exist."""


class ConflictError(RagChatError):
    """Raised when a unique name constraint would be violated."""
