"""Project, prompt and settings persistence."""

from .store import UNSET, ProjectStore

__all__ = ["ProjectStore", "UNSET"]
