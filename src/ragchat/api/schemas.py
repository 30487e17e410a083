"""Pydantic models for the ragchat API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChatMessageModel(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessageModel] = Field(..., min_length=1, description="Conversation so far, oldest first")
    project_id: Optional[str] = Field(default=None, description="Restrict retrieval to this project")
    deep_analysis: bool = Field(default=False, description="Run map/reduce analysis over every project document")


class SourceModel(BaseModel):
    id: str
    text: str
    source_file: str


class SourceIngestionResponse(BaseModel):
    id: str = Field(..., description="Identifier shared by every chunk of the uploaded document")
    file_name: str
    project_id: str
    chunk_count: int = Field(..., ge=0)


class DocumentModel(BaseModel):
    id: str
    name: str


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class ProjectModel(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    active_project_prompt_id: Optional[str] = None
    active_global_prompt_name: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    created_at: datetime


class ProjectSettingsRequest(BaseModel):
    """Partial settings update; omitted fields are left unchanged."""

    active_project_prompt_id: Optional[str] = None
    active_global_prompt_name: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)


class PromptCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    is_default: bool = False


class PromptUpdateRequest(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None
    is_default: Optional[bool] = None


class PromptModel(BaseModel):
    id: str
    project_id: str
    name: str
    content: str
    is_default: bool
    created_at: datetime


class GlobalPromptModel(BaseModel):
    name: str
    content: str


class StructurePromptRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Raw notes to turn into a system prompt")


class StructurePromptResponse(BaseModel):
    structured_prompt: str
