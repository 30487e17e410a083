"""JSON-file persistence for projects, their prompts and generation settings."""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Any, List, Mapping
from uuid import uuid4

from ragchat.errors import ConflictError, ProjectNotFoundError, PromptNotFoundError
from ragchat.metrics.observability import get_logger
from ragchat.models import Project, ProjectPrompt, ProjectSettings
from ragchat.services.prompts import DEFAULT_PROMPT_NAME, DEFAULT_SYSTEM_PROMPTS

STORE_FILE_NAME = "projects.json"


class _Unset:
    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def _dump(record: Project | ProjectPrompt) -> dict[str, Any]:
    payload = asdict(record)
    payload["created_at"] = record.created_at.isoformat()
    return payload


def _load_project(payload: Mapping[str, Any]) -> Project:
    data = dict(payload)
    data["created_at"] = datetime.fromisoformat(data["created_at"])
    return Project(**data)


def _load_prompt(payload: Mapping[str, Any]) -> ProjectPrompt:
    data = dict(payload)
    data["created_at"] = datetime.fromisoformat(data["created_at"])
    return ProjectPrompt(**data)


class ProjectStore:
    """Stores projects and project prompts in ``<data_dir>/projects.json``.

    Project names are unique, prompt names are unique within a project and a
    project selects at most one of a project prompt or a named global prompt.
    Every mutation rewrites the file through a temporary file.
    """

    def __init__(
        self,
        data_dir: str | Path,
        *,
        default_temperature: float = 0.3,
        default_max_tokens: int = 4000,
        global_prompts: Mapping[str, str] | None = None,
    ) -> None:
        self._path = Path(data_dir) / STORE_FILE_NAME
        self._default_temperature = default_temperature
        self._default_max_tokens = default_max_tokens
        self._global_prompts = dict(global_prompts or DEFAULT_SYSTEM_PROMPTS)
        self._lock = threading.Lock()
        self._logger = get_logger("projects")
        self._projects: dict[str, Project] = {}
        self._prompts: dict[str, ProjectPrompt] = {}
        self._load()

    @property
    def global_prompts(self) -> Mapping[str, str]:
        return dict(self._global_prompts)

    # Projects

    def create_project(self, name: str, description: str | None = None) -> Project:
        name = (name or "").strip()
        if not name:
            raise ValueError("Project name is required")
        with self._lock:
            if any(project.name == name for project in self._projects.values()):
                raise ConflictError(f"A project with this name already exists: {name}")
            project = Project(id=uuid4().hex, name=name, description=(description or "").strip() or None)
            self._projects[project.id] = project
            self._save()
        self._logger.info("project.created", project_id=project.id, name=name)
        return project

    def list_projects(self) -> List[Project]:
        return sorted(self._projects.values(), key=lambda project: project.created_at)

    def get_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return project

    def delete_project(self, project_id: str) -> Project:
        with self._lock:
            project = self.get_project(project_id)
            del self._projects[project_id]
            for prompt_id in [p.id for p in self._prompts.values() if p.project_id == project_id]:
                del self._prompts[prompt_id]
            self._save()
        self._logger.info("project.deleted", project_id=project_id)
        return project

    def update_settings(
        self,
        project_id: str,
        *,
        active_project_prompt_id: str | None = UNSET,
        active_global_prompt_name: str | None = UNSET,
        temperature: float | None = UNSET,
        max_tokens: int | None = UNSET,
    ) -> Project:
        """Update generation settings; selecting one prompt source clears the other.

        Passing ``None`` for either prompt field clears both selections.
        """

        with self._lock:
            project = self.get_project(project_id)
            changes: dict[str, Any] = {}
            if active_project_prompt_id:
                prompt = self._prompts.get(active_project_prompt_id)
                if prompt is None or prompt.project_id != project_id:
                    raise PromptNotFoundError(f"Prompt not found: {active_project_prompt_id}")
                changes.update(active_project_prompt_id=active_project_prompt_id, active_global_prompt_name=None)
            elif active_global_prompt_name:
                if active_global_prompt_name not in self._global_prompts:
                    raise PromptNotFoundError(f"Unknown global prompt: {active_global_prompt_name}")
                changes.update(active_project_prompt_id=None, active_global_prompt_name=active_global_prompt_name)
            elif active_project_prompt_id is None or active_global_prompt_name is None:
                changes.update(active_project_prompt_id=None, active_global_prompt_name=None)
            if temperature is not UNSET:
                if temperature is not None and not 0.0 <= temperature <= 2.0:
                    raise ValueError(f"Invalid temperature: {temperature}")
                changes["temperature"] = temperature
            if max_tokens is not UNSET:
                if max_tokens is not None and max_tokens <= 0:
                    raise ValueError(f"Invalid max_tokens: {max_tokens}")
                changes["max_tokens"] = max_tokens
            if not changes:
                return project
            project = replace(project, **changes)
            self._projects[project_id] = project
            self._save()
        return project

    # Prompts

    def create_prompt(self, project_id: str, name: str, content: str, is_default: bool = False) -> ProjectPrompt:
        name, content = (name or "").strip(), (content or "").strip()
        if not name:
            raise ValueError("Prompt name is required")
        if not content:
            raise ValueError("Prompt content is required")
        with self._lock:
            self.get_project(project_id)
            self._ensure_unique_prompt_name(project_id, name)
            prompt = ProjectPrompt(id=uuid4().hex, project_id=project_id, name=name, content=content, is_default=is_default)
            self._prompts[prompt.id] = prompt
            self._save()
        return prompt

    def list_prompts(self, project_id: str) -> List[ProjectPrompt]:
        self.get_project(project_id)
        prompts = [prompt for prompt in self._prompts.values() if prompt.project_id == project_id]
        return sorted(prompts, key=lambda prompt: prompt.created_at)

    def get_prompt(self, project_id: str, prompt_id: str) -> ProjectPrompt:
        self.get_project(project_id)
        prompt = self._prompts.get(prompt_id)
        if prompt is None or prompt.project_id != project_id:
            raise PromptNotFoundError(f"Prompt not found: {prompt_id}")
        return prompt

    def update_prompt(
        self,
        project_id: str,
        prompt_id: str,
        *,
        name: str | None = None,
        content: str | None = None,
        is_default: bool | None = None,
    ) -> ProjectPrompt:
        with self._lock:
            prompt = self.get_prompt(project_id, prompt_id)
            changes: dict[str, Any] = {}
            if name is not None:
                name = name.strip()
                if not name:
                    raise ValueError("Prompt name is required")
                if name != prompt.name:
                    self._ensure_unique_prompt_name(project_id, name)
                changes["name"] = name
            if content is not None:
                content = content.strip()
                if not content:
                    raise ValueError("Prompt content is required")
                changes["content"] = content
            if is_default is not None:
                changes["is_default"] = is_default
            prompt = replace(prompt, **changes)
            self._prompts[prompt_id] = prompt
            self._save()
        return prompt

    def delete_prompt(self, project_id: str, prompt_id: str) -> None:
        with self._lock:
            self.get_prompt(project_id, prompt_id)
            del self._prompts[prompt_id]
            project = self._projects[project_id]
            if project.active_project_prompt_id == prompt_id:
                self._projects[project_id] = replace(project, active_project_prompt_id=None)
            self._save()

    # Settings resolution

    def resolve_settings(self, project_id: str | None) -> ProjectSettings:
        """Return the effective system prompt, temperature and max tokens for a project.

        The system prompt is the active project prompt, else the selected global
        prompt, else the project's default prompt, else the default global prompt.
        """

        default_prompt = self._global_prompts.get(DEFAULT_PROMPT_NAME) or next(iter(self._global_prompts.values()), "")
        if not project_id:
            return ProjectSettings(default_prompt, self._default_temperature, self._default_max_tokens)

        project = self.get_project(project_id)
        system_prompt = None
        if project.active_project_prompt_id:
            prompt = self._prompts.get(project.active_project_prompt_id)
            system_prompt = prompt.content if prompt else None
        if system_prompt is None and project.active_global_prompt_name:
            system_prompt = self._global_prompts.get(project.active_global_prompt_name)
        if system_prompt is None:
            system_prompt = next(
                (prompt.content for prompt in self.list_prompts(project_id) if prompt.is_default),
                default_prompt,
            )
        return ProjectSettings(
            system_prompt=system_prompt,
            temperature=project.temperature if project.temperature is not None else self._default_temperature,
            max_tokens=project.max_tokens if project.max_tokens is not None else self._default_max_tokens,
        )

    def _ensure_unique_prompt_name(self, project_id: str, name: str) -> None:
        if any(p.project_id == project_id and p.name == name for p in self._prompts.values()):
            raise ConflictError(f"A prompt with this name already exists for this project: {name}")

    def _load(self) -> None:
        if not self._path.exists():
            return
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        self._projects = {item["id"]: _load_project(item) for item in payload.get("projects", [])}
        self._prompts = {item["id"]: _load_prompt(item) for item in payload.get("prompts", [])}
        self._logger.info("projects.loaded", projects=len(self._projects), prompts=len(self._prompts))

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "projects": [_dump(project) for project in self._projects.values()],
            "prompts": [_dump(prompt) for prompt in self._prompts.values()],
        }
        tmp_path = self._path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)
