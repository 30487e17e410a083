"""FastAPI application exposing ragchat services."""

from __future__ import annotations

import json
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List, Sequence
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ragchat.api.dependencies import AppDependencies, build_dependencies
from ragchat.api.schemas import (
    ChatRequest,
    DocumentModel,
    GlobalPromptModel,
    ProjectCreateRequest,
    ProjectModel,
    ProjectSettingsRequest,
    PromptCreateRequest,
    PromptModel,
    PromptUpdateRequest,
    SourceIngestionResponse,
    StructurePromptRequest,
    StructurePromptResponse,
)
from ragchat.config import Settings, get_settings
from ragchat.errors import (
    ConfigurationError,
    ConflictError,
    IngestionError,
    ProjectNotFoundError,
    PromptNotFoundError,
    TemplateGenerationError,
    UnsupportedFileTypeError,
)
from ragchat.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from ragchat.models import ConversationMessage, latest_user_message, prior_messages
from ragchat.services import (
    CitationsEvent,
    CompleteEvent,
    ErrorEvent,
    MapResultEvent,
    SourcesEvent,
    StatusEvent,
    TokenEvent,
)

UPLOAD_READ_SIZE = 1024 * 1024


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def serialize_event(event: object) -> str:
    """Render a chat or deep-analysis event as one SSE frame."""

    if isinstance(event, TokenEvent):
        return format_sse("token", {"text": event.text})
    if isinstance(event, SourcesEvent):
        sources = [{"id": s.id, "text": s.text, "source_file": s.source_file} for s in event.sources]
        return format_sse("sources", {"sources": sources})
    if isinstance(event, StatusEvent):
        return format_sse("status", {"message": event.message})
    if isinstance(event, MapResultEvent):
        return format_sse(
            "map_result",
            {"document_name": event.result.document_name, "analysis_text": event.result.analysis_text},
        )
    if isinstance(event, CitationsEvent):
        return format_sse("citations", {"source_ids": list(event.source_ids)})
    if isinstance(event, ErrorEvent):
        return format_sse("error", {"error": event.error, "details": event.details})
    if isinstance(event, CompleteEvent):
        return format_sse("done", {})
    raise TypeError(f"Unknown event type: {type(event).__name__}")


class RateLimiter:
    """Sliding-window limit per client and path; idle clients are forgotten."""

    def __init__(self, requests: int, window_seconds: int, clock: Callable[[], float] = time.time) -> None:
        self.requests = requests
        self.window = window_seconds
        self._clock = clock
        self._buckets: dict[str, list[float]] = {}

    @property
    def tracked_keys(self) -> int:
        return len(self._buckets)

    def __call__(self, request: Request) -> None:
        client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "-")
        self.hit(f"{client_ip}:{request.url.path}")

    def hit(self, key: str) -> None:
        now = self._clock()
        self._prune(now - self.window)
        bucket = self._buckets.setdefault(key, [])
        if len(bucket) >= self.requests:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
        bucket.append(now)

    def _prune(self, cutoff: float) -> None:
        for key in list(self._buckets):
            bucket = self._buckets[key]
            while bucket and bucket[0] < cutoff:
                bucket.pop(0)
            if not bucket:
                del self._buckets[key]


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.dependencies.cache.clear()
        logger.info("embedding_cache.cleared")

    app = FastAPI(title="ragchat API", version="0.1.0", lifespan=lifespan)
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    def _error_response(request: Request, status_code: int, error: str, details: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(
            status_code=status_code,
            content={"error": error, "details": details, "correlation_id": correlation_id},
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("configuration.error", detail=str(exc))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error", str(exc))

    @app.exception_handler(ProjectNotFoundError)
    async def handle_project_not_found(request: Request, exc: ProjectNotFoundError) -> JSONResponse:
        return _error_response(request, status.HTTP_404_NOT_FOUND, "Project not found", str(exc))

    @app.exception_handler(PromptNotFoundError)
    async def handle_prompt_not_found(request: Request, exc: PromptNotFoundError) -> JSONResponse:
        return _error_response(request, status.HTTP_404_NOT_FOUND, "Prompt not found", str(exc))

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
        return _error_response(request, status.HTTP_409_CONFLICT, "Conflict", str(exc))

    @app.exception_handler(UnsupportedFileTypeError)
    async def handle_unsupported_type(request: Request, exc: UnsupportedFileTypeError) -> JSONResponse:
        return _error_response(request, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, "Unsupported file type", str(exc))

    @app.exception_handler(IngestionError)
    async def handle_ingestion_error(request: Request, exc: IngestionError) -> JSONResponse:
        logger.error("ingestion.error", detail=str(exc))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Ingestion failed", str(exc))

    @app.exception_handler(TemplateGenerationError)
    async def handle_template_error(request: Request, exc: TemplateGenerationError) -> JSONResponse:
        logger.error("template.error", detail=str(exc))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Prompt generation failed", str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled.error", detail=str(exc))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(exc))

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    async def stream_events(events: AsyncIterator[object]) -> AsyncIterator[str]:
        try:
            async for event in events:
                yield serialize_event(event)
        except Exception as exc:
            # Headers are already sent; report the failure in-band.
            logger.error("chat.stream_failed", error=str(exc))
            yield format_sse("error", {"error": "Internal server error", "details": str(exc)})

    @app.post("/chat")
    async def chat(
        payload: ChatRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> StreamingResponse:
        messages = [ConversationMessage(role=m.role, content=m.content) for m in payload.messages]
        latest = latest_user_message(messages)
        if latest is None or not latest.content.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A user message is required")
        project_id = (payload.project_id or "").strip() or None
        if project_id:
            dep.projects.get_project(project_id)
        dep.chat_llm.ensure_configured()

        if payload.deep_analysis:
            if not project_id:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Deep analysis requires a project_id")
            dep.prompt_llm.ensure_configured()
            logger.info("chat.deep_analysis", project_id=project_id)
            events = dep.orchestrator.run(
                latest.content,
                project_id,
                prior_messages(messages),
                dep.projects.resolve_settings(project_id),
            )
        else:
            events = dep.chat_service.stream_chat(messages, project_id)
        return StreamingResponse(
            stream_events(events),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/sources", response_model=List[SourceIngestionResponse], status_code=status.HTTP_201_CREATED)
    async def upload_sources(
        files: Sequence[UploadFile] = File(...),
        project_id: str = Form(...),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> List[SourceIngestionResponse]:
        if not files:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
        dep.projects.get_project(project_id)
        allowed = set(settings.allowed_extensions_tuple)
        limit = settings.max_upload_size_mb * 1024 * 1024
        responses: List[SourceIngestionResponse] = []
        with tempfile.TemporaryDirectory() as tmpdir:
            for upload in files:
                file_name = Path(upload.filename or f"upload-{uuid4().hex}").name
                suffix = Path(file_name).suffix.lower()
                if suffix not in allowed:
                    await upload.close()
                    raise HTTPException(
                        status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                        detail=f"Unsupported file type: {suffix or 'unknown'}",
                    )
                destination = Path(tmpdir) / file_name
                bytes_written = 0
                with destination.open("wb") as out_f:
                    while True:
                        chunk = await upload.read(UPLOAD_READ_SIZE)
                        if not chunk:
                            break
                        out_f.write(chunk)
                        bytes_written += len(chunk)
                        if bytes_written > limit:
                            await upload.close()
                            raise HTTPException(
                                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                                detail=f"File too large (>{settings.max_upload_size_mb}MB): {file_name}",
                            )
                await upload.close()
                if bytes_written == 0:
                    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {file_name}")
                result = await dep.ingestor.ingest_file(destination, file_name=file_name, project_id=project_id)
                responses.append(
                    SourceIngestionResponse(
                        id=result.original_file_id,
                        file_name=result.file_name,
                        project_id=result.project_id,
                        chunk_count=result.chunk_count,
                    )
                )
        return responses

    @app.get("/sources", response_model=List[DocumentModel])
    async def list_sources(
        project_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> List[DocumentModel]:
        dep.projects.get_project(project_id)
        return [DocumentModel(id=ref.id, name=ref.name) for ref in dep.index.list_sources(project_id)]

    @app.delete("/sources/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_source(
        source_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        removed = dep.index.delete_source(source_id)
        if not removed:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Source not found: {source_id}")
        logger.info("source.deleted", source_id=source_id, chunk_count=removed)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/projects", response_model=List[ProjectModel])
    async def list_projects(
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> List[ProjectModel]:
        return [ProjectModel.model_validate(project, from_attributes=True) for project in dep.projects.list_projects()]

    @app.post("/projects", response_model=ProjectModel, status_code=status.HTTP_201_CREATED)
    async def create_project(
        payload: ProjectCreateRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ProjectModel:
        try:
            project = dep.projects.create_project(payload.name, payload.description)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return ProjectModel.model_validate(project, from_attributes=True)

    @app.get("/projects/{project_id}", response_model=ProjectModel)
    async def get_project(
        project_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ProjectModel:
        return ProjectModel.model_validate(dep.projects.get_project(project_id), from_attributes=True)

    @app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_project(
        project_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        dep.projects.get_project(project_id)
        removed = sum(dep.index.delete_source(ref.id) for ref in dep.index.list_sources(project_id))
        dep.projects.delete_project(project_id)
        logger.info("project.deleted", project_id=project_id, chunk_count=removed)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.put("/projects/{project_id}/settings", response_model=ProjectModel)
    async def update_project_settings(
        project_id: str,
        payload: ProjectSettingsRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ProjectModel:
        if payload.active_project_prompt_id and payload.active_global_prompt_name:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Select either a project prompt or a global prompt, not both",
            )
        try:
            project = dep.projects.update_settings(project_id, **payload.model_dump(exclude_unset=True))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return ProjectModel.model_validate(project, from_attributes=True)

    @app.get("/projects/{project_id}/prompts", response_model=List[PromptModel])
    async def list_prompts(
        project_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> List[PromptModel]:
        return [PromptModel.model_validate(prompt, from_attributes=True) for prompt in dep.projects.list_prompts(project_id)]

    @app.post("/projects/{project_id}/prompts", response_model=PromptModel, status_code=status.HTTP_201_CREATED)
    async def create_prompt(
        project_id: str,
        payload: PromptCreateRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> PromptModel:
        try:
            prompt = dep.projects.create_prompt(project_id, payload.name, payload.content, payload.is_default)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return PromptModel.model_validate(prompt, from_attributes=True)

    @app.put("/projects/{project_id}/prompts/{prompt_id}", response_model=PromptModel)
    async def update_prompt(
        project_id: str,
        prompt_id: str,
        payload: PromptUpdateRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> PromptModel:
        try:
            prompt = dep.projects.update_prompt(
                project_id,
                prompt_id,
                name=payload.name,
                content=payload.content,
                is_default=payload.is_default,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return PromptModel.model_validate(prompt, from_attributes=True)

    @app.delete("/projects/{project_id}/prompts/{prompt_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_prompt(
        project_id: str,
        prompt_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        dep.projects.delete_prompt(project_id, prompt_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/prompts/defaults", response_model=List[GlobalPromptModel])
    async def default_prompts(dep: AppDependencies = Depends(get_dependencies)) -> List[GlobalPromptModel]:
        return [GlobalPromptModel(name=name, content=content) for name, content in dep.projects.global_prompts.items()]

    @app.post("/prompts/structure", response_model=StructurePromptResponse)
    async def structure_prompt(
        payload: StructurePromptRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> StructurePromptResponse:
        dep.prompt_llm.ensure_configured()
        try:
            structured = await dep.structurer.structure(payload.content)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return StructurePromptResponse(structured_prompt=structured)

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from ragchat import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    async def readiness(dep: AppDependencies = Depends(get_dependencies)) -> dict[str, str]:
        try:
            _ = dep.index.count()
            return {"status": "ready"}
        except Exception as exc:  # pragma: no cover - defensive
            return {"status": "error", "detail": str(exc)}

    return app


app = create_app()
