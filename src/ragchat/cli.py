"""Command line interface for ingesting sources and asking questions."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Sequence

from ragchat.api.dependencies import AppDependencies, build_dependencies
from ragchat.config import get_settings
from ragchat.errors import RagChatError
from ragchat.models import ConversationMessage
from ragchat.services import (
    CitationsEvent,
    ErrorEvent,
    MapResultEvent,
    SourcesEvent,
    StatusEvent,
    TokenEvent,
)


async def _ingest(deps: AppDependencies, paths: Sequence[Path], project_id: str) -> int:
    for path in paths:
        result = await deps.ingestor.ingest_file(path, file_name=path.name, project_id=project_id)
        print(f"{result.original_file_id}\t{result.file_name}\t{result.chunk_count} chunks")
    return 0


async def _ask(deps: AppDependencies, question: str, project_id: str | None, deep: bool) -> int:
    deps.chat_llm.ensure_configured()
    if deep:
        if not project_id:
            print("--deep requires --project", file=sys.stderr)
            return 2
        deps.prompt_llm.ensure_configured()
        events = deps.orchestrator.run(question, project_id, (), deps.projects.resolve_settings(project_id))
    else:
        events = deps.chat_service.stream_chat([ConversationMessage(role="user", content=question)], project_id)

    exit_code = 0
    sources: list[str] = []
    async for event in events:
        if isinstance(event, TokenEvent):
            sys.stdout.write(event.text)
            sys.stdout.flush()
        elif isinstance(event, StatusEvent):
            print(f"[status] {event.message}", file=sys.stderr)
        elif isinstance(event, MapResultEvent):
            print(f"[map] {event.result.document_name}: {len(event.result.analysis_text)} chars", file=sys.stderr)
        elif isinstance(event, SourcesEvent):
            sources.extend(f"{source.id} ({source.source_file})" for source in event.sources)
        elif isinstance(event, CitationsEvent):
            sources.extend(event.source_ids)
        elif isinstance(event, ErrorEvent):
            print(f"error: {event.error}: {event.details}", file=sys.stderr)
            exit_code = 1
    print()
    if sources:
        print("Sources:")
        for source in sources:
            print(f"  {source}")
    return exit_code


def _sources(deps: AppDependencies, project_id: str) -> int:
    for ref in deps.index.list_sources(project_id):
        print(f"{ref.id}\t{ref.name}")
    return 0


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ragchat", description="Project-scoped retrieval chat.")
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create-project", help="Create a project")
    create.add_argument("name")
    create.add_argument("--description", default=None)

    ingest = commands.add_parser("ingest", help="Ingest documents into a project")
    ingest.add_argument("paths", nargs="+", type=Path)
    ingest.add_argument("--project", required=True, help="Project id to tag the chunks with")

    ask = commands.add_parser("ask", help="Ask a question and stream the answer")
    ask.add_argument("question")
    ask.add_argument("--project", default=None, help="Restrict retrieval to this project")
    ask.add_argument("--deep", action="store_true", help="Run map/reduce analysis over every project document")

    sources = commands.add_parser("sources", help="List the documents of a project")
    sources.add_argument("--project", required=True)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    deps = build_dependencies(get_settings())
    try:
        if args.command == "create-project":
            project = deps.projects.create_project(args.name, args.description)
            print(project.id)
            return 0
        if args.command == "ingest":
            return asyncio.run(_ingest(deps, args.paths, args.project))
        if args.command == "ask":
            return asyncio.run(_ask(deps, args.question, args.project, args.deep))
        return _sources(deps, args.project)
    except RagChatError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
