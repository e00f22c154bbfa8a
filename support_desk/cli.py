"""Command line interface for the support desk."""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from pathlib import Path
from typing import List

from .chat.engine import ChatRequest
from .config import Settings, load_settings
from .errors import HelpdeskError
from .ingestion.files import extract_text, file_type, is_supported
from .ingestion.knowledge import chunker_from_settings, upload_items
from .logging_utils import configure_logging
from .models import ChatTurn
from .services import Services, build_services, initialize_builtin_knowledge


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    if args.data_dir:
        settings = settings.model_copy(
            update={
                "data_dir": str(args.data_dir),
                "knowledge_dir": str(Path(args.data_dir) / "knowledge"),
            }
        )
    return settings


async def _ingest(services: Services, paths: List[Path], builtin: bool) -> None:
    if builtin:
        added = await initialize_builtin_knowledge(services, services.settings.api_key)
        print(f"Indexed {added} built-in chunks.")

    if not paths:
        return
    clients = services.clients_factory(services.settings.api_key)
    chunker = chunker_from_settings(services.settings)
    for path in paths:
        if not is_supported(path):
            print(f"Skipping {path}: unsupported file type")
            continue
        text = extract_text(path)
        if not text.strip():
            print(f"Skipping {path}: no text found")
            continue
        _, category, items = upload_items(
            text, filename=path.name, source_type=file_type(path), chunker=chunker
        )
        await services.retriever.ingest(items, clients.embedder)
        print(f"Ingested {path.name} ({category}, {len(items)} chunks).")


async def _chat(services: Services, enable_rag: bool) -> None:
    session_id = str(uuid.uuid4())
    history: List[ChatTurn] = []
    print("Enter your questions. Press Ctrl+C or Ctrl+D to exit.\n")
    while True:
        question = (await asyncio.to_thread(input, "?> ")).strip()
        if not question:
            continue

        request = ChatRequest(
            message=question,
            session_id=session_id,
            history=list(history),
            api_key=services.settings.api_key,
            enable_rag=enable_rag,
        )
        answer: List[str] = []
        print()
        async for event in services.orchestrator.stream(request):
            if event.type == "ticket":
                ticket = event.data
                print(f"[Ticket #{ticket.id} created: {ticket.category}/{ticket.priority}] {ticket.title}\n")
            elif event.type == "sources":
                print("References:")
                for result in event.data:
                    print(f"- {result.filename} (score={result.score:.3f})")
                print()
            elif event.type == "content":
                answer.append(event.data)
                print(event.data, end="", flush=True)
            elif event.type == "error":
                print(event.data, end="")
        print("\n")

        history.append(ChatTurn(role="user", content=question))
        history.append(ChatTurn(role="assistant", content="".join(answer)))


def _print_stats(services: Services) -> None:
    stats = services.index.get_stats()
    print(f"Chunks: {stats['totalDocuments']}")
    for category, count in stats["categoryCount"].items():
        print(f"  {category}: {count}")
    print("Documents:")
    for summary in services.index.list_documents():
        marker = " (built-in)" if summary.builtin else ""
        print(f"- {summary.filename}: {summary.chunk_count} chunks{marker}")
    tickets = services.tickets.stats()
    print(f"Tickets: {tickets['total']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Support desk CLI")
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a JSON settings file",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Directory holding vectors.json, tickets.json and knowledge/ (default: data)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser("ingest", help="Add documents to the knowledge base")
    ingest_parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        help="Files to ingest (.txt, .md, .pdf, .docx)",
    )
    ingest_parser.add_argument(
        "--builtin",
        action="store_true",
        help="Also index the built-in HR and IT knowledge bases",
    )

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat_parser.add_argument(
        "--no-rag",
        action="store_true",
        help="Answer without consulting the knowledge base",
    )

    subparsers.add_parser("stats", help="Show knowledge base and ticket statistics")

    web_parser = subparsers.add_parser("web", help="Launch the HTTP API")
    web_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1)",
    )
    web_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the web server (default: 8000)",
    )

    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = _settings_from_args(args)
    except HelpdeskError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "web":
        import uvicorn

        from .web import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return

    services = build_services(settings)
    try:
        if args.command == "ingest":
            if not args.files and not args.builtin:
                parser.error("ingest needs at least one file or --builtin")
            asyncio.run(_ingest(services, args.files, args.builtin))
        elif args.command == "chat":
            try:
                asyncio.run(_chat(services, enable_rag=not args.no_rag))
            except (KeyboardInterrupt, EOFError):  # pragma: no cover - interactive session
                print("\nGoodbye!")
        elif args.command == "stats":
            _print_stats(services)
    except HelpdeskError as exc:
        raise SystemExit(f"Error: {exc}") from exc


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
