"""chatlore command-line entry point.

Usage:
    python -m chatlore.main import [--source whatsapp|claude_code] [--with-embeddings]
    python -m chatlore.main import-export PATH [--my-name NAME] [--chat-name NAME]
    python -m chatlore.main status
    python -m chatlore.main backfill-embeddings [--batch-size N]
    python -m chatlore.main backfill-chat-names
    python -m chatlore.main search QUERY [--limit N] [--threshold T]
    python -m chatlore.main context QUERY [--max-tokens N]
    python -m chatlore.main daemon
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from chatlore.config import settings
from chatlore.embeddings import EmbeddingGenerator, EmbeddingQueue, Retriever
from chatlore.errors import ChatloreError
from chatlore.importers import ExportImporter, ImportCoordinator, ImportDaemon, ImportStats
from chatlore.knowledge.models import SourceType

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def _print_stats(label: str, stats: ImportStats) -> None:
    if stats.failed_reason:
        print(f"{label}: failed ({stats.failed_reason})")
        return
    print(
        f"{label}: {stats.processed} messages ({stats.inserted} new), "
        f"{stats.records} knowledge records, {stats.skipped} skipped, {stats.errors} errors"
    )


async def _with_queue(with_embeddings: bool, run):  # noqa: ANN001, ANN202
    """Run ``run(queue)`` with a started embedding queue when requested."""
    if not with_embeddings:
        return await run(None)
    queue = EmbeddingQueue(EmbeddingGenerator())
    queue.start()
    try:
        return await run(queue)
    finally:
        await queue.drain()
        await queue.stop()
        stats = queue.stats()
        print(
            f"Embeddings: {stats['completed']} done, {stats['failed']} failed, "
            f"{stats['dropped']} dropped (run backfill-embeddings for the rest)"
        )


async def cmd_import(args: argparse.Namespace) -> int:
    since = datetime.fromisoformat(args.since) if args.since else None
    user_only = False if args.all_messages else None

    async def run(queue: EmbeddingQueue | None) -> None:
        coordinator = ImportCoordinator(embedding_queue=queue)
        if args.source:
            stats = await coordinator.run(
                args.source, with_embeddings=args.with_embeddings, user_only=user_only, since=since
            )
            _print_stats(args.source, stats)
            return
        results = await coordinator.run_all(
            with_embeddings=args.with_embeddings, user_only=user_only, since=since
        )
        for source_type, stats in results.items():
            _print_stats(source_type.value, stats)

    await _with_queue(args.with_embeddings, run)
    return 0


async def cmd_import_export(args: argparse.Namespace) -> int:
    path = Path(args.path)
    user_only = False if args.all_messages else None

    async def run(queue: EmbeddingQueue | None) -> ImportStats:
        importer = ExportImporter(embedding_queue=queue)
        if path.is_dir():
            return await importer.import_directory(
                path,
                my_name=args.my_name,
                with_embeddings=args.with_embeddings,
                user_only=user_only,
            )
        return await importer.import_file(
            path,
            my_name=args.my_name,
            chat_name=args.chat_name,
            with_embeddings=args.with_embeddings,
            user_only=user_only,
        )

    try:
        stats = await _with_queue(args.with_embeddings, run)
    except OSError as exc:
        print(f"ERROR: cannot read {path}: {exc}")
        return 1
    _print_stats(str(path), stats)
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    status = await ImportCoordinator().status()
    print(f"Chat messages:      {status['chat_messages']}")
    print(f"Session messages:   {status['session_messages']} ({status['sessions']} sessions)")
    print(f"Knowledge records:  {status['knowledge_records']}")
    for source_type, count in status["by_source_type"].items():
        print(f"  {source_type}: {count}")
    print(f"Pending embeddings: {status['pending_embeddings']}")
    return 0


async def cmd_backfill_embeddings(args: argparse.Namespace) -> int:
    result = await EmbeddingGenerator().backfill(batch_size=args.batch_size)
    print(f"Embedded {result.processed} records in {result.batches} batches")
    if result.error:
        print(f"Stopped early: {result.error}")
        return 1
    return 0


async def cmd_backfill_chat_names(args: argparse.Namespace) -> int:
    coordinator = ImportCoordinator()
    result = await coordinator.live.backfill_chat_names()
    print(f"Updated {result['updated']} messages across {result['chats']} chats")
    return 0


async def cmd_search(args: argparse.Namespace) -> int:
    source_types = [SourceType(s) for s in args.source_type] if args.source_type else None
    results = await Retriever().search(
        args.query, limit=args.limit, threshold=args.threshold, source_types=source_types
    )
    if not results:
        print("No results.")
    for result in results:
        record = result.record
        print(f"[{result.similarity:.3f}] {record.source_type.value} {record.source_id}")
        print(f"    {record.text[:200]}")
    return 0


async def cmd_context(args: argparse.Namespace) -> int:
    context = await Retriever().get_context(
        args.query, max_tokens=args.max_tokens, threshold=args.threshold
    )
    print(context)
    return 0


async def cmd_daemon(args: argparse.Namespace) -> int:
    daemon = ImportDaemon()
    task = daemon.start()
    if task is None:
        return 0
    try:
        await task
    finally:
        await daemon.stop()
    return 0


COMMANDS = {
    "import": cmd_import,
    "import-export": cmd_import_export,
    "status": cmd_status,
    "backfill-embeddings": cmd_backfill_embeddings,
    "backfill-chat-names": cmd_backfill_chat_names,
    "search": cmd_search,
    "context": cmd_context,
    "daemon": cmd_daemon,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatlore", description="Personal RAG knowledge base")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Run the registered importers")
    p.add_argument("--source", choices=[s.value for s in ImportCoordinator.source_types()])
    p.add_argument("--with-embeddings", action="store_true")
    p.add_argument("--all-messages", action="store_true", help="Index every author, not just you")
    p.add_argument("--since", help="Only session files modified after this ISO date")

    p = sub.add_parser("import-export", help="Import a chat-export file or directory")
    p.add_argument("path")
    p.add_argument("--my-name", help="Your display name in the export")
    p.add_argument("--chat-name", help="Override the chat name derived from the filename")
    p.add_argument("--with-embeddings", action="store_true")
    p.add_argument("--all-messages", action="store_true", help="Index every author, not just you")

    sub.add_parser("status", help="Show store counts")

    p = sub.add_parser("backfill-embeddings", help="Embed records that have no vector yet")
    p.add_argument("--batch-size", type=int, default=settings.embedding_batch_size)

    sub.add_parser("backfill-chat-names", help="Fill in chat names from the bridge")

    p = sub.add_parser("search", help="Similarity search")
    p.add_argument("query")
    p.add_argument("--limit", type=int, default=settings.retrieval_limit)
    p.add_argument("--threshold", type=float, default=settings.retrieval_threshold)
    p.add_argument("--source-type", action="append", choices=[s.value for s in SourceType])

    p = sub.add_parser("context", help="Assemble retrieval context for a query")
    p.add_argument("query")
    p.add_argument("--max-tokens", type=int, default=settings.context_max_tokens)
    p.add_argument("--threshold", type=float, default=settings.retrieval_threshold)

    sub.add_parser("daemon", help="Poll the chat bridge until interrupted")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        code = asyncio.run(COMMANDS[args.command](args))
    except ChatloreError as exc:
        logger.error("%s failed: %s", args.command, exc)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
