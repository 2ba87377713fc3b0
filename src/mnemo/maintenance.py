#!/usr/bin/env python3
"""Memory index maintenance CLI.

Backfills the embedding index from the conversation logs: every user/agent
turn without a stored embedding is embedded and inserted.

Environment Variables:
    - MNEMO_DB_PATH: SQLite index file
    - MNEMO_LOGS_ROOT: Directory containing logs/<surface>/<context_id>/
    - EMBEDDING_PROVIDER: openai or ollama
    - OPENAI_API_KEY: Required for the openai provider
    - MNEMO_LOG_LEVEL: Logging level (default INFO)

Example Usage:
    $ mnemo-reconcile                      # Embed everything missing
    $ mnemo-reconcile --dry-run            # Only report what is missing
    $ mnemo-reconcile --purge-context 123  # Drop all embeddings for a context
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from .config import MemoryConfig
from .exceptions import MnemoError
from .memory.embedding_queue import EmbeddingQueue
from .memory.indexer import MemoryIndexer
from .memory.reconciliation import ReconciliationJob
from .memory.vector_store import SQLiteVectorStore
from .providers.factory import create_embedding_provider

logger = logging.getLogger(__name__)


async def run_maintenance(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Run the requested maintenance task.

    Args:
        args: Parsed command-line arguments
        config: Memory configuration

    Returns:
        Process exit code
    """
    start_time = datetime.now(timezone.utc)

    async with SQLiteVectorStore(config.db_path) as store:
        if args.purge_context:
            deleted = await store.delete_by_context_id(args.purge_context)
            print(f"[Maintenance] Deleted {deleted} embeddings for context {args.purge_context}")
            return 0

        if args.dry_run:
            report = await ReconciliationJob(store, config.logs_root).run()
            print(f"[Maintenance] Dry run: {report.summary()}")
            for entry in report.missing_entries:
                print(f"  missing {entry.path}:{entry.line} [{entry.role}]")
            return 1 if report.has_errors else 0

        async with create_embedding_provider(config) as provider:
            queue = EmbeddingQueue(provider.embed, config=config.queue)
            indexer = MemoryIndexer(store, queue)
            try:
                report = await indexer.backfill(config.logs_root)
            finally:
                indexer.close()
                await queue.stop()

            failed = queue.get_failed_jobs()

        print(f"[Maintenance] {report.summary()}")
        print(f"[Maintenance] Indexed {indexer.indexed_count} records, {len(failed)} failed")
        for job in failed:
            print(f"  failed {job.metadata.path}:{job.metadata.line}: {job.error}")

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"[Maintenance] Completed in {duration:.1f} seconds")
    return 1 if (report.has_errors or failed) else 0


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Backfill the conversational memory index from the logs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report missing entries without embedding them",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        metavar="FILE",
        help="SQLite index file (overrides MNEMO_DB_PATH)",
    )
    parser.add_argument(
        "--logs-root",
        type=str,
        metavar="DIR",
        help="Logs root directory (overrides MNEMO_LOGS_ROOT)",
    )
    parser.add_argument(
        "--purge-context",
        type=str,
        metavar="CONTEXT_ID",
        help="Delete every embedding for CONTEXT_ID and exit",
    )
    args = parser.parse_args()

    config = MemoryConfig()
    if args.db_path:
        config.db_path = args.db_path
    if args.logs_root:
        config.logs_root = args.logs_root

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        exit_code = asyncio.run(run_maintenance(args, config))
    except MnemoError as e:
        logger.error(f"Maintenance failed: {e}")
        sys.exit(2)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
