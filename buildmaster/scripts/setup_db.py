"""
BuildMaster - Database Setup & Vectorization Script
=====================================================
CLI entry point that orchestrates:
    1. Load settings (fail-fast on missing secrets).
    2. Open the LanceDB knowledge table (optionally reset the backlog
       and drop it first).
    3. Create the MongoDB indexes for knowledge and conversations.
    4. Optionally vectorize the knowledge backlog and/or rebuild the
       ANN index.
    5. Print a structured execution summary with timing breakdown.

Flags:
    --drop           Reset every knowledge item to un-vectorized, then
                     drop the LanceDB table, so that ``--vectorize``
                     re-populates the new table.
    --drop-only      Same reset + drop, then exit immediately.
    --vectorize      Run the backlog vectorizer after setup.
    --rebuild-index  Rebuild the ANN index on the knowledge table.

Usage:
    python -m buildmaster.scripts.setup_db
    python -m buildmaster.scripts.setup_db --drop --vectorize
    python -m buildmaster.scripts.setup_db --rebuild-index
    python -m buildmaster.scripts.setup_db --drop-only
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="BuildMaster — Initialise the knowledge stores and vectorize the backlog.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the LanceDB table and mark all knowledge un-vectorized.")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop the LanceDB table and exit.")
    parser.add_argument("--vectorize", action="store_true", default=False, help="Vectorize every un-vectorized knowledge item.")
    parser.add_argument("--rebuild-index", action="store_true", default=False, help="Rebuild the ANN index on the knowledge table.")
    return parser.parse_args(argv)


# ── Main Orchestration ─────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    try:
        from buildmaster.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from buildmaster.src.utils.logger import get_logger
    logger = get_logger(__name__)

    logger.info("Settings loaded in %.1fms", settings_ms)
    _print_header(settings)

    # ── 1. Reset the backlog, then open the vector table (timed) ───────
    from buildmaster.src.core.exceptions import BuildMasterError
    from buildmaster.src.database.vector_store import KnowledgeVectorStore

    t_lancedb = time.perf_counter()
    store = KnowledgeVectorStore()
    try:
        if args.drop or args.drop_only:
            logger.warning("Dropping table '%s' as requested.", settings.LANCEDB_TABLE_NAME)
            reset = asyncio.run(_drop_async(store))
            logger.warning("Reset %d knowledge item(s) to un-vectorized.", reset)
            if args.drop_only:
                logger.info("--drop-only: Table dropped. Exiting.")
                _print_footer(None, 0, time.perf_counter() - t_start, settings_ms, (time.perf_counter() - t_lancedb) * 1000, 0.0)
                return
        store.ensure_collection()
    except BuildMasterError:
        logger.exception("Failed to prepare LanceDB table.")
        sys.exit(1)
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
    logger.info("Vector table ready — '%s' (%d rows) in %.1fms.", settings.LANCEDB_TABLE_NAME, store.count(), lancedb_ms)

    # ── 2. Mongo indexes, backlog, ANN index ───────────────────────────
    t_mongo = time.perf_counter()
    try:
        report = asyncio.run(_run_async(args, store, logger))
    except BuildMasterError:
        logger.exception("Setup failed.")
        sys.exit(1)
    mongo_ms = (time.perf_counter() - t_mongo) * 1000

    if args.rebuild_index:
        _rebuild_index(store, logger)

    _print_footer(report, store.count(), time.perf_counter() - t_start, settings_ms, lancedb_ms, mongo_ms)


async def drop_vectors(store: object, knowledge: object) -> int:
    """
    Put every knowledge item back in the backlog, then drop the vector
    table.  If the reset fails the table is left alone, so no item ends
    up ``vectorized`` without a vector.
    """
    reset = await knowledge.reset_vectorization()  # type: ignore[attr-defined]
    await asyncio.to_thread(store.drop_table)  # type: ignore[attr-defined]
    return reset


async def _drop_async(store: object) -> int:
    from buildmaster.src.database.knowledge_store import KnowledgeStore
    from buildmaster.src.database.mongo import close_mongo_client

    try:
        return await drop_vectors(store, KnowledgeStore())
    finally:
        close_mongo_client()


def _rebuild_index(store: object, logger: object) -> None:
    from buildmaster.src.core.exceptions import BuildMasterError

    logger.info("Rebuilding ANN index.")  # type: ignore[attr-defined]
    try:
        store.rebuild_index()  # type: ignore[attr-defined]
    except BuildMasterError:
        logger.exception("ANN index rebuild failed.")  # type: ignore[attr-defined]
        sys.exit(1)


async def _run_async(args: argparse.Namespace, store: object, logger: object):
    from buildmaster.src.core.factory import build_retrieval_engine
    from buildmaster.src.core.vectorizer import BacklogVectorizer
    from buildmaster.src.database.conversation_store import ConversationStore
    from buildmaster.src.database.knowledge_store import KnowledgeStore
    from buildmaster.src.database.mongo import close_mongo_client

    knowledge = KnowledgeStore()
    try:
        await knowledge.ensure_indexes()
        await ConversationStore().ensure_indexes()
        logger.info("MongoDB indexes ensured.")  # type: ignore[attr-defined]

        if not args.vectorize:
            return None
        vectorizer = BacklogVectorizer(build_retrieval_engine(store), knowledge)
        return await vectorizer.vectorize_unprocessed()
    finally:
        close_mongo_client()


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object) -> None:
    api_key_val = settings.GOOGLE_API_KEY.get_secret_value()  # type: ignore[attr-defined]
    masked = f"****{api_key_val[-4:]}" if len(api_key_val) > 4 else "****"

    mongo_uri_val = settings.MONGO_URI.get_secret_value()  # type: ignore[attr-defined]
    mongo_masked = mongo_uri_val.split("@")[-1] if "@" in mongo_uri_val else mongo_uri_val

    print()
    print("=" * 60)
    print("  BUILDMASTER — Knowledge Store Setup")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                   # type: ignore[attr-defined]
    print(f"  Embeddings   : {settings.EMBEDDING_PROVIDER} ({settings.EMBEDDING_MODEL}, dim {settings.EMBEDDING_DIMENSION})")  # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")          # type: ignore[attr-defined]
    print(f"  Metric       : {settings.VECTOR_METRIC}")         # type: ignore[attr-defined]
    print(f"  MongoDB      : {mongo_masked} (db: {settings.MONGO_DB_NAME})")  # type: ignore[attr-defined]
    print(f"  API Key      : {masked}")
    print("=" * 60)
    print()


def _print_footer(report: object | None, total_rows: int, elapsed: float, settings_ms: float, lancedb_ms: float, mongo_ms: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    if report is not None:
        print(f"  Backlog scanned      : {report.scanned}")         # type: ignore[attr-defined]
        print(f"  Vectorized           : {report.vectorized}")      # type: ignore[attr-defined]
        print(f"  Failed               : {report.failed}")          # type: ignore[attr-defined]
        for failed_id in report.failed_ids:                         # type: ignore[attr-defined]
            print(f"    ✗ {failed_id}")
    print(f"  Vectors in table     : {total_rows}")
    print("-" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Settings + .env load : {settings_ms:>8.1f}ms")
    print(f"  LanceDB setup        : {lancedb_ms:>8.1f}ms")
    print(f"  MongoDB + backlog    : {mongo_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
