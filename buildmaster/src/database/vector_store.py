"""
BuildMaster - KnowledgeVectorStore
===================================
OOP wrapper around LanceDB providing:
  • Collection lifecycle (``ensure_collection``) with a strict PyArrow schema
  • Idempotent single-vector insert with index-assigned integer ids
  • Exact or ANN similarity search, best match first
  • Targeted deletes by id or by dedup-key prefix

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Fixed dimension** — the ``embedding`` column is a fixed-size
    list of D float32 values.  Opening a table created with another D
    is refused; a migration (drop + re-vectorize) is required.
  • **Idempotent insert** — every row carries a ``dedup_key``.  A
    second insert with the same key returns the existing id.
  • **Deferred ANN index** — LanceDB needs enough rows to train an
    IVF index, so below ``VECTOR_INDEX_MIN_ROWS`` searches are exact.

All methods are synchronous; async callers off-load them with
``asyncio.to_thread``.

Usage:
    store = KnowledgeVectorStore(dimension=768)
    store.ensure_collection()
    vector_id = store.insert(embedding, "Ryzen 7 7800X3D: 8 cores, 96 MB L3")
    hits = store.search(query_embedding, top_k=5)
"""

from __future__ import annotations

import threading

import lancedb
import pyarrow as pa
import pyarrow.compute as pc

from buildmaster.config.settings import settings
from buildmaster.src.core.exceptions import ValidationError, VectorStoreError
from buildmaster.src.core.models import VectorHit
from buildmaster.src.utils.logger import get_logger
from buildmaster.src.utils.text_utils import content_fingerprint

logger = get_logger(__name__)

# ── Constants ──────────────────────────────────────────────────────────
_VECTOR_COLUMN = "embedding"
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def knowledge_schema(dimension: int) -> pa.Schema:
    """PyArrow schema of the knowledge vector table for dimension *dimension*."""
    return pa.schema([
        pa.field("id", pa.int64(), nullable=False),
        pa.field(_VECTOR_COLUMN, pa.list_(pa.float32(), dimension)),
        pa.field("content", pa.utf8()),
        pa.field("dedup_key", pa.utf8()),
    ])


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Thread-safe via ``_DB_LOCK``.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("[VECTOR] Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _table_exists(db: lancedb.DBConnection, name: str) -> bool:
    """Check for *name* via ``list_tables`` (paged), or ``table_names`` on older lancedb."""
    list_tables = getattr(db, "list_tables", None)
    if list_tables is None:
        return name in db.table_names()

    page_token = None
    while True:
        response = list_tables(page_token=page_token) if page_token else list_tables()
        if name in list(getattr(response, "tables", response)):
            return True
        page_token = getattr(response, "page_token", None)
        if not page_token:
            return False


class KnowledgeVectorStore:
    """
    High-level abstraction over the LanceDB knowledge table.

    Parameters
    ----------
    dimension
        Embedding dimension D.  Defaults to ``settings.EMBEDDING_DIMENSION``.
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    metric
        Distance metric (``l2``, ``cosine``, ``dot``).  Defaults to
        ``settings.VECTOR_METRIC``.
    index_min_rows
        Row count at which the ANN index is built.
    """

    __slots__ = ("_dimension", "_db_path", "_table_name", "_metric", "_index_min_rows", "_write_lock", "_next_id", "db", "table")

    def __init__(self, dimension: int | None = None, db_path: str | None = None, table_name: str | None = None, metric: str | None = None, index_min_rows: int | None = None) -> None:
        self._dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.LANCEDB_TABLE_NAME
        self._metric: str = metric or settings.VECTOR_METRIC
        self._index_min_rows: int = settings.VECTOR_INDEX_MIN_ROWS if index_min_rows is None else index_min_rows
        self._write_lock = threading.Lock()
        self._next_id: int = 1
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None


    @property
    def dimension(self) -> int:
        return self._dimension


    @property
    def is_ready(self) -> bool:
        return self.table is not None

    # ══════════════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ══════════════════════════════════════════════════════════════════

    def ensure_collection(self) -> None:
        """
        Open the knowledge table, creating it when absent.

        No-op when the store is already ready.

        Raises
        ------
        VectorStoreError
            If LanceDB is unreachable or the existing table was created
            with a different embedding dimension.
        """
        if self.table is not None:
            return

        try:
            self.db = _get_connection(self._db_path)
            if _table_exists(self.db, self._table_name):
                table = self.db.open_table(self._table_name)
                self._check_dimension(table.schema)
                logger.info("[VECTOR] Opened existing table '%s' (%d rows).", self._table_name, table.count_rows())
            else:
                table = self.db.create_table(self._table_name, schema=knowledge_schema(self._dimension))
                logger.info("[VECTOR] Created table '%s' (dimension=%d, metric=%s).", self._table_name, self._dimension, self._metric)
        except VectorStoreError:
            raise
        except Exception as exc:
            logger.error("[VECTOR] Cannot open LanceDB at %s: %s", self._db_path, exc)
            raise VectorStoreError(f"Vector index unavailable: {exc}") from exc

        self.table = table
        self._next_id = self._max_id() + 1
        self._maybe_build_index()


    def _check_dimension(self, schema: pa.Schema) -> None:
        field_type = schema.field(_VECTOR_COLUMN).type
        existing = getattr(field_type, "list_size", None)
        if existing != self._dimension:
            raise VectorStoreError(f"Table '{self._table_name}' stores {existing}-dimensional vectors but {self._dimension} are configured; drop and re-vectorize to migrate.")


    def _max_id(self) -> int:
        if self.table is None or self.table.count_rows() == 0:
            return 0
        ids = self.table.to_arrow().column("id")
        return int(pc.max(ids).as_py() or 0)


    def _has_index(self) -> bool:
        try:
            return any(_VECTOR_COLUMN in getattr(idx, "columns", []) for idx in self.table.list_indices())
        except AttributeError:
            return False


    def _maybe_build_index(self) -> None:
        """Build the ANN index once the table is large enough to train it."""
        if self.table is None or self._index_min_rows == 0:
            return
        rows = self.table.count_rows()
        if rows < self._index_min_rows or self._has_index():
            return
        self.rebuild_index()


    def rebuild_index(self) -> None:
        """(Re)build the ANN index over ``embedding`` with the configured metric."""
        self._require_ready()
        try:
            self.table.create_index(metric=self._metric, vector_column_name=_VECTOR_COLUMN, replace=True)
        except Exception as exc:
            logger.error("[VECTOR] Index build failed on '%s': %s", self._table_name, exc)
            raise VectorStoreError(f"Index build failed: {exc}") from exc
        logger.info("[VECTOR] ANN index built on '%s' (metric=%s, rows=%d).", self._table_name, self._metric, self.table.count_rows())


    def _require_ready(self) -> None:
        if self.table is None:
            raise VectorStoreError("Vector collection is not ready. Call ensure_collection() first.")

    # ══════════════════════════════════════════════════════════════════
    #  WRITE PATH
    # ══════════════════════════════════════════════════════════════════

    def insert(self, embedding: list[float], content: str, dedup_key: str | None = None) -> str:
        """
        Append one vector and return its id.

        Parameters
        ----------
        embedding
            Exactly D floats.
        content
            Source text stored alongside the vector for display.
        dedup_key
            Idempotency key; defaults to the SHA-256 of *content*.  If a
            row with this key already exists its id is returned and
            nothing is written.

        Raises
        ------
        VectorStoreError
            If the collection is not ready, the dimension mismatches, or
            the write fails.
        """
        self._require_ready()
        if len(embedding) != self._dimension:
            raise VectorStoreError(f"Dimension mismatch: expected {self._dimension}, got {len(embedding)}.")

        key = dedup_key or content_fingerprint(content)

        with self._write_lock:
            try:
                existing = self._find_by_dedup_key(key)
                if existing is not None:
                    logger.info("[VECTOR] Dedup hit for key %s → id %d (no write).", key[:24], existing)
                    return str(existing)

                vector_id = self._next_id
                self.table.add([{"id": vector_id, _VECTOR_COLUMN: [float(x) for x in embedding], "content": content, "dedup_key": key}])
                self._next_id = vector_id + 1
            except Exception as exc:
                logger.error("[VECTOR] Insert failed: %s", exc)
                raise VectorStoreError(f"Vector insert failed: {exc}") from exc

        logger.debug("[VECTOR] Inserted vector id=%d (%d chars).", vector_id, len(content))
        self._maybe_build_index()
        return str(vector_id)


    def _find_by_dedup_key(self, key: str) -> int | None:
        if self.table.count_rows() == 0:
            return None
        rows = self.table.search().where(f"dedup_key = {_quote(key)}").select(["id"]).limit(1).to_list()
        if not rows:
            return None
        return int(rows[0]["id"])


    def delete(self, vector_id: str | int) -> bool:
        """
        Remove the vector with *vector_id*.

        Returns
        -------
        bool
            ``True`` if a row was removed, ``False`` if no such id existed.
        """
        self._require_ready()
        try:
            row_id = int(vector_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed vector id: {vector_id!r}.") from exc
        return self._delete_where(f"id = {row_id}") > 0


    def delete_by_key_prefix(self, prefix: str, keep: str | None = None) -> int:
        """
        Remove every vector whose dedup key starts with *prefix*, except
        the one keyed *keep*.  Returns the number of rows removed.
        """
        self._require_ready()
        if not prefix or "%" in prefix or "_" in prefix:
            raise ValidationError(f"Malformed dedup key prefix: {prefix!r}.")
        where = f"dedup_key LIKE {_quote(prefix + '%')}"
        if keep is not None:
            where += f" AND dedup_key != {_quote(keep)}"
        return self._delete_where(where)


    def _delete_where(self, where: str) -> int:
        with self._write_lock:
            try:
                doomed = self.table.count_rows(where)
                if doomed:
                    self.table.delete(where)
            except Exception as exc:
                logger.error("[VECTOR] Delete failed (%s): %s", where, exc)
                raise VectorStoreError(f"Vector delete failed: {exc}") from exc
        if doomed:
            logger.info("[VECTOR] Deleted %d vector(s) where %s.", doomed, where)
        return doomed

    # ══════════════════════════════════════════════════════════════════
    #  READ PATH
    # ══════════════════════════════════════════════════════════════════

    def search(self, query_embedding: list[float], top_k: int) -> list[VectorHit]:
        """
        Nearest-neighbour search.

        Returns
        -------
        list[VectorHit]
            At most *top_k* hits, ascending by distance, ties broken by
            id ascending.  Empty when the table holds no vectors.

        Raises
        ------
        ValidationError
            If *top_k* < 1.
        VectorStoreError
            If the collection is not ready, the query dimension
            mismatches, or LanceDB fails.
        """
        if top_k < 1:
            raise ValidationError(f"top_k must be ≥ 1, got {top_k}.")
        self._require_ready()
        if len(query_embedding) != self._dimension:
            raise VectorStoreError(f"Dimension mismatch: expected {self._dimension}, got {len(query_embedding)}.")

        try:
            if self.table.count_rows() == 0:
                logger.info("[VECTOR] Search on empty table — no results.")
                return []
            rows = self.table.search(query_embedding, vector_column_name=_VECTOR_COLUMN).distance_type(self._metric).select(["id", "content"]).limit(top_k).to_list()
        except Exception as exc:
            logger.error("[VECTOR] Search failed: %s", exc)
            raise VectorStoreError(f"Vector search failed: {exc}") from exc

        hits = [VectorHit(id=int(row["id"]), content=str(row["content"]), distance=float(row["_distance"])) for row in rows]
        hits.sort(key=lambda hit: (hit.distance, hit.id))
        logger.info("[VECTOR] Search returned %d hit(s) (top_k=%d).", len(hits), top_k)
        return hits


    def count(self) -> int:
        """Return the total number of vectors in the table."""
        if self.table is None:
            return 0
        return self.table.count_rows()


    def drop_table(self) -> None:
        """Drop the knowledge table; the store returns to the uninitialised state."""
        if self.db is None:
            self.db = _get_connection(self._db_path)
        try:
            self.db.drop_table(self._table_name)
            logger.info("[VECTOR] Dropped table '%s'.", self._table_name)
        except (ValueError, FileNotFoundError):
            logger.warning("[VECTOR] Table '%s' does not exist — nothing to drop.", self._table_name)
        except OSError as exc:
            logger.error("[VECTOR] Filesystem error dropping table '%s': %s", self._table_name, exc)
            raise VectorStoreError(f"Drop failed: {exc}") from exc
        finally:
            self.table = None
            self._next_id = 1


    def __repr__(self) -> str:
        return f"KnowledgeVectorStore(db='{self._db_path}', table='{self._table_name}', dimension={self._dimension}, rows={self.count()})"
