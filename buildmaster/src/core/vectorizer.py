"""
BuildMaster - BacklogVectorizer
================================
Batch job that drives un-vectorized knowledge items through the
retrieval engine's insert path:

    find_unvectorized → embed → vector insert → purge stale → mark_vectorized

Key design decisions:
    • **Sequential** – items are processed one at a time; the job is
      I/O-bound and usually small.
    • **Per-item isolation** – a failure is logged with the item id,
      counted in the report, and the batch moves on.
    • **Idempotent insert** – each vector is written with
      ``dedup_key = "knowledge:<item id>:<content hash>"``.  A crash
      between the vector insert and the store update, or two
      overlapping runs, end up re-using the same vector instead of
      creating a duplicate.
    • **One vector per item** – after an insert, every other vector
      under ``knowledge:<item id>:`` (the text before an edit) is
      deleted, so search never serves superseded content.

Usage:
    vectorizer = BacklogVectorizer(retrieval_engine, knowledge_store)
    report = await vectorizer.vectorize_unprocessed()
"""

from __future__ import annotations

import time

from buildmaster.src.core.exceptions import ValidationError
from buildmaster.src.core.models import KnowledgeItem, VectorizationReport
from buildmaster.src.core.retrieval import RetrievalEngine
from buildmaster.src.database.knowledge_store import KnowledgeStore
from buildmaster.src.utils.logger import get_logger
from buildmaster.src.utils.text_utils import content_fingerprint

logger = get_logger(__name__)

_FINGERPRINT_CHARS = 16


def knowledge_key_prefix(knowledge_id: str) -> str:
    return f"knowledge:{knowledge_id}:"


def knowledge_dedup_key(knowledge_id: str, content: str) -> str:
    return knowledge_key_prefix(knowledge_id) + content_fingerprint(content)[:_FINGERPRINT_CHARS]


class BacklogVectorizer:
    """
    Parameters
    ----------
    retrieval
        ``RetrievalEngine`` providing ``index``, ``remove`` and ``purge``.
    knowledge_store
        ``KnowledgeStore`` holding the backlog.
    """

    __slots__ = ("_retrieval", "_knowledge")

    def __init__(self, retrieval: RetrievalEngine, knowledge_store: KnowledgeStore) -> None:
        self._retrieval = retrieval
        self._knowledge = knowledge_store


    async def vectorize_item(self, item: KnowledgeItem) -> KnowledgeItem:
        """
        Vectorize one stored item and persist its vector id.

        Already-vectorized items are returned unchanged.  Vectors left
        over from an earlier version of the item's text are removed
        before the item is marked.

        Raises
        ------
        ValidationError
            If the item has no id (it was never stored).
        EmbeddingError, VectorStoreError, PersistenceError, NotFoundError
            Propagated from the underlying hop.
        """
        if item.vectorized:
            return item
        if not item.id:
            raise ValidationError("Knowledge item must be stored before it can be vectorized.")

        key = knowledge_dedup_key(item.id, item.content)
        vector_id = await self._retrieval.index(item.content, dedup_key=key)
        stale = await self._retrieval.purge(knowledge_key_prefix(item.id), keep=key)
        if stale:
            logger.info("[VECTORIZE] Item %s: removed %d stale vector(s).", item.id, stale)
        updated = await self._knowledge.mark_vectorized(item.id, vector_id)
        logger.debug("[VECTORIZE] Item %s → vector %s.", item.id, vector_id)
        return updated


    async def forget_item(self, item: KnowledgeItem) -> int:
        """
        Remove every vector of *item* and return it to the backlog.

        The store flag is cleared first, so a failure half-way leaves an
        un-vectorized item (which the next batch repairs through the dedup
        key) rather than a vectorized item without a vector.
        """
        if not item.id:
            raise ValidationError("Knowledge item must be stored before its vectors can be removed.")

        if item.vectorized:
            await self._knowledge.mark_unvectorized(item.id)
        removed = 0
        if item.vector_id and await self._retrieval.remove(item.vector_id):
            removed += 1
        removed += await self._retrieval.purge(knowledge_key_prefix(item.id))
        logger.info("[VECTORIZE] Item %s: removed %d vector(s).", item.id, removed)
        return removed


    async def vectorize_unprocessed(self) -> VectorizationReport:
        """Process every item with ``vectorized == False``; returns a summary."""
        t_start = time.perf_counter()
        backlog = await self._knowledge.find_unvectorized()
        report = VectorizationReport(scanned=len(backlog))

        if not backlog:
            logger.info("[VECTORIZE] Backlog empty — nothing to do.")
            return report

        logger.info("[VECTORIZE] Starting batch — %d unvectorized item(s).", len(backlog))

        for item in backlog:
            try:
                await self.vectorize_item(item)
                report.vectorized += 1
            except Exception:
                # One bad item never blocks the rest of the batch
                logger.exception("[VECTORIZE] Failed to vectorize item %s.", item.id)
                report.failed += 1
                report.failed_ids.append(str(item.id))

        logger.info("[VECTORIZE] Batch complete — %d vectorized, %d failed in %.2fs.", report.vectorized, report.failed, time.perf_counter() - t_start)
        return report
