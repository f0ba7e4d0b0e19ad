"""
BuildMaster - Retrieval Engine
===============================
Composes the embedding generator and the vector index into

    search(query_text, top_k) -> ranked snippets (best first)
    index(content)            -> vector id
    remove(vector_id)         -> whether a vector was removed

Both hops are blocking (LanceDB, embedding HTTP calls), so they run in
worker threads via ``asyncio.to_thread``.  Vector-index calls are
retried with backoff; embedding and validation errors are not.

``relevance_score`` is ``1 / (1 + distance)``: 1.0 for an exact match,
falling towards 0 as the distance grows, so sorting by distance
ascending is the same as sorting by relevance descending.
"""

from __future__ import annotations

import asyncio
import time

from buildmaster.config.settings import settings
from buildmaster.src.core.embeddings import EmbeddingGenerator
from buildmaster.src.core.exceptions import ValidationError
from buildmaster.src.core.models import RetrievedSnippet, VectorHit
from buildmaster.src.database.vector_store import KnowledgeVectorStore
from buildmaster.src.utils.logger import get_logger
from buildmaster.src.utils.retry import retry_async

logger = get_logger(__name__)


def relevance_from_distance(distance: float) -> float:
    return 1.0 / (1.0 + max(distance, 0.0))


class RetrievalEngine:
    """
    Parameters
    ----------
    generator
        Embedding generator (dimension must match *vector_store*).
    vector_store
        A ``KnowledgeVectorStore``; ``ensure_collection()`` is called
        lazily if the store is not ready yet.
    max_top_k
        Upper bound accepted for ``top_k``.
    """

    __slots__ = ("_generator", "_store", "_max_top_k", "_max_attempts", "_base_delay_ms")

    def __init__(self, generator: EmbeddingGenerator, vector_store: KnowledgeVectorStore, max_top_k: int | None = None, max_attempts: int | None = None, base_delay_ms: int | None = None) -> None:
        self._generator = generator
        self._store = vector_store
        self._max_top_k = settings.MAX_TOP_K if max_top_k is None else max_top_k
        self._max_attempts = settings.RETRY_MAX_ATTEMPTS if max_attempts is None else max(max_attempts, 1)
        if self._max_top_k < 1:
            raise ValidationError(f"max_top_k must be ≥ 1, got {self._max_top_k}.")
        self._base_delay_ms = settings.RETRY_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms


    def validate(self, query_text: str, top_k: int) -> None:
        """Reject blank queries and out-of-range ``top_k`` values."""
        if not isinstance(query_text, str) or not query_text.strip():
            raise ValidationError("Query text must not be empty.")
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
            raise ValidationError(f"top_k must be an integer ≥ 1, got {top_k!r}.")
        if top_k > self._max_top_k:
            raise ValidationError(f"top_k must be ≤ {self._max_top_k}, got {top_k}.")


    async def search(self, query_text: str, top_k: int) -> list[RetrievedSnippet]:
        """
        Embed *query_text* and return at most *top_k* snippets, best first.

        An empty index yields ``[]``.
        """
        self.validate(query_text, top_k)
        t_start = time.perf_counter()

        query_vector = await asyncio.to_thread(self._generator.embed, query_text)
        embed_ms = (time.perf_counter() - t_start) * 1000

        hits: list[VectorHit] = await self._with_store(lambda: self._store.search(query_vector, top_k), "vector.search")

        snippets = [RetrievedSnippet(vector_id=str(hit.id), content=hit.content, distance=hit.distance, relevance_score=relevance_from_distance(hit.distance)) for hit in hits]
        logger.info("[RETRIEVAL] %d snippet(s) for top_k=%d in %.1fms (embed=%.1fms).", len(snippets), top_k, (time.perf_counter() - t_start) * 1000, embed_ms)
        return snippets


    async def index(self, content: str, dedup_key: str | None = None) -> str:
        """Embed *content* and insert it into the vector index; returns the vector id."""
        embedding = await asyncio.to_thread(self._generator.embed, content)
        return await self._with_store(lambda: self._store.insert(embedding, content, dedup_key), "vector.insert")


    async def remove(self, vector_id: str) -> bool:
        """Delete one vector; ``False`` when the id was not indexed."""
        return await self._with_store(lambda: self._store.delete(vector_id), "vector.delete")


    async def purge(self, key_prefix: str, keep: str | None = None) -> int:
        """Delete every vector keyed under *key_prefix* except *keep*."""
        return await self._with_store(lambda: self._store.delete_by_key_prefix(key_prefix, keep), "vector.purge")


    async def _with_store(self, call, label: str):
        async def attempt():
            if not self._store.is_ready:
                await asyncio.to_thread(self._store.ensure_collection)
            return await asyncio.to_thread(call)

        return await retry_async(attempt, max_attempts=self._max_attempts, base_delay_ms=self._base_delay_ms, label=label)
