"""
BuildMaster - KnowledgeStore
=============================
Async CRUD over ``KnowledgeItem`` documents backed by MongoDB via
``motor``.

Collection schema (``component_knowledge``)::

    {
        "_id": ObjectId,
        "component_id": int | null,
        "component_type": str,
        "content": str,
        "source": "manual" | "crawled" | "generated",
        "tags": [str, ...],
        "vector_id": str | null,
        "vectorized": bool,
        "score": float | null,
        "created_at": datetime,
        "updated_at": datetime
    }
"""

from __future__ import annotations

from pymongo import ASCENDING, ReturnDocument

from buildmaster.config.settings import settings
from buildmaster.src.core.exceptions import NotFoundError
from buildmaster.src.core.models import KnowledgeItem, utc_now
from buildmaster.src.database.mongo import driver_errors, from_document, get_database, to_document, to_object_id
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)


class KnowledgeStore:
    """
    Repository for component knowledge snippets.

    Parameters
    ----------
    collection
        Optional motor collection (tests inject a mock).  Defaults to
        ``settings.KNOWLEDGE_COLLECTION`` in the shared database.
    """

    __slots__ = ("_collection",)

    def __init__(self, collection: object | None = None) -> None:
        self._collection = collection if collection is not None else get_database()[settings.KNOWLEDGE_COLLECTION]


    async def ensure_indexes(self) -> None:
        with driver_errors("knowledge index creation"):
            await self._collection.create_index([("vectorized", ASCENDING)])
            await self._collection.create_index([("vector_id", ASCENDING)])
            await self._collection.create_index([("component_id", ASCENDING)])

    # ══════════════════════════════════════════════════════════════════
    #  CRUD
    # ══════════════════════════════════════════════════════════════════

    async def create(self, item: KnowledgeItem) -> KnowledgeItem:
        """Insert *item*; returns it with the store-assigned ``id``."""
        doc = to_document(item.model_copy(update={"id": None}))
        with driver_errors("knowledge insert"):
            result = await self._collection.insert_one(doc)
        created = item.model_copy(update={"id": str(result.inserted_id)})
        logger.info("[KNOWLEDGE] Created item %s (type=%s, %d chars).", created.id, created.component_type, len(created.content))
        return created


    async def get(self, knowledge_id: str) -> KnowledgeItem:
        """Load one item; ``NotFoundError`` when absent."""
        oid = to_object_id(knowledge_id)
        doc = None
        if oid is not None:
            with driver_errors("knowledge lookup"):
                doc = await self._collection.find_one({"_id": oid})
        if doc is None:
            raise NotFoundError(f"Knowledge item '{knowledge_id}' not found.")
        return from_document(KnowledgeItem, doc)


    async def update(self, item: KnowledgeItem) -> KnowledgeItem:
        """
        Replace the stored document for ``item.id``; bumps ``updated_at``.

        When ``content`` differs from the stored text the item drops back
        into the backlog (``vectorized=False``, ``vector_id=None``); the
        vector of the old text is cleared by the vectorizer.
        """
        if not item.id or to_object_id(item.id) is None:
            raise NotFoundError(f"Knowledge item '{item.id}' not found.")
        stored = await self.get(item.id)
        changes = {"updated_at": utc_now()}
        if stored.content != item.content:
            changes.update(vectorized=False, vector_id=None)
            logger.info("[KNOWLEDGE] Content of item %s changed — back in the backlog.", item.id)
        updated = item.model_copy(update=changes)
        doc = to_document(updated)
        with driver_errors("knowledge update"):
            result = await self._collection.replace_one({"_id": doc["_id"]}, doc)
        if result.matched_count == 0:
            raise NotFoundError(f"Knowledge item '{item.id}' not found.")
        return updated


    async def mark_vectorized(self, knowledge_id: str, vector_id: str) -> KnowledgeItem:
        """Set ``vector_id`` and ``vectorized`` together in one atomic update."""
        oid = to_object_id(knowledge_id)
        doc = None
        if oid is not None:
            with driver_errors("knowledge vectorized update"):
                doc = await self._collection.find_one_and_update({"_id": oid}, {"$set": {"vector_id": vector_id, "vectorized": True, "updated_at": utc_now()}}, return_document=ReturnDocument.AFTER)
        if doc is None:
            raise NotFoundError(f"Knowledge item '{knowledge_id}' not found.")
        return from_document(KnowledgeItem, doc)


    async def mark_unvectorized(self, knowledge_id: str) -> KnowledgeItem:
        """Clear ``vector_id`` and ``vectorized`` together; the item rejoins the backlog."""
        oid = to_object_id(knowledge_id)
        doc = None
        if oid is not None:
            with driver_errors("knowledge vectorized reset"):
                doc = await self._collection.find_one_and_update({"_id": oid}, {"$set": {"vector_id": None, "vectorized": False, "updated_at": utc_now()}}, return_document=ReturnDocument.AFTER)
        if doc is None:
            raise NotFoundError(f"Knowledge item '{knowledge_id}' not found.")
        return from_document(KnowledgeItem, doc)


    async def delete(self, knowledge_id: str) -> None:
        oid = to_object_id(knowledge_id)
        deleted = 0
        if oid is not None:
            with driver_errors("knowledge delete"):
                result = await self._collection.delete_one({"_id": oid})
            deleted = result.deleted_count
        if deleted == 0:
            raise NotFoundError(f"Knowledge item '{knowledge_id}' not found.")
        logger.info("[KNOWLEDGE] Deleted item %s.", knowledge_id)


    async def reset_vectorization(self) -> int:
        """Put every item back in the backlog (after the vector table was dropped)."""
        with driver_errors("knowledge vectorization reset"):
            result = await self._collection.update_many({"vectorized": True}, {"$set": {"vectorized": False, "vector_id": None, "updated_at": utc_now()}})
        return result.modified_count

    # ══════════════════════════════════════════════════════════════════
    #  QUERIES
    # ══════════════════════════════════════════════════════════════════

    async def _find(self, query: dict) -> list[KnowledgeItem]:
        with driver_errors("knowledge query"):
            docs = await self._collection.find(query).sort("_id", ASCENDING).to_list(length=None)
        return [from_document(KnowledgeItem, doc) for doc in docs]


    async def find_unvectorized(self) -> list[KnowledgeItem]:
        """Snapshot of every item still waiting for a vector."""
        return await self._find({"vectorized": False})


    async def find_by_vector_id(self, vector_id: str) -> KnowledgeItem | None:
        with driver_errors("knowledge lookup"):
            doc = await self._collection.find_one({"vector_id": vector_id})
        return from_document(KnowledgeItem, doc) if doc is not None else None


    async def find_by_component_id(self, component_id: int) -> list[KnowledgeItem]:
        return await self._find({"component_id": component_id})


    async def find_by_component_type(self, component_type: str) -> list[KnowledgeItem]:
        return await self._find({"component_type": component_type})


    async def find_by_tag(self, tag: str) -> list[KnowledgeItem]:
        # Array field: equality matches any element
        return await self._find({"tags": tag})
