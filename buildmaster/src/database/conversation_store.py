"""
BuildMaster - ConversationStore
================================
Async chat-history store backed by MongoDB via ``motor``.

Session isolation is enforced — every query filters by ``session_id``
(or ``user_id`` for listings).

Writes use optimistic concurrency.  Each document carries a
``version`` counter:

  • a never-persisted session (``version == 0``) is **inserted**; a
    unique index on ``session_id`` rejects a concurrent first turn;
  • an existing session is **updated** only if its stored version
    still equals the version that was loaded.

The losing writer gets ``ConcurrencyConflictError`` and nothing of its
turn is written.

Collection schema (``conversation_history``)::

    {
        "session_id": str,
        "user_id": int | null,
        "messages": [{"role", "content", "timestamp", "used_rag", "retrieved_documents"}, ...],
        "topic": str | null,
        "created_at": datetime,
        "updated_at": datetime,
        "metadata": {"model", "total_tokens", "turn_count", "conversation_type"},
        "version": int
    }
"""

from __future__ import annotations

from datetime import datetime

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from buildmaster.config.settings import settings
from buildmaster.src.core.exceptions import ConcurrencyConflictError
from buildmaster.src.core.models import ConversationHistory
from buildmaster.src.database.mongo import driver_errors, from_document, get_database, to_document
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)


class ConversationStore:
    """
    Repository for ``ConversationHistory`` documents keyed by session id.

    Parameters
    ----------
    collection
        Optional motor collection (tests inject a mock).  Defaults to
        ``settings.CONVERSATION_COLLECTION`` in the shared database.
    """

    __slots__ = ("_collection",)

    def __init__(self, collection: object | None = None) -> None:
        self._collection = collection if collection is not None else get_database()[settings.CONVERSATION_COLLECTION]


    async def ensure_indexes(self) -> None:
        with driver_errors("conversation index creation"):
            await self._collection.create_index([("session_id", ASCENDING)], unique=True)
            await self._collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])


    async def get(self, session_id: str) -> ConversationHistory | None:
        """Load a session, or ``None`` if it does not exist."""
        with driver_errors("conversation lookup"):
            doc = await self._collection.find_one({"session_id": session_id})
        if doc is None:
            return None
        return from_document(ConversationHistory, doc)


    async def save(self, history: ConversationHistory) -> ConversationHistory:
        """
        Persist *history* with a compare-and-swap on ``version``.

        Returns
        -------
        ConversationHistory
            The stored document (``version`` incremented, ``id`` set).

        Raises
        ------
        ConcurrencyConflictError
            Another writer persisted this session since it was loaded.
        PersistenceError
            The driver failed.
        """
        expected = history.version
        saved = history.model_copy(update={"version": expected + 1})
        doc = to_document(saved)
        doc.pop("_id", None)

        if expected == 0:
            with driver_errors("conversation insert"):
                if await self._collection.find_one({"session_id": history.session_id}, {"_id": 1}) is not None:
                    raise ConcurrencyConflictError(f"Session '{history.session_id}' was created concurrently.")
                try:
                    result = await self._collection.insert_one(doc)
                except DuplicateKeyError as exc:
                    raise ConcurrencyConflictError(f"Session '{history.session_id}' was created concurrently.") from exc
            saved = saved.model_copy(update={"id": str(result.inserted_id)})
            logger.info("[SESSION] Created session '%s'.", history.session_id)
            return saved

        with driver_errors("conversation update"):
            result = await self._collection.update_one({"session_id": history.session_id, "version": expected}, {"$set": doc})
        if result.matched_count == 0:
            raise ConcurrencyConflictError(f"Session '{history.session_id}' changed since version {expected}.")
        logger.debug("[SESSION] Saved session '%s' (version %d).", history.session_id, saved.version)
        return saved


    async def delete(self, session_id: str) -> bool:
        """Delete a session entirely.  Returns True if removed."""
        with driver_errors("conversation delete"):
            result = await self._collection.delete_one({"session_id": session_id})
        return result.deleted_count > 0


    async def find_by_user(self, user_id: int) -> list[ConversationHistory]:
        """All sessions of *user_id*, newest first by creation time."""
        return await self._find({"user_id": user_id}, "created_at")


    async def find_recent_by_user(self, user_id: int, limit: int = 10) -> list[ConversationHistory]:
        """The *limit* most recently updated sessions of *user_id*."""
        return await self._find({"user_id": user_id}, "updated_at", limit)


    async def find_by_user_between(self, user_id: int, start: datetime, end: datetime) -> list[ConversationHistory]:
        """Sessions of *user_id* created within ``[start, end]``."""
        return await self._find({"user_id": user_id, "created_at": {"$gte": start, "$lte": end}}, "created_at")


    async def _find(self, query: dict, sort_field: str, limit: int | None = None) -> list[ConversationHistory]:
        with driver_errors("conversation query"):
            cursor = self._collection.find(query).sort(sort_field, DESCENDING)
            if limit:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        return [from_document(ConversationHistory, doc) for doc in docs]
