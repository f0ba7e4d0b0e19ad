"""
BuildMaster - Chat Orchestrator
================================
Top-level entry point of the conversation subsystem.

Turn pipeline (``chat`` / ``chat_with_rag`` / ``open_stream``)::

    1. Validate input               → ValidationError, nothing touched
    2. Load session (or start one)  → new sessions are NOT written yet
    3. Retrieve snippets (RAG only) → stage "retrieval"
    4. Build prompt                 → system + last N messages + user text
    5. Call the language model      → stage "generation"
    6. Append user + assistant      → one CAS write, stage "persistence"

Nothing is written before step 6, so a failure or timeout in steps
3–5 leaves the stored session exactly as it was.  Step 6 is a single
document write guarded by the session ``version``; if another turn on
the same session won the race, ``ConcurrencyConflictError`` is raised
and this turn is discarded.

Errors propagate untouched apart from ``error.stage`` being set.

Other operations: ``recommend`` (always a fresh one-shot session),
``learn_new_knowledge``, ``update_knowledge``, ``delete_knowledge``,
``vectorize_backlog``, ``search_knowledge``,
``get_conversations_by_user``, ``get_conversation``,
``delete_conversation``.

Usage:
    orchestrator = build_orchestrator()
    reply = await orchestrator.chat_with_rag("Is a 650 W PSU enough for a 4070?", top_k=5)
"""

from __future__ import annotations

import asyncio
import math
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Iterator, TypeVar

from langchain_core.messages import BaseMessage

from buildmaster.config.prompt_templates import RECOMMENDATION_PROMPT_TEMPLATE, RECOMMENDATION_TOPIC, TOPIC_MAX_CHARS
from buildmaster.config.settings import settings
from buildmaster.src.core.context_builder import ContextBuilder
from buildmaster.src.core.exceptions import BuildMasterError, LLMInferenceError, NotFoundError, ValidationError, VectorStoreError
from buildmaster.src.core.llm import LLMClient, LLMReply
from buildmaster.src.core.models import ChatReply, ConversationHistory, ConversationMetadata, ConversationType, KnowledgeItem, KnowledgeSource, Message, RecommendationReply, RetrievedSnippet, Role, VectorizationReport, utc_now
from buildmaster.src.core.retrieval import RetrievalEngine
from buildmaster.src.core.vectorizer import BacklogVectorizer
from buildmaster.src.database.conversation_store import ConversationStore
from buildmaster.src.database.knowledge_store import KnowledgeStore
from buildmaster.src.utils.logger import get_logger
from buildmaster.src.utils.text_utils import clean_text, normalize_component_type, truncate

logger = get_logger(__name__)

T = TypeVar("T")

STAGE_RETRIEVAL = "retrieval"
STAGE_GENERATION = "generation"
STAGE_PERSISTENCE = "persistence"


@contextmanager
def _stage(name: str) -> Iterator[None]:
    """Tag core errors raised inside the block with the pipeline stage."""
    try:
        yield
    except BuildMasterError as exc:
        if exc.stage is None:
            exc.stage = name
        logger.error("[CHAT] %s during %s: %s", exc.kind, name, exc.message)
        raise


class _Deadline:
    """Wall-clock budget shared by every network hop of one call."""

    __slots__ = ("_timeout", "_expires_at")

    def __init__(self, timeout: float) -> None:
        self._timeout = timeout
        self._expires_at = asyncio.get_running_loop().time() + timeout


    async def run(self, awaitable: Awaitable[T], error_cls: type[BuildMasterError], hop: str) -> T:
        remaining = self._expires_at - asyncio.get_running_loop().time()
        if remaining <= 0:
            if hasattr(awaitable, "close"):
                awaitable.close()
            raise error_cls(f"{hop} not started: {self._timeout:.1f}s deadline exhausted.")
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError as exc:
            raise error_cls(f"{hop} timed out after {self._timeout:.1f}s.") from exc


@dataclass
class _PreparedTurn:
    history: ConversationHistory
    user_text: str
    messages: list[BaseMessage]
    snippets: list[RetrievedSnippet] | None


@dataclass
class ChatStream:
    """Reply stream of a prepared turn; iterate it to generate and persist."""

    session_id: str
    chunks: AsyncIterator[str]

    def __aiter__(self) -> AsyncIterator[str]:
        return self.chunks


class ChatOrchestrator:
    """
    Parameters
    ----------
    retrieval
        ``RetrievalEngine`` used for RAG turns and knowledge search.
    conversation_store
        ``ConversationStore`` owning session documents.
    knowledge_store
        ``KnowledgeStore`` owning knowledge items.
    vectorizer
        ``BacklogVectorizer`` used for immediate and batch vectorization.
    llm
        ``LLMClient`` wrapping the chat model.
    context_builder
        Optional custom ``ContextBuilder``.
    timeout
        Default per-call deadline in seconds.
    """

    __slots__ = ("_retrieval", "_conversations", "_knowledge", "_vectorizer", "_llm", "_context", "_timeout")

    def __init__(self, retrieval: RetrievalEngine, conversation_store: ConversationStore, knowledge_store: KnowledgeStore, vectorizer: BacklogVectorizer, llm: LLMClient, context_builder: ContextBuilder | None = None, timeout: float | None = None) -> None:
        self._retrieval = retrieval
        self._conversations = conversation_store
        self._knowledge = knowledge_store
        self._vectorizer = vectorizer
        self._llm = llm
        self._context = context_builder or ContextBuilder()
        self._timeout = self._positive_timeout(settings.REQUEST_TIMEOUT_SECONDS if timeout is None else timeout)

    # ══════════════════════════════════════════════════════════════════
    #  CHAT
    # ══════════════════════════════════════════════════════════════════

    async def chat(self, text: str, session_id: str | None = None, user_id: int | None = None, timeout: float | None = None) -> ChatReply:
        """Plain chat turn (no retrieval)."""
        return await self._converse(text, session_id, user_id, None, timeout)


    async def chat_with_rag(self, text: str, session_id: str | None = None, top_k: int | None = None, user_id: int | None = None, timeout: float | None = None) -> ChatReply:
        """Chat turn grounded on the *top_k* most relevant knowledge snippets."""
        top_k = settings.DEFAULT_RAG_TOP_K if top_k is None else top_k
        return await self._converse(text, session_id, user_id, top_k, timeout)


    async def stream_chat(self, text: str, session_id: str | None = None, use_rag: bool = False, top_k: int | None = None, user_id: int | None = None, timeout: float | None = None) -> AsyncIterator[str]:
        """
        Stream the assistant reply chunk by chunk.

        Convenience wrapper over ``open_stream``; callers that must report
        validation or retrieval errors before the first chunk (HTTP) should
        await ``open_stream`` themselves.
        """
        stream = await self.open_stream(text, session_id=session_id, use_rag=use_rag, top_k=top_k, user_id=user_id, timeout=timeout)
        async for chunk in stream:
            yield chunk


    async def open_stream(self, text: str, session_id: str | None = None, use_rag: bool = False, top_k: int | None = None, user_id: int | None = None, timeout: float | None = None) -> ChatStream:
        """
        Run steps 1–4 eagerly and return a ``ChatStream`` over the reply.

        Validation, session loading and retrieval errors are raised here,
        before any chunk exists.  The turn is persisted only once the
        stream has been fully consumed; an error or an abandoned stream
        leaves the session untouched.
        """
        t_start = time.perf_counter()
        rag_top_k = (settings.DEFAULT_RAG_TOP_K if top_k is None else top_k) if use_rag else None
        deadline = _Deadline(self._resolve_timeout(timeout))
        turn = await self._prepare_turn(text, session_id or self.new_session_id(), user_id, rag_top_k, deadline)
        return ChatStream(session_id=turn.history.session_id, chunks=self._generate_stream(turn, deadline, t_start))


    async def _generate_stream(self, turn: _PreparedTurn, deadline: _Deadline, t_start: float) -> AsyncIterator[str]:
        chunks: list[str] = []
        with _stage(STAGE_GENERATION):
            stream = self._llm.stream(turn.messages).__aiter__()
            while True:
                try:
                    chunk = await deadline.run(stream.__anext__(), LLMInferenceError, "Streaming generation")
                except StopAsyncIteration:
                    break
                chunks.append(chunk)
                yield chunk

        saved = await self._commit_turn(turn, LLMReply(text="".join(chunks)))
        logger.info("[CHAT] Streamed turn %d for session '%s' in %.1fms.", saved.metadata.turn_count, saved.session_id, (time.perf_counter() - t_start) * 1000)


    async def _converse(self, text: str, session_id: str | None, user_id: int | None, top_k: int | None, timeout: float | None) -> ChatReply:
        t_start = time.perf_counter()
        deadline = _Deadline(self._resolve_timeout(timeout))

        turn = await self._prepare_turn(text, session_id or self.new_session_id(), user_id, top_k, deadline)

        t_llm = time.perf_counter()
        with _stage(STAGE_GENERATION):
            reply = await deadline.run(self._llm.generate(turn.messages), LLMInferenceError, "Generation")
        llm_ms = (time.perf_counter() - t_llm) * 1000

        saved = await self._commit_turn(turn, reply)
        logger.info("[CHAT] Session '%s' turn %d done in %.1fms (llm=%.1fms, rag=%s).", saved.session_id, saved.metadata.turn_count, (time.perf_counter() - t_start) * 1000, llm_ms, turn.snippets is not None)

        assistant = saved.messages[-1]
        return ChatReply(session_id=saved.session_id, message=assistant.content, used_rag=assistant.used_rag, retrieved_documents=list(assistant.retrieved_documents), turn_count=saved.metadata.turn_count)

    # ══════════════════════════════════════════════════════════════════
    #  TURN MECHANICS
    # ══════════════════════════════════════════════════════════════════

    async def _prepare_turn(self, text: str, session_id: str, user_id: int | None, top_k: int | None, deadline: _Deadline, history: ConversationHistory | None = None, query: str | None = None) -> _PreparedTurn:
        """Steps 1–4: validate, load, retrieve, build prompt.  Writes nothing."""
        user_text = self._require_text(text, "Message")
        search_query = query or user_text
        if top_k is not None:
            self._retrieval.validate(search_query, top_k)

        if history is None:
            history = await self._load_or_start(session_id, user_id, user_text, ConversationType.QUESTION if top_k is not None else ConversationType.GENERAL)

        snippets: list[RetrievedSnippet] | None = None
        if top_k is not None:
            with _stage(STAGE_RETRIEVAL):
                snippets = await deadline.run(self._retrieval.search(search_query, top_k), VectorStoreError, "Retrieval")

        rag_context = self._context.build_context(snippets or [])
        messages = self._context.build_message_list(history, user_text, rag_context)
        return _PreparedTurn(history=history, user_text=user_text, messages=messages, snippets=snippets)


    async def _commit_turn(self, turn: _PreparedTurn, reply: LLMReply) -> ConversationHistory:
        """Step 6: append exactly one user + one assistant message and save."""
        now = utc_now()
        used_rag = turn.snippets is not None
        documents = [snippet.content for snippet in turn.snippets] if used_rag else []

        user_msg = Message(role=Role.USER, content=turn.user_text, timestamp=now)
        assistant_msg = Message(role=Role.ASSISTANT, content=reply.text, timestamp=now, used_rag=used_rag, retrieved_documents=documents)

        meta = turn.history.metadata
        total_tokens = meta.total_tokens
        if reply.total_tokens is not None:
            total_tokens = (total_tokens or 0) + reply.total_tokens
        metadata = meta.model_copy(update={"turn_count": meta.turn_count + 1, "total_tokens": total_tokens, "model": self._llm.model_name})

        updated = turn.history.model_copy(update={"messages": [*turn.history.messages, user_msg, assistant_msg], "updated_at": now, "metadata": metadata})
        with _stage(STAGE_PERSISTENCE):
            return await self._conversations.save(updated)


    async def _load_or_start(self, session_id: str, user_id: int | None, first_text: str, conversation_type: ConversationType) -> ConversationHistory:
        with _stage(STAGE_PERSISTENCE):
            history = await self._conversations.get(session_id)
        if history is not None:
            if history.user_id is None and user_id is not None:
                history = history.model_copy(update={"user_id": user_id})
            return history

        logger.info("[SESSION] Starting new session '%s'.", session_id)
        return self._new_history(session_id, user_id, truncate(first_text, TOPIC_MAX_CHARS), conversation_type)


    def _new_history(self, session_id: str, user_id: int | None, topic: str, conversation_type: ConversationType) -> ConversationHistory:
        now = utc_now()
        return ConversationHistory(session_id=session_id, user_id=user_id, topic=topic, created_at=now, updated_at=now, metadata=ConversationMetadata(model=self._llm.model_name, turn_count=0, conversation_type=conversation_type))


    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())


    @staticmethod
    def _require_text(text: str | None, label: str) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError(f"{label} must not be empty.")
        return text.strip()


    def _resolve_timeout(self, timeout: float | None) -> float:
        return self._timeout if timeout is None else self._positive_timeout(timeout)


    @staticmethod
    def _positive_timeout(timeout: float) -> float:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or not math.isfinite(timeout) or timeout <= 0:
            raise ValidationError(f"Timeout must be a positive number of seconds, got {timeout!r}.")
        return float(timeout)


    # ══════════════════════════════════════════════════════════════════
    #  RECOMMENDATION
    # ══════════════════════════════════════════════════════════════════

    async def recommend(self, requirement: str, budget: float, user_id: int | None = None, timeout: float | None = None) -> RecommendationReply:
        """
        One-shot build recommendation.

        Always opens a fresh ``recommend_<uuid>`` session, retrieves
        ``RECOMMEND_TOP_K`` snippets for the requirement, and persists a
        single turn tagged ``recommendation``.
        """
        requirement = self._require_text(requirement, "Requirement")
        if isinstance(budget, bool) or not isinstance(budget, (int, float)) or not math.isfinite(budget) or budget <= 0:
            raise ValidationError(f"Budget must be a positive number, got {budget!r}.")

        t_start = time.perf_counter()
        deadline = _Deadline(self._resolve_timeout(timeout))
        session_id = f"recommend_{uuid.uuid4()}"
        prompt = RECOMMENDATION_PROMPT_TEMPLATE.format(requirement=requirement, budget=float(budget))
        history = self._new_history(session_id, user_id, RECOMMENDATION_TOPIC, ConversationType.RECOMMENDATION)

        turn = await self._prepare_turn(prompt, session_id, user_id, settings.RECOMMEND_TOP_K, deadline, history=history, query=requirement)

        with _stage(STAGE_GENERATION):
            reply = await deadline.run(self._llm.generate(turn.messages), LLMInferenceError, "Generation")

        saved = await self._commit_turn(turn, reply)
        logger.info("[CHAT] Recommendation session '%s' done in %.1fms (%d snippet(s)).", saved.session_id, (time.perf_counter() - t_start) * 1000, len(turn.snippets or []))
        return RecommendationReply(session_id=saved.session_id, requirement=requirement, budget=float(budget), recommendation=reply.text)

    # ══════════════════════════════════════════════════════════════════
    #  KNOWLEDGE
    # ══════════════════════════════════════════════════════════════════

    async def learn_new_knowledge(self, content: str, component_id: int | None, component_type: str, tags: list[str] | None = None) -> KnowledgeItem:
        """
        Store a manual knowledge item and vectorize it immediately.

        The item is stored first (un-vectorized), so if vectorization
        fails it stays in the backlog for the next batch run.
        """
        cleaned = clean_text(content) if isinstance(content, str) else ""
        if not cleaned:
            raise ValidationError("Knowledge content must not be empty.")
        label = normalize_component_type(component_type)
        if label is None:
            raise ValidationError(f"Malformed component type: {component_type!r}.")

        item = KnowledgeItem(component_id=component_id, component_type=label, content=cleaned, source=KnowledgeSource.MANUAL, tags=list(tags or []))
        with _stage(STAGE_PERSISTENCE):
            stored = await self._knowledge.create(item)
        with _stage(STAGE_RETRIEVAL):
            vectorized = await self._vectorizer.vectorize_item(stored)

        logger.info("[KNOWLEDGE] Learned item %s (component=%s, type=%s) → vector %s.", vectorized.id, component_id, label, vectorized.vector_id)
        return vectorized


    async def update_knowledge(self, knowledge_id: str, content: str | None = None, component_type: str | None = None, tags: list[str] | None = None) -> KnowledgeItem:
        """
        Edit a knowledge item; fields left as ``None`` are kept.

        A content change re-vectorizes the item at once and removes the
        vector of the previous text.  If that fails the item stays in the
        backlog and the next batch run swaps the old vector out.
        """
        with _stage(STAGE_PERSISTENCE):
            item = await self._knowledge.get(knowledge_id)

        changes: dict = {}
        if content is not None:
            cleaned = clean_text(content) if isinstance(content, str) else ""
            if not cleaned:
                raise ValidationError("Knowledge content must not be empty.")
            changes["content"] = cleaned
        if component_type is not None:
            label = normalize_component_type(component_type)
            if label is None:
                raise ValidationError(f"Malformed component type: {component_type!r}.")
            changes["component_type"] = label
        if tags is not None:
            changes["tags"] = list(tags)

        with _stage(STAGE_PERSISTENCE):
            updated = await self._knowledge.update(item.model_copy(update=changes))
        if not updated.vectorized:
            with _stage(STAGE_RETRIEVAL):
                updated = await self._vectorizer.vectorize_item(updated)

        logger.info("[KNOWLEDGE] Updated item %s → vector %s.", updated.id, updated.vector_id)
        return updated


    async def delete_knowledge(self, knowledge_id: str) -> None:
        """Delete a knowledge item together with its vector(s)."""
        with _stage(STAGE_PERSISTENCE):
            item = await self._knowledge.get(knowledge_id)
        with _stage(STAGE_RETRIEVAL):
            await self._vectorizer.forget_item(item)
        with _stage(STAGE_PERSISTENCE):
            await self._knowledge.delete(knowledge_id)
        logger.info("[KNOWLEDGE] Deleted item %s.", knowledge_id)


    async def vectorize_backlog(self) -> VectorizationReport:
        return await self._vectorizer.vectorize_unprocessed()


    async def search_knowledge(self, query: str, top_k: int | None = None) -> list[RetrievedSnippet]:
        top_k = settings.SEARCH_TOP_K if top_k is None else top_k
        with _stage(STAGE_RETRIEVAL):
            return await self._retrieval.search(query, top_k)

    # ══════════════════════════════════════════════════════════════════
    #  CONVERSATION MANAGEMENT
    # ══════════════════════════════════════════════════════════════════

    async def get_conversations_by_user(self, user_id: int) -> list[ConversationHistory]:
        """All sessions of *user_id*, newest first."""
        with _stage(STAGE_PERSISTENCE):
            return await self._conversations.find_by_user(user_id)


    async def get_conversation(self, session_id: str) -> ConversationHistory:
        with _stage(STAGE_PERSISTENCE):
            history = await self._conversations.get(session_id)
        if history is None:
            raise NotFoundError(f"Session '{session_id}' not found.")
        return history


    async def delete_conversation(self, session_id: str) -> None:
        """Remove a session; a later turn with the same id starts from scratch."""
        session_id = self._require_text(session_id, "Session id")
        with _stage(STAGE_PERSISTENCE):
            deleted = await self._conversations.delete(session_id)
        if not deleted:
            raise NotFoundError(f"Session '{session_id}' not found.")
        logger.info("[SESSION] Deleted session '%s'.", session_id)
