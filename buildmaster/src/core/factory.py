"""
BuildMaster - Dependency Wiring
================================
Builds a fully wired ``ChatOrchestrator`` from ``settings``.  This is
the only place where clients are constructed; core components receive
them explicitly.
"""

from __future__ import annotations

from buildmaster.config.settings import settings
from buildmaster.src.core.chat_orchestrator import ChatOrchestrator
from buildmaster.src.core.embeddings import EmbeddingGenerator, build_embedder
from buildmaster.src.core.llm import LLMClient, build_chat_model
from buildmaster.src.core.retrieval import RetrievalEngine
from buildmaster.src.core.vectorizer import BacklogVectorizer
from buildmaster.src.database.conversation_store import ConversationStore
from buildmaster.src.database.knowledge_store import KnowledgeStore
from buildmaster.src.database.vector_store import KnowledgeVectorStore
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)


def build_retrieval_engine(vector_store: KnowledgeVectorStore | None = None) -> RetrievalEngine:
    generator = EmbeddingGenerator(build_embedder(), settings.EMBEDDING_DIMENSION)
    return RetrievalEngine(generator, vector_store or KnowledgeVectorStore())


def build_orchestrator() -> ChatOrchestrator:
    """Wire embedder, vector index, Mongo stores and chat model together."""
    retrieval = build_retrieval_engine()
    knowledge = KnowledgeStore()
    conversations = ConversationStore()
    vectorizer = BacklogVectorizer(retrieval, knowledge)
    llm = LLMClient(build_chat_model(), model_name=settings.LLM_MODEL)

    logger.info("[CHAT] Orchestrator wired (embeddings=%s, model=%s, env=%s).", settings.EMBEDDING_PROVIDER, settings.LLM_MODEL, settings.ENV)
    return ChatOrchestrator(retrieval, conversations, knowledge, vectorizer, llm)
