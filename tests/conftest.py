"""
Shared fixtures.

Settings are required at import time, so the environment is prepared
before any ``buildmaster`` module is imported.  MongoDB is replaced by
``mongomock-motor``, LanceDB writes to ``tmp_path``, embeddings use the
deterministic hash provider and the chat model is LangChain's
``FakeListChatModel``.
"""

import os

os.environ["GOOGLE_API_KEY"] = "test-google-key"
os.environ["MONGO_URI"] = "mongodb://localhost:27017"
os.environ["ENV"] = "dev"
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "16"
os.environ["RETRY_BASE_DELAY_MS"] = "0"

import asyncio

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage
from mongomock_motor import AsyncMongoMockClient

from buildmaster.src.core.chat_orchestrator import ChatOrchestrator
from buildmaster.src.core.embeddings import EmbeddingGenerator, HashEmbeddings
from buildmaster.src.core.exceptions import VectorStoreError
from buildmaster.src.core.llm import LLMClient
from buildmaster.src.core.retrieval import RetrievalEngine
from buildmaster.src.core.vectorizer import BacklogVectorizer
from buildmaster.src.database.conversation_store import ConversationStore
from buildmaster.src.database.knowledge_store import KnowledgeStore
from buildmaster.src.database.vector_store import KnowledgeVectorStore

DIM = 16


class BrokenChatModel:
    """Chat model whose every call fails."""

    model = "broken-model"

    def __init__(self):
        self.calls = 0

    async def ainvoke(self, messages):
        self.calls += 1
        raise RuntimeError("model offline")

    async def astream(self, messages):
        self.calls += 1
        raise RuntimeError("model offline")
        yield  # pragma: no cover


class SlowChatModel:
    """Chat model that takes longer than any test deadline."""

    model = "slow-model"

    async def ainvoke(self, messages):
        await asyncio.sleep(5)


class RecordingChatModel:
    """Chat model that records every prompt and reports token usage."""

    model = "recording-model"

    def __init__(self, reply="Noted."):
        self.reply = reply
        self.seen = []

    async def ainvoke(self, messages):
        self.seen.append(list(messages))
        return AIMessage(content=self.reply, usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15})


class GatedChatModel:
    """Chat model that answers only once *parties* calls are in flight."""

    model = "gated-model"

    def __init__(self, parties=2):
        self.parties = parties
        self.arrived = 0
        self.gate = asyncio.Event()

    async def ainvoke(self, messages):
        self.arrived += 1
        if self.arrived >= self.parties:
            self.gate.set()
        await asyncio.wait_for(self.gate.wait(), 2)
        return AIMessage(content="Gated answer.")


class UnreachableVectorStore(KnowledgeVectorStore):
    """Vector store whose searches always fail."""

    __slots__ = ()

    def search(self, query_embedding, top_k):
        raise VectorStoreError("connection refused")


@pytest.fixture
def mongo_db():
    return AsyncMongoMockClient()["buildmaster_test"]


@pytest.fixture
def knowledge_store(mongo_db):
    return KnowledgeStore(mongo_db["component_knowledge"])


@pytest.fixture
async def conversation_store(mongo_db):
    store = ConversationStore(mongo_db["conversation_history"])
    await store.ensure_indexes()
    return store


@pytest.fixture
def generator():
    return EmbeddingGenerator(HashEmbeddings(DIM), DIM)


@pytest.fixture
def vector_store(tmp_path):
    store = KnowledgeVectorStore(dimension=DIM, db_path=str(tmp_path / "lancedb"), table_name="knowledge_test", index_min_rows=0)
    store.ensure_collection()
    return store


@pytest.fixture
def retrieval(generator, vector_store):
    return RetrievalEngine(generator, vector_store, base_delay_ms=0)


@pytest.fixture
def vectorizer(retrieval, knowledge_store):
    return BacklogVectorizer(retrieval, knowledge_store)


@pytest.fixture
def make_llm():
    def _make(model=None, responses=None):
        model = model or FakeListChatModel(responses=responses or ["Sure, here is my answer."])
        return LLMClient(model, model_name="fake-model", base_delay_ms=0)

    return _make


@pytest.fixture
def make_orchestrator(retrieval, conversation_store, knowledge_store, vectorizer, make_llm):
    def _make(model=None, responses=None, timeout=None):
        return ChatOrchestrator(retrieval, conversation_store, knowledge_store, vectorizer, make_llm(model, responses), timeout=timeout)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
