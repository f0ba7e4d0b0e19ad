from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from buildmaster.src.core.chat_orchestrator import ChatOrchestrator, ChatStream
from buildmaster.src.core.exceptions import ConcurrencyConflictError, EmbeddingError, LLMInferenceError, NotFoundError, ValidationError
from buildmaster.src.core.models import ChatReply, ConversationHistory, KnowledgeItem, RecommendationReply, RetrievedSnippet, VectorizationReport
from buildmaster.src.core.retrieval import RetrievalEngine
from buildmaster.src.main import create_app

from conftest import DIM, UnreachableVectorStore


async def _chunks():
    for chunk in ["Hel", "lo"]:
        yield chunk


@pytest.fixture
def mock_orchestrator():
    orch = MagicMock()
    orch.chat = AsyncMock(return_value=ChatReply(session_id="s1", message="Hello!", turn_count=1))
    orch.chat_with_rag = AsyncMock(return_value=ChatReply(session_id="s1", message="Use 650 W.", used_rag=True, retrieved_documents=["650 W is enough."], turn_count=2))
    orch.open_stream = AsyncMock(return_value=ChatStream(session_id="generated-session", chunks=_chunks()))
    orch.recommend = AsyncMock(return_value=RecommendationReply(session_id="recommend_x", requirement="gaming", budget=1000.0, recommendation="Build ..."))
    orch.learn_new_knowledge = AsyncMock(return_value=KnowledgeItem(id="65f000000000000000000001", component_type="CPU", content="fact", vectorized=True, vector_id="1"))
    orch.update_knowledge = AsyncMock(return_value=KnowledgeItem(id="65f000000000000000000001", component_type="CPU", content="new fact", vectorized=True, vector_id="2"))
    orch.delete_knowledge = AsyncMock(return_value=None)
    orch.vectorize_backlog = AsyncMock(return_value=VectorizationReport(scanned=2, vectorized=2))
    orch.search_knowledge = AsyncMock(return_value=[RetrievedSnippet(vector_id="1", content="fact", distance=0.0, relevance_score=1.0)])
    orch.get_conversations_by_user = AsyncMock(return_value=[ConversationHistory(session_id="s1", user_id=3)])
    orch.get_conversation = AsyncMock(return_value=ConversationHistory(session_id="s1", user_id=3))
    orch.delete_conversation = AsyncMock(return_value=None)
    return orch


@pytest.fixture
def client(mock_orchestrator):
    with TestClient(create_app(mock_orchestrator)) as test_client:
        yield test_client


@pytest.fixture
def stream_client(generator, tmp_path, make_llm):
    """Client over a real orchestrator whose vector index is unreachable."""
    store = UnreachableVectorStore(dimension=DIM, db_path=str(tmp_path / "down"), table_name="kb", index_min_rows=0)
    conversations = MagicMock()
    conversations.get = AsyncMock(return_value=None)
    conversations.save = AsyncMock()
    orchestrator = ChatOrchestrator(RetrievalEngine(generator, store, max_attempts=1, base_delay_ms=0), conversations, MagicMock(), MagicMock(), make_llm())
    with TestClient(create_app(orchestrator)) as test_client:
        yield test_client, conversations


def test_chat(client, mock_orchestrator):
    response = client.post("/api/ai/chat", json={"message": "hi", "user_id": 3})

    assert response.status_code == 200
    assert response.json()["message"] == "Hello!"
    mock_orchestrator.chat.assert_awaited_once_with("hi", session_id=None, user_id=3)


def test_chat_with_rag(client, mock_orchestrator):
    response = client.post("/api/ai/chat/rag", json={"message": "psu?", "session_id": "s1", "top_k": 3})

    assert response.status_code == 200
    assert response.json()["used_rag"] is True
    mock_orchestrator.chat_with_rag.assert_awaited_once_with("psu?", session_id="s1", top_k=3, user_id=None)


def test_chat_stream(client, mock_orchestrator):
    response = client.post("/api/ai/chat/stream", json={"message": "hi", "use_rag": True})

    assert response.status_code == 200
    assert response.text == "Hello"
    assert response.headers["x-session-id"] == "generated-session"
    mock_orchestrator.open_stream.assert_awaited_once_with("hi", session_id=None, use_rag=True, top_k=None, user_id=None)


def test_recommend(client):
    response = client.post("/api/ai/recommend", json={"requirement": "gaming", "budget": 1000})
    assert response.status_code == 200
    assert response.json()["session_id"] == "recommend_x"


def test_knowledge_endpoints(client, mock_orchestrator):
    added = client.post("/api/ai/knowledge/add", json={"content": "fact", "component_type": "CPU", "component_id": 4, "tags": ["amd"]})
    assert added.status_code == 201
    assert added.json()["vectorized"] is True
    mock_orchestrator.learn_new_knowledge.assert_awaited_once_with("fact", 4, "CPU", tags=["amd"])

    assert client.post("/api/ai/knowledge/vectorize").json()["vectorized"] == 2
    assert client.post("/api/ai/knowledge/search", json={"query": "fact"}).json()[0]["relevance_score"] == 1.0


def test_knowledge_update_and_delete(client, mock_orchestrator):
    updated = client.put("/api/ai/knowledge/65f000000000000000000001", json={"content": "new fact"})
    assert updated.status_code == 200
    assert updated.json()["vector_id"] == "2"
    mock_orchestrator.update_knowledge.assert_awaited_once_with("65f000000000000000000001", content="new fact", component_type=None, tags=None)

    assert client.delete("/api/ai/knowledge/65f000000000000000000001").status_code == 204
    mock_orchestrator.delete_knowledge.assert_awaited_once_with("65f000000000000000000001")


def test_conversation_endpoints(client, mock_orchestrator):
    assert client.get("/api/ai/conversations/3").json()[0]["session_id"] == "s1"
    assert client.get("/api/ai/conversation/s1").json()["user_id"] == 3
    assert client.delete("/api/ai/conversations/s1").status_code == 204
    mock_orchestrator.delete_conversation.assert_awaited_once_with("s1")


@pytest.mark.parametrize("error, status", [
    (ValidationError("Message must not be empty."), 400),
    (NotFoundError("Session 's9' not found."), 404),
    (LLMInferenceError("timed out", stage="generation"), 503),
    (ConcurrencyConflictError("changed", stage="persistence"), 503),
    (EmbeddingError("bad provider", stage="retrieval"), 500),
])
def test_error_mapping(client, mock_orchestrator, error, status):
    mock_orchestrator.chat.side_effect = error

    response = client.post("/api/ai/chat", json={"message": "hi"})

    assert response.status_code == status
    body = response.json()
    assert body["error"] == type(error).__name__
    assert body["detail"] == error.message
    assert body["stage"] == error.stage


def test_unknown_fields_are_rejected(client):
    response = client.post("/api/ai/chat", json={"message": "hi", "extra": True})
    assert response.status_code == 422


@pytest.mark.parametrize("body", [{"message": "   "}, {"message": "hi", "use_rag": True, "top_k": 0}, {"message": "hi", "use_rag": True, "top_k": 1000}])
def test_chat_stream_rejects_bad_input_before_streaming(stream_client, body):
    client, conversations = stream_client

    response = client.post("/api/ai/chat/stream", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    conversations.save.assert_not_awaited()


def test_chat_stream_reports_retrieval_failure_as_status(stream_client):
    client, conversations = stream_client

    response = client.post("/api/ai/chat/stream", json={"message": "psu?", "use_rag": True, "top_k": 3})

    assert response.status_code == 503
    assert response.json()["stage"] == "retrieval"
    conversations.save.assert_not_awaited()
