"""
BuildMaster - API Routes
=========================
Thin FastAPI controllers over ``ChatOrchestrator``.  Every handler
validates the body (pydantic), delegates to the orchestrator stored on
``app.state``, and returns the core model.

Endpoints (prefix ``/api/ai``):
    POST   /chat                      plain chat turn
    POST   /chat/rag                  retrieval-augmented chat turn
    POST   /chat/stream               streamed reply (text/plain)
    POST   /recommend                 one-shot build recommendation
    POST   /knowledge/add             store + vectorize a manual snippet
    PUT    /knowledge/{knowledge_id}  edit a snippet (re-vectorized on content change)
    DELETE /knowledge/{knowledge_id}  remove a snippet and its vector
    POST   /knowledge/vectorize       run the backlog vectorizer
    POST   /knowledge/search          semantic knowledge search
    GET    /conversations/{user_id}   sessions of a user, newest first
    GET    /conversation/{session_id} one session
    DELETE /conversations/{session_id}

Core errors map to status codes in ``register_error_handlers``.
"""

from __future__ import annotations

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from buildmaster.src.api.schemas import AddKnowledgeRequest, ChatRequest, ErrorBody, RagChatRequest, RecommendRequest, SearchKnowledgeRequest, StreamChatRequest, UpdateKnowledgeRequest
from buildmaster.src.core.chat_orchestrator import ChatOrchestrator
from buildmaster.src.core.exceptions import BuildMasterError, NotFoundError, ValidationError
from buildmaster.src.core.models import ChatReply, ConversationHistory, KnowledgeItem, RecommendationReply, RetrievedSnippet, VectorizationReport
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


def _orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


# ── Chat ──────────────────────────────────────────────────────────────

@router.post("/chat", response_model=ChatReply)
async def chat(body: ChatRequest, request: Request) -> ChatReply:
    return await _orchestrator(request).chat(body.message, session_id=body.session_id, user_id=body.user_id)


@router.post("/chat/rag", response_model=ChatReply)
async def chat_with_rag(body: RagChatRequest, request: Request) -> ChatReply:
    return await _orchestrator(request).chat_with_rag(body.message, session_id=body.session_id, top_k=body.top_k, user_id=body.user_id)


@router.post("/chat/stream")
async def chat_stream(body: StreamChatRequest, request: Request) -> StreamingResponse:
    # Prepared before the response starts: later errors cannot change the status code
    stream = await _orchestrator(request).open_stream(body.message, session_id=body.session_id, use_rag=body.use_rag, top_k=body.top_k, user_id=body.user_id)
    return StreamingResponse(stream.chunks, media_type="text/plain; charset=utf-8", headers={"X-Session-Id": stream.session_id})


@router.post("/recommend", response_model=RecommendationReply)
async def recommend(body: RecommendRequest, request: Request) -> RecommendationReply:
    return await _orchestrator(request).recommend(body.requirement, body.budget, user_id=body.user_id)


# ── Knowledge ─────────────────────────────────────────────────────────

@router.post("/knowledge/add", response_model=KnowledgeItem, status_code=status.HTTP_201_CREATED)
async def add_knowledge(body: AddKnowledgeRequest, request: Request) -> KnowledgeItem:
    return await _orchestrator(request).learn_new_knowledge(body.content, body.component_id, body.component_type, tags=body.tags)


@router.put("/knowledge/{knowledge_id}", response_model=KnowledgeItem)
async def update_knowledge(knowledge_id: str, body: UpdateKnowledgeRequest, request: Request) -> KnowledgeItem:
    return await _orchestrator(request).update_knowledge(knowledge_id, content=body.content, component_type=body.component_type, tags=body.tags)


@router.delete("/knowledge/{knowledge_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge(knowledge_id: str, request: Request) -> None:
    await _orchestrator(request).delete_knowledge(knowledge_id)


@router.post("/knowledge/vectorize", response_model=VectorizationReport)
async def vectorize_knowledge(request: Request) -> VectorizationReport:
    return await _orchestrator(request).vectorize_backlog()


@router.post("/knowledge/search", response_model=list[RetrievedSnippet])
async def search_knowledge(body: SearchKnowledgeRequest, request: Request) -> list[RetrievedSnippet]:
    return await _orchestrator(request).search_knowledge(body.query, top_k=body.top_k)


# ── Conversations ─────────────────────────────────────────────────────

@router.get("/conversations/{user_id}", response_model=list[ConversationHistory])
async def conversations_by_user(user_id: int, request: Request) -> list[ConversationHistory]:
    return await _orchestrator(request).get_conversations_by_user(user_id)


@router.get("/conversation/{session_id}", response_model=ConversationHistory)
async def conversation(session_id: str, request: Request) -> ConversationHistory:
    return await _orchestrator(request).get_conversation(session_id)


@router.delete("/conversations/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(session_id: str, request: Request) -> None:
    await _orchestrator(request).delete_conversation(session_id)


# ── Error mapping ─────────────────────────────────────────────────────

def status_for(exc: BuildMasterError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if exc.transient:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _handle_core_error(request: Request, exc: BuildMasterError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("[API] %s %s → %d %s: %s", request.method, request.url.path, code, exc.kind, exc)
    body = ErrorBody(error=exc.kind, detail=exc.message, stage=exc.stage)
    return JSONResponse(status_code=code, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BuildMasterError, _handle_core_error)
