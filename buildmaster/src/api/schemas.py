"""
BuildMaster - API Schemas
==========================
Request bodies for the ``/api/ai`` router.  Responses reuse the core
models (``ChatReply``, ``ConversationHistory``, ...) directly.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ChatRequest(_Request):
    message: str
    session_id: str | None = None
    user_id: int | None = None


class RagChatRequest(ChatRequest):
    top_k: int | None = None


class StreamChatRequest(ChatRequest):
    use_rag: bool = False
    top_k: int | None = None


class RecommendRequest(_Request):
    requirement: str
    budget: float
    user_id: int | None = None


class AddKnowledgeRequest(_Request):
    content: str
    component_type: str
    component_id: int | None = None
    tags: list[str] = Field(default_factory=list)


class UpdateKnowledgeRequest(_Request):
    content: str | None = None
    component_type: str | None = None
    tags: list[str] | None = None


class SearchKnowledgeRequest(_Request):
    query: str
    top_k: int | None = None


class ErrorBody(BaseModel):
    error: str
    detail: str
    stage: str | None = None
