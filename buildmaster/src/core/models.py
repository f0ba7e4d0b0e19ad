"""
BuildMaster - Domain Models
============================
Explicit pydantic models for every document and result shape that
crosses a component boundary.  Extra fields are rejected so a stray
key in a MongoDB document fails loudly instead of silently riding
along.

Documents
---------
``KnowledgeItem``        — one ingested knowledge snippet.
``ConversationHistory``  — one chat session (messages + metadata).
``Message``              — one entry in a session.

Results
-------
``VectorHit``, ``RetrievedSnippet``, ``ChatReply``,
``RecommendationReply``, ``VectorizationReport``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════


class KnowledgeSource(str, Enum):
    MANUAL = "manual"
    CRAWLED = "crawled"
    GENERATED = "generated"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ConversationType(str, Enum):
    GENERAL = "general"
    RECOMMENDATION = "recommendation"
    QUESTION = "question"


# ══════════════════════════════════════════════════════════════════════
#  KNOWLEDGE
# ══════════════════════════════════════════════════════════════════════


class KnowledgeItem(BaseModel):
    """
    A knowledge snippet about a component.

    ``vectorized`` is only ever true together with ``vector_id``; the
    vectorizer sets both in the same update.
    """

    model_config = ConfigDict(extra="forbid", use_enum_values=True, validate_default=True)

    id: str | None = None
    component_id: int | None = None
    component_type: str
    content: str
    source: KnowledgeSource = KnowledgeSource.MANUAL
    tags: list[str] = Field(default_factory=list)
    vector_id: str | None = None
    vectorized: bool = False
    score: float | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        # Set semantics, stable order
        return list(dict.fromkeys(tag.strip() for tag in v if tag and tag.strip()))

    @model_validator(mode="after")
    def _vector_state(self) -> KnowledgeItem:
        if self.vectorized and not self.vector_id:
            raise ValueError("vectorized knowledge must carry a vector_id")
        return self


# ══════════════════════════════════════════════════════════════════════
#  CONVERSATION
# ══════════════════════════════════════════════════════════════════════


class Message(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    used_rag: bool = False
    retrieved_documents: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _documents_need_rag(self) -> Message:
        if self.retrieved_documents and not self.used_rag:
            raise ValueError("retrieved_documents requires used_rag=True")
        return self


class ConversationMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True, validate_default=True)

    model: str | None = None
    total_tokens: int | None = None
    turn_count: int = 0
    conversation_type: ConversationType = ConversationType.GENERAL


class ConversationHistory(BaseModel):
    """
    One chat session.

    ``messages`` is append-only and its order is meaningful.
    ``version`` counts successful writes; ``0`` means the session has
    never been persisted.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    session_id: str
    user_id: int | None = None
    messages: list[Message] = Field(default_factory=list)
    topic: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)
    version: int = 0

    @property
    def is_persisted(self) -> bool:
        return self.version > 0


# ══════════════════════════════════════════════════════════════════════
#  RESULTS
# ══════════════════════════════════════════════════════════════════════


class VectorHit(NamedTuple):
    """Raw row returned by the vector index."""

    id: int
    content: str
    distance: float


class RetrievedSnippet(BaseModel):
    """A search result, best-first ordering by ``distance``."""

    vector_id: str
    content: str
    distance: float
    relevance_score: float


class ChatReply(BaseModel):
    session_id: str
    message: str
    used_rag: bool = False
    retrieved_documents: list[str] = Field(default_factory=list)
    turn_count: int


class RecommendationReply(BaseModel):
    session_id: str
    requirement: str
    budget: float
    recommendation: str


class VectorizationReport(BaseModel):
    scanned: int = 0
    vectorized: int = 0
    failed: int = 0
    failed_ids: list[str] = Field(default_factory=list)
