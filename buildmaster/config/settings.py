"""
BuildMaster - Centralized Configuration
========================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr`` and has **no default value**.
  If the key is missing at startup, Pydantic will raise a ``ValidationError``
  with a clear error message.  The raw value is never exposed in repr,
  logs, or tracebacks.
- ``MONGO_URI`` is also ``SecretStr`` — connection strings contain
  credentials and must never leak into logs.

Vector dimension
----------------
``EMBEDDING_DIMENSION`` is baked into the LanceDB table schema when the
table is first created.  Changing it afterwards requires dropping and
re-vectorizing the knowledge base (``setup_db --drop --vectorize``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required** — the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini chat + embeddings).  **Required.**
    MONGO_URI : SecretStr
        MongoDB connection string.  **Required.**
    MONGO_DB_NAME : str
        Database holding knowledge and conversation documents.
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    EMBEDDING_PROVIDER : Literal["gemini", "hash"]
        ``gemini`` for real embeddings, ``hash`` for the deterministic
        offline embedder (no semantic locality).
    EMBEDDING_DIMENSION : int
        Vector length D.  Fixed per LanceDB table.
    VECTOR_METRIC : Literal["l2", "cosine", "dot"]
        Distance metric for search and the ANN index (``l2`` is squared
        Euclidean distance).
    HISTORY_WINDOW : int
        Maximum number of persisted messages replayed into a prompt.
    REQUEST_TIMEOUT_SECONDS : float
        Default deadline shared by the retrieval and generation hops.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── API Keys (REQUIRED — no default) ───────────────────────────────
    GOOGLE_API_KEY: SecretStr

    # ── MongoDB (REQUIRED — no default) ────────────────────────────────
    MONGO_URI: SecretStr
    MONGO_DB_NAME: str = "buildmaster"
    KNOWLEDGE_COLLECTION: str = "component_knowledge"
    CONVERSATION_COLLECTION: str = "conversation_history"

    # ── LanceDB ────────────────────────────────────────────────────────
    LANCEDB_TABLE_NAME: str = "component_knowledge"
    VECTOR_METRIC: Literal["l2", "cosine", "dot"] = "l2"
    VECTOR_INDEX_MIN_ROWS: int = 256

    # ── Embeddings ─────────────────────────────────────────────────────
    EMBEDDING_PROVIDER: Literal["gemini", "hash"] = "gemini"
    EMBEDDING_MODEL: str = "models/text-embedding-004"
    EMBEDDING_DIMENSION: int = 768

    # ── Chat Model ─────────────────────────────────────────────────────
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.7
    LLM_TOP_P: float = 0.9
    LLM_MAX_OUTPUT_TOKENS: int = 2048

    # ── Conversation / Retrieval ───────────────────────────────────────
    HISTORY_WINDOW: int = 10
    DEFAULT_RAG_TOP_K: int = 5
    SEARCH_TOP_K: int = 10
    RECOMMEND_TOP_K: int = 10
    MAX_TOP_K: int = 100

    # ── Timeouts & Retries ─────────────────────────────────────────────
    REQUEST_TIMEOUT_SECONDS: float = 60.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 200

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("EMBEDDING_DIMENSION", "HISTORY_WINDOW", "DEFAULT_RAG_TOP_K", "SEARCH_TOP_K", "RECOMMEND_TOP_K", "MAX_TOP_K", "RETRY_MAX_ATTEMPTS")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v


    @field_validator("REQUEST_TIMEOUT_SECONDS")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"REQUEST_TIMEOUT_SECONDS must be > 0, got {v}")
        return v


    @field_validator("RETRY_BASE_DELAY_MS", "VECTOR_INDEX_MIN_ROWS")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must be ≥ 0, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from buildmaster.config.settings import settings
settings = Settings()
