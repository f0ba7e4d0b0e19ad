"""
BuildMaster - Embedding Generator
==================================
Turns text into fixed-dimension, L2-normalised vectors.

``EmbeddingGenerator`` wraps any LangChain-compatible ``Embeddings``
provider and enforces the contract the vector index relies on:

  • non-empty input,
  • exactly ``dimension`` floats out,
  • unit length,
  • provider failures surface as ``EmbeddingError``.

Providers
---------
``HashEmbeddings``
    Deterministic pseudo-random unit vector seeded by the SHA-256 of
    the text.  Identical text always maps to the same vector, but
    similar text does **not** map to similar vectors — it has no
    semantic locality.  Useful offline and in tests only.
``GoogleGenerativeAIEmbeddings``
    Gemini embeddings via ``langchain-google-genai``.

Usage:
    from buildmaster.src.core.embeddings import EmbeddingGenerator, HashEmbeddings
    generator = EmbeddingGenerator(HashEmbeddings(768), dimension=768)
    vector = generator.embed("RTX 4070 draws about 200 W under load")
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

import numpy as np
from langchain_core.embeddings import Embeddings

from buildmaster.config.settings import settings
from buildmaster.src.core.exceptions import EmbeddingError
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)


# ── Embedder Protocol ─────────────────────────────────────────────────

@runtime_checkable
class Embedder(Protocol):
    """Structural type for any LangChain-compatible embedding model."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


# ══════════════════════════════════════════════════════════════════════
#  HASH EMBEDDINGS
# ══════════════════════════════════════════════════════════════════════


class HashEmbeddings(Embeddings):
    """
    Text-hash-seeded pseudo-random unit vectors.

    Parameters
    ----------
    dimension
        Length of every produced vector.
    """

    def __init__(self, dimension: int) -> None:
        if dimension <= 0:
            raise EmbeddingError(f"Embedding dimension must be positive, got {dimension}.")
        self.dimension = dimension


    def _vector(self, text: str) -> list[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        # Uniform [0, 1) components are never all zero for D ≥ 1 in practice
        raw = rng.random(self.dimension)
        return (raw / np.linalg.norm(raw)).tolist()


    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(text) for text in texts]


    def embed_query(self, text: str) -> list[float]:
        return self._vector(text)


# ══════════════════════════════════════════════════════════════════════
#  GENERATOR
# ══════════════════════════════════════════════════════════════════════


class EmbeddingGenerator:
    """
    Contract-enforcing front for an embedding provider.

    Parameters
    ----------
    embedder
        Any object satisfying the ``Embedder`` protocol.
    dimension
        Expected vector length D.  Must match the vector index.
    """

    __slots__ = ("_embedder", "_dimension")

    def __init__(self, embedder: Embedder, dimension: int) -> None:
        if dimension <= 0:
            raise EmbeddingError(f"Embedding dimension must be positive, got {dimension}.")
        self._embedder = embedder
        self._dimension = dimension


    @property
    def dimension(self) -> int:
        return self._dimension


    def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises
        ------
        EmbeddingError
            If *text* is empty, the provider fails, or the result has
            the wrong dimension or zero length.
        """
        if not isinstance(text, str) or not text.strip():
            raise EmbeddingError("Cannot embed empty text.")
        try:
            raw = self._embedder.embed_query(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            logger.error("[EMBED] Provider failed: %s", exc)
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
        return self._normalise(raw)


    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch; every text must be non-empty."""
        if any(not isinstance(t, str) or not t.strip() for t in texts):
            raise EmbeddingError("Cannot embed empty text.")
        if not texts:
            return []
        try:
            raws = self._embedder.embed_documents(texts)
        except Exception as exc:
            logger.error("[EMBED] Provider failed on batch of %d: %s", len(texts), exc)
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
        if len(raws) != len(texts):
            raise EmbeddingError(f"Provider returned {len(raws)} vectors for {len(texts)} texts.")
        return [self._normalise(raw) for raw in raws]


    def _normalise(self, raw: list[float]) -> list[float]:
        vector = np.asarray(raw, dtype=np.float64)
        if vector.ndim != 1 or vector.shape[0] != self._dimension:
            raise EmbeddingError(f"Expected {self._dimension}-dimensional embedding, got shape {vector.shape}.")
        norm = float(np.linalg.norm(vector))
        if norm == 0.0 or not np.isfinite(norm):
            raise EmbeddingError("Embedding has zero or non-finite length.")
        return (vector / norm).tolist()


    def __repr__(self) -> str:
        return f"EmbeddingGenerator(provider={type(self._embedder).__name__}, dimension={self._dimension})"


# ── Provider factory ──────────────────────────────────────────────────

def build_embedder(provider: str | None = None, dimension: int | None = None) -> Embedder:
    """Instantiate the configured embedding provider."""
    provider = provider or settings.EMBEDDING_PROVIDER
    dimension = dimension or settings.EMBEDDING_DIMENSION

    if provider == "hash":
        logger.warning("[EMBED] Using hash embeddings — results have no semantic meaning.")
        return HashEmbeddings(dimension)

    if provider == "gemini":
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        logger.info("[EMBED] Using Gemini embeddings: %s", settings.EMBEDDING_MODEL)
        return GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())

    raise EmbeddingError(f"Unknown embedding provider: {provider!r}")
