"""
BuildMaster - Error Taxonomy
=============================
Every component raises its own error kind.  The chat orchestrator
never swallows these: it annotates ``stage`` (``retrieval``,
``generation`` or ``persistence``) and re-raises.

``transient`` marks the kinds that may succeed on retry (network or
server trouble).  Input errors are never transient.
"""

from __future__ import annotations


class BuildMasterError(Exception):
    """Base class for all errors raised by the conversation subsystem."""

    transient: bool = False

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ValidationError(BuildMasterError):
    """Caller supplied invalid input (empty text, bad top_k, bad component type)."""


class EmbeddingError(BuildMasterError):
    """Embedding generator misconfigured or given invalid input."""


class VectorStoreError(BuildMasterError):
    """Vector index unreachable, not ready, or dimension mismatch."""

    transient = True


class LLMInferenceError(BuildMasterError):
    """Language-model call failed or timed out."""

    transient = True


class NotFoundError(BuildMasterError):
    """Unknown session id or knowledge id."""


class PersistenceError(BuildMasterError):
    """Document store read or write failed."""

    transient = True


class ConcurrencyConflictError(PersistenceError):
    """A concurrent turn on the same session was persisted first."""
