"""
BuildMaster - Language Model Client
====================================
Single seam between the conversation core and the chat model.

``LLMClient`` wraps any LangChain chat model (``ainvoke`` / ``astream``)
and gives the orchestrator two operations:

  • ``generate(messages) -> LLMReply`` — one blocking completion,
    retried with exponential backoff on failure;
  • ``stream(messages)`` — incremental text chunks (not retried: a
    half-delivered stream cannot be replayed transparently).

Every provider failure surfaces as ``LLMInferenceError``.  Swapping
providers means passing another ``BaseChatModel``; ``build_chat_model``
builds the configured Gemini model.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from buildmaster.config.settings import settings
from buildmaster.src.core.exceptions import LLMInferenceError
from buildmaster.src.utils.logger import get_logger
from buildmaster.src.utils.retry import retry_async

logger = get_logger(__name__)


@dataclass(frozen=True)
class LLMReply:
    text: str
    total_tokens: int | None = None


def _content_text(content: object) -> str:
    """Flatten LangChain message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


class LLMClient:
    """
    Retrying, error-normalising wrapper around a LangChain chat model.

    Parameters
    ----------
    model
        Any LangChain chat model (or object exposing ``ainvoke`` and
        ``astream``).
    model_name
        Name recorded in conversation metadata.
    max_attempts / base_delay_ms
        Retry policy for ``generate``.
    """

    __slots__ = ("_model", "_model_name", "_max_attempts", "_base_delay_ms")

    def __init__(self, model: BaseChatModel, model_name: str | None = None, max_attempts: int | None = None, base_delay_ms: int | None = None) -> None:
        self._model = model
        self._model_name = model_name or getattr(model, "model", None) or settings.LLM_MODEL
        self._max_attempts = settings.RETRY_MAX_ATTEMPTS if max_attempts is None else max(max_attempts, 1)
        self._base_delay_ms = settings.RETRY_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms


    @property
    def model_name(self) -> str:
        return str(self._model_name)


    async def generate(self, messages: Sequence[BaseMessage]) -> LLMReply:
        """Run one completion over the ordered *messages*."""
        return await retry_async(lambda: self._generate_once(messages), max_attempts=self._max_attempts, base_delay_ms=self._base_delay_ms, label="llm.generate")


    async def _generate_once(self, messages: Sequence[BaseMessage]) -> LLMReply:
        t_start = time.perf_counter()
        try:
            response = await self._model.ainvoke(list(messages))
        except Exception as exc:
            logger.error("[LLM] Call to %s failed: %s", self.model_name, exc)
            raise LLMInferenceError(f"Language model call failed: {exc}") from exc

        text = _content_text(getattr(response, "content", response))
        usage = getattr(response, "usage_metadata", None) or {}
        total_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
        logger.info("[LLM] %s replied in %.1fms (%d chars, tokens=%s).", self.model_name, (time.perf_counter() - t_start) * 1000, len(text), total_tokens)
        return LLMReply(text=text, total_tokens=total_tokens)


    async def stream(self, messages: Sequence[BaseMessage]) -> AsyncIterator[str]:
        """Yield text chunks as the model produces them."""
        try:
            async for chunk in self._model.astream(list(messages)):
                text = _content_text(getattr(chunk, "content", chunk))
                if text:
                    yield text
        except Exception as exc:
            logger.error("[LLM] Stream from %s failed: %s", self.model_name, exc)
            raise LLMInferenceError(f"Language model stream failed: {exc}") from exc


def build_chat_model() -> BaseChatModel:
    """Initialise the configured Gemini chat model via LangChain."""
    from langchain_google_genai import ChatGoogleGenerativeAI

    llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, top_p=settings.LLM_TOP_P, max_output_tokens=settings.LLM_MAX_OUTPUT_TOKENS, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
    logger.info("[LLM] Initialised %s (temperature=%.1f, top_p=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE, settings.LLM_TOP_P)
    return llm
