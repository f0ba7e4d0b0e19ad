"""
BuildMaster - Context Builder
==============================
Turns retrieved snippets and a session's history into the ordered
LangChain message list sent to the chat model:

    [SystemMessage(persona [+ knowledge section])]
    + last HISTORY_WINDOW persisted user/assistant messages
    + [HumanMessage(current text)]

Older turns fall out of the prompt but never out of storage.  System
entries that happen to be stored in a history are never replayed.
"""

from __future__ import annotations

from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from buildmaster.config.prompt_templates import CONTEXT_ITEM_TEMPLATE, KNOWLEDGE_SECTION_HEADER, SYSTEM_PROMPT
from buildmaster.config.settings import settings
from buildmaster.src.core.models import ConversationHistory, RetrievedSnippet, Role


class ContextBuilder:
    """
    Parameters
    ----------
    system_prompt
        Base persona prompt.
    history_window
        Maximum number of stored messages replayed (default 10, i.e.
        five user/assistant pairs).
    """

    __slots__ = ("_system_prompt", "_history_window")

    def __init__(self, system_prompt: str = SYSTEM_PROMPT, history_window: int | None = None) -> None:
        self._system_prompt = system_prompt
        self._history_window = settings.HISTORY_WINDOW if history_window is None else max(history_window, 0)


    @staticmethod
    def build_context(results: Sequence[RetrievedSnippet]) -> str:
        """Numbered knowledge block; empty string when there are no results."""
        if not results:
            return ""
        return "\n".join(CONTEXT_ITEM_TEMPLATE.format(index=i, content=snippet.content, score=snippet.relevance_score) for i, snippet in enumerate(results, 1))


    def system_message(self, rag_context: str | None = None) -> SystemMessage:
        prompt = self._system_prompt
        if rag_context:
            prompt = f"{prompt}\n\n{KNOWLEDGE_SECTION_HEADER}\n{rag_context}"
        return SystemMessage(content=prompt)


    def build_message_list(self, history: ConversationHistory | None, current_user_text: str, rag_context: str | None = None) -> list[BaseMessage]:
        messages: list[BaseMessage] = [self.system_message(rag_context)]

        stored = history.messages if history is not None and self._history_window else []
        for entry in stored[-self._history_window:]:
            if entry.role == Role.USER:
                messages.append(HumanMessage(content=entry.content))
            elif entry.role == Role.ASSISTANT:
                messages.append(AIMessage(content=entry.content))

        messages.append(HumanMessage(content=current_user_text))
        return messages
