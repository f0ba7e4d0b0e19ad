from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from buildmaster.config.prompt_templates import KNOWLEDGE_SECTION_HEADER, SYSTEM_PROMPT
from buildmaster.src.core.context_builder import ContextBuilder
from buildmaster.src.core.models import ConversationHistory, Message, RetrievedSnippet, Role


def _history(count):
    messages = [Message(role=Role.USER if i % 2 == 0 else Role.ASSISTANT, content=f"m{i}") for i in range(count)]
    return ConversationHistory(session_id="s1", messages=messages)


def test_build_context_empty():
    assert ContextBuilder.build_context([]) == ""


def test_build_context_numbers_snippets():
    snippets = [
        RetrievedSnippet(vector_id="1", content="A 650 W PSU suits a 4070.", distance=0.25, relevance_score=0.8),
        RetrievedSnippet(vector_id="2", content="AM5 needs DDR5.", distance=1.0, relevance_score=0.5),
    ]
    context = ContextBuilder.build_context(snippets)
    assert context == "1. A 650 W PSU suits a 4070. (relevance: 0.80)\n2. AM5 needs DDR5. (relevance: 0.50)"


def test_new_session_prompt():
    messages = ContextBuilder().build_message_list(None, "hello")
    assert len(messages) == 2
    assert isinstance(messages[0], SystemMessage)
    assert messages[0].content == SYSTEM_PROMPT
    assert isinstance(messages[1], HumanMessage)
    assert messages[1].content == "hello"


def test_history_window_keeps_last_ten():
    messages = ContextBuilder(history_window=10).build_message_list(_history(14), "next question")

    assert len(messages) == 12
    assert [m.content for m in messages[1:11]] == [f"m{i}" for i in range(4, 14)]
    assert isinstance(messages[1], HumanMessage)
    assert isinstance(messages[2], AIMessage)
    assert messages[-1].content == "next question"


def test_system_entries_are_not_replayed():
    history = ConversationHistory(session_id="s1", messages=[
        Message(role=Role.USER, content="u1"),
        Message(role=Role.SYSTEM, content="internal note"),
        Message(role=Role.ASSISTANT, content="a1"),
    ])
    messages = ContextBuilder().build_message_list(history, "u2")
    assert [m.content for m in messages[1:]] == ["u1", "a1", "u2"]


def test_rag_context_is_appended_to_system_prompt():
    system = ContextBuilder().build_message_list(None, "q", rag_context="1. fact (relevance: 0.90)")[0]
    assert system.content.startswith(SYSTEM_PROMPT)
    assert KNOWLEDGE_SECTION_HEADER in system.content
    assert system.content.endswith("1. fact (relevance: 0.90)")


def test_zero_history_window_replays_nothing():
    messages = ContextBuilder(history_window=0).build_message_list(_history(6), "only this")
    assert len(messages) == 2
    assert messages[-1].content == "only this"
