"""
BuildMaster - Prompt Templates
===============================
Centralised prompt management for the build-configuration assistant.
All prompts live here so they can be versioned, reviewed, and
A/B-tested independently of application logic.

Exports
-------
SYSTEM_PROMPT, KNOWLEDGE_SECTION_HEADER, CONTEXT_ITEM_TEMPLATE,
RECOMMENDATION_PROMPT_TEMPLATE, RECOMMENDATION_TOPIC, TOPIC_MAX_CHARS.
"""

# ══════════════════════════════════════════════════════════════════════
#  SYSTEM PROMPT
# ══════════════════════════════════════════════════════════════════════

SYSTEM_PROMPT: str = """You are the BuildMaster build assistant. You help users choose and configure PC hardware.

Your responsibilities:
1. Recommend suitable component combinations for the user's budget and needs.
2. Answer questions about hardware compatibility and performance.
3. Give practical build advice and optimisation suggestions.
4. Help users understand performance differences between components.

Guidelines:
- Always centre the answer on the user's requirements.
- Give objective, accurate information.
- Weigh price/performance and compatibility.
- Use clear, plain language."""


# ══════════════════════════════════════════════════════════════════════
#  RAG CONTEXT
# ══════════════════════════════════════════════════════════════════════
# Appended to the system prompt only when retrieval produced results.

KNOWLEDGE_SECTION_HEADER: str = "Relevant knowledge base information:"

CONTEXT_ITEM_TEMPLATE: str = "{index}. {content} (relevance: {score:.2f})"


# ══════════════════════════════════════════════════════════════════════
#  RECOMMENDATION
# ══════════════════════════════════════════════════════════════════════

RECOMMENDATION_TOPIC: str = "Build recommendation"

RECOMMENDATION_PROMPT_TEMPLATE: str = """User requirement: {requirement}
Budget: {budget:.2f}

Based on the information above, recommend a complete PC build.
Requirements:
1. List the main components: CPU, motherboard, memory, graphics card, storage, power supply and case.
2. Explain why each part was chosen and its performance characteristics.
3. Make sure all components are compatible with each other.
4. Stay within the budget.
5. Include a price/performance analysis."""


# ── Session topic ──────────────────────────────────────────────────────
# New sessions take their topic from the first user message.
TOPIC_MAX_CHARS: int = 50
