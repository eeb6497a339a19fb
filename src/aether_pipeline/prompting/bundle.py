"""Persona-aware prompt bundle assembly."""

from __future__ import annotations

from typing import Any

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from aether_pipeline.parsing.decomposer import MAIN_MARKER, TAXONOMY_MARKER, TRIM_MARKER
from aether_pipeline.taxonomy.store import TaxonomyStore
from aether_pipeline.types import PersonaProfile

RESPONSE_FORMAT = f"""
RESPONSE FORMAT:
Reply with exactly three sections, in this order, each introduced by its marker on its own line.

{TAXONOMY_MARKER}
topic_hierarchy: category/subcategory/specific
keywords: [keyword-one, keyword-two]
dependencies: [builds_on: what this turn builds on]
sentiment: optional one-word sentiment
context_deltas: [what changed in the shared context]

{MAIN_MARKER}
Your natural reply to the user, in persona.

{TRIM_MARKER}
A compressed, structured summary of this turn for the journal.
""".strip()

_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{bundle}"),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        ("human", "{message}"),
    ]
)


class PromptBundleBuilder:
    """Builds the per-turn prompt.

    Section order is fixed: instructions, persona context, conversation
    history, taxonomy structure, response format. Empty sections are skipped.
    """

    def __init__(self, taxonomy: TaxonomyStore, *, instructions: str = "") -> None:
        self._taxonomy = taxonomy
        self._instructions = instructions

    def build_system_bundle(self, persona: PersonaProfile | None, *, journal_context: str = "") -> str:
        sections: list[str] = []
        if self._instructions.strip():
            sections.append(self._instructions.strip())

        if persona is not None and persona.behavior_rules.strip():
            sections.append("=== PERSONA COGNITIVE STRATEGY ===")
            sections.append(f"You are {persona.name}.\n\n{persona.behavior_rules.strip()}")

        if journal_context.strip():
            sections.append("=== CONVERSATION HISTORY ===")
            sections.append(journal_context.strip())

        sections.append("=== TAXONOMY STRUCTURE ===")
        sections.append(self._taxonomy.get_taxonomy_context())
        sections.append(RESPONSE_FORMAT)
        return "\n\n".join(sections)

    def build_messages(
        self,
        user_message: str,
        persona: PersonaProfile | None = None,
        *,
        journal_context: str = "",
        chat_history: list[Any] | None = None,
    ) -> list[BaseMessage]:
        return _PROMPT.format_messages(
            bundle=self.build_system_bundle(persona, journal_context=journal_context),
            chat_history=list(chat_history or []),
            message=user_message,
        )
