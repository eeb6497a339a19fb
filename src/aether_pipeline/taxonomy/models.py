"""Persistent taxonomy document and its seeded defaults."""

from __future__ import annotations

import json

from pydantic import BaseModel, Field, field_validator

DEFAULT_RELATIONSHIPS = ["boss-persona", "tone-shift", "trust-building", "conflict-resolution"]
DEFAULT_CONTEXTS = ["project-planning", "problem-solving", "knowledge-sharing", "decision-making"]
DEFAULT_DEPENDENCIES = ["builds_on", "clarifies", "challenges", "resolves"]

DEFAULT_TOPICS: dict[str, dict[str, list[str]]] = {
    "technology": {
        "ai": ["language-models", "training", "inference"],
        "development": ["architecture", "debugging", "testing"],
        "web-development": ["css-frameworks", "javascript", "react"],
        "javascript": ["module-systems", "bundling", "compatibility"],
        "programming-languages": ["rust", "swift", "python"],
    },
    "philosophy": {
        "ethics": ["decision-making", "responsibility", "consequences"],
        "epistemology": ["knowledge", "belief", "truth"],
    },
    "daily": {
        "food": ["vegetables", "cooking", "nutrition", "ingredients"],
        "health": ["exercise", "wellness", "medical"],
    },
    "personal": {
        "communication": ["symbols", "identity", "signature"],
        "insights": ["independence", "breakthroughs", "realizations"],
    },
}


class TaxonomyGraph(BaseModel):
    """category -> subcategory -> ordered unique terms, plus global vocabularies."""

    topics: dict[str, dict[str, list[str]]] = Field(default_factory=dict)
    relationships: list[str] = Field(default_factory=lambda: list(DEFAULT_RELATIONSHIPS))
    contexts: list[str] = Field(default_factory=lambda: list(DEFAULT_CONTEXTS))
    dependencies: list[str] = Field(default_factory=lambda: list(DEFAULT_DEPENDENCIES))

    @field_validator("topics")
    @classmethod
    def _dedupe_terms(cls, topics: dict[str, dict[str, list[str]]]) -> dict[str, dict[str, list[str]]]:
        # Hand-edited files may repeat a term; keep the first occurrence.
        return {
            category: {sub: list(dict.fromkeys(terms)) for sub, terms in subcategories.items()}
            for category, subcategories in topics.items()
        }

    @classmethod
    def seeded(cls) -> "TaxonomyGraph":
        return cls(
            topics={
                category: {sub: list(terms) for sub, terms in subcategories.items()}
                for category, subcategories in DEFAULT_TOPICS.items()
            }
        )

    def to_json(self) -> str:
        """Serialize with sorted keys so successive writes diff cleanly."""
        return json.dumps(self.model_dump(), ensure_ascii=False, sort_keys=True, indent=2)
