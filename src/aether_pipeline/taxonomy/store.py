"""Self-consistent, append-only topic taxonomy shared across turns."""

from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from aether_pipeline.taxonomy.models import TaxonomyGraph
from aether_pipeline.types import TaxonomyValidationResult, TrimMetadata

logger = logging.getLogger(__name__)

MIN_DEPTH = 2
MAX_DEPTH = 3

ABBREVIATIONS = (
    ("technology", "tech"),
    ("development", "dev"),
    ("javascript", "js"),
    ("artificialintelligence", "ai"),
)

USAGE_RULES = """TAXONOMY USAGE RULES:
- Use existing categories when possible
- Follow hierarchy format: category/subcategory/specific
- Maximum 3 levels deep
- Use lowercase with hyphens for compound terms
- Avoid semantic duplicates

NEW CATEGORY CREATION:
- Only create new categories if existing ones don't fit
- Follow established naming patterns
- Cluster related concepts under logical parents"""

_FIELD_PREFIXES = ("topic_hierarchy:", "keywords:", "dependencies:", "sentiment:", "context_deltas:")
_LIST_ITEM = re.compile(r"^[-*]\s+(?P<item>.+)$")


class TaxonomyStore:
    """Holds the taxonomy graph and evolves it one accepted turn at a time.

    Lifecycle: loaded from `path` (or seeded with defaults when the file is
    missing or unreadable), mutated only through `add_to_taxonomy`, and
    written back after every change. Entries are never removed here.

    `validate_topic_hierarchy` is a pure read, so callers can inspect and log
    a proposed change before committing it. Mutations take a re-entrant lock
    so turns processed concurrently cannot interleave partial updates.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._graph = TaxonomyGraph()
        self.load()

    @property
    def graph(self) -> TaxonomyGraph:
        """Deep copy of the current graph."""
        with self._lock:
            return self._graph.model_copy(deep=True)

    # Persistence

    def load(self) -> None:
        with self._lock:
            if not self.path.exists():
                logger.info("Taxonomy file not found at %s, creating default structure", self.path)
                self._reset_to_defaults()
                return
            try:
                self._graph = TaxonomyGraph.model_validate_json(self.path.read_text(encoding="utf-8"))
            except (OSError, ValidationError, ValueError) as exc:
                logger.error("Failed to load taxonomy from %s: %s; using default structure", self.path, exc)
                self._reset_to_defaults()
                return
            logger.info("Taxonomy loaded with %d topic categories", len(self._graph.topics))

    def save(self) -> bool:
        """Write the graph atomically; returns False (and logs) on I/O failure."""
        with self._lock:
            payload = self._graph.to_json()
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".taxonomy-", suffix=".json")
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.write("\n")
                os.replace(tmp_name, self.path)
            except OSError as exc:
                logger.error("Failed to save taxonomy to %s: %s", self.path, exc)
                return False
            return True

    def _reset_to_defaults(self) -> None:
        self._graph = TaxonomyGraph.seeded()
        self.save()

    # Validation

    def validate_topic_hierarchy(self, hierarchy: str) -> TaxonomyValidationResult:
        segments = _split_hierarchy(hierarchy)
        if segments is None:
            return TaxonomyValidationResult(
                is_valid=False,
                validated_hierarchy=hierarchy,
                warnings=["Hierarchy must have 2-3 levels: category/subcategory/specific"],
            )

        category, subcategory = segments[0], segments[1]
        specific = segments[2] if len(segments) > 2 else None
        suggestions: list[str] = []

        with self._lock:
            topics = self._graph.topics
            existing_category = topics.get(category)
            if existing_category is None:
                suggestions.append(f"New category '{category}' will be created")
                suggestions.append(f"New subcategory '{subcategory}' will be created under '{category}'")
            elif subcategory not in existing_category:
                suggestions.append(f"New subcategory '{subcategory}' will be created under '{category}'")

            terms = (existing_category or {}).get(subcategory, [])
            if specific is not None and specific not in terms:
                suggestions.append(f"New specific term '{specific}' will be added to '{category}/{subcategory}'")

            warnings = self._semantic_duplicate_warnings(category, subcategory, specific)

        if any(not segment for segment in segments):
            warnings.insert(0, f"Hierarchy '{hierarchy}' contains an empty segment")

        return TaxonomyValidationResult(
            is_valid=True,
            validated_hierarchy="/".join(segments),
            suggestions=suggestions,
            warnings=warnings,
        )

    def _semantic_duplicate_warnings(self, category: str, subcategory: str, specific: str | None) -> list[str]:
        warnings: list[str] = []
        topics = self._graph.topics

        for existing in topics:
            if existing != category and are_semantically_related(category, existing):
                warnings.append(f"Category '{category}' is semantically similar to existing '{existing}'")

        for existing_category, subcategories in topics.items():
            for existing in subcategories:
                if existing != subcategory and are_semantically_related(subcategory, existing):
                    warnings.append(
                        f"Subcategory '{subcategory}' is similar to existing '{existing}' in '{existing_category}'"
                    )

        if specific is not None:
            for existing in topics.get(category, {}).get(subcategory, []):
                if existing != specific and are_semantically_related(specific, existing):
                    warnings.append(
                        f"Term '{specific}' is similar to existing '{existing}' in '{category}/{subcategory}'"
                    )
        return warnings

    # Evolution

    def add_to_taxonomy(self, hierarchy: str) -> bool:
        """Ensure every segment of `hierarchy` exists; returns True if the graph changed."""
        segments = _split_hierarchy(hierarchy)
        if segments is None:
            return False

        category, subcategory = segments[0], segments[1]
        specific = segments[2] if len(segments) > 2 else None

        with self._lock:
            changed = False
            subcategories = self._graph.topics.get(category)
            if subcategories is None:
                subcategories = self._graph.topics[category] = {}
                changed = True

            terms = subcategories.get(subcategory)
            if terms is None:
                terms = subcategories[subcategory] = []
                changed = True

            if specific is not None and specific not in terms:
                terms.append(specific)
                changed = True

            if changed:
                logger.info("Taxonomy extended with %s", "/".join(segments))
                self.save()
            return changed

    def process_taxonomy_section(self, text: str) -> TaxonomyValidationResult | None:
        """Parse one turn's taxonomy section and commit its hierarchy when valid.

        Returns None when the section carries no `topic_hierarchy`.
        """
        metadata = self.parse_trim_metadata(text)
        if metadata is None:
            logger.debug("Taxonomy section without topic_hierarchy; skipping evolution")
            return None

        result = self.validate_topic_hierarchy(metadata.topic_hierarchy)
        for suggestion in result.suggestions:
            logger.info("Taxonomy: %s", suggestion)
        for warning in result.warnings:
            logger.warning("Taxonomy: %s", warning)

        if result.is_valid:
            self.add_to_taxonomy(result.validated_hierarchy)
        return result

    # Trim metadata

    def parse_trim_metadata(self, text: str) -> TrimMetadata | None:
        topic_hierarchy = ""
        keywords: list[str] = []
        dependencies: list[str] = []
        sentiment: str | None = None
        context_deltas: list[str] = []
        collecting_deltas = False

        for line in (text or "").splitlines():
            stripped = line.strip()
            if collecting_deltas:
                match = _LIST_ITEM.match(stripped)
                if match:
                    context_deltas.append(match.group("item").strip())
                    continue
                if stripped and not stripped.startswith(_FIELD_PREFIXES):
                    continue
                collecting_deltas = False

            if stripped.startswith("topic_hierarchy:"):
                topic_hierarchy = _field_value(stripped, "topic_hierarchy:")
            elif stripped.startswith("keywords:"):
                keywords = parse_list_literal(_field_value(stripped, "keywords:"))
            elif stripped.startswith("dependencies:"):
                dependencies = parse_list_literal(_field_value(stripped, "dependencies:"))
            elif stripped.startswith("sentiment:"):
                sentiment = _field_value(stripped, "sentiment:") or None
            elif stripped.startswith("context_deltas:"):
                inline = _field_value(stripped, "context_deltas:")
                context_deltas = parse_list_literal(inline) if inline else []
                collecting_deltas = not inline

        if not topic_hierarchy:
            return None

        return TrimMetadata(
            topic_hierarchy=topic_hierarchy,
            keywords=keywords,
            dependencies=dependencies,
            sentiment=sentiment,
            context_deltas=context_deltas,
        )

    def validate_keywords(self, keywords: list[str]) -> list[str]:
        return [keyword.lower().replace("_", "-") for keyword in keywords]

    def validate_dependencies(self, dependencies: list[str]) -> list[str]:
        with self._lock:
            known = set(self._graph.dependencies)
        valid: list[str] = []
        for dependency in dependencies:
            parts = dependency.split(":")
            if len(parts) != 2:
                continue
            if parts[0].strip() in known:
                valid.append(dependency)
        return valid

    # Prompt context and diagnostics

    def get_taxonomy_context(self) -> str:
        with self._lock:
            payload = self._graph.to_json()
        return f"CURRENT TAXONOMY STRUCTURE:\n\n{payload}\n\n{USAGE_RULES}"

    def get_taxonomy_stats(self) -> dict[str, Any]:
        with self._lock:
            topics = self._graph.topics
            return {
                "total_categories": len(topics),
                "total_subcategories": sum(len(subs) for subs in topics.values()),
                "total_specific_terms": sum(len(terms) for subs in topics.values() for terms in subs.values()),
                "relationship_types": len(self._graph.relationships),
                "context_types": len(self._graph.contexts),
                "dependency_types": len(self._graph.dependencies),
            }

    def get_taxonomy_description(self) -> str:
        lines = ["TAXONOMY STRUCTURE:", ""]
        with self._lock:
            for category in sorted(self._graph.topics):
                lines.append(category)
                for subcategory in sorted(self._graph.topics[category]):
                    lines.append(f"  {subcategory}")
                    lines.extend(f"    {term}" for term in sorted(self._graph.topics[category][subcategory]))
                lines.append("")
        return "\n".join(lines)


def are_semantically_related(first: str, second: str) -> bool:
    """Conservative near-duplicate check; false positives are acceptable."""
    a = _normalize(first)
    b = _normalize(second)
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True
    return any({a, b} == {full, short} for full, short in ABBREVIATIONS)


def parse_list_literal(value: str) -> list[str]:
    """Parse `[a, b, c]` (brackets optional) into trimmed, non-empty items."""
    cleaned = value.strip().strip("[]")
    return [item.strip() for item in cleaned.split(",") if item.strip()]


def _normalize(term: str) -> str:
    return term.lower().replace("-", "")


def _field_value(line: str, prefix: str) -> str:
    return line[len(prefix):].strip()


def _split_hierarchy(hierarchy: str) -> list[str] | None:
    segments = [segment.strip() for segment in (hierarchy or "").strip().split("/")]
    if not MIN_DEPTH <= len(segments) <= MAX_DEPTH:
        return None
    return segments
