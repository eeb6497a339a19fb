"""Taxonomy-aware lookup over machine-trim journal entries."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from aether_pipeline.taxonomy.store import TaxonomyStore
from aether_pipeline.types import TrimMetadata


@dataclass(slots=True)
class JournalEntry:
    name: str
    content: str
    metadata: TrimMetadata | None


class JournalIndex:
    """Indexes trim texts from completed turns and from the journal collaborator.

    Entry names are expected to sort chronologically (e.g. `Trim-20250101-120000.md`),
    and every query returns matching contents in name order.
    """

    def __init__(self, taxonomy: TaxonomyStore) -> None:
        self._taxonomy = taxonomy
        self._entries: dict[str, JournalEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, name: str, content: str, *, metadata_text: str | None = None) -> JournalEntry:
        """Index `content`; its metadata is parsed from `metadata_text` when given."""
        metadata = self._taxonomy.parse_trim_metadata(metadata_text if metadata_text is not None else content)
        entry = JournalEntry(name=name, content=content, metadata=metadata)
        self._entries[name] = entry
        return entry

    def add_many(self, entries: Iterable[tuple[str, str]]) -> None:
        for name, content in entries:
            self.add(name, content)

    def by_topic(self, topic_hierarchy: str) -> list[str]:
        return self._select(lambda meta: is_topic_related(meta.topic_hierarchy, topic_hierarchy))

    def by_keywords(self, keywords: list[str]) -> list[str]:
        wanted = set(keywords)
        return self._select(lambda meta: bool(wanted.intersection(meta.keywords)))

    def by_dependency_types(self, dependency_types: list[str]) -> list[str]:
        wanted = set(dependency_types)
        return self._select(
            lambda meta: any(dep.split(":", 1)[0].strip() in wanted for dep in meta.dependencies)
        )

    def by_sentiment(self, sentiment: str) -> list[str]:
        needle = sentiment.lower()
        return self._select(lambda meta: meta.sentiment is not None and needle in meta.sentiment.lower())

    def analytics(self) -> dict[str, Any]:
        stats = self._taxonomy.get_taxonomy_stats()
        distribution: Counter[str] = Counter()
        for entry in self._entries.values():
            if entry.metadata is not None:
                distribution[entry.metadata.topic_hierarchy.split("/", 1)[0]] += 1
        stats["total_journal_entries"] = len(self._entries)
        stats["topic_distribution"] = dict(sorted(distribution.items()))
        return stats

    def _select(self, predicate: Callable[[TrimMetadata], bool]) -> list[str]:
        return [
            entry.content
            for name, entry in sorted(self._entries.items())
            if entry.metadata is not None and predicate(entry.metadata)
        ]


def is_topic_related(first: str, second: str) -> bool:
    """True when the hierarchies are equal or one is an ancestor of the other."""
    a = first.split("/")
    b = second.split("/")
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]
