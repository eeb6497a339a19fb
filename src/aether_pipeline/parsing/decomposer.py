"""Split one raw LLM reply into taxonomy, main and trim sections."""

from __future__ import annotations

import logging
from collections.abc import Callable

from aether_pipeline.types import DecomposedResponse

logger = logging.getLogger(__name__)

TAXONOMY_MARKER = "---TAXONOMY_ANALYSIS---"
MAIN_MARKER = "---MAIN_RESPONSE---"
TRIM_MARKER = "---MACHINE_TRIM---"

# Search order is fixed; each marker is looked for after the previous one.
MARKERS = (TAXONOMY_MARKER, MAIN_MARKER, TRIM_MARKER)

TaxonomySink = Callable[[str], object]


class ResponseDecomposer:
    """Marker-based splitter that degrades instead of raising.

    When a taxonomy section is found it is passed to `taxonomy_sink` before
    the result is returned, so taxonomy evolution happens even if the main
    response turns out empty.
    """

    def __init__(self, taxonomy_sink: TaxonomySink | None = None) -> None:
        self._taxonomy_sink = taxonomy_sink

    def decompose(self, raw: str) -> DecomposedResponse:
        text = raw or ""
        positions = _locate_markers(text)

        if MAIN_MARKER not in positions:
            return DecomposedResponse(main_response=text.strip())

        sections: dict[str, str | None] = {}
        present = [marker for marker in MARKERS if marker in positions]
        for index, marker in enumerate(present):
            start = positions[marker] + len(marker)
            end = positions[present[index + 1]] if index + 1 < len(present) else len(text)
            sections[marker] = text[start:end].strip() or None

        taxonomy = sections.get(TAXONOMY_MARKER)
        if taxonomy is not None:
            self._feed_taxonomy(taxonomy)

        return DecomposedResponse(
            main_response=sections.get(MAIN_MARKER) or "",
            taxonomy_analysis=taxonomy,
            machine_trim=sections.get(TRIM_MARKER),
        )

    def _feed_taxonomy(self, section: str) -> None:
        if self._taxonomy_sink is None:
            return
        try:
            self._taxonomy_sink(section)
        except Exception:
            logger.exception("Taxonomy processing failed; keeping decomposed response")


def _locate_markers(text: str) -> dict[str, int]:
    positions: dict[str, int] = {}
    cursor = 0
    for marker in MARKERS:
        index = text.find(marker, cursor)
        if index < 0:
            continue
        positions[marker] = index
        cursor = index + len(marker)
    return positions
