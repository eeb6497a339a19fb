"""Per-turn orchestration: prompt, route, decompose, evolve taxonomy."""

from __future__ import annotations

import asyncio
import logging
import re
import string
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from langchain_core.messages import BaseMessage

from aether_pipeline.errors import AllProvidersFailed, LLMServiceError, ProviderRoutingError, user_facing_message
from aether_pipeline.memory.journal_index import JournalIndex
from aether_pipeline.obs.tracing import Timer, TraceStore, TurnTrace, estimate_token_count
from aether_pipeline.parsing.decomposer import ResponseDecomposer
from aether_pipeline.prompting.bundle import PromptBundleBuilder
from aether_pipeline.routing.router import ProviderRouter
from aether_pipeline.taxonomy.store import TaxonomyStore
from aether_pipeline.types import (
    DecomposedResponse,
    PersonaProfile,
    ResolvedProvider,
    RoutingAttempt,
    TaxonomyValidationResult,
    TurnResult,
)

logger = logging.getLogger(__name__)

_LEADING_WORD = re.compile(r"\s*(\S+)\s*")


@dataclass(slots=True)
class _PreparedTurn:
    persona_id: str
    explicit_model: str | None
    messages: list[BaseMessage]
    prompt_text: str


class TurnOrchestrator:
    """Composes router, decomposer and taxonomy store for one user turn.

    All collaborators are passed in explicitly; nothing is looked up from
    module-level state. Within a turn every stage awaits the previous one,
    and per-turn state (attempts, serving provider) lives on the call stack,
    so overlapping turns do not see each other's attempts.
    """

    def __init__(
        self,
        *,
        router: ProviderRouter,
        taxonomy: TaxonomyStore,
        prompt_builder: PromptBundleBuilder,
        trace_store: TraceStore,
        personas: dict[str, PersonaProfile] | None = None,
        default_persona: str = "samara",
        journal: JournalIndex | None = None,
    ) -> None:
        self.router = router
        self.taxonomy = taxonomy
        self.prompt_builder = prompt_builder
        self.trace_store = trace_store
        self.personas = {key.lower(): value for key, value in (personas or {}).items()}
        self.current_persona = default_persona.lower()
        self.journal = journal if journal is not None else JournalIndex(taxonomy)

    def set_current_persona(self, persona: str) -> bool:
        key = persona.lower()
        if self.personas and key not in self.personas:
            return False
        self.current_persona = key
        return True

    async def process_turn(
        self,
        message: str,
        *,
        persona: str | None = None,
        explicit_model: str | None = None,
        journal_context: str = "",
        chat_history: list[Any] | None = None,
    ) -> TurnResult:
        """Run one full turn and record its trace.

        Terminal routing failures do not raise: they come back as a
        `TurnResult` whose `main_response` is a synthesized chat message and
        whose `error_category` names the failure class.
        """
        turn = self._prepare(message, persona, explicit_model, journal_context, chat_history)
        attempts: list[RoutingAttempt] = []
        served_by: list[str] = []

        async def _call(resolved: ResolvedProvider) -> str:
            reply = await resolved.service.send_message(
                turn.messages,
                provider=resolved.provider,
                model=resolved.model,
                api_key=resolved.api_key,
            )
            served_by.append(resolved.display_name)
            return reply

        raw = ""
        failure: ProviderRoutingError | None = None
        with Timer() as timer:
            try:
                raw = await self.router.execute_with_persona_routing(
                    turn.persona_id, turn.explicit_model, _call, on_attempt=attempts.append
                )
            except ProviderRoutingError as exc:
                logger.error("Turn for persona %s failed: %s", turn.persona_id, exc)
                failure = exc

        if failure is not None:
            return self._failed_turn(failure, turn, attempts, timer.elapsed_ms)
        return await self._complete_turn(raw, turn, attempts, served_by[-1] if served_by else None, timer.elapsed_ms)

    async def stream_turn(
        self,
        message: str,
        *,
        persona: str | None = None,
        explicit_model: str | None = None,
        journal_context: str = "",
        chat_history: list[Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream one turn as events.

        Yields `{"type": "delta", "text": ...}` for each raw chunk, then one
        `{"type": "result", ...}` carrying the `TurnResult` fields. A provider
        counts as answering once it produces its first chunk; failures before
        that fall through the routing cascade, failures after it end the turn.
        """
        turn = self._prepare(message, persona, explicit_model, journal_context, chat_history)
        attempts: list[RoutingAttempt] = []
        served_by: list[str] = []

        async def _open(resolved: ResolvedProvider) -> tuple[str, AsyncIterator[str]]:
            stream = resolved.service.stream_message(
                turn.messages,
                provider=resolved.provider,
                model=resolved.model,
                api_key=resolved.api_key,
            )
            try:
                first = await anext(stream)
            except StopAsyncIteration:
                first = ""
            served_by.append(resolved.display_name)
            return first, stream

        chunks: list[str] = []
        failure: ProviderRoutingError | None = None
        with Timer() as timer:
            try:
                first, stream = await self.router.execute_with_persona_routing(
                    turn.persona_id, turn.explicit_model, _open, on_attempt=attempts.append
                )
            except ProviderRoutingError as exc:
                logger.error("Streamed turn for persona %s failed: %s", turn.persona_id, exc)
                failure = exc
            else:
                if first:
                    chunks.append(first)
                    yield {"type": "delta", "text": first}
                try:
                    async for delta in stream:
                        chunks.append(delta)
                        yield {"type": "delta", "text": delta}
                except LLMServiceError as exc:
                    logger.error("Stream from %s broke off: %s", served_by[-1], exc)
                    failure = AllProvidersFailed(exc)

        if failure is not None:
            result = self._failed_turn(failure, turn, attempts, timer.elapsed_ms)
        else:
            result = await self._complete_turn(
                "".join(chunks), turn, attempts, served_by[-1] if served_by else None, timer.elapsed_ms
            )
        yield {"type": "result", **asdict(result)}

    def _prepare(
        self,
        message: str,
        persona: str | None,
        explicit_model: str | None,
        journal_context: str,
        chat_history: list[Any] | None,
    ) -> _PreparedTurn:
        addressed, content = split_persona_prefix(message, list(self.personas))
        if addressed is not None:
            self.set_current_persona(addressed)
        persona_id = (persona or addressed or self.current_persona).lower()
        profile = self.personas.get(persona_id)
        if explicit_model is None and profile is not None:
            explicit_model = profile.model

        messages = self.prompt_builder.build_messages(
            content,
            profile,
            journal_context=journal_context,
            chat_history=chat_history,
        )
        return _PreparedTurn(
            persona_id=persona_id,
            explicit_model=explicit_model,
            messages=messages,
            prompt_text="\n".join(str(m.content) for m in messages),
        )

    async def _complete_turn(
        self,
        raw: str,
        turn: _PreparedTurn,
        attempts: list[RoutingAttempt],
        provider_display: str | None,
        latency_ms: float,
    ) -> TurnResult:
        # Taxonomy evolution writes to disk; keep it off the event loop.
        decomposed, taxonomy_results = await asyncio.to_thread(self._decompose, raw)
        taxonomy_applied = any(result is not None and result.is_valid for result in taxonomy_results)

        record = self.trace_store.create_record(
            persona=turn.persona_id,
            explicit_model=turn.explicit_model,
            provider_display=provider_display,
            attempts=attempts,
            input_tokens=estimate_token_count(turn.prompt_text),
            output_tokens=estimate_token_count(raw),
            latency_ms=latency_ms,
            taxonomy_applied=taxonomy_applied,
            error_category=None,
        )
        if decomposed.machine_trim is not None:
            self.journal.add(
                journal_entry_name(record),
                decomposed.machine_trim,
                metadata_text=decomposed.taxonomy_analysis,
            )

        return TurnResult(
            main_response=decomposed.main_response,
            persona=turn.persona_id,
            trace_id=record.trace_id,
            trimmed_response=decomposed.machine_trim,
            provider_display=provider_display,
            taxonomy_applied=taxonomy_applied,
        )

    def _decompose(self, raw: str) -> tuple[DecomposedResponse, list[TaxonomyValidationResult | None]]:
        results: list[TaxonomyValidationResult | None] = []
        decomposer = ResponseDecomposer(
            taxonomy_sink=lambda section: results.append(self.taxonomy.process_taxonomy_section(section))
        )
        return decomposer.decompose(raw), results

    def _failed_turn(
        self,
        error: ProviderRoutingError,
        turn: _PreparedTurn,
        attempts: list[RoutingAttempt],
        latency_ms: float,
    ) -> TurnResult:
        record = self.trace_store.create_record(
            persona=turn.persona_id,
            explicit_model=turn.explicit_model,
            provider_display=None,
            attempts=attempts,
            input_tokens=estimate_token_count(turn.prompt_text),
            output_tokens=0,
            latency_ms=latency_ms,
            taxonomy_applied=False,
            error_category=error.category,
        )
        return TurnResult(
            main_response=user_facing_message(error),
            persona=turn.persona_id,
            trace_id=record.trace_id,
            error_category=error.category,
        )


def split_persona_prefix(message: str, persona_ids: list[str]) -> tuple[str | None, str]:
    """Detect a leading persona name (`"Claude, what ..."`) and strip it.

    Returns `(persona_id, remaining_message)`, or `(None, message)` when the
    first word is not a known persona. Only the name and the whitespace after
    it are removed; the rest of the message is returned untouched.
    """
    match = _LEADING_WORD.match(message)
    if match is None:
        return None, message
    first = match.group(1).strip(string.punctuation).lower()
    for persona_id in persona_ids:
        if persona_id.lower() == first:
            return persona_id, message[match.end() :]
    return None, message


def journal_entry_name(record: TurnTrace) -> str:
    """`Trim-YYYYMMDD-HHMMSS-<trace prefix>.md`, sortable by time."""
    stamp = datetime.fromisoformat(record.timestamp_utc).strftime("%Y%m%d-%H%M%S")
    return f"Trim-{stamp}-{record.trace_id[:8]}.md"
