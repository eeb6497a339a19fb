"""FastAPI entrypoint for turn, persona, journal, taxonomy, routing and trace endpoints.

Run with `uvicorn aether_pipeline.api.main:create_app --factory`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from aether_pipeline.agent.orchestrator import TurnOrchestrator
from aether_pipeline.config import PipelineSettings, ProviderRegistry
from aether_pipeline.credentials import CredentialResolver
from aether_pipeline.obs.logging_config import setup_logging
from aether_pipeline.obs.tracing import TraceStore
from aether_pipeline.personas.registry import PersonaRegistry
from aether_pipeline.prompting.bundle import PromptBundleBuilder
from aether_pipeline.providers.openai_compat import default_service_registry
from aether_pipeline.routing.router import ProviderRouter
from aether_pipeline.taxonomy.store import TaxonomyStore
from aether_pipeline.types import PersonaProfile

logger = logging.getLogger(__name__)

DEFAULT_PERSONAS = {
    "samara": PersonaProfile(id="samara", name="Samara"),
    "vlad": PersonaProfile(id="vlad", name="Vlad"),
    "vanessa": PersonaProfile(id="vanessa", name="Vanessa"),
    "claude": PersonaProfile(id="claude", name="Claude"),
}


class TurnRequest(BaseModel):
    message: str = Field(min_length=1)
    persona: str | None = None
    explicit_model: str | None = None
    journal_context: str = ""


class ValidateRequest(BaseModel):
    topic_hierarchy: str


class PrimaryModelRequest(BaseModel):
    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)


class JournalEntryRequest(BaseModel):
    name: str = Field(min_length=1)
    content: str = Field(min_length=1)
    metadata_text: str | None = None


class JournalSearchRequest(BaseModel):
    topic: str | None = None
    keywords: list[str] = Field(default_factory=list)
    dependency_types: list[str] = Field(default_factory=list)
    sentiment: str | None = None


def load_personas(path: Path) -> dict[str, PersonaProfile]:
    """Personas from the playbook folder, or the built-in set when none load."""
    registry = PersonaRegistry.from_directory(path)
    if not registry.personas:
        logger.warning("No personas loaded from %s; using built-in defaults", path)
        return dict(DEFAULT_PERSONAS)
    return registry.personas


def build_orchestrator(
    settings: PipelineSettings,
    personas: dict[str, PersonaProfile] | None = None,
) -> TurnOrchestrator:
    """Wire the pipeline from settings: registry, credentials, services, taxonomy."""
    if settings.providers_path.is_file():
        registry = ProviderRegistry.from_file(settings.providers_path)
    else:
        logger.warning("Provider configuration not found at %s", settings.providers_path)
        registry = ProviderRegistry(path=settings.providers_path)

    credentials = CredentialResolver(registry, env_file=settings.env_file)
    services = default_service_registry().build_services(registry.provider_ids())
    router = ProviderRouter(registry=registry, services=services, get_api_key=credentials)

    taxonomy = TaxonomyStore(settings.taxonomy_path)
    return TurnOrchestrator(
        router=router,
        taxonomy=taxonomy,
        prompt_builder=PromptBundleBuilder(taxonomy, instructions=settings.instructions),
        trace_store=TraceStore(),
        personas=personas if personas is not None else load_personas(settings.personas_path),
        default_persona=settings.default_persona,
    )


def create_app(orchestrator: TurnOrchestrator | None = None) -> FastAPI:
    if orchestrator is None:
        settings = PipelineSettings.from_env()
        setup_logging(settings.log_level)
        orchestrator = build_orchestrator(settings)

    router = orchestrator.router
    taxonomy = orchestrator.taxonomy
    trace_store = orchestrator.trace_store
    journal = orchestrator.journal

    app = FastAPI(title="Aether Pipeline", version="0.1.0")

    @app.get("/health")
    def health() -> dict[str, Any]:
        providers = router.check_service_health()
        return {
            "status": "ok",
            "providers": {
                provider_id: {
                    **asdict(item),
                    "status": item.status.value,
                    "description": item.status.description,
                }
                for provider_id, item in providers.items()
            },
            "routing": [str(entry) for entry in router.effective_priority()],
            "fallback_behavior": router.fallback_behavior(),
            "current_persona": orchestrator.current_persona,
        }

    @app.post("/turns")
    async def turns(request: TurnRequest) -> dict[str, Any]:
        result = await orchestrator.process_turn(
            request.message,
            persona=request.persona,
            explicit_model=request.explicit_model,
            journal_context=request.journal_context,
        )
        return asdict(result)

    @app.post("/turns/stream")
    async def turns_stream(request: TurnRequest) -> StreamingResponse:
        async def _events() -> AsyncIterator[str]:
            async for event in orchestrator.stream_turn(
                request.message,
                persona=request.persona,
                explicit_model=request.explicit_model,
                journal_context=request.journal_context,
            ):
                yield json.dumps(event) + "\n"

        return StreamingResponse(_events(), media_type="application/x-ndjson")

    @app.get("/personas")
    def personas() -> dict[str, Any]:
        return {
            "current": orchestrator.current_persona,
            "items": [
                {"id": profile.id, "name": profile.name, "model": profile.model}
                for _, profile in sorted(orchestrator.personas.items())
            ],
        }

    @app.post("/journal/entries")
    def journal_add(request: JournalEntryRequest) -> dict[str, Any]:
        entry = journal.add(request.name, request.content, metadata_text=request.metadata_text)
        return {
            "name": entry.name,
            "indexed": entry.metadata is not None,
            "total_journal_entries": len(journal),
        }

    @app.post("/journal/search")
    def journal_search(request: JournalSearchRequest) -> dict[str, Any]:
        selections: list[list[str]] = []
        if request.topic:
            selections.append(journal.by_topic(request.topic))
        if request.keywords:
            selections.append(journal.by_keywords(request.keywords))
        if request.dependency_types:
            selections.append(journal.by_dependency_types(request.dependency_types))
        if request.sentiment:
            selections.append(journal.by_sentiment(request.sentiment))
        if not selections:
            raise HTTPException(status_code=400, detail="At least one journal filter is required")

        items = [content for content in selections[0] if all(content in other for other in selections[1:])]
        return {"items": items}

    @app.get("/journal/analytics")
    def journal_analytics() -> dict[str, Any]:
        return journal.analytics()

    @app.get("/taxonomy")
    def taxonomy_view() -> dict[str, Any]:
        return {
            "taxonomy": taxonomy.graph.model_dump(),
            "stats": taxonomy.get_taxonomy_stats(),
        }

    @app.post("/taxonomy/validate")
    def taxonomy_validate(request: ValidateRequest) -> dict[str, Any]:
        return asdict(taxonomy.validate_topic_hierarchy(request.topic_hierarchy))

    @app.put("/routing/primary")
    def set_primary(request: PrimaryModelRequest) -> dict[str, Any]:
        if not router.has_model(request.provider, request.model):
            raise HTTPException(
                status_code=404,
                detail=f"Unknown model: {request.provider}/{request.model}",
            )
        router.set_primary_model(request.provider, request.model)
        return {"routing": [str(entry) for entry in router.effective_priority()]}

    @app.delete("/routing/primary")
    def clear_primary() -> dict[str, Any]:
        router.clear_primary_model()
        return {"routing": [str(entry) for entry in router.effective_priority()]}

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app
