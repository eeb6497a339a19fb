import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from aether_pipeline.agent.orchestrator import TurnOrchestrator
from aether_pipeline.api.main import DEFAULT_PERSONAS, build_orchestrator, create_app
from aether_pipeline.config import PipelineSettings
from aether_pipeline.obs.tracing import TraceStore
from aether_pipeline.parsing.decomposer import MAIN_MARKER, TAXONOMY_MARKER, TRIM_MARKER
from aether_pipeline.prompting.bundle import PromptBundleBuilder
from aether_pipeline.taxonomy.store import TaxonomyStore

REPLY = f"""{TAXONOMY_MARKER}
topic_hierarchy: daily/food/meal-prep
{MAIN_MARKER}
Batch-cook grains on Sunday.
{TRIM_MARKER}
meal prep tip: batch grains"""


@pytest.fixture
def client(tmp_path: Path, make_router, scripted_service) -> TestClient:
    taxonomy = TaxonomyStore(tmp_path / "taxonomy.json")
    orchestrator = TurnOrchestrator(
        router=make_router(
            {"openai": scripted_service("openai", REPLY), "fireworks": scripted_service("fireworks")},
            keys={"openai": "sk"},
        ),
        taxonomy=taxonomy,
        prompt_builder=PromptBundleBuilder(taxonomy),
        trace_store=TraceStore(),
        personas=DEFAULT_PERSONAS,
    )
    return TestClient(create_app(orchestrator))


def test_turn_trace_metrics_flow(client: TestClient) -> None:
    turn_resp = client.post("/turns", json={"message": "Any meal prep ideas?"})
    assert turn_resp.status_code == 200
    payload = turn_resp.json()
    assert payload["main_response"] == "Batch-cook grains on Sunday."
    assert payload["trimmed_response"] == "meal prep tip: batch grains"
    assert payload["taxonomy_applied"] is True
    assert payload["error_category"] is None

    trace_resp = client.get(f"/traces/{payload['trace_id']}")
    assert trace_resp.status_code == 200
    assert trace_resp.json()["attempts"][0]["provider"] == "openai"

    assert client.get("/traces").json()["items"]
    assert client.get("/metrics").json()["total_turns"] == 1

    taxonomy = client.get("/taxonomy").json()
    assert "meal-prep" in taxonomy["taxonomy"]["topics"]["daily"]["food"]


def test_failed_turn_is_still_a_200_with_category(client: TestClient) -> None:
    resp = client.post("/turns", json={"message": "hi", "explicit_model": "claude-code/claude-code-sonnet"})

    assert resp.status_code == 200
    assert resp.json()["error_category"] == "mismatch"


def test_empty_message_is_rejected(client: TestClient) -> None:
    assert client.post("/turns", json={"message": ""}).status_code == 422


def test_unknown_trace_is_404(client: TestClient) -> None:
    assert client.get("/traces/does-not-exist").status_code == 404


def test_health_reports_provider_states(client: TestClient) -> None:
    payload = client.get("/health").json()

    assert payload["providers"]["openai"]["status"] == "healthy"
    assert payload["providers"]["fireworks"]["status"] == "misconfigured"
    assert payload["providers"]["claude-code"]["has_service"] is False
    assert payload["routing"] == ["openai/gpt-4o", "fireworks/llama-70b"]


def test_validate_hierarchy(client: TestClient) -> None:
    resp = client.post("/taxonomy/validate", json={"topic_hierarchy": "technology/js/closures"})

    assert resp.status_code == 200
    assert resp.json()["is_valid"] is True
    assert resp.json()["warnings"]


def test_primary_model_override(client: TestClient) -> None:
    assert client.put("/routing/primary", json={"provider": "openai", "model": "nope"}).status_code == 404

    resp = client.put("/routing/primary", json={"provider": "fireworks", "model": "llama-70b"})
    assert resp.status_code == 200
    assert resp.json()["routing"] == ["fireworks/llama-70b", "openai/gpt-4o"]

    cleared = client.delete("/routing/primary")
    assert cleared.json()["routing"] == ["openai/gpt-4o", "fireworks/llama-70b"]


def test_stream_endpoint_emits_ndjson_events(client: TestClient) -> None:
    resp = client.post("/turns/stream", json={"message": "Any meal prep ideas?"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/x-ndjson")
    events = [json.loads(line) for line in resp.text.splitlines() if line]
    assert "".join(event["text"] for event in events if event["type"] == "delta") == REPLY
    assert events[-1]["type"] == "result"
    assert events[-1]["main_response"] == "Batch-cook grains on Sunday."


def test_turn_trims_are_searchable_in_the_journal(client: TestClient) -> None:
    client.post("/turns", json={"message": "Any meal prep ideas?"})
    added = client.post(
        "/journal/entries",
        json={
            "name": "Trim-20250101-090000.md",
            "content": "topic_hierarchy: technology/ai\nkeywords: [agents]\nsentiment: curious",
        },
    )
    assert added.json() == {"name": "Trim-20250101-090000.md", "indexed": True, "total_journal_entries": 2}

    by_topic = client.post("/journal/search", json={"topic": "daily/food"})
    assert by_topic.json()["items"] == ["meal prep tip: batch grains"]

    combined = client.post("/journal/search", json={"topic": "technology", "sentiment": "CURIOUS"})
    assert len(combined.json()["items"]) == 1

    assert client.post("/journal/search", json={}).status_code == 400

    analytics = client.get("/journal/analytics").json()
    assert analytics["total_journal_entries"] == 2
    assert analytics["topic_distribution"] == {"daily": 1, "technology": 1}


def test_personas_endpoint_lists_profiles(client: TestClient) -> None:
    payload = client.get("/personas").json()

    assert payload["current"] == "samara"
    assert [item["id"] for item in payload["items"]] == ["claude", "samara", "vanessa", "vlad"]


def test_build_orchestrator_loads_personas_from_settings(tmp_path: Path) -> None:
    persona_file = tmp_path / "personas" / "vanessa" / "vanessa.md"
    persona_file.parent.mkdir(parents=True)
    persona_file.write_text("---\nname: Vanessa\nmodel: openai/gpt-4o\n---\nKeep lists short.", encoding="utf-8")
    settings = PipelineSettings(
        providers_path=tmp_path / "missing.json",
        taxonomy_path=tmp_path / "taxonomy.json",
        personas_path=tmp_path / "personas",
        env_file=tmp_path / ".env",
        default_persona="vanessa",
    )

    orchestrator = build_orchestrator(settings)

    assert list(orchestrator.personas) == ["vanessa"]
    assert orchestrator.personas["vanessa"].behavior_rules == "Keep lists short."
    assert orchestrator.personas["vanessa"].model == "openai/gpt-4o"


def test_build_orchestrator_falls_back_to_builtin_personas(tmp_path: Path) -> None:
    settings = PipelineSettings(
        providers_path=tmp_path / "missing.json",
        taxonomy_path=tmp_path / "taxonomy.json",
        personas_path=tmp_path / "no-personas",
        env_file=tmp_path / ".env",
    )

    orchestrator = build_orchestrator(settings)

    assert set(orchestrator.personas) == set(DEFAULT_PERSONAS)
