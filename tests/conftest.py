"""Shared fixtures: an in-memory provider config and scripted LLM services."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from aether_pipeline.config import ProviderRegistry, ProvidersConfig
from aether_pipeline.routing.router import ProviderRouter

PROVIDERS_PAYLOAD: dict[str, Any] = {
    "providers": {
        "openai": {
            "name": "OpenAI",
            "baseURL": "https://api.openai.com/v1",
            "apiKeyEnvVar": "OPENAI_API_KEY",
            "models": {
                "gpt-4o": {"id": "gpt-4o", "displayName": "GPT-4o", "maxTokens": 4096, "temperature": 0.7},
            },
        },
        "fireworks": {
            "name": "Fireworks",
            "baseURL": "https://api.fireworks.ai/inference/v1",
            "apiKeyEnvVar": "FIREWORKS_API_KEY",
            "models": {
                "llama-70b": {"id": "accounts/fireworks/models/llama-v3p1-70b-instruct", "displayName": "Llama 70B"},
            },
        },
        "claude-code": {
            "name": "Claude Code",
            "baseURL": "http://localhost:8082/v1",
            "apiKeyEnvVar": "CLAUDE_CODE_API_KEY",
            "models": {
                "claude-code-sonnet": {"id": "claude-code-sonnet", "displayName": "Sonnet"},
            },
        },
    },
    "routing": {
        "priority": [
            {"provider": "openai", "model": "gpt-4o"},
            {"provider": "fireworks", "model": "llama-70b"},
        ],
        "fallbackBehavior": "cascade",
    },
}

DEFAULT_KEYS = {"openai": "sk-openai", "fireworks": "fw-key", "claude-code": "cc-key"}


class ScriptedService:
    """LLM service double that replays canned replies and records every call."""

    def __init__(self, provider_kind: str, *replies: str | Exception) -> None:
        self.provider_kind = provider_kind
        self._replies = list(replies) or ["ok"]
        self.calls: list[dict[str, Any]] = []

    async def send_message(self, messages, *, provider, model, api_key) -> str:
        self.calls.append({"messages": list(messages), "model": model.id, "api_key": api_key})
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream_message(self, messages, *, provider, model, api_key) -> AsyncIterator[str]:
        text = await self.send_message(messages, provider=provider, model=model, api_key=api_key)
        for start in range(0, len(text), 8):
            yield text[start : start + 8]


@pytest.fixture
def providers_config() -> ProvidersConfig:
    return ProvidersConfig.model_validate(PROVIDERS_PAYLOAD)


@pytest.fixture
def scripted_service() -> Callable[..., ScriptedService]:
    return ScriptedService


@pytest.fixture
def make_router(providers_config: ProvidersConfig) -> Callable[..., ProviderRouter]:
    def _make(
        services: dict[str, Any],
        keys: dict[str, str] | None = None,
        config: ProvidersConfig | None = None,
    ) -> ProviderRouter:
        credentials = DEFAULT_KEYS if keys is None else keys
        return ProviderRouter(
            registry=ProviderRegistry(config or providers_config),
            services=services,
            get_api_key=lambda provider_id: credentials.get(provider_id, ""),
        )

    return _make
