"""Configuration models for providers, routing and pipeline settings."""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

CLAUDE_CODE_PROVIDER = "claude-code"
CLAUDE_CODE_MODEL = "claude-code-sonnet"
CLAUDE_PERSONA = "claude"


class _CamelModel(BaseModel):
    """Accepts both the camelCase keys of the on-disk JSON and snake_case."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ModelDescriptor(_CamelModel):
    id: str
    display_name: str = Field(alias="displayName")
    max_tokens: int = Field(default=4096, ge=1, alias="maxTokens")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    context_window: int = Field(default=128000, ge=1, alias="contextWindow")


class ProviderDescriptor(_CamelModel):
    name: str
    base_url: str = Field(alias="baseURL")
    api_key_env_var: str = Field(alias="apiKeyEnvVar")
    models: dict[str, ModelDescriptor] = Field(default_factory=dict)


class RoutingEntry(_CamelModel):
    """One candidate backend: a (provider id, model id) pair."""

    provider: str
    model: str

    def __str__(self) -> str:
        return f"{self.provider}/{self.model}"


class RoutingPriority(_CamelModel):
    priority: list[RoutingEntry] = Field(default_factory=list)
    fallback_behavior: str = Field(default="cascade", alias="fallbackBehavior")


class ProvidersConfig(_CamelModel):
    providers: dict[str, ProviderDescriptor] = Field(default_factory=dict)
    routing: RoutingPriority = Field(default_factory=RoutingPriority)


CLAUDE_CODE_ENTRY = RoutingEntry(provider=CLAUDE_CODE_PROVIDER, model=CLAUDE_CODE_MODEL)


class ProviderRegistry:
    """Read-only view over a loaded `ProvidersConfig`.

    The registry is loaded once at startup and only changes through an
    explicit `reload()`.
    """

    def __init__(self, config: ProvidersConfig | None = None, *, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._config = config

    @classmethod
    def from_file(cls, path: str | Path) -> "ProviderRegistry":
        registry = cls(path=path)
        registry.reload()
        return registry

    @property
    def config(self) -> ProvidersConfig | None:
        return self._config

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    def reload(self) -> None:
        if self._path is None:
            raise ValueError("ProviderRegistry has no backing file to reload from")
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        self._config = ProvidersConfig.model_validate(payload)

    def get_provider(self, provider_id: str) -> ProviderDescriptor | None:
        if self._config is None:
            return None
        return self._config.providers.get(provider_id)

    def get_model(self, provider_id: str, model_id: str) -> ModelDescriptor | None:
        provider = self.get_provider(provider_id)
        if provider is None:
            return None
        return provider.models.get(model_id)

    def provider_ids(self) -> list[str]:
        if self._config is None:
            return []
        return list(self._config.providers)

    def routing_priority(self) -> list[RoutingEntry]:
        if self._config is None:
            return []
        return list(self._config.routing.priority)

    def primary_routing(self) -> RoutingEntry | None:
        priority = self.routing_priority()
        return priority[0] if priority else None

    def fallback_behavior(self) -> str:
        if self._config is None:
            return "cascade"
        return self._config.routing.fallback_behavior


class PipelineSettings(BaseModel):
    """Process-level settings, resolved from `AETHER_*` environment variables."""

    providers_path: Path = Field(default=Path("config/LLMProviders.json"))
    taxonomy_path: Path = Field(default=Path("vault/playbook/tools/taxonomy.json"))
    personas_path: Path = Field(default=Path("vault/playbook/personas"))
    env_file: Path = Field(default=Path(".env"))
    default_persona: str = Field(default="samara", min_length=1)
    instructions: str = ""
    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        defaults = cls()
        return cls(
            providers_path=Path(os.getenv("AETHER_PROVIDERS_PATH", str(defaults.providers_path))),
            taxonomy_path=Path(os.getenv("AETHER_TAXONOMY_PATH", str(defaults.taxonomy_path))),
            personas_path=Path(os.getenv("AETHER_PERSONAS_PATH", str(defaults.personas_path))),
            env_file=Path(os.getenv("AETHER_ENV_FILE", str(defaults.env_file))),
            default_persona=os.getenv("AETHER_DEFAULT_PERSONA", defaults.default_persona),
            instructions=os.getenv("AETHER_INSTRUCTIONS", defaults.instructions),
            log_level=os.getenv("AETHER_LOG_LEVEL", defaults.log_level),
        )
