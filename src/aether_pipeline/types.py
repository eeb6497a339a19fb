"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from aether_pipeline.config import ModelDescriptor, ProviderDescriptor

if TYPE_CHECKING:
    from aether_pipeline.providers.base import LLMService


@dataclass(slots=True, frozen=True)
class ResolvedProvider:
    """A validated, call-ready provider.

    Build it through `create`, which refuses to produce an instance unless the
    service handle, both descriptors and a non-empty credential are present.
    """

    service: LLMService
    provider_id: str
    provider: ProviderDescriptor
    model: ModelDescriptor
    api_key: str

    @classmethod
    def create(
        cls,
        *,
        service: LLMService | None,
        provider_id: str,
        provider: ProviderDescriptor | None,
        model: ModelDescriptor | None,
        api_key: str,
    ) -> "ResolvedProvider":
        if service is None or provider is None or model is None or not api_key:
            raise ValueError(f"Cannot resolve provider {provider_id}: incomplete components")
        return cls(
            service=service,
            provider_id=provider_id,
            provider=provider,
            model=model,
            api_key=api_key,
        )

    @property
    def display_name(self) -> str:
        return f"{self.provider.name} ({self.model.display_name})"


@dataclass(slots=True)
class RoutingAttempt:
    """Trace record for one resolve-then-call attempt in the cascade."""

    provider: str
    model: str
    succeeded: bool
    latency_ms: float
    error: str | None = None


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    MISCONFIGURED = "misconfigured"
    UNAVAILABLE = "unavailable"

    @property
    def description(self) -> str:
        return {
            HealthStatus.HEALTHY: "Ready",
            HealthStatus.MISCONFIGURED: "Configuration Error",
            HealthStatus.UNAVAILABLE: "Unavailable",
        }[self]


@dataclass(slots=True)
class ProviderHealth:
    status: HealthStatus
    has_service: bool
    has_api_key: bool
    has_configuration: bool
    provider_name: str


@dataclass(slots=True)
class TrimMetadata:
    """Structured fields extracted from one turn's taxonomy section."""

    topic_hierarchy: str
    keywords: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    sentiment: str | None = None
    context_deltas: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaxonomyValidationResult:
    is_valid: bool
    validated_hierarchy: str
    suggestions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DecomposedResponse:
    """One raw reply split into its marker sections.

    `main_response` is always populated; the other sections are `None` when
    their marker is missing or their text is blank.
    """

    main_response: str
    taxonomy_analysis: str | None = None
    machine_trim: str | None = None


@dataclass(slots=True)
class PersonaProfile:
    id: str
    name: str
    behavior_rules: str = ""
    model: str | None = None


@dataclass(slots=True)
class TurnResult:
    main_response: str
    persona: str
    trace_id: str
    trimmed_response: str | None = None
    provider_display: str | None = None
    taxonomy_applied: bool = False
    error_category: str | None = None

    @property
    def failed(self) -> bool:
        return self.error_category is not None
