"""Provider routing with persona binding rules and a sequential fallback cascade."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from time import perf_counter
from typing import TypeVar

from aether_pipeline.config import (
    CLAUDE_CODE_ENTRY,
    CLAUDE_CODE_MODEL,
    CLAUDE_CODE_PROVIDER,
    CLAUDE_PERSONA,
    ProviderRegistry,
    RoutingEntry,
)
from aether_pipeline.credentials import ApiKeyLookup
from aether_pipeline.errors import (
    AllProvidersFailed,
    ConfigurationMissing,
    ConfigurationNotLoaded,
    CredentialMissing,
    PersonaModelMismatch,
    ServiceUnavailable,
)
from aether_pipeline.providers.base import LLMService
from aether_pipeline.types import HealthStatus, ProviderHealth, ResolvedProvider, RoutingAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[ResolvedProvider], Awaitable[T]]
AttemptObserver = Callable[[RoutingAttempt], None]


def effective_priority(
    baseline: Iterable[RoutingEntry],
    override: RoutingEntry | None = None,
) -> list[RoutingEntry]:
    """Return the routing order actually attempted.

    The override, when set, goes first; every entry appears at most once and
    keeps its first position.
    """
    ordered: list[RoutingEntry] = []
    seen: set[RoutingEntry] = set()
    candidates = [override] if override is not None else []
    candidates.extend(baseline)
    for entry in candidates:
        if entry in seen:
            continue
        seen.add(entry)
        ordered.append(entry)
    return ordered


def selects_claude_code(explicit_model: str | None) -> bool:
    """Whether an explicitly chosen model names the claude-code backend.

    Accepts the bare backend id, its model id, or a `provider:model` /
    `provider/model` key.
    """
    if not explicit_model:
        return False
    value = explicit_model.strip().lower()
    if value in (CLAUDE_CODE_PROVIDER, CLAUDE_CODE_MODEL):
        return True
    for separator in (":", "/"):
        if separator in value:
            provider, _, _ = value.partition(separator)
            return provider == CLAUDE_CODE_PROVIDER
    return False


class ProviderRouter:
    """Maps a routing intent to a live provider call."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        services: dict[str, LLMService],
        get_api_key: ApiKeyLookup,
    ) -> None:
        self._registry = registry
        self._services = dict(services)
        self._get_api_key = get_api_key
        self._override: RoutingEntry | None = None

    # Model switching

    def set_primary_model(self, provider: str, model: str) -> None:
        self._override = RoutingEntry(provider=provider, model=model)
        logger.info("Primary model override set to %s", self._override)

    def clear_primary_model(self) -> None:
        self._override = None

    @property
    def primary_override(self) -> RoutingEntry | None:
        return self._override

    def effective_priority(self) -> list[RoutingEntry]:
        return effective_priority(self._registry.routing_priority(), self._override)

    # Resolution

    def resolve_provider(self, entry: RoutingEntry) -> ResolvedProvider:
        service = self._services.get(entry.provider)
        if service is None:
            raise ServiceUnavailable(entry.provider)

        provider = self._registry.get_provider(entry.provider)
        model = self._registry.get_model(entry.provider, entry.model)
        if provider is None or model is None:
            raise ConfigurationMissing(str(entry))

        api_key = self._get_api_key(entry.provider)
        if not api_key:
            raise CredentialMissing(entry.provider)

        return ResolvedProvider.create(
            service=service,
            provider_id=entry.provider,
            provider=provider,
            model=model,
            api_key=api_key,
        )

    # Execution

    async def execute_with_persona_routing(
        self,
        persona: str,
        explicit_model: str | None,
        operation: Operation[T],
        *,
        on_attempt: AttemptObserver | None = None,
    ) -> T:
        """Route one call for `persona`.

        `on_attempt`, when given, receives a `RoutingAttempt` after every
        resolve-then-call attempt. It belongs to this call only, so concurrent
        callers each see their own attempts.
        """
        # The claude persona is bound to the claude-code backend, whatever model was picked.
        if persona.lower() == CLAUDE_PERSONA:
            return await self._execute_single(CLAUDE_CODE_ENTRY, operation, on_attempt)

        if selects_claude_code(explicit_model):
            raise PersonaModelMismatch("Claude Code model can only be used with Claude persona")

        return await self.execute_with_fallback(operation, on_attempt=on_attempt)

    async def execute_with_fallback(
        self,
        operation: Operation[T],
        *,
        on_attempt: AttemptObserver | None = None,
    ) -> T:
        if not self._registry.is_loaded:
            raise ConfigurationNotLoaded()

        last_error: BaseException | None = None
        for entry in self.effective_priority():
            try:
                return await self._attempt(entry, operation, on_attempt)
            except Exception as exc:
                logger.warning("%s failed: %s", entry, exc)
                last_error = exc

        raise AllProvidersFailed(last_error)

    async def _execute_single(
        self,
        entry: RoutingEntry,
        operation: Operation[T],
        on_attempt: AttemptObserver | None,
    ) -> T:
        try:
            return await self._attempt(entry, operation, on_attempt)
        except Exception as exc:
            logger.warning("%s failed: %s", entry, exc)
            raise AllProvidersFailed(exc) from exc

    async def _attempt(
        self,
        entry: RoutingEntry,
        operation: Operation[T],
        on_attempt: AttemptObserver | None,
    ) -> T:
        start = perf_counter()
        try:
            resolved = self.resolve_provider(entry)
            result = await operation(resolved)
        except Exception as exc:
            _notify(on_attempt, entry, start, error=exc)
            raise
        _notify(on_attempt, entry, start)
        return result

    # Diagnostics

    def check_service_health(self) -> dict[str, ProviderHealth]:
        config = self._registry.config
        if config is None:
            return {}

        health: dict[str, ProviderHealth] = {}
        for provider_id, provider in config.providers.items():
            has_service = provider_id in self._services
            has_api_key = bool(self._get_api_key(provider_id))
            # A provider entry without any model descriptor cannot be routed to.
            has_configuration = bool(provider.models)

            if has_service and has_api_key and has_configuration:
                status = HealthStatus.HEALTHY
            elif has_configuration:
                status = HealthStatus.MISCONFIGURED
            else:
                status = HealthStatus.UNAVAILABLE

            health[provider_id] = ProviderHealth(
                status=status,
                has_service=has_service,
                has_api_key=has_api_key,
                has_configuration=has_configuration,
                provider_name=provider.name,
            )
        return health

    def routing_priority(self) -> list[RoutingEntry]:
        return self._registry.routing_priority()

    def available_providers(self) -> list[str]:
        return list(self._services)

    def has_model(self, provider_id: str, model_id: str) -> bool:
        return self._registry.get_model(provider_id, model_id) is not None

    def provider_display_name(self, provider_id: str) -> str:
        provider = self._registry.get_provider(provider_id)
        return provider.name if provider is not None else provider_id

    def is_provider_available(self, provider_id: str) -> bool:
        if self._registry.get_provider(provider_id) is None or provider_id not in self._services:
            return False
        return bool(self._get_api_key(provider_id))

    def fallback_behavior(self) -> str:
        return self._registry.fallback_behavior()


def _notify(
    on_attempt: AttemptObserver | None,
    entry: RoutingEntry,
    start: float,
    error: BaseException | None = None,
) -> None:
    if on_attempt is None:
        return
    on_attempt(
        RoutingAttempt(
            provider=entry.provider,
            model=entry.model,
            succeeded=error is None,
            latency_ms=(perf_counter() - start) * 1000.0,
            error=str(error) if error is not None else None,
        )
    )
