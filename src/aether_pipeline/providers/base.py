"""LLM service contract and the constructor registry that builds services."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterable
from typing import Protocol

from langchain_core.messages import BaseMessage

from aether_pipeline.config import ModelDescriptor, ProviderDescriptor


class LLMService(Protocol):
    """Capability interface every provider backend implements."""

    provider_kind: str

    async def send_message(
        self,
        messages: list[BaseMessage],
        *,
        provider: ProviderDescriptor,
        model: ModelDescriptor,
        api_key: str,
    ) -> str:
        """Send one conversation and return the complete reply text."""

    def stream_message(
        self,
        messages: list[BaseMessage],
        *,
        provider: ProviderDescriptor,
        model: ModelDescriptor,
        api_key: str,
    ) -> AsyncIterator[str]:
        """Yield reply text deltas as they arrive."""


ServiceFactory = Callable[[], LLMService]


class ServiceRegistry:
    """Registry of service constructors selected by a runtime provider key."""

    def __init__(self) -> None:
        self._factories: dict[str, ServiceFactory] = {}

    def register(self, provider_id: str, factory: ServiceFactory) -> None:
        if provider_id in self._factories:
            raise ValueError(f"Service already registered: {provider_id}")
        self._factories[provider_id] = factory

    def is_registered(self, provider_id: str) -> bool:
        return provider_id in self._factories

    def create(self, provider_id: str) -> LLMService:
        factory = self._factories.get(provider_id)
        if factory is None:
            raise KeyError(f"Unknown service: {provider_id}")
        return factory()

    def build_services(self, provider_ids: Iterable[str]) -> dict[str, LLMService]:
        """Instantiate one service per configured provider that has a constructor.

        Providers without a registered constructor are left out, which the
        router later reports as `ServiceUnavailable`.
        """
        return {
            provider_id: self.create(provider_id)
            for provider_id in provider_ids
            if provider_id in self._factories
        }

    def provider_ids(self) -> list[str]:
        return list(self._factories)
