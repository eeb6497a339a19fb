"""OpenAI-compatible chat services built on `langchain_openai.ChatOpenAI`.

All three backends speak the `/chat/completions` dialect and differ only in
how the conversation is shaped before it is sent:

- `OpenAIService`: messages forwarded as-is (system + user roles).
- `FireworksService`: same wire format, hosted Llama models.
- `ClaudeCodeService`: the bridge accepts a single user message, so system
  context is folded into the user turn.

Each call is attempted exactly once (`max_retries=0`); moving on to another
provider is the router's job.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from langchain_core.messages import BaseMessage, HumanMessage
from langchain_openai import ChatOpenAI

from aether_pipeline.config import (
    CLAUDE_CODE_PROVIDER,
    ModelDescriptor,
    ProviderDescriptor,
)
from aether_pipeline.errors import LLMServiceError
from aether_pipeline.providers.base import ServiceRegistry

logger = logging.getLogger(__name__)


class OpenAICompatibleService:
    """Base implementation shared by every OpenAI-compatible backend."""

    provider_kind = "openai"
    fold_system_messages = False

    def build_chat_model(
        self,
        *,
        provider: ProviderDescriptor,
        model: ModelDescriptor,
        api_key: str,
        streaming: bool = False,
    ) -> ChatOpenAI:
        return ChatOpenAI(
            model=model.id,
            api_key=api_key,
            base_url=provider.base_url,
            max_tokens=model.max_tokens,
            temperature=model.temperature,
            max_retries=0,
            streaming=streaming,
        )

    def prepare_messages(self, messages: list[BaseMessage]) -> list[BaseMessage]:
        if not self.fold_system_messages:
            return list(messages)
        parts = [_message_text(message) for message in messages]
        return [HumanMessage(content="\n\n".join(part for part in parts if part))]

    async def send_message(
        self,
        messages: list[BaseMessage],
        *,
        provider: ProviderDescriptor,
        model: ModelDescriptor,
        api_key: str,
    ) -> str:
        chat_model = self.build_chat_model(provider=provider, model=model, api_key=api_key)
        try:
            response = await chat_model.ainvoke(self.prepare_messages(messages))
        except Exception as exc:
            raise _wrap_error(self.provider_kind, exc) from exc
        return _message_text(response)

    async def stream_message(
        self,
        messages: list[BaseMessage],
        *,
        provider: ProviderDescriptor,
        model: ModelDescriptor,
        api_key: str,
    ) -> AsyncIterator[str]:
        chat_model = self.build_chat_model(
            provider=provider, model=model, api_key=api_key, streaming=True
        )
        try:
            async for chunk in chat_model.astream(self.prepare_messages(messages)):
                delta = _message_text(chunk)
                if delta:
                    yield delta
        except Exception as exc:
            raise _wrap_error(self.provider_kind, exc) from exc


class OpenAIService(OpenAICompatibleService):
    provider_kind = "openai"


class FireworksService(OpenAICompatibleService):
    provider_kind = "fireworks"


class ClaudeCodeService(OpenAICompatibleService):
    provider_kind = CLAUDE_CODE_PROVIDER
    fold_system_messages = True


def default_service_registry() -> ServiceRegistry:
    registry = ServiceRegistry()
    registry.register("openai", OpenAIService)
    registry.register("fireworks", FireworksService)
    registry.register(CLAUDE_CODE_PROVIDER, ClaudeCodeService)
    return registry


def _wrap_error(provider_kind: str, exc: Exception) -> LLMServiceError:
    status_code = getattr(exc, "status_code", None)
    if status_code is None and getattr(exc, "response", None) is not None:
        status_code = getattr(exc.response, "status_code", None)  # type: ignore[attr-defined]
    logger.debug("%s call failed: %r", provider_kind, exc)
    return LLMServiceError(provider_kind, str(exc) or type(exc).__name__, status_code=status_code)


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)
