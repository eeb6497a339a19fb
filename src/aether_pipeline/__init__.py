"""Aether turn pipeline package."""

from .config import PipelineSettings, ProviderRegistry
from .types import TurnResult

__all__ = ["PipelineSettings", "ProviderRegistry", "TurnResult"]
