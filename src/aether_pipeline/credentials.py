"""API key resolution: environment first, then a local `.env` secrets file."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path

from dotenv import dotenv_values

from aether_pipeline.config import ProviderRegistry

logger = logging.getLogger(__name__)

ApiKeyLookup = Callable[[str], str]


class CredentialResolver:
    """Maps a provider id to its credential.

    The provider descriptor names the environment variable to read. When the
    variable is unset or empty the `.env` file is consulted. An empty string
    means the credential is unavailable.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        env_file: str | Path | None = ".env",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._env_file = Path(env_file) if env_file is not None else None
        self._environ = environ if environ is not None else os.environ

    def __call__(self, provider_id: str) -> str:
        return self.get_api_key(provider_id)

    def get_api_key(self, provider_id: str) -> str:
        provider = self._registry.get_provider(provider_id)
        if provider is None:
            return ""

        value = self._environ.get(provider.api_key_env_var, "")
        if value:
            return value
        return self._load_from_env_file(provider.api_key_env_var)

    def _load_from_env_file(self, key: str) -> str:
        if self._env_file is None or not self._env_file.is_file():
            logger.debug("No .env file available for %s", key)
            return ""
        # Read on every lookup so edits to the secrets file apply without restart.
        values = dotenv_values(self._env_file)
        value = values.get(key) or ""
        if not value:
            logger.debug("Key %s not found in %s", key, self._env_file)
        return value.strip().strip("\"'")
