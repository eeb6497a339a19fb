"""Exception hierarchy for routing and provider calls.

Every routing error carries a `category` used to build the single user-facing
message shown when a turn fails:

- `configuration`: registry, descriptor or credential problems
- `network`: provider calls that failed in transport or parsing
- `mismatch`: a persona/model pairing forbidden by a binding rule
"""

from __future__ import annotations

from typing import Any

CATEGORY_CONFIGURATION = "configuration"
CATEGORY_NETWORK = "network"
CATEGORY_MISMATCH = "mismatch"


class ProviderRoutingError(Exception):
    """Base class for errors raised while routing a request to a provider."""

    category: str = CATEGORY_CONFIGURATION

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context or None
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "category": self.category,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationNotLoaded(ProviderRoutingError):
    def __init__(self) -> None:
        super().__init__("LLM configuration not loaded")


class ServiceUnavailable(ProviderRoutingError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Service not available: {provider}", provider=provider)


class ConfigurationMissing(ProviderRoutingError):
    def __init__(self, details: str) -> None:
        super().__init__(f"Configuration missing for: {details}", entry=details)


class CredentialMissing(ProviderRoutingError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"API key missing for: {provider}", provider=provider)


class PersonaModelMismatch(ProviderRoutingError):
    category = CATEGORY_MISMATCH


class AllProvidersFailed(ProviderRoutingError):
    """Raised when every routing entry has been tried without success."""

    def __init__(self, last_error: BaseException | None = None) -> None:
        self.last_error = last_error
        if last_error is None:
            message = "All configured LLM services failed"
        else:
            message = f"All configured LLM services failed. Last error: {last_error}"
        super().__init__(message)

    @property
    def category(self) -> str:  # type: ignore[override]
        if isinstance(self.last_error, ProviderRoutingError):
            return self.last_error.category
        return CATEGORY_NETWORK


class LLMServiceError(Exception):
    """A provider call failed after a provider was resolved."""

    category = CATEGORY_NETWORK

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        label = provider.upper()
        if status_code:
            message = f"{label} HTTP ERROR ({status_code}): {message}"
        else:
            message = f"{label} REQUEST FAILED: {message}"
        super().__init__(message)


def user_facing_message(error: BaseException) -> str:
    """Build the one chat message shown for a terminal routing failure."""
    category = getattr(error, "category", None)
    if category == CATEGORY_MISMATCH:
        return f"Persona/model mismatch: {error}"
    if category == CATEGORY_CONFIGURATION:
        return "Configuration error: no LLM provider is configured with a usable model and API key."
    if category == CATEGORY_NETWORK:
        return "Network error: unable to get a response from any AI service. Please try again."
    return "An unexpected error occurred. Please try again."
