"""Provider registry: which providers are configured, in which order."""

import logging
import os
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Mapping, Optional

from ..credentials import CredentialStore
from .providers import CLIENT_CLASSES, DEFAULT_PROVIDERS, Provider, ProviderClient

__all__ = ["ProviderRegistry", "ValidationReport", "is_well_formed_key"]

logger = logging.getLogger(__name__)

MIN_KEY_LENGTH = 8


def is_well_formed_key(key: Optional[str]) -> bool:
    """A usable key is non-blank, long enough and has no whitespace."""
    if not key:
        return False
    key = key.strip()
    return len(key) >= MIN_KEY_LENGTH and not any(ch.isspace() for ch in key)


@dataclass
class ValidationReport:
    """Result of checking provider configuration."""

    is_valid: bool
    message: str
    available_providers: list[str]


class ProviderRegistry:
    """Static provider list filtered by credentials.

    Credentials are looked up in the environment first, then in the
    keychain. The registry is read-only at runtime.
    """

    def __init__(
        self,
        providers: Iterable[Provider] = DEFAULT_PROVIDERS,
        environ: Optional[Mapping[str, str]] = None,
        credentials: Optional[CredentialStore] = None,
        client_factory: Optional[Callable[[Provider, str], ProviderClient]] = None,
    ):
        """Initialize registry.

        Args:
            providers: Provider definitions
            environ: Environment mapping (defaults to os.environ)
            credentials: Keychain fallback for API keys
            client_factory: Builds a client for a provider and key (for testing)
        """
        self._providers = list(providers)
        self._environ = environ
        self._credentials = credentials
        self._client_factory = client_factory or self._default_client

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers)

    def get_api_key(self, provider: Provider) -> Optional[str]:
        env = os.environ if self._environ is None else self._environ
        key = env.get(provider.env_var)
        if not key and self._credentials is not None:
            key = self._credentials.get_provider_key(provider.name)
        return key.strip() if key else None

    def available(self) -> list[Provider]:
        """Providers with a well-formed credential, lowest priority number first."""
        result = []
        for provider in self._providers:
            if is_well_formed_key(self.get_api_key(provider)):
                result.append(replace(provider, credential_present=True))
            else:
                logger.debug(f"Provider {provider.name} skipped: no usable credential")
        return sorted(result, key=lambda p: p.priority)

    def validate_configuration(self) -> ValidationReport:
        available = self.available()
        if not available:
            return ValidationReport(
                is_valid=False,
                message="No AI providers configured. Set at least one API key.",
                available_providers=[],
            )
        return ValidationReport(
            is_valid=True,
            message=f"{len(available)} AI provider(s) configured",
            available_providers=[p.name for p in available],
        )

    def create_client(self, provider: Provider) -> ProviderClient:
        key = self.get_api_key(provider)
        if not is_well_formed_key(key):
            raise ValueError(f"Provider {provider.name} has no usable credential")
        return self._client_factory(provider, key)

    @staticmethod
    def _default_client(provider: Provider, api_key: str) -> ProviderClient:
        try:
            client_cls = CLIENT_CLASSES[provider.name]
        except KeyError:
            raise ValueError(f"No client for provider {provider.name}") from None
        return client_cls(api_key=api_key, model=provider.model)
