"""
Verifier Registry

Explicit provider-id -> verifier-factory table, built once at startup.

- The table is immutable after construction; there is no load-time
  self-registration and no hidden import-order dependency
- Mock mode is a constructor argument. When enabled, every lookup returns a
  MockVerifier for the requested id, and the known provider set is reported
  as available
- Lookup of an unregistered provider with mock mode off raises
  VerifierRegistryError (a caller configuration error)
"""

import logging
from types import MappingProxyType
from typing import Callable, Iterable, List, Optional, Tuple

import httpx

from .attestation_model import PopProvider
from .errors import VerifierRegistryError
from .provider_catalog import KNOWN_PROVIDERS
from .provider_verifiers import (
    BrightIDVerifier,
    CivicVerifier,
    GitcoinPassportVerifier,
    MockVerifier,
    ProofOfHumanityVerifier,
    WorldIDVerifier,
)
from .verification_model import ProviderVerifier

logger = logging.getLogger("verifier_registry")

VerifierFactory = Callable[[], ProviderVerifier]


class VerifierRegistry:
    """Immutable lookup of verifiers by provider id."""

    def __init__(
        self,
        entries: Iterable[Tuple[str, VerifierFactory]] = (),
        mock_mode: bool = False,
    ):
        table = {}
        for provider, factory in entries:
            if provider in table:
                raise ValueError(f"Duplicate verifier for provider: {provider}")
            table[provider] = factory
        self._factories = MappingProxyType(table)
        self._mock_mode = bool(mock_mode)

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def get_verifier(self, provider: str) -> ProviderVerifier:
        if self._mock_mode:
            return MockVerifier(provider)

        factory = self._factories.get(provider)
        if factory is None:
            logger.error(f"No verifier registered for provider: {provider}")
            raise VerifierRegistryError(provider)
        return factory()

    def has_verifier(self, provider: str) -> bool:
        return self._mock_mode or provider in self._factories

    def get_registered_providers(self) -> List[str]:
        return list(self._factories.keys())

    def get_available_providers(self) -> List[str]:
        if self._mock_mode:
            return list(KNOWN_PROVIDERS)
        return self.get_registered_providers()


def builtin_verifier_entries(
    client: Optional[httpx.AsyncClient] = None,
) -> List[Tuple[str, VerifierFactory]]:
    """The five built-in providers, optionally sharing one HTTP client."""
    return [
        (PopProvider.WORLD_ID.value, lambda: WorldIDVerifier(client)),
        (PopProvider.GITCOIN_PASSPORT.value, lambda: GitcoinPassportVerifier(client)),
        (PopProvider.BRIGHTID.value, lambda: BrightIDVerifier(client)),
        (PopProvider.CIVIC.value, CivicVerifier),
        (PopProvider.PROOF_OF_HUMANITY.value, lambda: ProofOfHumanityVerifier(client)),
    ]


def build_verifier_registry(
    entries: Optional[Iterable[Tuple[str, VerifierFactory]]] = None,
    mock_mode: bool = False,
    client: Optional[httpx.AsyncClient] = None,
) -> VerifierRegistry:
    """
    Build the registry from (provider_id, factory) pairs.

    Args:
        entries: Pairs to register; defaults to the built-in providers
        mock_mode: Serve MockVerifier for every provider (non-production only)
        client: Shared HTTP client handed to the built-in providers
    """
    if entries is None:
        entries = builtin_verifier_entries(client)
    registry = VerifierRegistry(entries, mock_mode=mock_mode)

    if mock_mode:
        logger.warning("Mock provider mode enabled - every verification will succeed")
    else:
        logger.info(f"Verifier registry: {', '.join(registry.get_registered_providers()) or '(empty)'}")
    return registry
