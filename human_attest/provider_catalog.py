"""
Provider Catalog

Static facts about the known proof-of-personhood providers: display names,
documentation links, feature matrix and score thresholds.

Any provider string is accepted elsewhere; unknown providers get a low-trust
default feature set here.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, List

from .attestation_model import PopProvider


# -----------------------------------------------------------------------------
# Passport Score Thresholds
# -----------------------------------------------------------------------------
PASSPORT_THRESHOLD_BASIC = 15
PASSPORT_THRESHOLD_TRUSTED = 25
PASSPORT_THRESHOLD_HIGH_TRUST = 35

KNOWN_PROVIDERS: List[str] = [p.value for p in PopProvider]

PROVIDER_NAMES: Dict[str, str] = {
    PopProvider.WORLD_ID.value: "World ID",
    PopProvider.GITCOIN_PASSPORT.value: "Gitcoin Passport",
    PopProvider.PROOF_OF_HUMANITY.value: "Proof of Humanity",
    PopProvider.CIVIC.value: "Civic",
    PopProvider.BRIGHTID.value: "BrightID",
}

PROVIDER_DOCS_URLS: Dict[str, str] = {
    PopProvider.WORLD_ID.value: "https://docs.world.org/world-id",
    PopProvider.GITCOIN_PASSPORT.value: "https://docs.passport.gitcoin.co",
    PopProvider.PROOF_OF_HUMANITY.value: "https://proofofhumanity.id",
    PopProvider.CIVIC.value: "https://docs.civic.com",
    PopProvider.BRIGHTID.value: "https://brightid.gitbook.io",
}


@dataclass(frozen=True)
class ProviderFeatures:
    zk_proofs: bool
    sybil_resistance: int  # 1-5
    requires_hardware: bool
    global_availability: bool
    onchain_verification: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_FEATURES: Dict[str, ProviderFeatures] = {
    PopProvider.WORLD_ID.value: ProviderFeatures(
        zk_proofs=True,
        sybil_resistance=5,  # orb level
        requires_hardware=True,
        global_availability=False,
        onchain_verification=True,
    ),
    PopProvider.GITCOIN_PASSPORT.value: ProviderFeatures(
        zk_proofs=False,
        sybil_resistance=3,
        requires_hardware=False,
        global_availability=True,
        onchain_verification=True,
    ),
    PopProvider.PROOF_OF_HUMANITY.value: ProviderFeatures(
        zk_proofs=False,
        sybil_resistance=4,
        requires_hardware=False,
        global_availability=True,
        onchain_verification=True,
    ),
    PopProvider.CIVIC.value: ProviderFeatures(
        zk_proofs=False,
        sybil_resistance=3,
        requires_hardware=False,
        global_availability=True,
        onchain_verification=True,
    ),
    PopProvider.BRIGHTID.value: ProviderFeatures(
        zk_proofs=False,
        sybil_resistance=3,
        requires_hardware=False,
        global_availability=True,
        onchain_verification=True,
    ),
}

_UNKNOWN_FEATURES = ProviderFeatures(
    zk_proofs=False,
    sybil_resistance=1,
    requires_hardware=False,
    global_availability=True,
    onchain_verification=False,
)


def is_known_provider(provider: str) -> bool:
    return provider in KNOWN_PROVIDERS


def get_provider_name(provider: str) -> str:
    return PROVIDER_NAMES.get(provider, provider)


def get_provider_docs_url(provider: str) -> str:
    return PROVIDER_DOCS_URLS.get(provider, "")


def get_provider_features(provider: str) -> ProviderFeatures:
    return _FEATURES.get(provider, _UNKNOWN_FEATURES)


def describe_provider(provider: str) -> Dict[str, Any]:
    """Catalog entry used by the provider listing endpoint."""
    return {
        "id": provider,
        "name": get_provider_name(provider),
        "docs_url": get_provider_docs_url(provider),
        "features": get_provider_features(provider).to_dict(),
    }
