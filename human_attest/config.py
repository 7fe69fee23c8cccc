"""
Configuration

Settings are resolved in three layers, later layers winning:
1. Dataclass defaults
2. Optional YAML file
3. Environment variables (HUMAN_ATTEST_<FIELD>, plus provider credentials)

Mock provider mode is an ordinary setting that callers pass to
build_verifier_registry(); nothing else reads it from the environment.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Dict, Any, Mapping

import yaml

from .approval_store import StorePolicy

logger = logging.getLogger("config")

ENV_PREFIX = "HUMAN_ATTEST_"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# provider id -> {config key: environment variable}
PROVIDER_ENV_VARS: Dict[str, Dict[str, str]] = {
    "world_id": {
        "app_id": "WORLD_ID_APP_ID",
        "action": "WORLD_ID_ACTION",
        "api_base": "WORLD_ID_API_BASE",
    },
    "gitcoin_passport": {
        "api_key": "GITCOIN_PASSPORT_API_KEY",
        "scorer_id": "GITCOIN_PASSPORT_SCORER_ID",
        "min_score": "GITCOIN_PASSPORT_MIN_SCORE",
    },
    "brightid": {
        "context": "BRIGHTID_CONTEXT",
        "node_url": "BRIGHTID_NODE_URL",
    },
    "civic": {
        "gatekeeper_network": "CIVIC_GATEKEEPER_NETWORK",
    },
    "proof_of_humanity": {
        "subgraph_url": "POH_SUBGRAPH_URL",
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class GateSettings:
    """Settings shared by the approval gate and the verification server."""
    approval_base_url: str = ""
    status_path: str = "/api/status"
    provider: str = "world_id"
    provider_params: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: float = 30.0
    poll_interval_seconds: float = 10.0
    http_timeout_seconds: float = 30.0
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    mock_providers: bool = False
    providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    storage_dir: Optional[str] = None
    store_policy: str = StorePolicy.LAST_WRITE_WINS.value
    log_level: str = "INFO"

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0

    @property
    def journal_file(self) -> Optional[Path]:
        if not self.storage_dir:
            return None
        return Path(self.storage_dir) / "approvals.jsonl"

    def provider_config(self, provider: str) -> Dict[str, Any]:
        return dict(self.providers.get(provider) or {})

    def validate(self) -> None:
        if self.timeout_minutes <= 0:
            raise ValueError(f"timeout_minutes must be positive: {self.timeout_minutes}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be positive: {self.poll_interval_seconds}")
        StorePolicy(self.store_policy)


def _coerce(current: Any, raw: str) -> Any:
    if isinstance(current, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(current, float):
        return float(raw)
    return raw


def _apply_mapping(settings: GateSettings, data: Mapping[str, Any]) -> None:
    known = {f.name for f in fields(GateSettings)}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting: {key}")
            continue
        if key == "providers":
            for provider, provider_config in (value or {}).items():
                settings.providers.setdefault(provider, {}).update(provider_config or {})
            continue
        if isinstance(getattr(settings, key), float) and value is not None:
            value = float(value)
        setattr(settings, key, value)


def _apply_environment(settings: GateSettings, environ: Mapping[str, str]) -> None:
    for f in fields(GateSettings):
        if f.name in ("providers", "provider_params"):
            continue
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        setattr(settings, f.name, _coerce(getattr(settings, f.name), raw))

    if not settings.github_token and environ.get("GITHUB_TOKEN"):
        settings.github_token = environ["GITHUB_TOKEN"]

    for provider, env_vars in PROVIDER_ENV_VARS.items():
        for config_key, env_name in env_vars.items():
            if environ.get(env_name):
                settings.providers.setdefault(provider, {})[config_key] = environ[env_name]


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GateSettings:
    """
    Load settings from defaults, an optional YAML file and the environment.

    Raises:
        ValueError: invalid values or a YAML document that is not a mapping
    """
    settings = GateSettings()

    if path is not None:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")
        _apply_mapping(settings, data)

    _apply_environment(settings, os.environ if environ is None else environ)
    settings.validate()
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
