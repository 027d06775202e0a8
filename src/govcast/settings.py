"""Configuration loading for govcast.

Non-secret settings (chains, gateways, lookbacks, logging) live in a single
JSON file so they can be edited without touching Python. Secrets come from
the environment, optionally loaded from a ``.env`` file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

from govcast.adapters.content import DEFAULT_GATEWAYS
from govcast.adapters.eas import ATTESTATION_ENDPOINTS, PROPDATE_SCHEMA_ID
from govcast.adapters.warpcast import DEFAULT_BASE_URL
from govcast.core.config import CacheConfig, ChainEndpoint, ProcessingConfig
from govcast.core.errors import ConfigValidationError

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_DB_NAME = "govcast.db"


@dataclass(frozen=True)
class Settings:
    config_path: str
    database_path: str
    warpcast_auth_token: str
    builder_chains: tuple[ChainEndpoint, ...]
    attestation_chains: tuple[ChainEndpoint, ...]
    propdate_schema_id: str = PROPDATE_SCHEMA_ID
    ipfs_gateways: tuple[str, ...] = DEFAULT_GATEWAYS
    content_timeout_seconds: float = 10.0
    # None keeps subgraph requests unbounded.
    subgraph_timeout_seconds: Optional[float] = None
    warpcast_base_url: str = DEFAULT_BASE_URL
    bot_handle: str = "@builderbot"
    cache: CacheConfig = field(default_factory=CacheConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    invites_max_per_run: Optional[int] = None
    logging: dict[str, Any] = field(default_factory=dict)

    @property
    def project_root(self) -> str:
        return os.path.dirname(os.path.abspath(self.config_path))


def _load_json_config(path: str) -> dict:
    """Load the JSON config file; a missing or unreadable file is fatal."""

    if not os.path.exists(path):
        raise ConfigValidationError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"Config file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigValidationError(f"Config file {path} must contain a JSON object")
    return data


def _parse_chain(entry: Any, section: str) -> ChainEndpoint:
    if not isinstance(entry, dict):
        raise ConfigValidationError(f"{section} entries must be objects")
    try:
        chain_id = int(entry["chain_id"])
        name = str(entry["name"]).strip()
        url = str(entry["url"]).strip()
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigValidationError(f"{section} entry is malformed: {entry!r}") from exc
    if not name or not url.startswith(("http://", "https://")):
        raise ConfigValidationError(f"{section} entry is malformed: {entry!r}")
    return ChainEndpoint(chain_id=chain_id, name=name, url=url)


def _parse_chains(raw: Any, section: str) -> tuple[ChainEndpoint, ...]:
    if not isinstance(raw, list):
        raise ConfigValidationError(f"{section} must be a list")
    chains = tuple(_parse_chain(entry, section) for entry in raw)
    ids = [chain.chain_id for chain in chains]
    if len(ids) != len(set(ids)):
        raise ConfigValidationError(f"{section} lists the same chain twice")
    return chains


def _default_attestation_chains(builder_chains: tuple[ChainEndpoint, ...]) -> tuple[ChainEndpoint, ...]:
    """Derive indexer endpoints for every Builder chain EAS supports."""

    chains = []
    for chain in builder_chains:
        url = ATTESTATION_ENDPOINTS.get(chain.chain_id)
        if url is None:
            LOGGER.warning("No attestation endpoint for chain %s, skipping", chain.chain_id)
            continue
        chains.append(ChainEndpoint(chain_id=chain.chain_id, name=chain.name, url=url))
    return tuple(chains)


def _optional_positive(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"{name} must be a number") from exc
    if number <= 0:
        raise ConfigValidationError(f"{name} must be positive")
    return number


def _parse_cache(raw: dict) -> CacheConfig:
    defaults = CacheConfig()
    return CacheConfig(
        self_max_age=float(raw.get("self_max_age_seconds", defaults.self_max_age)),
        identity_max_age=float(raw.get("identity_max_age_seconds", defaults.identity_max_age)),
        proposal_max_age=float(raw.get("proposal_max_age_seconds", defaults.proposal_max_age)),
    )


def _parse_processing(raw_lookbacks: dict, overlap: Any) -> ProcessingConfig:
    defaults = ProcessingConfig()
    lookbacks = dict(defaults.lookbacks)
    for name, value in raw_lookbacks.items():
        if name not in lookbacks:
            raise ConfigValidationError(f"Unknown lookback category: {name}")
        lookbacks[name] = int(value)
    return ProcessingConfig(
        lookbacks=lookbacks,
        watermark_overlap_seconds=int(
            overlap if overlap is not None else defaults.watermark_overlap_seconds
        ),
    )


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build Settings from the JSON config and the environment."""

    load_dotenv()
    path = config_path or os.getenv("GOVCAST_CONFIG") or DEFAULT_CONFIG_PATH
    config = _load_json_config(path)
    root = os.path.dirname(os.path.abspath(path))

    token = os.getenv("WARPCAST_AUTH_TOKEN", "").strip()
    if not token:
        raise ConfigValidationError("WARPCAST_AUTH_TOKEN is not set")

    builder_chains = _parse_chains(config.get("builder_chains", []), "builder_chains")
    if not builder_chains:
        raise ConfigValidationError("builder_chains must list at least one chain")

    if "attestation_chains" in config:
        attestation_chains = _parse_chains(config["attestation_chains"], "attestation_chains")
        # Propdates are enriched from the subgraph of the same chain.
        known = {chain.chain_id for chain in builder_chains}
        orphans = sorted(chain.chain_id for chain in attestation_chains if chain.chain_id not in known)
        if orphans:
            raise ConfigValidationError(
                f"attestation_chains lists chains missing from builder_chains: {orphans}"
            )
    else:
        attestation_chains = _default_attestation_chains(builder_chains)

    database_path = os.getenv("GOVCAST_DB_PATH") or config.get("database_path") or DEFAULT_DB_NAME
    if not os.path.isabs(database_path):
        database_path = os.path.join(root, database_path)

    gateways = config.get("ipfs_gateways") or list(DEFAULT_GATEWAYS)
    if not all(isinstance(gateway, str) and gateway for gateway in gateways):
        raise ConfigValidationError("ipfs_gateways must be a list of URLs")

    logging_config = config.get("logging") or {}
    if not isinstance(logging_config, dict):
        raise ConfigValidationError("logging must be an object")

    try:
        max_per_run = config.get("invites", {}).get("max_per_run")
        cache = _parse_cache(config.get("cache", {}))
        processing = _parse_processing(
            config.get("lookbacks", {}), config.get("watermark_overlap_seconds")
        )
        content_timeout = float(config.get("content_timeout_seconds", 10.0))
        invites_max = int(max_per_run) if max_per_run is not None else None
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigValidationError(f"Invalid config value: {exc}") from exc

    return Settings(
        config_path=os.path.abspath(path),
        database_path=database_path,
        warpcast_auth_token=token,
        builder_chains=builder_chains,
        attestation_chains=attestation_chains,
        propdate_schema_id=str(config.get("propdate_schema_id") or PROPDATE_SCHEMA_ID),
        ipfs_gateways=tuple(gateways),
        content_timeout_seconds=content_timeout,
        subgraph_timeout_seconds=_optional_positive(
            config.get("subgraph_timeout_seconds"), "subgraph_timeout_seconds"
        ),
        warpcast_base_url=os.getenv("WARPCAST_BASE_URL") or config.get("warpcast_base_url") or DEFAULT_BASE_URL,
        bot_handle=str(config.get("bot_handle") or "@builderbot"),
        cache=cache,
        processing=processing,
        invites_max_per_run=invites_max,
        logging=logging_config,
    )
