"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

DAY = 86400

# Max age for durable state kept in the cache (dedup sets, watermarks).
FOREVER = math.inf


@dataclass(frozen=True)
class ChainEndpoint:
    """One upstream data source bound to a chain. Immutable for the process lifetime."""

    chain_id: int
    name: str
    url: str


@dataclass(frozen=True)
class CacheConfig:
    """Max ages (seconds) for the cache-aside identity stages."""

    self_max_age: float = 7 * DAY
    identity_max_age: float = DAY
    proposal_max_age: float = DAY


@dataclass(frozen=True)
class ProcessingConfig:
    """Per-category lookbacks and watermark handling."""

    lookbacks: dict[str, int] = field(
        default_factory=lambda: {
            "new_proposals": 7 * DAY,
            "voting_open": 3 * DAY,
            "ending_soon": DAY,
            "updates": DAY,
        }
    )
    watermark_overlap_seconds: int = 3600
