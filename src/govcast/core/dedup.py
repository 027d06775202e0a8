"""Deduplication helpers (core domain).

Planning is a pure function of the candidates, the follower's memberships and
the follower's persisted dedup state, so it can be tested without any I/O.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from govcast.core.errors import CacheCorruptionError
from govcast.core.models import Candidate, NotificationPayload

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def filter_valid_addresses(addresses: Iterable[str]) -> list[str]:
    """Keep only well-formed EVM addresses; anything else is dropped silently."""

    return [address for address in addresses if ADDRESS_PATTERN.match(address)]


def compute_idempotency_key(message: str) -> str:
    """Return the content hash the send operation uses to suppress duplicates."""

    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def dedup_cache_key(category: str, follower: int) -> str:
    return f"notified_{category}_{follower}"


@dataclass(frozen=True)
class DedupState:
    """Already-notified event ids for one follower and category.

    Each id maps to the unix time its event concludes, or None when it never
    does; the conclusion time is only used for pruning.
    """

    notified: dict[str, Optional[int]] = field(default_factory=dict)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self.notified

    def __len__(self) -> int:
        return len(self.notified)

    def with_event(self, event_id: str, concludes_at: Optional[int]) -> "DedupState":
        notified = dict(self.notified)
        notified[event_id] = concludes_at
        return DedupState(notified)

    def pruned(self, now: int) -> "DedupState":
        """Drop entries whose event concluded before ``now``."""

        return DedupState(
            {
                event_id: concludes_at
                for event_id, concludes_at in self.notified.items()
                if concludes_at is None or concludes_at >= now
            }
        )

    def to_json(self) -> dict[str, Optional[int]]:
        return dict(self.notified)

    @classmethod
    def from_json(cls, raw: Any) -> "DedupState":
        """Load a persisted state. Plain id lists are accepted as well."""

        if raw is None:
            return cls()
        if isinstance(raw, list):
            return cls({str(event_id): None for event_id in raw})
        if isinstance(raw, dict):
            return cls(
                {
                    str(event_id): int(concludes_at) if concludes_at is not None else None
                    for event_id, concludes_at in raw.items()
                }
            )
        raise CacheCorruptionError(f"Unexpected dedup state: {type(raw).__name__}")


def plan_notifications(
    category: str,
    follower: int,
    candidates: Sequence[Candidate],
    memberships: Iterable[str],
    state: DedupState,
) -> tuple[list[NotificationPayload], DedupState]:
    """Return the payloads to enqueue for one follower and the updated state.

    A candidate is skipped when its DAO is not one of the follower's
    memberships or when its id is already in the state. Every emitted id is
    added to the returned state, so duplicate candidates yield one payload.
    """

    dao_ids = {dao_id.lower() for dao_id in memberships}
    payloads: list[NotificationPayload] = []
    for candidate in candidates:
        if candidate.dao_id.lower() not in dao_ids:
            continue
        if candidate.event_id in state:
            continue
        payloads.append(
            NotificationPayload(
                recipient=follower,
                category=category,
                proposal=candidate.proposal,
                propdate=candidate.propdate,
            )
        )
        state = state.with_event(candidate.event_id, candidate.concludes_at)
    return payloads, state
