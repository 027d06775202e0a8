"""Core event processing pipeline.

This module is integration-agnostic. It only relies on ports for the cache,
the queue and the upstream APIs. One ``EventProcessor`` handles one category
per poll, in a strict order:

1) Resolve the candidate window from the category watermark
2) Fetch candidates; fast-exit (no state touched) when there are none
3) For each follower, sequentially: addresses -> valid addresses -> DAOs
4) Load the follower's dedup state
5) Plan notifications (pure) and enqueue them
6) Persist the follower's dedup state
7) Advance the category watermark

The dedup read-modify-write in steps 4-6 is not guarded against a second
process running the same category at the same time; overlapping runs can
enqueue the same notification twice.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from govcast.core.categories import EventCategory
from govcast.core.config import FOREVER
from govcast.core.dedup import DedupState, dedup_cache_key, filter_valid_addresses, plan_notifications
from govcast.core.identity import IdentityResolver
from govcast.core.ports import CachePort, QueuePort

LOGGER = logging.getLogger(__name__)


def watermark_cache_key(category: str) -> str:
    return f"last_poll_{category}"


class EventProcessor:
    """Orchestrates candidate fetch, membership matching, dedup and enqueueing."""

    def __init__(
        self,
        category: EventCategory,
        identity: IdentityResolver,
        cache: CachePort,
        queue: QueuePort,
        watermark_overlap: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._category = category
        self._identity = identity
        self._cache = cache
        self._queue = queue
        self._overlap = watermark_overlap
        self._clock = clock

    @property
    def category(self) -> str:
        return self._category.name

    def window_start(self, now: int) -> int:
        """Return the persisted watermark, or ``now - lookback`` when absent."""

        watermark = self._cache.get(watermark_cache_key(self.category), FOREVER)
        if watermark is None:
            return now - self._category.lookback
        return int(watermark)

    async def run(self) -> int:
        """Process one poll for this category and return the number of tasks enqueued."""

        now = int(self._clock())
        since = self.window_start(now)
        LOGGER.info("Fetching %s candidates since %s", self.category, since)
        candidates = await self._category.fetch(since, now)
        if not candidates:
            LOGGER.warning("No %s candidates found, terminating", self.category)
            return 0
        LOGGER.info("%s %s candidates retrieved", len(candidates), self.category)

        fid = await self._identity.self_id()
        followers = await self._identity.follower_ids(fid)
        LOGGER.info("%s followers to process for %s", len(followers), self.category)

        enqueued = 0
        for follower in followers:
            addresses = filter_valid_addresses(await self._identity.verified_addresses(follower))
            if not addresses:
                LOGGER.debug("No valid addresses for follower %s, skipping", follower)
                continue

            memberships = await self._identity.dao_memberships(follower, addresses)
            if not memberships:
                LOGGER.debug("No DAOs for follower %s, skipping", follower)
                continue

            key = dedup_cache_key(self.category, follower)
            state = DedupState.from_json(self._cache.get(key, FOREVER))
            payloads, state = plan_notifications(
                self.category, follower, candidates, memberships, state
            )
            for payload in payloads:
                task_id = self._queue.enqueue(payload)
                LOGGER.info(
                    "Queued %s notification %s for follower %s (task %s)",
                    self.category,
                    payload.propdate.id if payload.propdate else payload.proposal.id,
                    follower,
                    task_id,
                )
            self._cache.set(key, state.pruned(now).to_json())
            enqueued += len(payloads)

        # Dedup makes re-reading the overlap harmless, and it covers indexer lag.
        self._cache.set(watermark_cache_key(self.category), now - self._overlap)
        LOGGER.info("%s poll complete: %s tasks queued", self.category, enqueued)
        return enqueued
