"""Fan-out/fan-in over the configured chain endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, Iterable, Optional, Sequence, TypeVar

from govcast.core.config import ChainEndpoint

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def unique_by(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Drop items whose key was already seen, keeping the first occurrence."""

    seen: set[Hashable] = set()
    unique: list[T] = []
    for item in items:
        marker = key(item)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique


async def gather_all(
    endpoints: Sequence[ChainEndpoint],
    fetch_one: Callable[[ChainEndpoint], Awaitable[list[T]]],
) -> list[list[T]]:
    """Run ``fetch_one`` for every endpoint and wait for all of them.

    The first failure cancels the requests still in flight and propagates;
    callers never see a partial result.
    """

    tasks = [asyncio.ensure_future(fetch_one(endpoint)) for endpoint in endpoints]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Let cancelled branches unwind before the error leaves this frame.
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class MultiSourceFetcher:
    """Issue one query per chain endpoint concurrently and merge the results."""

    def __init__(self, endpoints: Sequence[ChainEndpoint]) -> None:
        self._endpoints = tuple(endpoints)

    @property
    def endpoints(self) -> tuple[ChainEndpoint, ...]:
        return self._endpoints

    def endpoint_for(self, chain_id: int) -> Optional[ChainEndpoint]:
        for endpoint in self._endpoints:
            if endpoint.chain_id == chain_id:
                return endpoint
        return None

    async def fetch(
        self,
        fetch_one: Callable[[ChainEndpoint], Awaitable[list[T]]],
        key: Callable[[T], Hashable],
    ) -> list[T]:
        """Return the merged records, deduplicated by ``key`` in endpoint order."""

        results = await gather_all(self._endpoints, fetch_one)
        merged = [record for records in results for record in records]
        unique = unique_by(merged, key)
        LOGGER.debug(
            "Fetched %s records from %s endpoints (%s unique)",
            len(merged),
            len(self._endpoints),
            len(unique),
        )
        return unique
