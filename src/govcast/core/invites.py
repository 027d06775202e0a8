"""Invitation planning for DAO members who do not follow us yet."""

from __future__ import annotations

import logging
from typing import Optional

from govcast.core.config import FOREVER
from govcast.core.dedup import filter_valid_addresses
from govcast.core.fanout import unique_by
from govcast.core.identity import IdentityResolver
from govcast.core.models import Dao, InvitationPayload
from govcast.core.ports import CachePort, GovernancePort, QueuePort

LOGGER = logging.getLogger(__name__)

INVITED_KEY = "invited_fids"


class InviteProcessor:
    """Queue one invitation per DAO member fid that is neither a follower nor invited."""

    def __init__(
        self,
        governance: GovernancePort,
        identity: IdentityResolver,
        cache: CachePort,
        queue: QueuePort,
    ) -> None:
        self._governance = governance
        self._identity = identity
        self._cache = cache
        self._queue = queue

    async def run(self, limit: Optional[int] = None) -> int:
        owners = await self._governance.token_owners()
        if not owners:
            LOGGER.warning("No DAO token owners found, terminating")
            return 0

        daos_by_address: dict[str, list[Dao]] = {}
        for owner in owners:
            daos_by_address.setdefault(owner.address.lower(), []).append(owner.dao)
        addresses = filter_valid_addresses(sorted(daos_by_address))
        LOGGER.info("%s owner addresses across %s records", len(addresses), len(owners))

        followers = set(await self._identity.follower_ids(await self._identity.self_id()))
        invited = {int(fid) for fid in self._cache.get(INVITED_KEY, FOREVER) or []}

        # One invitation per fid, merging DAOs across every address it verified.
        planned: dict[int, list[Dao]] = {}
        for address in addresses:
            if limit is not None and len(planned) >= limit:
                break
            fid = await self._identity.fid_for_address(address)
            if fid is None or fid in followers or fid in invited:
                continue
            planned.setdefault(fid, []).extend(daos_by_address[address])

        for fid, daos in planned.items():
            payload = InvitationPayload(recipient=fid, daos=tuple(unique_by(daos, lambda dao: dao.id)))
            task_id = self._queue.enqueue(payload)
            invited.add(fid)
            LOGGER.info("Queued invitation for fid %s (task %s)", fid, task_id)

        self._cache.set(INVITED_KEY, sorted(invited))
        return len(planned)
