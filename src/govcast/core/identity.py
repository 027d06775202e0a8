"""Identity and ownership resolution with cache-aside stages.

Each stage is keyed by an upstream identity and cached independently:
self fid -> follower fids -> verified addresses -> DAO memberships. A cache
hit never touches the network. Upstream failures are not caught here; the
handler boundary decides what to do with them.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from govcast.core.config import CacheConfig
from govcast.core.ports import CachePort, GovernancePort, IdentityPort

LOGGER = logging.getLogger(__name__)

SELF_FID_KEY = "user_fid"


class IdentityResolver:
    """Resolve who follows us and which DAOs each follower belongs to."""

    def __init__(
        self,
        cache: CachePort,
        identity: IdentityPort,
        governance: GovernancePort,
        cache_config: Optional[CacheConfig] = None,
    ) -> None:
        self._cache = cache
        self._identity = identity
        self._governance = governance
        self._config = cache_config or CacheConfig()

    async def self_id(self) -> int:
        fid = self._cache.get(SELF_FID_KEY, self._config.self_max_age)
        if fid is not None:
            LOGGER.debug("User fid %s fetched from cache", fid)
            return int(fid)

        fid = await self._identity.get_me()
        self._cache.set(SELF_FID_KEY, fid)
        LOGGER.info("User fid %s fetched and cached", fid)
        return fid

    async def follower_ids(self, fid: int) -> list[int]:
        key = f"followers_fids_{fid}"
        followers = self._cache.get(key, self._config.identity_max_age)
        if followers is not None:
            LOGGER.debug("%s follower fids fetched from cache", len(followers))
            return [int(follower) for follower in followers]

        followers = await self._identity.get_followers(fid)
        self._cache.set(key, followers)
        LOGGER.info("%s follower fids fetched and cached", len(followers))
        return followers

    async def verified_addresses(self, follower: int) -> list[str]:
        key = f"addresses_{follower}"
        addresses = self._cache.get(key, self._config.identity_max_age)
        if addresses is not None:
            return list(addresses)

        addresses = [address.lower() for address in await self._identity.get_verifications(follower)]
        self._cache.set(key, addresses)
        LOGGER.debug("Addresses for follower %s fetched and cached", follower)
        return addresses

    async def dao_memberships(self, follower: int, addresses: Sequence[str]) -> Optional[list[str]]:
        """Return the follower's DAO ids, or None when unknown.

        With no addresses there is nothing to look up, so whatever the cache
        holds (possibly nothing) is the answer.
        """

        key = f"dao_ids_{follower}"
        dao_ids = self._cache.get(key, self._config.identity_max_age)
        if dao_ids is not None:
            return list(dao_ids)
        if not addresses:
            return None

        daos = await self._governance.daos_for_owners(addresses)
        dao_ids = [dao.id.lower() for dao in daos]
        self._cache.set(key, dao_ids)
        LOGGER.debug("DAO ids for follower %s fetched and cached", follower)
        return dao_ids

    async def fid_for_address(self, address: str) -> Optional[int]:
        """Return the fid that verified ``address``; negative results are cached too."""

        key = f"fid_by_address_{address.lower()}"
        cached = self._cache.get(key, self._config.identity_max_age)
        if cached is not None:
            return cached.get("fid")

        fid = await self._identity.get_fid_by_verification(address.lower())
        self._cache.set(key, {"fid": fid})
        return fid
