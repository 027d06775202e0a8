"""Content resolver adapter.

Fetches propdate bodies referenced by URI. Plain HTTP(S) URLs are fetched
once; ``ipfs://`` URIs race every configured gateway and keep the first body
that arrives.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import httpx

from govcast.core.errors import UpstreamFetchError

LOGGER = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"

DEFAULT_GATEWAYS = (
    "https://ipfs.io/ipfs/",
    "https://cloudflare-ipfs.com/ipfs/",
    "https://dweb.link/ipfs/",
    "https://w3s.link/ipfs/",
    "https://flk-ipfs.xyz/ipfs/",
)


class ContentResolver:
    """Resolve ``http(s)://`` and ``ipfs://`` URIs to text."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        gateways: Sequence[str] = DEFAULT_GATEWAYS,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._gateways = tuple(gateways)
        self._timeout = timeout

    async def resolve(self, uri: str) -> str:
        if uri.startswith(IPFS_SCHEME):
            cid = uri[len(IPFS_SCHEME):]
            if not cid:
                raise ValueError("CID is required")
            return await self._race_gateways(cid)
        if uri.startswith(("http://", "https://")):
            return await self._fetch(uri)
        raise ValueError(f"Unsupported URI scheme: {uri}")

    async def _fetch(self, url: str) -> str:
        try:
            response = await asyncio.wait_for(
                self._client.get(url, timeout=self._timeout, headers={"Cache-Control": "no-cache"}),
                self._timeout,
            )
            response.raise_for_status()
        except asyncio.TimeoutError as exc:
            raise UpstreamFetchError(f"Timed out fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"Failed to fetch {url}: {exc}") from exc
        return response.text

    async def _race_gateways(self, cid: str) -> str:
        """Return the first successful gateway body; cancel the rest."""

        if not self._gateways:
            raise UpstreamFetchError("No IPFS gateways configured")

        tasks = {
            asyncio.ensure_future(self._fetch(f"{gateway}{cid}")): gateway
            for gateway in self._gateways
        }
        pending = set(tasks)
        failures: list[str] = []
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.cancelled():
                        continue
                    error = task.exception()
                    if error is None:
                        LOGGER.debug("IPFS content %s served by %s", cid, tasks[task])
                        return task.result()
                    failures.append(f"{tasks[task]}: {error}")
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        raise UpstreamFetchError(
            f"Failed to fetch {cid} from all IPFS gateways: {'; '.join(failures)}"
        )
