"""GraphQL transport adapter.

Posts queries to subgraph/indexer endpoints with httpx and unwraps the
``data`` object. Any failure surfaces as ``UpstreamFetchError``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from govcast.core.errors import UpstreamFetchError

LOGGER = logging.getLogger(__name__)


class GraphQLTransport:
    """Minimal GraphQL client on top of a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, timeout: Optional[float] = None) -> None:
        self._client = client
        # None disables the timeout: a hung endpoint blocks its caller.
        self._timeout = timeout

    async def request(
        self, url: str, query: str, variables: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        body = {"query": query, "variables": variables or {}}
        try:
            response = await self._client.post(url, json=body, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"GraphQL request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamFetchError(f"GraphQL response from {url} is not JSON") from exc
        if not isinstance(payload, dict):
            raise UpstreamFetchError(f"GraphQL response from {url} is not an object")

        errors = payload.get("errors")
        if errors:
            message = errors[0].get("message", "unknown error") if isinstance(errors[0], dict) else errors[0]
            raise UpstreamFetchError(f"GraphQL error from {url}: {message}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamFetchError(f"GraphQL response from {url} has no data")
        LOGGER.debug("GraphQL request to %s succeeded", url)
        return data
