"""Warpcast adapter.

Implements the core IdentityPort and SenderPort against the Warpcast JSON
API using a bearer token. A transport error, a non-2xx status or a response
carrying an ``errors`` array raises ``UpstreamFetchError``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from govcast.core.errors import UpstreamFetchError
from govcast.core.models import SendResult

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.warpcast.com"
FOLLOWERS_PAGE_SIZE = 100


class WarpcastClient:
    """Thin async client for the handful of Warpcast endpoints we use."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        auth_token: str,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {auth_token}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[dict[str, Any]]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers=self._headers
            )
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"Warpcast {method} {path} failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None

        try:
            data = response.json()
        except ValueError:
            data = {}
        errors = data.get("errors") if isinstance(data, dict) else None
        if errors:
            first = errors[0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise UpstreamFetchError(f"Warpcast {method} {path} returned an error: {message}")
        if response.is_error:
            raise UpstreamFetchError(f"Warpcast {method} {path} returned HTTP {response.status_code}")
        return data

    async def get_me(self) -> int:
        data = await self._request("GET", "/v2/me")
        return int(data["result"]["user"]["fid"])

    async def get_followers(self, fid: int) -> list[int]:
        """Return every follower fid, walking the cursor until exhausted."""

        followers: list[int] = []
        cursor = ""
        while True:
            params = {"fid": str(fid), "limit": str(FOLLOWERS_PAGE_SIZE)}
            if cursor:
                params["cursor"] = cursor
            data = await self._request("GET", "/v2/followers", params=params)
            followers.extend(int(user["fid"]) for user in data["result"]["users"])
            cursor = (data.get("next") or {}).get("cursor") or ""
            if not cursor:
                break
        LOGGER.debug("%s followers fetched for fid %s", len(followers), fid)
        return followers

    async def get_verifications(self, fid: int) -> list[str]:
        data = await self._request("GET", "/v2/verifications", params={"fid": str(fid)})
        return [str(item["address"]) for item in data["result"]["verifications"]]

    async def get_fid_by_verification(self, address: str) -> Optional[int]:
        """Return the fid that verified ``address``, or None when nobody did."""

        data = await self._request(
            "GET",
            "/v2/user-by-verification",
            params={"address": address},
            allow_not_found=True,
        )
        if data is None:
            return None
        user = (data.get("result") or {}).get("user")
        return int(user["fid"]) if user else None

    async def send_direct_cast(self, recipient: int, message: str, idempotency_key: str) -> SendResult:
        data = await self._request(
            "PUT",
            "/v2/ext-send-direct-cast",
            json={
                "recipientFid": recipient,
                "message": message,
                "idempotencyKey": idempotency_key,
            },
        )
        success = bool((data.get("result") or {}).get("success"))
        return SendResult(success=success, raw=data)
