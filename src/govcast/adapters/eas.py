"""EAS propdate adapter.

Implements the core PropdatePort on top of the EAS GraphQL indexers. Each
attestation's ``decodedDataJson`` is decoded into a Propdate; bodies stored
behind a URI are resolved through the ContentResolver. A propdate that
cannot be decoded or resolved is logged and dropped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from govcast.adapters.content import ContentResolver
from govcast.adapters.graphql import GraphQLTransport
from govcast.core.config import ChainEndpoint
from govcast.core.errors import UpstreamFetchError
from govcast.core.fanout import MultiSourceFetcher
from govcast.core.models import ZERO_HASH, Propdate, is_nonzero_hash

LOGGER = logging.getLogger(__name__)

PROPDATE_SCHEMA_ID = "0x8bd0d42901ce3cd9898dbea6ae2fbf1e796ef0923e7cbb0a1cecac2e42d47cb3"

# Indexer endpoints per chain id. Zora has no EAS deployment.
ATTESTATION_ENDPOINTS = {
    1: "https://easscan.org/graphql",
    10: "https://optimism.easscan.org/graphql",
    8453: "https://base.easscan.org/graphql",
}

INLINE_TEXT = 0
INLINE_JSON = 1
URL_TEXT = 2
URL_JSON = 3

ATTESTATIONS_QUERY = """
query PropdateAttestations($schemaId: String!, $since: Int!) {
  attestations(
    where: {
      schemaId: { equals: $schemaId }
      timeCreated: { gte: $since }
      isOffchain: { equals: false }
    }
  ) {
    id
    recipient
    timeCreated
    decodedDataJson
  }
}
"""


@dataclass(frozen=True)
class PropdateFields:
    """The schema fields carried by a propdate attestation."""

    proposal_id: str
    original_message_id: str
    message_type: int
    message: str


def _field_value(item: dict[str, Any]) -> Any:
    value = item["value"]["value"]
    # uint values may come wrapped as ethers BigNumber objects.
    if isinstance(value, dict) and "hex" in value:
        return int(value["hex"], 16)
    return value


def decode_propdate_fields(decoded_data_json: str) -> PropdateFields:
    """Decode ``decodedDataJson``. Raises ValueError/KeyError/TypeError when malformed."""

    fields: dict[str, Any] = {}
    for item in json.loads(decoded_data_json):
        fields[item["name"]] = _field_value(item)

    message_type = int(fields.get("messageType", INLINE_TEXT))
    if message_type not in (INLINE_TEXT, INLINE_JSON, URL_TEXT, URL_JSON):
        raise ValueError(f"Unknown propdate message type: {message_type}")
    return PropdateFields(
        proposal_id=str(fields.get("proposalId") or ZERO_HASH),
        original_message_id=str(fields.get("originalMessageId") or ZERO_HASH),
        message_type=message_type,
        message=str(fields.get("message") or ""),
    )


def parse_json_message(raw: str) -> tuple[str, Optional[int]]:
    """Return ``(content, milestone_id)`` from a JSON propdate message."""

    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Propdate JSON message is not an object")
    milestone = parsed.get("milestoneId")
    return str(parsed.get("content") or ""), int(milestone) if milestone is not None else None


class EasPropdates:
    """PropdatePort implementation over the EAS indexers."""

    def __init__(
        self,
        fetcher: MultiSourceFetcher,
        transport: GraphQLTransport,
        resolver: ContentResolver,
        schema_id: str = PROPDATE_SCHEMA_ID,
    ) -> None:
        self._fetcher = fetcher
        self._transport = transport
        self._resolver = resolver
        self._schema_id = schema_id

    async def propdates_since(self, since: int) -> list[Propdate]:
        async def fetch_one(endpoint: ChainEndpoint) -> list[Propdate]:
            data = await self._transport.request(
                endpoint.url,
                ATTESTATIONS_QUERY,
                {"schemaId": self._schema_id, "since": int(since)},
            )
            attestations = data.get("attestations") or []
            propdates: list[Propdate] = []
            for attestation in attestations:
                propdate = await self._to_propdate(attestation, endpoint.chain_id)
                if propdate is not None:
                    propdates.append(propdate)
            LOGGER.info(
                "%s propdates decoded from %s attestations on %s",
                len(propdates),
                len(attestations),
                endpoint.name,
            )
            return propdates

        return await self._fetcher.fetch(fetch_one, lambda propdate: propdate.id)

    async def _to_propdate(self, attestation: dict[str, Any], chain_id: int) -> Optional[Propdate]:
        attestation_id = attestation.get("id")
        try:
            fields = decode_propdate_fields(attestation["decodedDataJson"])
            created_at = int(attestation["timeCreated"])
            if not is_nonzero_hash(fields.proposal_id):
                LOGGER.debug("Dropping propdate %s without a proposal id", attestation_id)
                return None
            content, milestone = await self._resolve_message(fields)
        except (ValueError, KeyError, TypeError, UpstreamFetchError):
            LOGGER.exception("Dropping propdate %s that could not be decoded", attestation_id)
            return None

        return Propdate(
            id=str(attestation_id),
            proposal_id=fields.proposal_id,
            chain_id=chain_id,
            milestone_id=milestone,
            message=content,
            created_at=created_at,
            original_message_id=fields.original_message_id,
        )

    async def _resolve_message(self, fields: PropdateFields) -> tuple[str, Optional[int]]:
        if fields.message_type == INLINE_JSON:
            return parse_json_message(fields.message)
        if fields.message_type == URL_JSON:
            return parse_json_message(await self._resolver.resolve(fields.message))
        if fields.message_type == URL_TEXT:
            return await self._resolver.resolve(fields.message), None
        return fields.message, None
