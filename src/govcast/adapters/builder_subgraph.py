"""Builder subgraph adapter.

Implements the core GovernancePort by querying the Builder DAO subgraph of
every configured chain through the MultiSourceFetcher. Every record is
stamped with the chain of the endpoint it came from.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from govcast.adapters.graphql import GraphQLTransport
from govcast.core.config import ChainEndpoint
from govcast.core.errors import UpstreamFetchError
from govcast.core.fanout import MultiSourceFetcher
from govcast.core.models import Chain, Dao, Owner, Proposal

LOGGER = logging.getLogger(__name__)

PROPOSAL_FIELDS = """
    id
    proposalNumber
    dao {
      id
      name
    }
    title
    proposer
    timeCreated
    voteStart
    voteEnd
"""

PROPOSALS_CREATED_QUERY = (
    """
query ProposalsCreated($since: BigInt!) {
  proposals(
    where: {
      timeCreated_gte: $since
      queued: false
      executed: false
      canceled: false
      vetoed: false
    }
    orderBy: timeCreated
    orderDirection: desc
    first: 100
  ) {"""
    + PROPOSAL_FIELDS
    + """  }
}
"""
)

PROPOSALS_VOTING_STARTED_QUERY = (
    """
query ProposalsVotingStarted($since: BigInt!, $until: BigInt!) {
  proposals(
    where: { voteStart_gte: $since, voteStart_lte: $until, voteEnd_gt: $until }
    orderBy: voteStart
    orderDirection: desc
    first: 100
  ) {"""
    + PROPOSAL_FIELDS
    + """  }
}
"""
)

PROPOSALS_ENDING_QUERY = (
    """
query ProposalsEnding($start: BigInt!, $end: BigInt!) {
  proposals(
    where: { voteEnd_gte: $start, voteEnd_lte: $end }
    orderBy: voteEnd
    orderDirection: asc
    first: 100
  ) {"""
    + PROPOSAL_FIELDS
    + """  }
}
"""
)

PROPOSAL_QUERY = (
    """
query GetProposal($id: ID!) {
  proposal(id: $id) {"""
    + PROPOSAL_FIELDS
    + """  }
}
"""
)

DAOS_FOR_OWNERS_QUERY = """
query DaosForOwners($owners: [Bytes!]!) {
  daotokenOwners(where: { owner_in: $owners }, first: 1000) {
    dao {
      id
      name
    }
  }
}
"""

TOKEN_OWNERS_QUERY = """
query GetDAOTokenOwners($skip: Int!, $first: Int!) {
  owners: daotokenOwners(
    skip: $skip
    first: $first
    orderBy: daoTokenCount
    orderDirection: desc
    subgraphError: deny
  ) {
    id
    owner
    dao {
      id
      name
    }
    daoTokenCount
  }
}
"""


def _chain(endpoint: ChainEndpoint) -> Chain:
    return Chain(id=endpoint.chain_id, name=endpoint.name)


def _dao_from_record(record: dict[str, Any], chain: Chain) -> Dao:
    return Dao(id=str(record["id"]).lower(), name=str(record["name"]), chain=chain)


def proposal_from_record(record: dict[str, Any], chain: Chain) -> Proposal:
    """Map a subgraph proposal record onto the core model."""

    return Proposal(
        id=str(record["id"]),
        proposal_number=int(record["proposalNumber"]),
        dao=_dao_from_record(record["dao"], chain),
        title=str(record.get("title") or ""),
        proposer=str(record.get("proposer") or ""),
        created_at=int(record["timeCreated"]),
        vote_start=int(record["voteStart"]),
        vote_end=int(record["voteEnd"]),
    )


class BuilderSubgraph:
    """GovernancePort implementation over the Builder subgraphs."""

    def __init__(
        self,
        fetcher: MultiSourceFetcher,
        transport: GraphQLTransport,
        page_size: int = 1000,
    ) -> None:
        self._fetcher = fetcher
        self._transport = transport
        self._page_size = page_size

    async def _proposals(self, query: str, variables: dict[str, Any]) -> list[Proposal]:
        async def fetch_one(endpoint: ChainEndpoint) -> list[Proposal]:
            data = await self._transport.request(endpoint.url, query, variables)
            chain = _chain(endpoint)
            return [proposal_from_record(record, chain) for record in data.get("proposals") or []]

        return await self._fetcher.fetch(fetch_one, lambda proposal: proposal.id)

    async def proposals_created_since(self, since: int) -> list[Proposal]:
        # BigInt variables travel as strings.
        return await self._proposals(PROPOSALS_CREATED_QUERY, {"since": str(since)})

    async def proposals_voting_started(self, since: int, until: int) -> list[Proposal]:
        return await self._proposals(
            PROPOSALS_VOTING_STARTED_QUERY, {"since": str(since), "until": str(until)}
        )

    async def proposals_ending_between(self, start: int, end: int) -> list[Proposal]:
        return await self._proposals(PROPOSALS_ENDING_QUERY, {"start": str(start), "end": str(end)})

    async def daos_for_owners(self, addresses: Sequence[str]) -> list[Dao]:
        owners = [address.lower() for address in addresses]

        async def fetch_one(endpoint: ChainEndpoint) -> list[Dao]:
            data = await self._transport.request(
                endpoint.url, DAOS_FOR_OWNERS_QUERY, {"owners": owners}
            )
            chain = _chain(endpoint)
            return [
                _dao_from_record(record["dao"], chain)
                for record in data.get("daotokenOwners") or []
            ]

        return await self._fetcher.fetch(fetch_one, lambda dao: dao.id)

    async def proposal(self, chain_id: int, proposal_id: str) -> Optional[Proposal]:
        """Look a proposal up on its own chain; None when it does not exist."""

        endpoint = self._fetcher.endpoint_for(chain_id)
        if endpoint is None:
            raise UpstreamFetchError(f"Endpoint not found for chain ID: {chain_id}")

        data = await self._transport.request(
            endpoint.url, PROPOSAL_QUERY, {"id": proposal_id.lower()}
        )
        record = data.get("proposal")
        if not record:
            LOGGER.debug("Proposal %s not found on chain %s", proposal_id, chain_id)
            return None
        return proposal_from_record(record, _chain(endpoint))

    async def token_owners(self) -> list[Owner]:
        """Return every DAO token owner on every chain, paging until exhausted."""

        async def fetch_one(endpoint: ChainEndpoint) -> list[Owner]:
            chain = _chain(endpoint)
            owners: list[Owner] = []
            skip = 0
            while True:
                data = await self._transport.request(
                    endpoint.url,
                    TOKEN_OWNERS_QUERY,
                    {"skip": skip, "first": self._page_size},
                )
                page = data.get("owners") or []
                if not page:
                    break
                owners.extend(
                    Owner(
                        id=str(record["id"]),
                        address=str(record["owner"]).lower(),
                        dao=_dao_from_record(record["dao"], chain),
                        token_count=int(record.get("daoTokenCount") or 0),
                    )
                    for record in page
                )
                skip += len(page)
            LOGGER.info("%s token owners fetched from %s", len(owners), endpoint.name)
            return owners

        return await self._fetcher.fetch(fetch_one, lambda owner: owner.id)
