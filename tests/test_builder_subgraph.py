from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from govcast.adapters.builder_subgraph import BuilderSubgraph
from govcast.adapters.graphql import GraphQLTransport
from govcast.core.config import ChainEndpoint
from govcast.core.errors import UpstreamFetchError
from govcast.core.fanout import MultiSourceFetcher

ETH = ChainEndpoint(1, "ethereum", "https://eth.subgraph.example/")
BASE = ChainEndpoint(8453, "base", "https://base.subgraph.example/")


def _record(proposal_id: str, dao_id: str = "0xDAO") -> dict:
    return {
        "id": proposal_id,
        "proposalNumber": 4,
        "dao": {"id": dao_id, "name": "Alpha DAO"},
        "title": "Fund",
        "proposer": "0x9",
        "timeCreated": "1700000000",
        "voteStart": "1700000100",
        "voteEnd": "1700086500",
    }


def _run(handler, call):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            subgraph = BuilderSubgraph(MultiSourceFetcher([ETH, BASE]), GraphQLTransport(client), page_size=2)
            return await call(subgraph)

    return asyncio.run(go())


def test_proposals_are_stamped_with_chain_and_deduplicated() -> None:
    requests: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append((request.url.host, body["variables"]))
        if request.url.host == "eth.subgraph.example":
            return httpx.Response(200, json={"data": {"proposals": [_record("0x1")]}})
        return httpx.Response(200, json={"data": {"proposals": [_record("0x2"), _record("0x1")]}})

    proposals = _run(handler, lambda subgraph: subgraph.proposals_created_since(1699999000))

    assert [(p.id, p.chain_id) for p in proposals] == [("0x1", 1), ("0x2", 8453)]
    assert proposals[0].dao_id == "0xdao"
    assert proposals[0].vote_end == 1700086500
    assert all(variables == {"since": "1699999000"} for _, variables in requests)


def test_graphql_errors_fail_the_whole_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "base.subgraph.example":
            return httpx.Response(200, json={"errors": [{"message": "indexer lagging"}]})
        return httpx.Response(200, json={"data": {"proposals": [_record("0x1")]}})

    with pytest.raises(UpstreamFetchError, match="indexer lagging"):
        _run(handler, lambda subgraph: subgraph.proposals_ending_between(1, 2))


def test_daos_for_owners_unique_by_dao() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["variables"] == {"owners": ["0xabc"]}
        owners = [{"dao": {"id": "0xD1", "name": "One"}}, {"dao": {"id": "0xd1", "name": "One"}}]
        return httpx.Response(200, json={"data": {"daotokenOwners": owners}})

    daos = _run(handler, lambda subgraph: subgraph.daos_for_owners(["0xABC"]))

    assert [dao.id for dao in daos] == ["0xd1"]


def test_proposal_lookup_uses_chain_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "base.subgraph.example"
        body = json.loads(request.content)
        if body["variables"]["id"] == "0xmissing":
            return httpx.Response(200, json={"data": {"proposal": None}})
        return httpx.Response(200, json={"data": {"proposal": _record(body["variables"]["id"])}})

    found = _run(handler, lambda subgraph: subgraph.proposal(8453, "0xABCD"))
    missing = _run(handler, lambda subgraph: subgraph.proposal(8453, "0xmissing"))

    assert found is not None and found.id == "0xabcd" and found.chain_id == 8453
    assert missing is None


def test_proposal_lookup_on_unknown_chain_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(UpstreamFetchError):
        _run(handler, lambda subgraph: subgraph.proposal(7777777, "0x1"))


def test_token_owners_paginate_until_exhausted() -> None:
    def owner(index: int) -> dict:
        return {"id": f"own-{index}", "owner": f"0xO{index}", "dao": {"id": "0xd", "name": "D"}, "daoTokenCount": "2"}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "base.subgraph.example":
            return httpx.Response(200, json={"data": {"owners": []}})
        skip = json.loads(request.content)["variables"]["skip"]
        pages = {0: [owner(0), owner(1)], 2: [owner(2)], 3: []}
        return httpx.Response(200, json={"data": {"owners": pages[skip]}})

    owners = _run(handler, lambda subgraph: subgraph.token_owners())

    assert [o.address for o in owners] == ["0xo0", "0xo1", "0xo2"]
    assert owners[0].token_count == 2
    assert owners[0].dao.chain.name == "ethereum"
