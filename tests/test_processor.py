from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import pytest

from govcast.core.categories import EventCategory
from govcast.core.errors import UpstreamFetchError
from govcast.core.models import Candidate, Chain, Dao, Proposal, TaskPayload
from govcast.core.processor import EventProcessor, watermark_cache_key

NOW = 1_700_000_000
BASE = Chain(8453, "base")
DAO_A = Dao(id="0xaaa", name="Alpha DAO", chain=BASE)
DAO_B = Dao(id="0xbbb", name="Beta DAO", chain=BASE)
VALID = "0x" + "1" * 40


class FakeCache:
    def __init__(self) -> None:
        self.values: dict[str, Any] = {}

    def get(self, key: str, max_age: float) -> Optional[Any]:
        return self.values.get(key)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value


class FakeQueue:
    def __init__(self) -> None:
        self.payloads: list[TaskPayload] = []

    def enqueue(self, payload: TaskPayload) -> str:
        self.payloads.append(payload)
        return f"task-{len(self.payloads)}"


class FakeIdentity:
    def __init__(
        self,
        followers: list[int],
        addresses: dict[int, list[str]],
        memberships: dict[int, list[str]],
    ) -> None:
        self.followers = followers
        self.addresses = addresses
        self.memberships = memberships
        self.membership_calls: list[int] = []
        self.self_calls = 0

    async def self_id(self) -> int:
        self.self_calls += 1
        return 1

    async def follower_ids(self, fid: int) -> list[int]:
        return self.followers

    async def verified_addresses(self, follower: int) -> list[str]:
        return self.addresses.get(follower, [])

    async def dao_memberships(self, follower: int, addresses: Sequence[str]) -> Optional[list[str]]:
        self.membership_calls.append(follower)
        return self.memberships.get(follower)


def _proposal(proposal_id: str, dao: Dao, vote_end: int = NOW + 86400) -> Proposal:
    return Proposal(
        id=proposal_id,
        proposal_number=3,
        dao=dao,
        title="Fund the thing",
        proposer="0x" + "9" * 40,
        created_at=NOW - 100,
        vote_start=NOW - 50,
        vote_end=vote_end,
    )


class StaticCategory:
    def __init__(self, candidates: list[Candidate], lookback: int = 7 * 86400) -> None:
        self.candidates = candidates
        self.windows: list[tuple[int, int]] = []
        self.category = EventCategory(name="new_proposals", lookback=lookback, fetch=self.fetch)

    async def fetch(self, since: int, now: int) -> list[Candidate]:
        self.windows.append((since, now))
        return self.candidates


def _processor(category: StaticCategory, identity: FakeIdentity, cache: FakeCache, queue: FakeQueue):
    return EventProcessor(category.category, identity, cache, queue, clock=lambda: NOW)


def _member_identity() -> FakeIdentity:
    return FakeIdentity(followers=[7], addresses={7: [VALID]}, memberships={7: ["0xaaa"]})


def test_only_member_dao_candidates_are_queued() -> None:
    category = StaticCategory([Candidate(_proposal("p1", DAO_A)), Candidate(_proposal("p2", DAO_B))])
    cache, queue = FakeCache(), FakeQueue()

    queued = asyncio.run(_processor(category, _member_identity(), cache, queue).run())

    assert queued == 1
    assert [payload.proposal.id for payload in queue.payloads] == ["p1"]
    assert queue.payloads[0].recipient == 7
    assert set(cache.values["notified_new_proposals_7"]) == {"p1"}
    assert cache.values[watermark_cache_key("new_proposals")] == NOW - 3600


def test_already_notified_event_is_not_queued_again() -> None:
    category = StaticCategory([Candidate(_proposal("p1", DAO_A))])
    cache, queue = FakeCache(), FakeQueue()
    cache.values["notified_new_proposals_7"] = {"p1": NOW + 86400}

    queued = asyncio.run(_processor(category, _member_identity(), cache, queue).run())

    assert queued == 0
    assert queue.payloads == []


def test_second_run_over_same_candidates_queues_nothing() -> None:
    category = StaticCategory([Candidate(_proposal("p1", DAO_A))])
    cache, queue = FakeCache(), FakeQueue()
    processor = _processor(category, _member_identity(), cache, queue)

    assert asyncio.run(processor.run()) == 1
    assert asyncio.run(processor.run()) == 0
    assert len(queue.payloads) == 1


def test_empty_candidates_leave_state_untouched() -> None:
    category = StaticCategory([])
    cache, queue = FakeCache(), FakeQueue()
    identity = _member_identity()

    assert asyncio.run(_processor(category, identity, cache, queue).run()) == 0

    assert cache.values == {}
    assert queue.payloads == []
    assert identity.self_calls == 0


def test_window_starts_at_lookback_then_at_watermark() -> None:
    category = StaticCategory([Candidate(_proposal("p1", DAO_A))], lookback=3 * 86400)
    cache, queue = FakeCache(), FakeQueue()
    processor = _processor(category, _member_identity(), cache, queue)

    asyncio.run(processor.run())
    asyncio.run(processor.run())

    assert category.windows == [(NOW - 3 * 86400, NOW), (NOW - 3600, NOW)]


def test_followers_without_valid_addresses_or_memberships_are_skipped() -> None:
    category = StaticCategory([Candidate(_proposal("p1", DAO_A))])
    cache, queue = FakeCache(), FakeQueue()
    identity = FakeIdentity(
        followers=[7, 8, 9],
        addresses={7: ["not-an-address"], 8: [VALID], 9: [VALID]},
        memberships={8: [], 9: ["0xaaa"]},
    )

    assert asyncio.run(_processor(category, identity, cache, queue).run()) == 1

    assert identity.membership_calls == [8, 9]
    assert [payload.recipient for payload in queue.payloads] == [9]
    assert "notified_new_proposals_7" not in cache.values
    assert "notified_new_proposals_8" not in cache.values


def test_persisted_state_is_pruned_of_concluded_events() -> None:
    category = StaticCategory([Candidate(_proposal("p1", DAO_A))])
    cache, queue = FakeCache(), FakeQueue()
    cache.values["notified_new_proposals_7"] = {"old": NOW - 10, "kept": None}

    asyncio.run(_processor(category, _member_identity(), cache, queue).run())

    assert cache.values["notified_new_proposals_7"] == {"kept": None, "p1": NOW + 86400}


def test_upstream_failure_propagates_without_advancing_watermark() -> None:
    async def failing_fetch(since: int, now: int) -> list[Candidate]:
        raise UpstreamFetchError("subgraph down")

    category = EventCategory(name="voting_open", lookback=86400, fetch=failing_fetch)
    cache, queue = FakeCache(), FakeQueue()
    processor = EventProcessor(category, _member_identity(), cache, queue, clock=lambda: NOW)

    with pytest.raises(UpstreamFetchError):
        asyncio.run(processor.run())
    assert watermark_cache_key("voting_open") not in cache.values
