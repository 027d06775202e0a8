"""Event categories and their candidate queries.

Every category turns a window ``(start, now)`` into a list of candidates.
The window start comes from the category watermark; ``ending_soon`` looks
forward instead and uses its lookback as the horizon.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from govcast.core.config import CacheConfig, ProcessingConfig
from govcast.core.models import Candidate, Propdate, Proposal
from govcast.core.ports import CachePort, GovernancePort, PropdatePort

LOGGER = logging.getLogger(__name__)

NEW_PROPOSALS = "new_proposals"
VOTING_OPEN = "voting_open"
ENDING_SOON = "ending_soon"
UPDATES = "updates"

PROPOSAL_CATEGORIES = (NEW_PROPOSALS, VOTING_OPEN, ENDING_SOON)
ALL_CATEGORIES = PROPOSAL_CATEGORIES + (UPDATES,)


@dataclass(frozen=True)
class EventCategory:
    """A polling category: its name, default lookback and candidate query."""

    name: str
    lookback: int
    fetch: Callable[[int, int], Awaitable[list[Candidate]]]


class CandidateSource:
    """Candidate queries for every category, backed by the governance ports."""

    def __init__(
        self,
        governance: GovernancePort,
        propdates: PropdatePort,
        cache: CachePort,
        cache_config: Optional[CacheConfig] = None,
        ending_horizon: int = 86400,
    ) -> None:
        self._governance = governance
        self._propdates = propdates
        self._cache = cache
        self._cache_config = cache_config or CacheConfig()
        self._ending_horizon = ending_horizon

    async def new_proposals(self, since: int, now: int) -> list[Candidate]:
        proposals = await self._governance.proposals_created_since(since)
        return [Candidate(proposal) for proposal in proposals if proposal.vote_end > now]

    async def voting_open(self, since: int, now: int) -> list[Candidate]:
        proposals = await self._governance.proposals_voting_started(since, now)
        return [
            Candidate(proposal)
            for proposal in proposals
            if proposal.vote_start <= now < proposal.vote_end
        ]

    async def ending_soon(self, since: int, now: int) -> list[Candidate]:
        proposals = await self._governance.proposals_ending_between(now, now + self._ending_horizon)
        return [Candidate(proposal) for proposal in proposals]

    async def updates(self, since: int, now: int) -> list[Candidate]:
        propdates = await self._propdates.propdates_since(since)
        candidates: list[Candidate] = []
        for propdate in propdates:
            if propdate.is_reply:
                continue
            proposal = await self._proposal_for(propdate)
            if proposal is None:
                LOGGER.warning(
                    "Proposal %s for update %s does not exist, skipping",
                    propdate.proposal_id,
                    propdate.id,
                )
                continue
            candidates.append(Candidate(proposal, propdate))
        return candidates

    async def _proposal_for(self, propdate: Propdate) -> Optional[Proposal]:
        key = f"proposal_{propdate.proposal_id.lower()}"
        cached = self._cache.get(key, self._cache_config.proposal_max_age)
        if cached is not None:
            return Proposal.from_dict(cached)

        proposal = await self._governance.proposal(propdate.chain_id, propdate.proposal_id)
        if proposal is not None:
            self._cache.set(key, proposal.to_dict())
        return proposal


def build_categories(source: CandidateSource, processing: ProcessingConfig) -> dict[str, EventCategory]:
    """Return every category keyed by name."""

    fetchers = {
        NEW_PROPOSALS: source.new_proposals,
        VOTING_OPEN: source.voting_open,
        ENDING_SOON: source.ending_soon,
        UPDATES: source.updates,
    }
    return {
        name: EventCategory(name=name, lookback=int(processing.lookbacks[name]), fetch=fetch)
        for name, fetch in fetchers.items()
    }
