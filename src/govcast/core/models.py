"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types. Every record that lands in the
queue round-trips through ``to_dict``/``from_dict`` so task payloads stay plain
JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

ZERO_HASH = "0x" + "0" * 64

NOTIFICATION = "notification"
INVITATION = "invitation"


def is_nonzero_hash(value: Optional[str]) -> bool:
    """Return True when a hex hash carries any non-zero digit."""

    if not value:
        return False
    return value.lower().removeprefix("0x").strip("0") != ""


@dataclass(frozen=True)
class Chain:
    id: int
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chain":
        return cls(id=int(data["id"]), name=str(data["name"]))


@dataclass(frozen=True)
class Dao:
    """A Builder DAO; ``id`` is the lower-cased token contract address."""

    id: str
    name: str
    chain: Chain

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "chain": self.chain.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Dao":
        return cls(
            id=str(data["id"]).lower(),
            name=str(data["name"]),
            chain=Chain.from_dict(data["chain"]),
        )


@dataclass(frozen=True)
class Owner:
    """A token holder record from the subgraph."""

    id: str
    address: str
    dao: Dao
    token_count: int


@dataclass(frozen=True)
class Proposal:
    """A governance proposal. Timestamps are unix seconds."""

    id: str
    proposal_number: int
    dao: Dao
    title: str
    proposer: str
    created_at: int
    vote_start: int
    vote_end: int

    @property
    def dao_id(self) -> str:
        return self.dao.id

    @property
    def dao_name(self) -> str:
        return self.dao.name

    @property
    def chain_id(self) -> int:
        return self.dao.chain.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_number": self.proposal_number,
            "dao": self.dao.to_dict(),
            "title": self.title,
            "proposer": self.proposer,
            "created_at": self.created_at,
            "vote_start": self.vote_start,
            "vote_end": self.vote_end,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Proposal":
        return cls(
            id=str(data["id"]),
            proposal_number=int(data["proposal_number"]),
            dao=Dao.from_dict(data["dao"]),
            title=str(data["title"]),
            proposer=str(data["proposer"]),
            created_at=int(data["created_at"]),
            vote_start=int(data["vote_start"]),
            vote_end=int(data["vote_end"]),
        )


@dataclass(frozen=True)
class Propdate:
    """An attested progress update tied to a proposal."""

    id: str
    proposal_id: str
    chain_id: int
    milestone_id: Optional[int]
    message: str
    created_at: int
    original_message_id: str = ZERO_HASH

    @property
    def is_reply(self) -> bool:
        return is_nonzero_hash(self.original_message_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "chain_id": self.chain_id,
            "milestone_id": self.milestone_id,
            "message": self.message,
            "created_at": self.created_at,
            "original_message_id": self.original_message_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Propdate":
        milestone = data.get("milestone_id")
        return cls(
            id=str(data["id"]),
            proposal_id=str(data["proposal_id"]),
            chain_id=int(data["chain_id"]),
            milestone_id=int(milestone) if milestone is not None else None,
            message=str(data["message"]),
            created_at=int(data["created_at"]),
            original_message_id=str(data.get("original_message_id") or ZERO_HASH),
        )


@dataclass(frozen=True)
class Candidate:
    """An event that may be notified: a proposal, or a propdate plus its proposal."""

    proposal: Proposal
    propdate: Optional[Propdate] = None

    @property
    def event_id(self) -> str:
        if self.propdate is not None:
            return self.propdate.id
        return self.proposal.id

    @property
    def dao_id(self) -> str:
        return self.proposal.dao_id

    @property
    def concludes_at(self) -> Optional[int]:
        # Updates stay relevant after voting ends, so they never expire.
        if self.propdate is not None:
            return None
        return self.proposal.vote_end


@dataclass(frozen=True)
class NotificationPayload:
    recipient: int
    category: str
    proposal: Proposal
    propdate: Optional[Propdate] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": NOTIFICATION,
            "recipient": self.recipient,
            "category": self.category,
            "proposal": self.proposal.to_dict(),
            "propdate": self.propdate.to_dict() if self.propdate else None,
        }


@dataclass(frozen=True)
class InvitationPayload:
    recipient: int
    daos: tuple[Dao, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": INVITATION,
            "recipient": self.recipient,
            "daos": [dao.to_dict() for dao in self.daos],
        }


TaskPayload = Union[NotificationPayload, InvitationPayload]


def payload_from_dict(data: dict[str, Any]) -> TaskPayload:
    """Rebuild a task payload from its tagged JSON form."""

    kind = data.get("type")
    if kind == NOTIFICATION:
        propdate = data.get("propdate")
        return NotificationPayload(
            recipient=int(data["recipient"]),
            category=str(data.get("category") or "new_proposals"),
            proposal=Proposal.from_dict(data["proposal"]),
            propdate=Propdate.from_dict(propdate) if propdate else None,
        )
    if kind == INVITATION:
        return InvitationPayload(
            recipient=int(data["recipient"]),
            daos=tuple(Dao.from_dict(item) for item in data["daos"]),
        )
    raise ValueError(f"Unknown task type: {kind!r}")


@dataclass(frozen=True)
class Task:
    """A queued unit of work. ``data`` is the raw JSON payload as stored."""

    task_id: str
    data: str
    status: str
    enqueued_at: datetime
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of a direct cast send."""

    success: bool
    raw: dict[str, Any]
