"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, upstream data and message
delivery so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from govcast.core.models import (
    Dao,
    InvitationPayload,
    NotificationPayload,
    Owner,
    Propdate,
    Proposal,
    SendResult,
    Task,
    TaskPayload,
)


class CachePort(Protocol):
    """Key/value store with freshness-bounded reads."""

    def get(self, key: str, max_age: float) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class QueuePort(Protocol):
    """Durable FIFO queue of notification tasks."""

    def enqueue(self, payload: TaskPayload) -> str:
        ...

    def pending(self, limit: Optional[int] = None) -> list[Task]:
        ...

    def complete(self, task_id: str) -> None:
        ...


class IdentityPort(Protocol):
    """Social graph operations (Warpcast)."""

    async def get_me(self) -> int:
        ...

    async def get_followers(self, fid: int) -> list[int]:
        ...

    async def get_verifications(self, fid: int) -> list[str]:
        ...

    async def get_fid_by_verification(self, address: str) -> Optional[int]:
        ...


class SenderPort(Protocol):
    """The external message send operation."""

    async def send_direct_cast(
        self, recipient: int, message: str, idempotency_key: str
    ) -> SendResult:
        ...


class GovernancePort(Protocol):
    """Builder DAO governance data aggregated over all configured chains."""

    async def proposals_created_since(self, since: int) -> list[Proposal]:
        ...

    async def proposals_voting_started(self, since: int, until: int) -> list[Proposal]:
        ...

    async def proposals_ending_between(self, start: int, end: int) -> list[Proposal]:
        ...

    async def daos_for_owners(self, addresses: Sequence[str]) -> list[Dao]:
        ...

    async def proposal(self, chain_id: int, proposal_id: str) -> Optional[Proposal]:
        ...

    async def token_owners(self) -> list[Owner]:
        ...


class PropdatePort(Protocol):
    """Proposal updates (attestations) aggregated over all configured chains."""

    async def propdates_since(self, since: int) -> list[Propdate]:
        ...


class MessageFormatter(Protocol):
    """Deterministic message rendering from payload fields."""

    def format_notification(self, payload: NotificationPayload) -> str:
        ...

    def format_invitation(self, payload: InvitationPayload) -> str:
        ...
