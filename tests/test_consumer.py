from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from govcast.adapters.notification_formatting import NotificationFormatter
from govcast.adapters.sqlite_storage import COMPLETED, PENDING, SQLiteStorage
from govcast.core.consumer import QueueConsumer
from govcast.core.dedup import compute_idempotency_key
from govcast.core.models import (
    Chain,
    Dao,
    InvitationPayload,
    NotificationPayload,
    Proposal,
    SendResult,
    Task,
    TaskPayload,
)

DAO = Dao(id="0xaaa", name="Alpha DAO", chain=Chain(8453, "base"))


class FakeQueue:
    def __init__(self) -> None:
        self.tasks: list[Task] = []
        self.completed: list[str] = []

    def add_raw(self, data: str) -> str:
        task_id = f"task-{len(self.tasks) + 1}"
        self.tasks.append(
            Task(task_id, data, "pending", datetime(2024, 1, 1, tzinfo=timezone.utc))
        )
        return task_id

    def enqueue(self, payload: TaskPayload) -> str:
        return self.add_raw(json.dumps(payload.to_dict()))

    def pending(self, limit: Optional[int] = None) -> list[Task]:
        tasks = [task for task in self.tasks if task.task_id not in self.completed]
        return tasks[:limit] if limit is not None else tasks

    def complete(self, task_id: str) -> None:
        self.completed.append(task_id)


class FakeSender:
    def __init__(self, outcomes: Optional[list] = None) -> None:
        self.outcomes = list(outcomes or [])
        self.sent: list[tuple[int, str, str]] = []

    async def send_direct_cast(self, recipient: int, message: str, idempotency_key: str) -> SendResult:
        self.sent.append((recipient, message, idempotency_key))
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        return SendResult(success=outcome, raw={"result": {"success": outcome}})


class FakeFormatter:
    def format_notification(self, payload: NotificationPayload) -> str:
        return f"proposal {payload.proposal.id} for {payload.recipient}"

    def format_invitation(self, payload: InvitationPayload) -> str:
        return f"invite {payload.recipient}"


def _notification(recipient: int) -> NotificationPayload:
    proposal = Proposal(
        id="p1",
        proposal_number=1,
        dao=DAO,
        title="t",
        proposer="0x" + "9" * 40,
        created_at=1,
        vote_start=2,
        vote_end=3,
    )
    return NotificationPayload(recipient=recipient, category="new_proposals", proposal=proposal)


def test_consumes_oldest_task_first_with_limit() -> None:
    queue, sender = FakeQueue(), FakeSender()
    first = queue.enqueue(_notification(1))
    queue.enqueue(_notification(2))

    summary = asyncio.run(QueueConsumer(queue, sender, FakeFormatter()).consume(limit=1))

    assert summary.processed == 1
    assert summary.sent == 1
    assert queue.completed == [first]
    assert [recipient for recipient, _, _ in sender.sent] == [1]


def test_idempotency_key_is_hash_of_message() -> None:
    queue, sender = FakeQueue(), FakeSender()
    queue.enqueue(InvitationPayload(recipient=5, daos=(DAO,)))

    asyncio.run(QueueConsumer(queue, sender, FakeFormatter()).consume())

    assert sender.sent == [(5, "invite 5", compute_idempotency_key("invite 5"))]


def test_failed_send_requeues_payload_and_completes_original() -> None:
    queue, sender = FakeQueue(), FakeSender([RuntimeError("boom")])
    original = queue.enqueue(_notification(1))

    summary = asyncio.run(QueueConsumer(queue, sender, FakeFormatter()).consume())

    assert summary.retried == 1
    assert queue.completed == [original]
    (retry,) = queue.pending()
    assert retry.task_id != original
    assert json.loads(retry.data) == _notification(1).to_dict()


def test_unsuccessful_result_is_retried() -> None:
    queue, sender = FakeQueue(), FakeSender([False])
    queue.enqueue(_notification(1))

    summary = asyncio.run(QueueConsumer(queue, sender, FakeFormatter()).consume())

    assert summary.sent == 0
    assert summary.retried == 1
    assert len(queue.pending()) == 1


def test_retry_resends_with_same_idempotency_key() -> None:
    queue, sender = FakeQueue(), FakeSender([False, True])
    queue.enqueue(_notification(1))
    consumer = QueueConsumer(queue, sender, FakeFormatter())

    asyncio.run(consumer.consume())
    asyncio.run(consumer.consume())

    assert len(sender.sent) == 2
    assert sender.sent[0][2] == sender.sent[1][2]
    assert queue.pending() == []


def test_unreadable_payload_is_completed_without_retry() -> None:
    queue, sender = FakeQueue(), FakeSender()
    broken = queue.add_raw("{not json")
    unknown = queue.add_raw(json.dumps({"type": "test", "recipient": 1}))

    summary = asyncio.run(QueueConsumer(queue, sender, FakeFormatter()).consume())

    assert summary.dropped == 2
    assert queue.completed == [broken, unknown]
    assert queue.pending() == []
    assert sender.sent == []


def test_empty_queue_returns_immediately() -> None:
    summary = asyncio.run(QueueConsumer(FakeQueue(), FakeSender(), FakeFormatter()).consume())

    assert summary.processed == 0


class FlakyFormatter(FakeFormatter):
    def format_notification(self, payload: NotificationPayload) -> str:
        if payload.recipient == 1:
            raise ValueError("cannot render")
        return super().format_notification(payload)


def test_formatter_error_is_retried_and_does_not_block_queue() -> None:
    queue, sender = FakeQueue(), FakeSender()
    failing = queue.enqueue(_notification(1))
    healthy = queue.enqueue(_notification(2))

    summary = asyncio.run(QueueConsumer(queue, sender, FlakyFormatter()).consume())

    assert summary.sent == 1
    assert summary.retried == 1
    assert queue.completed == [failing, healthy]
    assert [recipient for recipient, _, _ in sender.sent] == [2]
    (retry,) = queue.pending()
    assert json.loads(retry.data)["recipient"] == 1


def test_unrenderable_timestamp_does_not_stall_sqlite_queue(tmp_path) -> None:
    storage = SQLiteStorage(str(tmp_path / "govcast.db"))
    storage.init_db()
    far_future = replace(_notification(1).proposal, vote_end=10**14)
    bad = storage.enqueue(NotificationPayload(recipient=1, category="ending_soon", proposal=far_future))
    storage.enqueue(_notification(2))
    sender = FakeSender()

    asyncio.run(QueueConsumer(storage, sender, NotificationFormatter()).consume())

    assert [recipient for recipient, _, _ in sender.sent] == [2]
    assert storage.get_task(bad).status == COMPLETED
    assert storage.count_tasks(PENDING) == 1
