"""Queue consumer: turns pending tasks into direct casts.

Tasks move ``pending -> completed`` exactly once. A failed send is not kept
pending; instead a brand-new pending task with the same payload is queued and
the original is completed anyway. There is no attempt counter, so a message
that can never be delivered is retried on every consume run.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from govcast.core.dedup import compute_idempotency_key
from govcast.core.errors import TaskHandlerError
from govcast.core.models import (
    InvitationPayload,
    NotificationPayload,
    Task,
    TaskPayload,
    payload_from_dict,
)
from govcast.core.ports import MessageFormatter, QueuePort, SenderPort

LOGGER = logging.getLogger(__name__)


@dataclass
class ConsumeSummary:
    processed: int = 0
    sent: int = 0
    retried: int = 0
    dropped: int = 0


class QueueConsumer:
    """Process pending tasks oldest-first, strictly one after another."""

    def __init__(self, queue: QueuePort, sender: SenderPort, formatter: MessageFormatter) -> None:
        self._queue = queue
        self._sender = sender
        self._formatter = formatter

    async def consume(self, limit: Optional[int] = None) -> ConsumeSummary:
        summary = ConsumeSummary()
        tasks = self._queue.pending(limit)
        if not tasks:
            LOGGER.warning("No pending tasks available")
            return summary

        for task in tasks:
            LOGGER.info("Processing task %s", task.task_id)
            try:
                payload = payload_from_dict(json.loads(task.data))
            except (ValueError, KeyError, TypeError, AttributeError):
                LOGGER.exception("Dropping task %s with an unreadable payload", task.task_id)
                summary.dropped += 1
            else:
                if await self._handle(payload):
                    summary.sent += 1
                else:
                    self.retry_task(task, payload)
                    summary.retried += 1

            self._queue.complete(task.task_id)
            summary.processed += 1
            LOGGER.info("Task %s marked as completed", task.task_id)

        LOGGER.info(
            "Queue run finished: processed=%s sent=%s retried=%s dropped=%s",
            summary.processed,
            summary.sent,
            summary.retried,
            summary.dropped,
        )
        return summary

    def retry_task(self, task: Task, payload: TaskPayload) -> str:
        """Queue a fresh pending task carrying the same payload."""

        task_id = self._queue.enqueue(payload)
        LOGGER.info("Task %s re-queued as %s", task.task_id, task_id)
        return task_id

    def _format(self, payload: TaskPayload) -> str:
        if isinstance(payload, NotificationPayload):
            return self._formatter.format_notification(payload)
        if isinstance(payload, InvitationPayload):
            return self._formatter.format_invitation(payload)
        raise TypeError(f"Unhandled payload type: {type(payload).__name__}")

    async def _handle(self, payload: TaskPayload) -> bool:
        # Formatting failures are retried like send failures.
        try:
            message = self._format(payload)
            result = await self._sender.send_direct_cast(
                payload.recipient, message, compute_idempotency_key(message)
            )
            if not result.success:
                raise TaskHandlerError(f"Non-successful result: {json.dumps(result.raw)}")
        except Exception:
            LOGGER.exception("Failed to send %s to %s", type(payload).__name__, payload.recipient)
            return False

        LOGGER.info("Direct cast sent to %s", payload.recipient)
        return True
