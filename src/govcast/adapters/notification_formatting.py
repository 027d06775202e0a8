"""Direct cast message formatting.

Messages are built only from payload fields and use absolute UTC timestamps,
so formatting the same payload twice yields the same text (and therefore the
same idempotency key on retries).
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

from govcast.core.fanout import unique_by
from govcast.core.models import InvitationPayload, NotificationPayload, Proposal

PROPOSAL_LINK = "https://nouns.build/dao/{chain}/{dao_id}/vote/{number}"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M UTC"
UPDATE_EXCERPT_LINES = 2

_IMAGE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_QUOTE = re.compile(r"^\s*>\s?", re.MULTILINE)
_BULLET = re.compile(r"^\s*[-*+]\s+", re.MULTILINE)
_EMPHASIS = re.compile(r"[*_~`]+")
_DAO_SUFFIX = re.compile(r"\s*(?:DAO|dao)$")


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(TIMESTAMP_FORMAT)


def proposal_link(proposal: Proposal) -> str:
    chain = proposal.dao.chain.name.lower()
    return PROPOSAL_LINK.format(chain=chain, dao_id=proposal.dao_id, number=proposal.proposal_number)


def strip_markdown(text: str) -> str:
    """Reduce markdown to plain text good enough for a direct cast."""

    text = _IMAGE.sub("", text)
    text = _LINK.sub(r"\1", text)
    text = _HEADING.sub("", text)
    text = _QUOTE.sub("", text)
    text = _BULLET.sub("", text)
    return _EMPHASIS.sub("", text)


def excerpt(text: str, max_lines: int = UPDATE_EXCERPT_LINES) -> str:
    """Return the first ``max_lines`` non-empty lines, marking any cut with an ellipsis."""

    lines = [line.strip() for line in strip_markdown(text).splitlines() if line.strip()]
    if len(lines) <= max_lines:
        return "\n".join(lines)
    return "\n".join(lines[:max_lines]) + "…"


def clean_dao_name(name: str) -> str:
    return _DAO_SUFFIX.sub("", name.strip())


class NotificationFormatter:
    """Render notification and invitation payloads to direct cast text."""

    def __init__(self, bot_handle: str = "@builderbot") -> None:
        self._bot_handle = bot_handle

    def format_notification(self, payload: NotificationPayload) -> str:
        proposal = payload.proposal
        heading = f'(#{proposal.proposal_number}: "{proposal.title}")'

        if payload.propdate is not None:
            milestone = self._milestone_label(payload.propdate.milestone_id)
            body = (
                f"📢 A new update to proposal {heading}{milestone} has been posted "
                f"in {proposal.dao_name}:\n\n{excerpt(payload.propdate.message)}"
            )
        elif payload.category == "voting_open":
            body = (
                f"🗳️ Voting is now open on proposal {heading} in {proposal.dao_name} "
                f"until {format_timestamp(proposal.vote_end)}. Make your voice count!"
            )
        elif payload.category == "ending_soon":
            body = (
                f"⏳ Voting on proposal {heading} in {proposal.dao_name} closes "
                f"{format_timestamp(proposal.vote_end)}. Don't miss your chance to vote!"
            )
        else:
            body = (
                f"📢 A new proposal {heading} has been created on {proposal.dao_name} "
                f"at {format_timestamp(proposal.created_at)}. "
                f"🗳️ Voting starts {format_timestamp(proposal.vote_start)} and "
                f"ends {format_timestamp(proposal.vote_end)}. "
                "🚀 Check it out for more details and participate in the voting process!"
            )

        return f"{body}\n\n{proposal_link(proposal)}"

    def format_invitation(self, payload: InvitationPayload) -> str:
        daos = unique_by(payload.daos, lambda dao: dao.name)
        names = ", ".join(clean_dao_name(dao.name) for dao in daos)

        if len(daos) == 1:
            return (
                f"👋 Hey there! You're a proud member of {names}, powered by Builder Protocol. 🎉 "
                f"Want to stay in the loop for the latest proposals? Follow {self._bot_handle} "
                "on Warpcast to never miss an update! 🚀"
            )
        return (
            f"👋 Hey there! You're a member of {len(daos)} DAOs built by Builder Protocol: {names}. 🚀 "
            f"Stay informed about new proposals in your DAOs by following {self._bot_handle} "
            "on Warpcast and make your voice count! 🎉"
        )

    @staticmethod
    def _milestone_label(milestone_id: Optional[int]) -> str:
        # Milestones are zero-based on chain.
        if milestone_id is None:
            return ""
        return f" for milestone {milestone_id + 1}"
