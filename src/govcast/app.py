"""Application entry point for the govcast poller.

Every command does one bounded unit of work and exits, so the CLI is meant to
be driven by cron or any other scheduler.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Optional, Sequence

import httpx
from art import tprint

from govcast.adapters.builder_subgraph import BuilderSubgraph
from govcast.adapters.content import ContentResolver
from govcast.adapters.eas import EasPropdates
from govcast.adapters.graphql import GraphQLTransport
from govcast.adapters.notification_formatting import NotificationFormatter
from govcast.adapters.sqlite_storage import SQLiteStorage
from govcast.adapters.warpcast import WarpcastClient
from govcast.core.categories import PROPOSAL_CATEGORIES, UPDATES, CandidateSource, build_categories
from govcast.core.consumer import QueueConsumer
from govcast.core.errors import ConfigValidationError, UpstreamFetchError
from govcast.core.fanout import MultiSourceFetcher
from govcast.core.identity import IdentityResolver
from govcast.core.invites import InviteProcessor
from govcast.core.processor import EventProcessor
from govcast.settings import Settings, load_settings

NAME = "GOVCAST"
FONT = "tarty-1"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _TokenMaskingFormatter(logging.Formatter):
    """Mask the Warpcast bearer token wherever it ends up in a record."""

    def __init__(self, token: str) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
        self._token = token

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return message.replace(self._token, "***") if self._token else message


def _log_handlers(settings: Settings) -> list[logging.Handler]:
    config = settings.logging
    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())

    log_file = config.get("file")
    if log_file:
        if not os.path.isabs(log_file):
            log_file = os.path.join(settings.project_root, log_file)
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        # 5 MiB per file, five backups.
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
        )
    return handlers


def _configure_logging(settings: Settings) -> None:
    level = getattr(logging, str(settings.logging.get("level", "INFO")).upper(), logging.INFO)
    handlers = _log_handlers(settings)
    if not handlers:
        return

    formatter = _TokenMaskingFormatter(settings.warpcast_auth_token)
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)
    # httpx logs every request at INFO, including query strings.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


@dataclass
class _Services:
    """Everything a command needs, wired against one HTTP client."""

    storage: SQLiteStorage
    governance: BuilderSubgraph
    propdates: EasPropdates
    warpcast: WarpcastClient
    identity: IdentityResolver
    source: CandidateSource


def _wire(settings: Settings, storage: SQLiteStorage, client: httpx.AsyncClient) -> _Services:
    transport = GraphQLTransport(client, timeout=settings.subgraph_timeout_seconds)
    governance = BuilderSubgraph(MultiSourceFetcher(settings.builder_chains), transport)
    resolver = ContentResolver(
        client, settings.ipfs_gateways, timeout=settings.content_timeout_seconds
    )
    propdates = EasPropdates(
        MultiSourceFetcher(settings.attestation_chains),
        transport,
        resolver,
        schema_id=settings.propdate_schema_id,
    )
    warpcast = WarpcastClient(
        client, settings.warpcast_auth_token, base_url=settings.warpcast_base_url
    )
    identity = IdentityResolver(storage, warpcast, governance, settings.cache)
    source = CandidateSource(
        governance,
        propdates,
        storage,
        settings.cache,
        ending_horizon=settings.processing.lookbacks["ending_soon"],
    )
    return _Services(storage, governance, propdates, warpcast, identity, source)


def _open_storage(settings: Settings) -> SQLiteStorage:
    storage = SQLiteStorage(settings.database_path)
    storage.init_db()
    return storage


async def _process_categories(settings: Settings, names: Sequence[str]) -> None:
    """Run one poll per category; a failing category never stops the others."""

    storage = _open_storage(settings)
    async with httpx.AsyncClient() as client:
        services = _wire(settings, storage, client)
        categories = build_categories(services.source, settings.processing)
        for name in names:
            processor = EventProcessor(
                categories[name],
                services.identity,
                storage,
                storage,
                watermark_overlap=settings.processing.watermark_overlap_seconds,
            )
            try:
                await processor.run()
            except UpstreamFetchError as exc:
                LOGGER.error("Upstream failure while processing %s: %s", name, exc)
            except Exception:
                LOGGER.exception("Failed to process %s", name)


async def _process_invites(settings: Settings, limit: Optional[int]) -> None:
    storage = _open_storage(settings)
    async with httpx.AsyncClient() as client:
        services = _wire(settings, storage, client)
        invites = InviteProcessor(services.governance, services.identity, storage, storage)
        try:
            queued = await invites.run(limit)
        except UpstreamFetchError as exc:
            LOGGER.error("Upstream failure while processing invites: %s", exc)
        except Exception:
            LOGGER.exception("Failed to process invites")
        else:
            LOGGER.info("%s invitations queued", queued)


async def _consume_queue(settings: Settings, limit: Optional[int]) -> None:
    storage = _open_storage(settings)
    async with httpx.AsyncClient() as client:
        services = _wire(settings, storage, client)
        consumer = QueueConsumer(storage, services.warpcast, NotificationFormatter(settings.bot_handle))
        try:
            await consumer.consume(limit)
        except Exception:
            LOGGER.exception("Error while processing the queue")


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="govcast")
    parser.add_argument("--config", help="Path to config.json (defaults to $GOVCAST_CONFIG or ./config.json)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Poll upstream data and queue notifications")
    process_sub = process.add_subparsers(dest="target", required=True)
    proposals = process_sub.add_parser("proposals", help="Process proposal categories")
    proposals.add_argument(
        "--category",
        action="append",
        choices=PROPOSAL_CATEGORIES,
        help="Category to process (repeatable, defaults to all)",
    )
    process_sub.add_parser("propdates", help="Process proposal updates")
    invites = process_sub.add_parser("invites", help="Queue invitations for DAO members")
    invites.add_argument("--limit", type=_positive_int, help="Maximum number of invitations to queue")

    queue = subparsers.add_parser("queue", help="Queue operations")
    queue_sub = queue.add_subparsers(dest="target", required=True)
    consume = queue_sub.add_parser("consume", help="Send pending direct casts")
    consume.add_argument("--limit", type=_positive_int, help="Maximum number of tasks to process")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigValidationError as exc:
        sys.exit(f"Configuration error: {exc}")

    _configure_logging(settings)
    _print_banner()

    if args.command == "queue":
        asyncio.run(_consume_queue(settings, args.limit))
        return
    if args.target == "proposals":
        asyncio.run(_process_categories(settings, args.category or PROPOSAL_CATEGORIES))
        return
    if args.target == "propdates":
        asyncio.run(_process_categories(settings, [UPDATES]))
        return
    asyncio.run(_process_invites(settings, args.limit or settings.invites_max_per_run))


if __name__ == "__main__":
    main()
