from __future__ import annotations

import logging

import pytest

from govcast.app import _build_parser, _log_handlers, _TokenMaskingFormatter
from govcast.core.config import ChainEndpoint
from govcast.settings import Settings


def _settings(tmp_path, logging_config: dict) -> Settings:
    return Settings(
        config_path=str(tmp_path / "config.json"),
        database_path=str(tmp_path / "govcast.db"),
        warpcast_auth_token="s3cret",
        builder_chains=(ChainEndpoint(1, "ethereum", "https://eth.subgraph.example/"),),
        attestation_chains=(),
        logging=logging_config,
    )


def test_formatter_masks_auth_token() -> None:
    formatter = _TokenMaskingFormatter("s3cret")
    record = logging.LogRecord("govcast", logging.INFO, __file__, 1, "token=%s", ("s3cret",), None)

    assert formatter.format(record).endswith("token=***")


def test_log_file_is_resolved_next_to_config(tmp_path) -> None:
    handlers = _log_handlers(_settings(tmp_path, {"console": False, "file": "logs/govcast.log"}))
    try:
        (handler,) = handlers
        assert handler.baseFilename == str(tmp_path / "logs" / "govcast.log")
        assert (tmp_path / "logs").is_dir()
    finally:
        for handler in handlers:
            handler.close()


def test_console_only_by_default(tmp_path) -> None:
    (handler,) = _log_handlers(_settings(tmp_path, {}))

    assert type(handler) is logging.StreamHandler


def test_parser_commands() -> None:
    parser = _build_parser()

    proposals = parser.parse_args(["process", "proposals", "--category", "voting_open"])
    consume = parser.parse_args(["--config", "c.json", "queue", "consume", "--limit", "5"])

    assert proposals.category == ["voting_open"]
    assert consume.config == "c.json"
    assert consume.limit == 5


def test_parser_rejects_unknown_category() -> None:
    with pytest.raises(SystemExit):
        _build_parser().parse_args(["process", "proposals", "--category", "updates"])
