#!/usr/bin/env python3
"""fip-voting: storage-weighted FIP voting API server."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Sequence

# Ensure this script's real directory is on sys.path so that `from fip_voting.X`
# works when the script is launched through a symlink.
sys.path.insert(0, os.path.dirname(os.path.realpath(__file__)))

import uvicorn

from fip_voting.api import create_app
from fip_voting.chain import StoragePowerOracle
from fip_voting.config import Config
from fip_voting.service import VotingService
from fip_voting.store import open_store

log = logging.getLogger("fip-voting")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _logger(message: str, level: str = "info") -> None:
    log.log(_LEVELS.get(level, logging.INFO), message)


def main(argv: Optional[Sequence[str]] = None) -> None:
    config = Config.from_args(argv)
    logging.basicConfig(
        level=_LEVELS.get(config.log_level.lower(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = open_store(config.store_url, logger=_logger)
    oracle = StoragePowerOracle(
        endpoints=config.rpc_endpoints(),
        timeout_seconds=config.rpc_timeout,
        logger=_logger,
    )
    service = VotingService(store=store, oracle=oracle, config=config, logger=_logger)

    seeded = service.seed_vote_starters()
    if "error" in seeded:
        store.close()
        raise SystemExit(f"fip-voting: could not seed vote starters: {seeded['error']}")

    log.info(
        "fip-voting initialized "
        f"(store={config.store_url}, vote_length={config.vote_length}s, "
        f"serve={config.serve_address}, tls={config.tls_enabled})"
    )

    ssl_options = {}
    if config.tls_enabled:
        ssl_options = {"ssl_certfile": config.tls_cert, "ssl_keyfile": config.tls_key}
    elif config.serve_address.startswith("https://"):
        log.warning("fip-voting: https serve address without --tls-cert/--tls-key, serving plain http")

    try:
        uvicorn.run(
            create_app(service),
            host=config.host,
            port=config.port,
            log_level=logging.getLevelName(_LEVELS.get(config.log_level.lower(), logging.INFO)).lower(),
            **ssl_options,
        )
    finally:
        store.close()


if __name__ == "__main__":
    main()
