#!/usr/bin/env python3
"""Content-check worker without the command surface.

Runs one check cycle (or keeps running on the configured schedule):
- podcast RSS feed
- Patreon creator page

Useful from cron or for a dry first run that seeds the ledger.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import Optional

import schedule

from castwatch.chat.discord_client import DiscordClient
from castwatch.checks.content_check import CHECK_KINDS, ContentChecker
from castwatch.config import Config
from castwatch.storage.ledger import LedgerStore

logger = logging.getLogger("check_worker")


def build_checker(config: Config) -> ContentChecker:
    client = DiscordClient(config.discord_bot_token, timeout=config.request_timeout)
    return ContentChecker(config, client, LedgerStore(config.ledger_path))


def check_kind_from_env() -> Optional[str]:
    """CHECK_KIND for one-shot runs, or None when it names no known check."""
    kind = (os.environ.get("CHECK_KIND") or "all").lower().strip()
    if kind not in CHECK_KINDS:
        logger.error(f"Unknown CHECK_KIND {kind!r}; expected one of: {', '.join(CHECK_KINDS)}")
        return None
    return kind


def run_once(checker: ContentChecker, kind: str = "all") -> int:
    report = checker.run_check(kind)
    print(f"[check] {report.summary()}")
    return 1 if report.errors else 0


def run_scheduled(checker: ContentChecker, interval_minutes: int) -> None:
    schedule.every(interval_minutes).minutes.do(run_once, checker)
    run_once(checker)
    while True:
        schedule.run_pending()
        time.sleep(5)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    try:
        config = Config.from_env()
    except ValueError as e:
        logger.error(f"Configuration error:\n{e}")
        sys.exit(1)

    checker = build_checker(config)
    mode = (os.environ.get("CHECK_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        run_scheduled(checker, config.check_interval_minutes)
    else:
        kind = check_kind_from_env()
        if kind is None:
            sys.exit(1)
        sys.exit(run_once(checker, kind))
