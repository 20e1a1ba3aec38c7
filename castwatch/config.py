"""Bot configuration loaded from the environment (.env supported)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PATREON_URL = "https://www.patreon.com/lowlimitcashgames"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def parse_min_title_lengths(raw: str) -> Dict[str, int]:
    """Parse "hydration:3,stream:10,html:3" into a dict."""
    out: Dict[str, int] = {}
    for part in (raw or "").split(","):
        if not part.strip():
            continue
        name, _, value = part.partition(":")
        out[name.strip()] = int(value)
    return out


@dataclass
class Config:
    """Configuration with validation"""
    discord_bot_token: str
    channel_id: str
    podcast_rss_url: str
    patreon_url: str = DEFAULT_PATREON_URL

    # Scheduling
    check_interval_minutes: int = 15
    initial_check_delay_seconds: float = 5.0
    command_poll_seconds: float = 5.0
    command_prefix: str = "!"

    # Storage
    ledger_path: str = "last_checked.json"
    lock_path: str = "state/bot.lock"
    log_file: str = "bot.log"

    # Network / throttling
    request_timeout: int = 15
    announce_delay_seconds: float = 1.0

    # Content
    fallback_show_url: str = "https://podcasts.apple.com/us/podcast/low-limit-cash-games/id1496651303"
    spotify_show_url: str = "https://open.spotify.com/show/2ycOlKRTGA9ugMmIIjqjSE"
    placeholder_title: str = "New Patreon Post"
    feed_min_title_length: int = 3
    page_min_title_lengths: Dict[str, int] = field(default_factory=lambda: {"hydration": 3, "stream": 10, "html": 3})
    seed_page_backlog: bool = True
    announce_online: bool = True

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Config":
        """Load and validate configuration from environment variables"""
        load_dotenv(env_file)
        config = cls(
            discord_bot_token=os.getenv("DISCORD_BOT_TOKEN", "").strip(),
            channel_id=os.getenv("CHANNEL_ID", "").strip(),
            podcast_rss_url=os.getenv("PODCAST_RSS_URL", "").strip(),
            patreon_url=os.getenv("PATREON_URL", DEFAULT_PATREON_URL).strip(),

            check_interval_minutes=int(os.getenv("CHECK_INTERVAL_MINUTES", "15")),
            initial_check_delay_seconds=float(os.getenv("INITIAL_CHECK_DELAY_SECONDS", "5")),
            command_poll_seconds=float(os.getenv("COMMAND_POLL_SECONDS", "5")),
            command_prefix=os.getenv("COMMAND_PREFIX", "!"),

            ledger_path=os.getenv("LEDGER_PATH", "last_checked.json"),
            lock_path=os.getenv("LOCK_PATH", "state/bot.lock"),
            log_file=os.getenv("LOG_FILE", "bot.log"),

            request_timeout=int(os.getenv("REQUEST_TIMEOUT", "15")),
            announce_delay_seconds=float(os.getenv("ANNOUNCE_DELAY_SECONDS", "1.0")),

            fallback_show_url=os.getenv("FALLBACK_SHOW_URL", cls.fallback_show_url),
            spotify_show_url=os.getenv("SPOTIFY_SHOW_URL", cls.spotify_show_url),
            placeholder_title=os.getenv("PLACEHOLDER_TITLE", cls.placeholder_title),
            feed_min_title_length=int(os.getenv("FEED_MIN_TITLE_LENGTH", "3")),
            page_min_title_lengths=parse_min_title_lengths(
                os.getenv("PAGE_MIN_TITLE_LENGTHS", "hydration:3,stream:10,html:3")
            ),
            seed_page_backlog=_env_bool("SEED_PAGE_BACKLOG", "true"),
            announce_online=_env_bool("ANNOUNCE_ONLINE", "true"),
        )

        config._validate()
        return config

    def _validate(self):
        """Validate configuration values"""
        errors = []

        if not self.discord_bot_token:
            errors.append("DISCORD_BOT_TOKEN is required")

        if not self.channel_id:
            errors.append("CHANNEL_ID is required")
        elif not self.channel_id.isdigit():
            errors.append("CHANNEL_ID should be a numeric Discord channel id")

        if not self.podcast_rss_url:
            errors.append("PODCAST_RSS_URL is required")
        elif not self.podcast_rss_url.startswith(("http://", "https://")):
            errors.append("PODCAST_RSS_URL must be an http(s) URL")

        if not self.patreon_url.startswith(("http://", "https://")):
            errors.append("PATREON_URL must be an http(s) URL")

        if self.check_interval_minutes < 1 or self.check_interval_minutes > 1440:
            errors.append("CHECK_INTERVAL_MINUTES should be between 1 and 1440")

        if self.request_timeout < 5 or self.request_timeout > 120:
            errors.append("REQUEST_TIMEOUT should be between 5 and 120 seconds")

        if self.announce_delay_seconds < 0:
            errors.append("ANNOUNCE_DELAY_SECONDS cannot be negative")

        if self.command_poll_seconds < 0:
            errors.append("COMMAND_POLL_SECONDS cannot be negative (0 disables commands)")

        if any(v < 0 for v in self.page_min_title_lengths.values()) or self.feed_min_title_length < 0:
            errors.append("Minimum title lengths cannot be negative")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ValueError(error_msg)

        logger.info(f"Configuration validated successfully. Checking every {self.check_interval_minutes} minute(s)")
