#!/usr/bin/env python3
"""
castwatch: podcast / Patreon episode announcer for Discord.

Checks the podcast feed and the Patreon page on a timer, opens one discussion
thread per new episode, and answers operator commands in the same channel.
"""

import errno
import fcntl
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import IO, Optional

import requests
import schedule

from castwatch.chat.commands import CommandListener, CommandRouter
from castwatch.chat.discord_client import DiscordAPIError, DiscordClient
from castwatch.checks.content_check import ContentChecker
from castwatch.config import Config
from castwatch.storage.ledger import LedgerStore

ONLINE_MESSAGE = "🤖 **Thread-creating bot is online!**"

logger = logging.getLogger(__name__)


def setup_logging(log_file: Optional[str] = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file or os.getenv('LOG_FILE', 'bot.log')),
            logging.StreamHandler(sys.stdout)
        ]
    )


class ProcessLock:
    """Exclusive flock on a pid file so two bots never share one ledger"""

    def __init__(self, lock_file: str):
        self.path = Path(lock_file)
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def _holder_pid(self) -> str:
        try:
            return self.path.read_text().strip() or "unknown"
        except OSError:
            return "unknown"

    def acquire(self) -> bool:
        """Take the lock without blocking; False when another process has it"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, 'a+')
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            handle.close()
            if e.errno in (errno.EAGAIN, errno.EACCES):
                logger.warning(f"Another process is already running (PID: {self._holder_pid()})")
            else:
                logger.error(f"Could not lock {self.path}: {e}")
            return False

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle
        logger.info(f"Lock {self.path} held by PID {os.getpid()}")
        return True

    def release(self):
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            fcntl.flock(handle, fcntl.LOCK_UN)
        except OSError as e:
            logger.error(f"Error unlocking {self.path}: {e}")
        finally:
            handle.close()
        logger.info(f"Lock {self.path} released")

    def __enter__(self) -> "ProcessLock":
        return self

    def __exit__(self, *exc):
        self.release()


class EpisodeBot:
    """Wires the checker, the command listener and the schedule together"""

    def __init__(self, config: Config, client: Optional[DiscordClient] = None):
        self.config = config
        self.client = client or DiscordClient(config.discord_bot_token, timeout=config.request_timeout)
        self.store = LedgerStore(config.ledger_path)
        self.checker = ContentChecker(config, self.client, self.store)
        self.router = CommandRouter(self.checker, prefix=config.command_prefix)
        self.shutdown_requested = False
        self.stop_event = threading.Event()
        self._command_thread: Optional[threading.Thread] = None
        self._setup_signal_handlers()
        logger.info("EpisodeBot initialized")

    def _setup_signal_handlers(self):
        """Setup graceful shutdown handlers"""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            self.request_shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def request_shutdown(self):
        self.shutdown_requested = True
        self.stop_event.set()

    def announce_online(self) -> None:
        channel = self.client.get_channel(self.config.channel_id)
        if channel is None:
            logger.error(f"Channel {self.config.channel_id} not found; cannot post online message")
            return
        try:
            channel.send(ONLINE_MESSAGE)
        except Exception as e:
            logger.warning(f"Failed to post online message: {e}")

    def run_scheduled_check(self):
        """Scheduled job entry point; never lets an error escape into the scheduler"""
        try:
            report = self.checker.run_check("all")
            if not report.skipped:
                logger.info(report.summary())
        except Exception as e:
            logger.error(f"Unexpected error in scheduled check: {e}", exc_info=True)

    def start_command_listener(self) -> bool:
        if self.config.command_poll_seconds <= 0:
            logger.info("Command polling disabled")
            return False
        channel = self.client.get_channel(self.config.channel_id)
        if channel is None:
            logger.error("Command listener not started: channel unavailable")
            return False
        bot_user_id = None
        try:
            bot_user_id = str(self.client.current_user().get("id"))
        except Exception as e:
            logger.warning(f"Could not resolve bot user id: {e}")
        listener = CommandListener(channel, self.router, bot_user_id=bot_user_id)
        self._command_thread = threading.Thread(
            target=listener.run_forever,
            args=(self.config.command_poll_seconds, self.stop_event),
            name="command-listener",
            daemon=True,
        )
        self._command_thread.start()
        return True


def main():
    """Bot entry point"""
    try:
        try:
            config = Config.from_env()
        except ValueError as e:
            setup_logging()
            logger.error(f"Configuration error:\n{e}")
            sys.exit(1)

        setup_logging(config.log_file)
        logger.info("🎙️ Starting castwatch episode announcer...")

        process_lock = ProcessLock(config.lock_path)
        if not process_lock.acquire():
            logger.error("Another instance of the bot is already running. Exiting.")
            sys.exit(1)

        with process_lock:
            try:
                bot = EpisodeBot(config)
                me = bot.client.current_user()
                logger.info(f"Logged in as {me.get('username')}")
            except (DiscordAPIError, requests.RequestException) as e:
                logger.error(f"Failed to log in to Discord: {e}")
                sys.exit(1)

            if config.announce_online:
                bot.announce_online()

            schedule.every(config.check_interval_minutes).minutes.do(bot.run_scheduled_check)
            bot.start_command_listener()

            logger.info("✅ Bot started successfully!")
            logger.info(f"📅 Schedule: every {config.check_interval_minutes} minute(s)")
            logger.info("⏹️  Stop: Press Ctrl+C for graceful shutdown")

            if not bot.stop_event.wait(config.initial_check_delay_seconds):
                logger.info("🚀 Running initial check...")
                bot.run_scheduled_check()

            while not bot.shutdown_requested:
                schedule.run_pending()
                bot.stop_event.wait(1)

            schedule.clear()
            logger.info("👋 Graceful shutdown completed")

    except KeyboardInterrupt:
        logger.info("👋 Shutdown requested by user")
    except Exception as e:
        logger.error(f"💥 Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
