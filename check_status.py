#!/usr/bin/env python3
"""
Quick status check for the episode announcer
"""

import os
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from castwatch.storage.ledger import DEFAULT_LEDGER_PATH, LedgerStore, iso_z


def check_env_file():
    """Check required configuration is present"""
    print("📋 Checking Configuration")
    print("-" * 40)

    load_dotenv()
    required = ["DISCORD_BOT_TOKEN", "CHANNEL_ID", "PODCAST_RSS_URL"]
    ok = True
    for key in required:
        present = bool(os.getenv(key, "").strip())
        ok = ok and present
        print(f"  {key}: {'✅' if present else '❌'}")
    print(f"  PATREON_URL: {os.getenv('PATREON_URL') or '(default)'}")
    return ok


def describe_age(dt: datetime) -> str:
    age = datetime.now(timezone.utc) - dt
    minutes = int(age.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes} min ago"
    return f"{minutes // 60} h {minutes % 60} min ago"


def check_ledger(path: str):
    """Summarize the announced-episode ledger"""
    print("\n🗂️  Checking Ledger")
    print("-" * 40)

    store = LedgerStore(path)
    if not store.exists():
        print(f"  {path}: ❌ Not found (next check starts fresh)")
        return False

    ledger = store.load()
    print(f"  File: {path}")
    print(f"  Last podcast check: {iso_z(ledger.last_feed_check_at)} ({describe_age(ledger.last_feed_check_at)})")
    print(f"  Last Patreon check: {iso_z(ledger.last_page_check_at)} ({describe_age(ledger.last_page_check_at)})")
    print(f"  Remembered episodes: {len(ledger.seen_keys)}")
    for key in ledger.seen_keys[-5:]:
        print(f"    - {key}")
    return True


def check_log_file(log_file: str):
    """Check recent log activity"""
    print("\n📝 Checking Log File")
    print("-" * 40)

    if not os.path.exists(log_file):
        print(f"  {log_file}: ❌ Not found")
        return

    stat = os.stat(log_file)
    modified = datetime.fromtimestamp(stat.st_mtime)
    time_ago = datetime.now() - modified
    if time_ago.total_seconds() < 1800:
        status = "✅ Recent activity"
    elif time_ago.total_seconds() < 3600:
        status = "⚠️  Some activity"
    else:
        status = "❌ Old activity"
    print(f"  {log_file}: {status} (Size: {stat.st_size} bytes, Modified: {modified.strftime('%H:%M:%S')})")


def main():
    """Main status check"""
    print("🔍 Episode Announcer Status Check")
    print("=" * 50)
    print(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    env_ok = check_env_file()
    ledger_path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("LEDGER_PATH", DEFAULT_LEDGER_PATH)
    check_ledger(ledger_path)
    check_log_file(os.getenv("LOG_FILE", "bot.log"))

    print("\n" + "=" * 50)
    if not env_ok:
        print("❌ CONFIGURATION ISSUE: copy .env.example to .env and fill in the required keys")
    else:
        print("💡 NEXT STEPS:")
        print("   1. Start the bot: python3 main.py")
        print("   2. One-off check without commands: CHECK_MODE=once python3 check_worker.py")


if __name__ == "__main__":
    main()
