import unittest
from unittest import mock

import requests

from castwatch.announce.dispatcher import FREE_EPISODE_NOTICE, PlatformLinks, announce, format_announcement
from castwatch.chat.discord_client import MAX_AUTO_ARCHIVE_MINUTES, DiscordAPIError
from castwatch.ingestion.episode_types import Episode, SourceKind

LINKS = PlatformLinks(apple_show_url="https://podcasts.apple.com/show", spotify_show_url="https://open.spotify.com/show/x")


def feed_episode(url=None):
    return Episode(source_kind=SourceKind.FEED, raw_id="Ep 12", title="Ep 12", url=url)


class TestFormatAnnouncement(unittest.TestCase):
    def test_feed_message_lists_platform_links(self):
        text = format_announcement(feed_episode("https://example.com/ep12"), LINKS)
        self.assertTrue(text.startswith("**Ep 12**"))
        self.assertIn("https://example.com/ep12", text)
        self.assertIn("**iOS link**\nhttps://podcasts.apple.com/show", text)
        self.assertIn("**Spotify link**\nhttps://open.spotify.com/show/x", text)

    def test_apple_url_is_not_repeated(self):
        text = format_announcement(feed_episode("https://podcasts.apple.com/show"), LINKS)
        self.assertEqual(text.count("https://podcasts.apple.com/show"), 1)

    def test_page_messages(self):
        with_url = Episode(source_kind=SourceKind.PAGE, raw_id="1", title="Bonus hand", url="https://www.patreon.com/posts/1")
        self.assertIn("**Patreon**\nhttps://www.patreon.com/posts/1", format_announcement(with_url, LINKS))
        without_url = Episode(source_kind=SourceKind.PAGE, raw_id="1", title="Bonus hand")
        self.assertIn(FREE_EPISODE_NOTICE, format_announcement(without_url, LINKS))

    def test_long_message_is_truncated(self):
        ep = Episode(source_kind=SourceKind.PAGE, raw_id="1", title="x" * 3000)
        self.assertEqual(len(format_announcement(ep, LINKS)), 2000)


class TestAnnounce(unittest.TestCase):
    def test_creates_thread_and_posts(self):
        channel = mock.Mock()
        thread = channel.create_thread.return_value
        result = announce(channel, feed_episode(), links=LINKS)

        self.assertTrue(result.ok)
        self.assertIs(result.thread, thread)
        args, kwargs = channel.create_thread.call_args
        self.assertEqual(args[0], "Ep 12")
        self.assertEqual(kwargs["auto_archive_minutes"], MAX_AUTO_ARCHIVE_MINUTES)
        self.assertEqual(kwargs["reason"], "New podcast episode discussion")
        thread.send.assert_called_once()

    def test_rate_limit_becomes_error_result(self):
        channel = mock.Mock()
        channel.create_thread.side_effect = DiscordAPIError(429, "You are being rate limited.", 1.5)
        result = announce(channel, feed_episode(), links=LINKS)
        self.assertFalse(result.ok)
        self.assertIsNone(result.thread)
        self.assertIn("429", result.error)

    def test_send_failure_after_thread_creation(self):
        channel = mock.Mock()
        channel.create_thread.return_value.send.side_effect = requests.Timeout("timed out")
        result = announce(channel, feed_episode(), links=LINKS)
        self.assertEqual(result.status, "error")
        self.assertIsNotNone(result.thread)


if __name__ == "__main__":
    unittest.main()
