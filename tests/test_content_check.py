import functools
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from castwatch.announce.dispatcher import AnnouncementResult
from castwatch.checks.content_check import ContentChecker
from castwatch.config import Config
from castwatch.extraction.page_cascade import PageExtraction, extract_page_episodes
from castwatch.extraction.page_fetch import PageFetchResult
from castwatch.ingestion.episode_types import Episode, RawCandidate, SourceKind
from castwatch.ingestion.feed_source import FeedFetchResult
from castwatch.storage.ledger import Ledger, LedgerStore
import test_page_strategies as pages

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(minutes=15)


def feed_episode(title, published):
    return Episode(
        source_kind=SourceKind.FEED,
        raw_id=title,
        title=title,
        url="https://podcasts.apple.com/us/podcast/x",
        published_at=published,
        strategy="feed",
    )


def page_candidates(*ids):
    return [RawCandidate(id=pid, title=None, url=f"/posts/{pid}", strategy="html") for pid in ids]


def ok_result():
    return AnnouncementResult(thread=mock.Mock(), status="ok")


def error_result():
    return AnnouncementResult(thread=None, status="error", error="Discord API error 500: boom")


class ContentCheckTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.ledger_path = os.path.join(self.tmp.name, "last_checked.json")
        self.store = LedgerStore(self.ledger_path)
        self.config = Config(
            discord_bot_token="token",
            channel_id="123456789",
            podcast_rss_url="https://feed.example.com/rss",
            ledger_path=self.ledger_path,
            announce_delay_seconds=1.0,
        )
        self.channel = mock.Mock(name="channel")
        self.client = mock.Mock(name="client")
        self.client.get_channel.return_value = self.channel
        self.fetch_feed = mock.Mock(return_value=FeedFetchResult(episodes=[]))
        self.extract_page = mock.Mock(return_value=PageExtraction(candidates=[], strategy=None))
        self.announce_fn = mock.Mock(side_effect=lambda *a, **k: ok_result())
        self.sleep = mock.Mock()
        self.now = T1

    def tearDown(self):
        self.tmp.cleanup()

    def seed_ledger(self, keys=()):
        self.store.save(Ledger(T0, T0, tuple(keys)))

    def make_checker(self):
        return ContentChecker(
            self.config,
            self.client,
            self.store,
            fetch_feed=self.fetch_feed,
            extract_page=self.extract_page,
            announce_fn=self.announce_fn,
            sleep=self.sleep,
            clock=lambda: self.now,
        )


class TestFeedPhase(ContentCheckTestCase):
    def test_same_episode_is_announced_once(self):
        self.seed_ledger()
        ep = feed_episode("Ep 12", T0 + timedelta(minutes=5))
        self.fetch_feed.return_value = FeedFetchResult(episodes=[ep])
        checker = self.make_checker()

        first = checker.run_check("feed")
        second = checker.run_check("feed")

        self.assertEqual(first.feed_announced, ["Ep 12"])
        self.assertEqual(second.feed_announced, [])
        self.assertEqual(self.announce_fn.call_count, 1)
        self.assertIn("feed_Ep12", self.store.load().seen_keys)

    def test_watermark_advances_and_never_regresses(self):
        self.seed_ledger()
        checker = self.make_checker()
        checker.run_check("feed")
        self.assertEqual(self.store.load().last_feed_check_at, T1)

        self.now = T0 - timedelta(days=1)
        checker.run_check("feed")
        self.assertEqual(self.store.load().last_feed_check_at, T1)

    def test_fetch_failure_leaves_watermark(self):
        self.seed_ledger()
        self.fetch_feed.return_value = FeedFetchResult(episodes=[], error="timed out")
        report = self.make_checker().run_check("feed")
        self.assertEqual(self.store.load().last_feed_check_at, T0)
        self.assertTrue(report.errors)

    def test_failed_dispatch_is_retried_next_cycle(self):
        self.seed_ledger()
        published = T0 + timedelta(minutes=5)
        self.fetch_feed.return_value = FeedFetchResult(episodes=[feed_episode("Ep 12", published)])
        self.announce_fn.side_effect = lambda *a, **k: error_result()
        checker = self.make_checker()

        report = checker.run_check("feed")

        self.assertEqual(report.failed, ["Ep 12"])
        ledger = self.store.load()
        self.assertNotIn("feed_Ep12", ledger.seen_keys)
        self.assertLess(ledger.last_feed_check_at, published)
        self.assertGreaterEqual(ledger.last_feed_check_at, T0)

        self.announce_fn.side_effect = lambda *a, **k: ok_result()
        self.now = T1 + timedelta(minutes=15)
        report = checker.run_check("feed")
        self.assertEqual(report.feed_announced, ["Ep 12"])
        since = self.fetch_feed.call_args[0][1]
        self.assertLess(since, published)

    def test_successful_items_are_not_repeated_after_partial_failure(self):
        self.seed_ledger()
        ep_a = feed_episode("Ep 12", T0 + timedelta(minutes=1))
        ep_b = feed_episode("Ep 13", T0 + timedelta(minutes=2))
        self.fetch_feed.return_value = FeedFetchResult(episodes=[ep_b, ep_a])
        results = iter([ok_result(), error_result(), ok_result()])
        self.announce_fn.side_effect = lambda *a, **k: next(results)
        checker = self.make_checker()

        checker.run_check("feed")
        report = checker.run_check("feed")

        titles = [c.args[1].title for c in self.announce_fn.call_args_list]
        self.assertEqual(titles, ["Ep 12", "Ep 13", "Ep 13"])
        self.assertEqual(report.feed_announced, ["Ep 13"])

    def test_delay_between_announcements(self):
        self.seed_ledger()
        self.fetch_feed.return_value = FeedFetchResult(episodes=[
            feed_episode("Ep 12", T0 + timedelta(minutes=1)),
            feed_episode("Ep 13", T0 + timedelta(minutes=2)),
        ])
        self.make_checker().run_check("feed")
        self.sleep.assert_called_once_with(1.0)


class TestPagePhase(ContentCheckTestCase):
    def test_new_posts_are_announced_and_known_ones_skipped(self):
        self.seed_ledger(["page_100001"])
        self.extract_page.return_value = PageExtraction(candidates=page_candidates("100001", "100002"), strategy="html")

        report = self.make_checker().run_check("page")

        self.assertEqual(self.announce_fn.call_count, 1)
        announced = self.announce_fn.call_args[0][1]
        self.assertEqual(announced.dedup_key, "page_100002")
        self.assertEqual(report.page_strategy, "html")
        self.assertEqual(self.store.load().last_page_check_at, T1)

    def test_fresh_ledger_records_backlog_without_announcing(self):
        backlog = [feed_episode("Ep 1", T0 - timedelta(days=30))]
        self.fetch_feed.side_effect = lambda url, since, **kw: FeedFetchResult(
            episodes=[e for e in backlog if e.published_at > since]
        )
        self.extract_page.return_value = PageExtraction(candidates=page_candidates("100001", "100002", "100003"), strategy="html")
        checker = self.make_checker()

        report = checker.run_check("all")

        self.announce_fn.assert_not_called()
        self.assertEqual(len(report.page_seeded), 3)
        self.assertEqual(len(self.store.load().seen_keys), 3)

        self.extract_page.return_value = PageExtraction(
            candidates=page_candidates("100004", "100001", "100002", "100003"), strategy="html"
        )
        report = checker.run_check("all")
        self.assertEqual(self.announce_fn.call_count, 1)
        self.assertEqual(len(report.page_announced), 1)

    def test_empty_first_extraction_keeps_seeding_pending(self):
        checker = self.make_checker()
        report = checker.run_check("page")
        self.assertEqual(report.page_seeded, [])

        self.extract_page.return_value = PageExtraction(candidates=page_candidates("100001", "100002"), strategy="html")
        report = checker.run_check("page")

        self.announce_fn.assert_not_called()
        self.assertEqual(len(report.page_seeded), 2)
        self.assertEqual(sorted(self.store.load().seen_keys), ["page_100001", "page_100002"])

    def test_seeding_disabled(self):
        self.config.seed_page_backlog = False
        self.extract_page.return_value = PageExtraction(candidates=page_candidates("100001"), strategy="html")
        self.make_checker().run_check("page")
        self.assertEqual(self.announce_fn.call_count, 1)

    def test_page_fetch_failure_is_reported(self):
        self.seed_ledger()
        self.extract_page.return_value = PageExtraction(error="http_403")
        report = self.make_checker().run_check("page")
        self.assertIn("patreon page: http_403", report.errors)
        self.assertEqual(self.store.load().last_page_check_at, T0)


class TestPageScenarios(ContentCheckTestCase):
    def use_page(self, html):
        fetch = mock.Mock(return_value=PageFetchResult(html=html, status="ok"))
        self.extract_page = functools.partial(extract_page_episodes, fetch=fetch)

    def test_hydration_blob_posts_are_announced_in_order(self):
        self.seed_ledger()
        self.use_page(pages.next_data_page(pages.HYDRATION_DATA))
        report = self.make_checker().run_check("page")
        titles = [c.args[1].title for c in self.announce_fn.call_args_list]
        self.assertEqual(titles, ["Ep 40 River Decisions", "Ep 41 Turn Barrels"])
        self.assertEqual(report.page_strategy, "hydration")

    def test_html_fallback_announces_each_slug(self):
        self.seed_ledger()
        self.use_page(pages.HTML_PAGE)
        self.make_checker().run_check("page")
        episodes = [c.args[1] for c in self.announce_fn.call_args_list]
        self.assertEqual(len(episodes), 3)
        self.assertTrue(all(e.title == "New Patreon Post" for e in episodes))
        self.assertEqual(
            sorted(self.store.load().seen_keys),
            ["page_100001", "page_100002", "page_100003"],
        )

    def test_busy_page_stays_quiet_after_seeding(self):
        self.use_page("".join(f'<a href="/posts/ep-{i}-{100000 + i}">x</a>' for i in range(60)))
        checker = self.make_checker()

        reports = [checker.run_check("page") for _ in range(4)]

        self.assertEqual(len(reports[0].page_seeded), 10)
        self.assertEqual([len(r.page_announced) for r in reports[1:]], [0, 0, 0])
        self.announce_fn.assert_not_called()


class TestCheckCycle(ContentCheckTestCase):
    def test_overlapping_trigger_is_skipped(self):
        self.seed_ledger()
        checker = self.make_checker()
        nested = []

        def fetch_and_retrigger(*args, **kwargs):
            nested.append(checker.run_check("all"))
            return FeedFetchResult(episodes=[])

        self.fetch_feed.side_effect = fetch_and_retrigger
        outer = checker.run_check("all")

        self.assertFalse(outer.skipped)
        self.assertTrue(nested[0].skipped)
        self.assertEqual(self.fetch_feed.call_count, 1)
        self.assertFalse(checker.busy)

    def test_missing_channel_skips_cycle(self):
        self.client.get_channel.return_value = None
        report = self.make_checker().run_check("all")
        self.fetch_feed.assert_not_called()
        self.extract_page.assert_not_called()
        self.assertTrue(report.errors)

    def test_feed_failure_does_not_stop_page_phase(self):
        self.seed_ledger()
        self.fetch_feed.side_effect = RuntimeError("unexpected")
        report = self.make_checker().run_check("all")
        self.extract_page.assert_called_once()
        self.assertTrue(any("unexpected" in e for e in report.errors))

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            self.make_checker().run_check("everything")

    def test_manual_announce_is_remembered(self):
        self.seed_ledger()
        checker = self.make_checker()
        result = checker.announce_manual("Ep 12", None)
        self.assertTrue(result.ok)

        self.fetch_feed.return_value = FeedFetchResult(episodes=[feed_episode("Ep 12", T0 + timedelta(minutes=5))])
        report = checker.run_check("feed")
        self.assertEqual(report.feed_announced, [])
        self.assertEqual(self.announce_fn.call_count, 1)

    def test_manual_announce_of_patreon_url(self):
        self.seed_ledger()
        result = self.make_checker().announce_manual("Bonus hand review", "https://www.patreon.com/posts/bonus-hand-777777")
        self.assertTrue(result.ok)
        self.assertIn("page_777777", self.store.load().seen_keys)

    def test_clear_ledger_restarts_seeding(self):
        self.seed_ledger(["page_100001"])
        checker = self.make_checker()
        self.assertTrue(checker.clear_ledger())
        self.assertFalse(self.store.exists())

        self.extract_page.return_value = PageExtraction(candidates=page_candidates("100002"), strategy="html")
        report = checker.run_check("page")
        self.announce_fn.assert_not_called()
        self.assertEqual(len(report.page_seeded), 1)

    def test_status_mentions_ledger(self):
        self.seed_ledger(["feed_Ep12"])
        text = self.make_checker().status()
        self.assertIn("Remembered episodes: 1", text)
        self.assertIn("feed_Ep12", text)


if __name__ == "__main__":
    unittest.main()
