"""
Tests for src/metrics/reconcile.py

Fetchers are fakes returning canned RemoteMetric lists; both stores are
real SQLite files.
"""

from __future__ import annotations

import datetime as dt
import threading
from typing import Optional, Sequence
from unittest.mock import MagicMock

from config.settings import Settings
from src.content.credentials import InMemoryCredentialStore
from src.content.models import Credentials, Network, Post, PostStatus, Variant
from src.factory import build_engine
from src.metrics.fetchers import MetricsFetcher, RemoteMetric
from src.metrics.reconcile import (
    ReconciliationEngine,
    build_lookup,
    facebook_secondary_key,
    instagram_shortcode,
    match_variant,
)
from src.publish.errors import ErrorKind, PublishError
from src.publish.media import MediaPreparer

USER = "user-1"
CREATED = dt.datetime(2026, 4, 30, 18, 15, tzinfo=dt.timezone.utc)


class FakeFetcher(MetricsFetcher):
    def __init__(
        self,
        items: Optional[list[RemoteMetric]] = None,
        error: Optional[Exception] = None,
        barrier: Optional[threading.Barrier] = None,
    ) -> None:
        self.items = items or []
        self.error = error
        self.barrier = barrier
        self.known_ids: list[str] = []
        self.closed = False

    def fetch(self, credentials: Credentials, known_ids: Sequence[str]) -> list[RemoteMetric]:
        self.known_ids = list(known_ids)
        if self.barrier is not None:
            self.barrier.wait()
        if self.error is not None:
            raise self.error
        return list(self.items)

    def close(self) -> None:
        self.closed = True


def _credentials(*networks: Network) -> InMemoryCredentialStore:
    store = InMemoryCredentialStore()
    for network in networks:
        store.put(USER, Credentials(network=network, access_token="tok"))
    return store


def _published_post(post_store, refs: dict[Network, tuple[str, Optional[str]]]) -> Post:
    """Create a post and record one external reference per network."""
    post = post_store.create_post(
        Post(author_id=USER, title="t", body="b", variants=[Variant(network=n) for n in refs])
    )
    for variant in post.variants:
        uri, permalink = refs[variant.network]
        post_store.mark_variant_published(variant.id, uri, permalink=permalink)
    return post_store.get_post(post.id)


def _variant(post: Post, network: Network) -> Variant:
    return next(v for v in post.variants if v.network == network)


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


class TestKeys:
    def test_instagram_shortcode(self) -> None:
        assert instagram_shortcode("https://instagram.com/p/ABC123/") == "ABC123"
        assert instagram_shortcode("https://www.instagram.com/reel/Xy-_9z/?igsh=1") == "Xy-_9z"
        assert instagram_shortcode("https://www.instagram.com/tv/TV1") == "TV1"
        assert instagram_shortcode("https://www.instagram.com/someone/") is None
        assert instagram_shortcode(None) is None

    def test_facebook_secondary_key(self) -> None:
        assert facebook_secondary_key("1234_5678") == "5678"
        assert facebook_secondary_key("1234_5678_9") == "5678_9"
        assert facebook_secondary_key("5678") is None
        assert facebook_secondary_key(None) is None

    def test_primary_id_wins_over_secondary(self) -> None:
        exact = RemoteMetric(remote_id="5678", likes=1)
        other = RemoteMetric(remote_id="PAGE_5678", likes=2)

        lookup = build_lookup(Network.FACEBOOK, [other, exact])

        assert lookup["5678"] is exact
        assert lookup["PAGE_5678"] is other

    def test_match_by_permalink_shortcode(self) -> None:
        remote = RemoteMetric(remote_id="1789", permalink="https://www.instagram.com/p/ABC123/")
        variant = Variant(network=Network.INSTAGRAM, uri="OLD", permalink="https://instagram.com/p/ABC123/")

        assert match_variant(Network.INSTAGRAM, variant, build_lookup(Network.INSTAGRAM, [remote])) is remote

    def test_bluesky_needs_exact_uri(self) -> None:
        remote = RemoteMetric(remote_id="at://did:plc:x/app.bsky.feed.post/abc")
        variant = Variant(network=Network.BLUESKY, uri="at://did:plc:y/app.bsky.feed.post/abc")

        assert match_variant(Network.BLUESKY, variant, build_lookup(Network.BLUESKY, [remote])) is None

    def test_facebook_falls_back_to_containment(self) -> None:
        remote = RemoteMetric(remote_id="111_222", likes=3)
        lookup = build_lookup(Network.FACEBOOK, [remote])

        assert match_variant(Network.FACEBOOK, Variant(network=Network.FACEBOOK, uri="111_222_extra"), lookup) is remote
        assert match_variant(Network.FACEBOOK, Variant(network=Network.FACEBOOK, uri="11"), lookup) is remote
        assert match_variant(Network.FACEBOOK, Variant(network=Network.FACEBOOK, uri="999"), lookup) is None

    def test_containment_is_facebook_only(self) -> None:
        remote = RemoteMetric(remote_id="1234")
        variant = Variant(network=Network.TWITTER, uri="12345")

        assert match_variant(Network.TWITTER, variant, build_lookup(Network.TWITTER, [remote])) is None


# ---------------------------------------------------------------------------
# refresh_metrics
# ---------------------------------------------------------------------------


class TestRefreshMetrics:
    def _setup(self, post_store):
        post = _published_post(
            post_store,
            {
                Network.BLUESKY: ("at://did:plc:x/app.bsky.feed.post/abc", None),
                Network.INSTAGRAM: ("IG_CONTAINER", "https://instagram.com/p/ABC123/"),
                Network.FACEBOOK: ("5678", None),
                Network.TWITTER: ("991", "https://x.com/i/web/status/991"),
            },
        )
        fetchers = {
            Network.BLUESKY: FakeFetcher(
                [RemoteMetric("at://did:plc:x/app.bsky.feed.post/abc", likes=4, shares=2, created_at=CREATED)]
            ),
            Network.INSTAGRAM: FakeFetcher(
                [
                    RemoteMetric(
                        "1789", likes=10, comments=3, created_at=CREATED,
                        permalink="https://www.instagram.com/p/ABC123/",
                    ),
                    RemoteMetric("1790", likes=99, permalink="https://www.instagram.com/p/OTHER/"),
                ]
            ),
            Network.FACEBOOK: FakeFetcher([RemoteMetric("PAGE_5678", likes=8, shares=5, created_at=CREATED)]),
            Network.TWITTER: FakeFetcher([RemoteMetric("991", likes=1, impressions=300, created_at=CREATED)]),
        }
        return post, fetchers

    def test_matches_every_network(self, post_store, metric_store) -> None:
        post, fetchers = self._setup(post_store)
        engine = ReconciliationEngine(post_store, metric_store, fetchers, _credentials(*fetchers))

        report = engine.refresh_metrics(USER)

        assert report.processed_count == 4
        assert report.written_count == 4
        assert report.per_network == {"bluesky": 1, "facebook": 1, "instagram": 1, "twitter": 1}
        assert report.warnings == []

        assert metric_store.get(_variant(post, Network.INSTAGRAM).id).counters() == (10, 3, 0, 0)
        assert metric_store.get(_variant(post, Network.FACEBOOK).id).shares == 5
        assert metric_store.get(_variant(post, Network.TWITTER).id).impressions == 300
        assert fetchers[Network.TWITTER].known_ids == ["991"]

        stored = post_store.get_post(post.id)
        assert _variant(stored, Network.BLUESKY).sent_at == CREATED
        assert stored.status == PostStatus.PUBLISHED

    def test_second_run_writes_nothing(self, post_store, metric_store) -> None:
        post, fetchers = self._setup(post_store)
        engine = ReconciliationEngine(post_store, metric_store, fetchers, _credentials(*fetchers))
        engine.refresh_metrics(USER)
        before = [metric_store.get(v.id) for v in post.variants]
        post_before = post_store.get_post(post.id)

        report = engine.refresh_metrics(USER)

        assert report.processed_count == 4
        assert report.written_count == 0
        assert [metric_store.get(v.id) for v in post.variants] == before
        assert post_store.get_post(post.id) == post_before

    def test_failing_network_is_isolated(self, post_store, metric_store) -> None:
        post, fetchers = self._setup(post_store)
        fetchers[Network.TWITTER] = FakeFetcher(
            error=PublishError("Tweet lookup failed", ErrorKind.RATE_LIMITED, Network.TWITTER)
        )
        fetchers[Network.FACEBOOK] = FakeFetcher(error=RuntimeError("boom"))
        engine = ReconciliationEngine(post_store, metric_store, fetchers, _credentials(*fetchers))

        report = engine.refresh_metrics(USER)

        assert report.processed_count == 2
        assert sorted(report.warnings) == ["facebook: boom", "twitter: Tweet lookup failed"]
        assert metric_store.get(_variant(post, Network.TWITTER).id) is None
        assert metric_store.get(_variant(post, Network.BLUESKY).id) is not None

    def test_network_without_credentials_is_warned(self, post_store, metric_store) -> None:
        post, fetchers = self._setup(post_store)
        engine = ReconciliationEngine(
            post_store, metric_store, fetchers, _credentials(Network.BLUESKY, Network.INSTAGRAM, Network.TWITTER)
        )

        report = engine.refresh_metrics(USER)

        assert report.warnings == ["facebook: no linked account"]
        assert "facebook" not in report.per_network
        assert fetchers[Network.FACEBOOK].known_ids == []

    def test_unmatched_variant_is_left_alone(self, post_store, metric_store) -> None:
        post = _published_post(post_store, {Network.TWITTER: ("555", None)})
        fetchers = {Network.TWITTER: FakeFetcher([RemoteMetric("556", likes=1)])}
        engine = ReconciliationEngine(post_store, metric_store, fetchers, _credentials(Network.TWITTER))

        report = engine.refresh_metrics(USER)

        assert report.processed_count == 0
        assert report.per_network == {"twitter": 0}
        assert metric_store.get(post.variants[0].id) is None

    def test_other_users_posts_ignored(self, post_store, metric_store) -> None:
        _published_post(post_store, {Network.TWITTER: ("555", None)})
        fetcher = FakeFetcher([RemoteMetric("555", likes=1)])
        engine = ReconciliationEngine(post_store, metric_store, {Network.TWITTER: fetcher}, _credentials(Network.TWITTER))

        report = engine.refresh_metrics("someone-else")

        assert report.processed_count == 0
        assert report.per_network == {}

    def test_fetches_run_concurrently(self, post_store, metric_store) -> None:
        post = _published_post(post_store, {Network.TWITTER: ("555", None), Network.FACEBOOK: ("1_2", None)})
        barrier = threading.Barrier(2, timeout=5)
        fetchers = {
            Network.TWITTER: FakeFetcher([RemoteMetric("555", likes=1)], barrier=barrier),
            Network.FACEBOOK: FakeFetcher([RemoteMetric("1_2", likes=2)], barrier=barrier),
        }
        engine = ReconciliationEngine(post_store, metric_store, fetchers, _credentials(*fetchers))

        report = engine.refresh_metrics(USER)

        # Each fetcher blocks until the other has started
        assert report.warnings == []
        assert report.per_network == {"facebook": 1, "twitter": 1}
        assert not barrier.broken
        assert metric_store.get(_variant(post, Network.FACEBOOK).id).likes == 2


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------


class TestClose:
    def test_closes_fetchers_and_preparer(self, post_store, metric_store) -> None:
        fetchers = {Network.TWITTER: FakeFetcher(), Network.BLUESKY: FakeFetcher()}
        preparer = MagicMock(spec=MediaPreparer)

        with ReconciliationEngine(post_store, metric_store, fetchers, _credentials(), preparer=preparer):
            pass

        assert all(f.closed for f in fetchers.values())
        preparer.close.assert_called_once_with()

    def test_stores_stay_open(self, post_store, metric_store) -> None:
        engine = ReconciliationEngine(post_store, metric_store, {}, _credentials())

        engine.close()

        assert metric_store.get("nope") is None

    def test_built_engine_owns_only_metric_transports(self, post_store, metric_store) -> None:
        engine = build_engine(Settings(_env_file=None), post_store=post_store, metric_store=metric_store)

        with engine:
            assert set(engine.fetchers) == {Network.BLUESKY, Network.INSTAGRAM, Network.FACEBOOK, Network.TWITTER}
            assert isinstance(engine.preparer, MediaPreparer)
