"""
Tests for src/metrics/fetchers.py

Adapters and clients are mocks; only the mapping to RemoteMetric is tested.
"""

from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock

import pytest
import tweepy

from src.content.models import Credentials, Network
from src.metrics.fetchers import (
    BlueskyMetricsFetcher,
    FacebookMetricsFetcher,
    InstagramMetricsFetcher,
    TwitterMetricsFetcher,
    parse_timestamp,
)
from src.publish.bluesky import BlueskyClient
from src.publish.errors import ErrorKind
from src.publish.facebook import FacebookAdapter
from src.publish.instagram import InstagramAdapter
from src.publish.twitter import TwitterAdapter, TwitterError

UTC = dt.timezone.utc


class TestParseTimestamp:
    def test_graph_offset_format(self) -> None:
        assert parse_timestamp("2026-05-01T12:00:00+0000") == dt.datetime(2026, 5, 1, 12, 0, tzinfo=UTC)

    def test_zulu(self) -> None:
        assert parse_timestamp("2026-05-01T12:00:00.123Z") == dt.datetime(2026, 5, 1, 12, 0, 0, 123000, tzinfo=UTC)

    def test_other_offset_converted(self) -> None:
        assert parse_timestamp("2026-05-01T09:00:00-03:00") == dt.datetime(2026, 5, 1, 12, 0, tzinfo=UTC)

    def test_naive_datetime_assumed_utc(self) -> None:
        assert parse_timestamp(dt.datetime(2026, 5, 1, 12, 0)).tzinfo == UTC

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_unusable(self, value) -> None:
        assert parse_timestamp(value) is None


class TestBlueskyMetricsFetcher:
    def test_maps_counts(self) -> None:
        client = MagicMock(spec=BlueskyClient)
        client.get_posts.return_value = [
            {
                "uri": "at://did:plc:x/app.bsky.feed.post/abc",
                "likeCount": 4,
                "replyCount": 2,
                "repostCount": 3,
                "quoteCount": 1,
                "record": {"createdAt": "2026-05-01T12:00:00Z"},
            }
        ]
        creds = Credentials(network=Network.BLUESKY, identifier="a", password="b")

        [metric] = BlueskyMetricsFetcher(client).fetch(
            creds, ["at://did:plc:x/app.bsky.feed.post/abc", "not-a-uri"]
        )

        assert (metric.likes, metric.comments, metric.shares) == (4, 2, 4)
        assert metric.created_at == dt.datetime(2026, 5, 1, 12, 0, tzinfo=UTC)
        assert metric.permalink == "https://bsky.app/profile/did:plc:x/post/abc"
        assert client.get_posts.call_args[0][1] == ["at://did:plc:x/app.bsky.feed.post/abc"]

    def test_no_known_uris_makes_no_calls(self) -> None:
        client = MagicMock(spec=BlueskyClient)

        assert BlueskyMetricsFetcher(client).fetch(Credentials(network=Network.BLUESKY), []) == []
        client.create_session.assert_not_called()


class TestGraphFetchers:
    def test_instagram(self) -> None:
        adapter = MagicMock(spec=InstagramAdapter)
        adapter.list_media.return_value = [
            {
                "id": "1789",
                "like_count": 10,
                "comments_count": 3,
                "timestamp": "2026-05-01T12:00:00+0000",
                "permalink": "https://www.instagram.com/p/ABC123/",
            }
        ]

        [metric] = InstagramMetricsFetcher(adapter).fetch(Credentials(network=Network.INSTAGRAM), [])

        assert metric.remote_id == "1789"
        assert (metric.likes, metric.comments, metric.shares) == (10, 3, 0)
        assert metric.permalink == "https://www.instagram.com/p/ABC123/"
        assert adapter.list_media.call_args[1]["limit"] == 100

    def test_facebook_summaries(self) -> None:
        adapter = MagicMock(spec=FacebookAdapter)
        adapter.list_feed.return_value = [
            {
                "id": "PAGE_42",
                "created_time": "2026-05-01T12:00:00+0000",
                "likes": {"data": [], "summary": {"total_count": 8}},
                "comments": {"data": [], "summary": {"total_count": 2}},
                "shares": {"count": 5},
            },
            {"id": "PAGE_43"},
        ]

        first, second = FacebookMetricsFetcher(adapter).fetch(Credentials(network=Network.FACEBOOK), [])

        assert (first.likes, first.comments, first.shares) == (8, 2, 5)
        assert (second.likes, second.comments, second.shares) == (0, 0, 0)
        assert second.created_at is None


class TestTwitterMetricsFetcher:
    CREDS = Credentials(network=Network.TWITTER, access_token="a", access_secret="b")

    def test_maps_public_metrics(self) -> None:
        adapter = MagicMock(spec=TwitterAdapter)
        adapter.lookup_tweets.return_value = [
            {
                "id": "123",
                "created_at": dt.datetime(2026, 5, 1, 12, 0, tzinfo=UTC),
                "public_metrics": {
                    "like_count": 9,
                    "reply_count": 1,
                    "retweet_count": 2,
                    "quote_count": 3,
                    "impression_count": 400,
                },
            }
        ]

        [metric] = TwitterMetricsFetcher(adapter).fetch(self.CREDS, ["123", "at://not-a-tweet"])

        assert (metric.likes, metric.comments, metric.shares, metric.impressions) == (9, 1, 5, 400)
        assert metric.permalink == "https://x.com/i/web/status/123"
        adapter.lookup_tweets.assert_called_once_with(self.CREDS, ["123"])

    def test_forbidden_plan_returns_nothing(self) -> None:
        response = MagicMock(status_code=403, reason="Forbidden")
        response.json.return_value = {"errors": [{"message": "client-not-enrolled"}]}
        adapter = MagicMock(spec=TwitterAdapter)
        error = TwitterError("Tweet lookup failed: 403", ErrorKind.REMOTE_REJECTED)
        error.__cause__ = tweepy.Forbidden(response)
        adapter.lookup_tweets.side_effect = error

        assert TwitterMetricsFetcher(adapter).fetch(self.CREDS, ["1"]) == []

    def test_other_errors_propagate(self) -> None:
        adapter = MagicMock(spec=TwitterAdapter)
        adapter.lookup_tweets.side_effect = TwitterError("Tweet lookup failed", ErrorKind.RATE_LIMITED)

        with pytest.raises(TwitterError):
            TwitterMetricsFetcher(adapter).fetch(self.CREDS, ["1"])


class TestClose:
    def test_bluesky_closes_client(self) -> None:
        client = MagicMock(spec=BlueskyClient)

        BlueskyMetricsFetcher(client).close()

        client.close.assert_called_once_with()

    @pytest.mark.parametrize(
        "fetcher_cls,adapter_cls",
        [
            (InstagramMetricsFetcher, InstagramAdapter),
            (FacebookMetricsFetcher, FacebookAdapter),
            (TwitterMetricsFetcher, TwitterAdapter),
        ],
    )
    def test_closes_adapter(self, fetcher_cls, adapter_cls) -> None:
        adapter = MagicMock(spec=adapter_cls)

        fetcher_cls(adapter).close()

        adapter.close.assert_called_once_with()
