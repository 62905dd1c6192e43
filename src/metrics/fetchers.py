"""
Per-network metrics fetchers.

Each fetcher makes one bulk call (or a few batched ones) and returns the
engagement counters of the account's recent posts as ``RemoteMetric``
values. Matching them to local variants is the reconciliation engine's job.

  bluesky    app.bsky.feed.getPosts over the known at:// URIs (25 per call)
  instagram  /{ig_user_id}/media, most recent 100
  facebook   /{page_id}/feed of the first managed page, most recent 100
  twitter    GET /2/tweets over the known numeric ids (100 per call)

TikTok has no fetcher.
"""

from __future__ import annotations

import datetime as dt
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Sequence

import tweepy

from src.content.models import Credentials, Network
from src.publish.bluesky import BlueskyClient, permalink_for
from src.publish.facebook import FacebookAdapter
from src.publish.instagram import InstagramAdapter
from src.publish.twitter import TwitterAdapter, TwitterError

logger = logging.getLogger(__name__)


@dataclass
class RemoteMetric:
    """Engagement counters of one remote post."""

    remote_id: str
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0
    created_at: Optional[dt.datetime] = None
    permalink: Optional[str] = None


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    """Parse provider timestamps ("2024-05-01T12:00:00+0000", "...Z", datetimes)."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = str(value)
        try:
            parsed = dt.datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
        except ValueError:
            try:
                parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                logger.debug("Unparseable timestamp %r", value)
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _summary_total(item: dict, field: str) -> int:
    return _count(((item.get(field) or {}).get("summary") or {}).get("total_count"))


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class MetricsFetcher(ABC):
    """Common interface for all network metrics fetchers."""

    network: ClassVar[Network]

    @abstractmethod
    def fetch(self, credentials: Credentials, known_ids: Sequence[str]) -> list[RemoteMetric]:
        """
        Return metrics of the account's remote posts.

        ``known_ids`` are the external ids already stored locally for this
        network; fetchers whose API looks posts up by id use them, the
        others list the account's recent posts instead.
        """
        ...

    def close(self) -> None:
        """Release the underlying transport. Default: no-op."""


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class BlueskyMetricsFetcher(MetricsFetcher):
    network = Network.BLUESKY

    def __init__(self, client: BlueskyClient) -> None:
        self.client = client

    def close(self) -> None:
        self.client.close()

    def fetch(self, credentials: Credentials, known_ids: Sequence[str]) -> list[RemoteMetric]:
        uris = [u for u in known_ids if u.startswith("at://")]
        if not uris:
            return []
        session = self.client.create_session(credentials)
        metrics = []
        for item in self.client.get_posts(session, uris):
            record = item.get("record") or {}
            metrics.append(
                RemoteMetric(
                    remote_id=item["uri"],
                    likes=_count(item.get("likeCount")),
                    comments=_count(item.get("replyCount")),
                    shares=_count(item.get("repostCount")) + _count(item.get("quoteCount")),
                    created_at=parse_timestamp(record.get("createdAt") or item.get("indexedAt")),
                    permalink=permalink_for(item["uri"]),
                )
            )
        return metrics


class InstagramMetricsFetcher(MetricsFetcher):
    network = Network.INSTAGRAM

    def __init__(self, adapter: InstagramAdapter, limit: int = 100) -> None:
        self.adapter = adapter
        self.limit = limit

    def close(self) -> None:
        self.adapter.close()

    def fetch(self, credentials: Credentials, known_ids: Sequence[str]) -> list[RemoteMetric]:
        return [
            RemoteMetric(
                remote_id=str(item["id"]),
                likes=_count(item.get("like_count")),
                comments=_count(item.get("comments_count")),
                created_at=parse_timestamp(item.get("timestamp")),
                permalink=item.get("permalink"),
            )
            for item in self.adapter.list_media(credentials, limit=self.limit)
        ]


class FacebookMetricsFetcher(MetricsFetcher):
    network = Network.FACEBOOK

    def __init__(self, adapter: FacebookAdapter, limit: int = 100) -> None:
        self.adapter = adapter
        self.limit = limit

    def close(self) -> None:
        self.adapter.close()

    def fetch(self, credentials: Credentials, known_ids: Sequence[str]) -> list[RemoteMetric]:
        return [
            RemoteMetric(
                remote_id=str(item["id"]),
                likes=_summary_total(item, "likes"),
                comments=_summary_total(item, "comments"),
                shares=_count((item.get("shares") or {}).get("count")),
                created_at=parse_timestamp(item.get("created_time")),
                permalink=item.get("permalink_url"),
            )
            for item in self.adapter.list_feed(credentials, limit=self.limit)
        ]


class TwitterMetricsFetcher(MetricsFetcher):
    network = Network.TWITTER

    def __init__(self, adapter: TwitterAdapter) -> None:
        self.adapter = adapter

    def close(self) -> None:
        self.adapter.close()

    def fetch(self, credentials: Credentials, known_ids: Sequence[str]) -> list[RemoteMetric]:
        ids = [i for i in known_ids if i.isdigit()]
        if not ids:
            return []
        try:
            tweets = self.adapter.lookup_tweets(credentials, ids)
        except TwitterError as exc:
            # Lower API tiers answer lookups with 403
            if isinstance(exc.__cause__, tweepy.Forbidden) or "aggregated" in exc.message.lower():
                logger.warning("X metrics not available for this API plan: %s", exc.message)
                return []
            raise

        metrics = []
        for tweet in tweets:
            pm = tweet.get("public_metrics") or {}
            metrics.append(
                RemoteMetric(
                    remote_id=tweet["id"],
                    likes=_count(pm.get("like_count")),
                    comments=_count(pm.get("reply_count")),
                    shares=_count(pm.get("retweet_count")) + _count(pm.get("quote_count")),
                    impressions=_count(pm.get("impression_count")),
                    created_at=parse_timestamp(tweet.get("created_at")),
                    permalink=f"https://x.com/i/web/status/{tweet['id']}",
                )
            )
        return metrics
