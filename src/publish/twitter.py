"""
X/Twitter publishing adapter using Tweepy.

Docs: https://docs.tweepy.org/en/stable/

Credentials: OAuth 1.0a user context. The consumer key/secret belong to
the app (settings) unless the account's credentials carry their own; the
access token/secret belong to the user.

Note: Media upload still requires Twitter API v1.1 (tweepy.API).
      Tweet creation and lookups use v2 (tweepy.Client).

Media selection: if the post has any video, only the first video is
attached; otherwise up to 4 images. Everything else is ignored.
"""

from __future__ import annotations

import io
import logging
import posixpath
from typing import Optional, Sequence
from urllib.parse import urlparse

import requests
import tweepy
from requests.adapters import HTTPAdapter

from src.content.models import Credentials, Media, Network, Post, Variant
from src.publish.base import NetworkAdapter, PublishResult, split_media
from src.publish.errors import ErrorKind, PublishError, as_partial_upload
from src.publish.media import MediaPreparer

logger = logging.getLogger(__name__)

MAX_IMAGES = 4
LOOKUP_BATCH = 100


class TwitterError(PublishError):
    """Raised when the X/Twitter API returns an error."""

    network = Network.TWITTER


def classify_tweepy_error(exc: Exception) -> ErrorKind:
    """Map a Tweepy (or underlying requests) failure to an error kind."""
    if isinstance(exc, tweepy.Unauthorized):
        return ErrorKind.AUTH_INVALID
    if isinstance(exc, tweepy.TooManyRequests):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, tweepy.TwitterServerError):
        return ErrorKind.TRANSIENT_REMOTE
    if isinstance(exc, tweepy.HTTPException):
        return ErrorKind.REMOTE_REJECTED
    # tweepy.API wraps transport errors; the original is the context
    cause = exc if isinstance(exc, requests.RequestException) else exc.__context__
    if isinstance(cause, requests.Timeout):
        return ErrorKind.TIMEOUT
    if isinstance(cause, requests.RequestException):
        return ErrorKind.TRANSIENT_REMOTE
    return ErrorKind.REMOTE_REJECTED


class _TimeoutAdapter(HTTPAdapter):
    """Applies a default timeout to every request on a session."""

    def __init__(self, timeout: float, **kwargs) -> None:
        self.timeout = timeout
        super().__init__(**kwargs)

    def send(self, request, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


def _filename(media: Media) -> str:
    name = posixpath.basename(urlparse(media.url).path)
    if name:
        return name
    return f"{media.id}.mp4" if media.is_video else f"{media.id}.jpg"


class TwitterAdapter(NetworkAdapter):
    """
    Publishes a single tweet with optional media.

    Usage::

        adapter = TwitterAdapter(preparer, consumer_key="...", consumer_secret="...")
        result = adapter.publish(credentials, post, variant, post.ordered_media)
        result.external_id   # tweet id
        result.permalink     # https://x.com/i/web/status/<id>
    """

    network = Network.TWITTER

    def __init__(
        self,
        preparer: MediaPreparer,
        *,
        consumer_key: str = "",
        consumer_secret: str = "",
        timeout: float = 30.0,
    ) -> None:
        self.preparer = preparer
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Per-account API objects
    # ------------------------------------------------------------------

    def _keys(self, credentials: Credentials) -> tuple[str, str]:
        return (
            credentials.consumer_key or self.consumer_key,
            credentials.consumer_secret or self.consumer_secret,
        )

    def _client(self, credentials: Credentials) -> tweepy.Client:
        """Return a Tweepy v2 Client for this account."""
        key, secret = self._keys(credentials)
        client = tweepy.Client(
            bearer_token=credentials.bearer_token or None,
            consumer_key=key,
            consumer_secret=secret,
            access_token=credentials.access_token,
            access_token_secret=credentials.access_secret,
        )
        adapter = _TimeoutAdapter(self.timeout)
        client.session.mount("https://", adapter)
        client.session.mount("http://", adapter)
        return client

    def _v1_api(self, credentials: Credentials) -> tweepy.API:
        """Return a Tweepy v1.1 API (needed for media uploads)."""
        key, secret = self._keys(credentials)
        auth = tweepy.OAuth1UserHandler(key, secret, credentials.access_token, credentials.access_secret)
        return tweepy.API(auth, timeout=int(self.timeout))

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    @staticmethod
    def select_media(media: Sequence[Media]) -> list[Media]:
        images, videos = split_media(media)
        if videos:
            return [videos[0]]
        return images[:MAX_IMAGES]

    def upload_media(self, api: tweepy.API, media: Media, data: bytes) -> str:
        """
        Upload one media item via the v1.1 media endpoint.

        Returns the media_id_string to attach to a tweet.
        """
        kwargs: dict = {"file": io.BytesIO(data)}
        if media.is_video:
            kwargs.update(chunked=True, media_category="tweet_video")
        try:
            uploaded = api.media_upload(_filename(media), **kwargs)
        except (tweepy.TweepyException, requests.RequestException) as exc:
            raise TwitterError(f"Media upload failed: {exc}", classify_tweepy_error(exc)) from exc
        media_id: str = uploaded.media_id_string
        logger.info("Uploaded media %s → %s", media.id, media_id)
        return media_id

    def publish(
        self,
        credentials: Credentials,
        post: Post,
        variant: Variant,
        media: Sequence[Media],
    ) -> PublishResult:
        text = variant.effective_text(post)
        selected = self.select_media(media)
        # Download everything first so media problems cost no remote calls.
        payloads = [(m, self.preparer.fetch(m)) for m in selected]

        media_ids: list[str] = []
        try:
            if payloads:
                api = self._v1_api(credentials)
                for item, data in payloads:
                    media_ids.append(self.upload_media(api, item, data))

            kwargs: dict = {"text": text}
            if media_ids:
                kwargs["media_ids"] = media_ids
            try:
                response = self._client(credentials).create_tweet(**kwargs)
            except (tweepy.TweepyException, requests.RequestException) as exc:
                raise TwitterError(f"Tweet creation failed: {exc}", classify_tweepy_error(exc)) from exc
        except TwitterError as exc:
            raise as_partial_upload(exc, media_ids) from exc

        tweet_id = str(response.data["id"])
        logger.info("Posted tweet %s", tweet_id)
        return PublishResult(external_id=tweet_id, permalink=f"https://x.com/i/web/status/{tweet_id}")

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def lookup_tweets(self, credentials: Credentials, tweet_ids: Sequence[str]) -> list[dict]:
        """
        Fetch public metrics for tweets, in batches of 100.

        Returns dicts like ``{"id": "1", "created_at": dt, "public_metrics": {...}}``.
        """
        client = self._client(credentials)
        tweets: list[dict] = []
        for i in range(0, len(tweet_ids), LOOKUP_BATCH):
            batch = list(tweet_ids[i : i + LOOKUP_BATCH])
            try:
                response = client.get_tweets(batch, tweet_fields=["public_metrics", "created_at"])
            except (tweepy.TweepyException, requests.RequestException) as exc:
                raise TwitterError(f"Tweet lookup failed: {exc}", classify_tweepy_error(exc)) from exc
            for tweet in response.data or []:
                tweets.append(
                    {
                        "id": str(tweet.id),
                        "created_at": tweet.created_at,
                        "public_metrics": dict(tweet.public_metrics or {}),
                    }
                )
        return tweets
