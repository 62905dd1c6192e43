"""
TikTok Content Posting API adapter (video only, pull-from-URL).

Docs: https://developers.tiktok.com/doc/content-posting-api-reference-direct-post

TikTok downloads the video itself from a public URL, so the adapter never
handles video bytes. Only the first video of a post is sent; images are
ignored. A successful init only means TikTok ACCEPTED the job;
processing continues on TikTok's side and the returned ``publish_id`` is
stored as the variant's external reference. The variant is marked
published immediately, without polling the publish status endpoint.
"""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from src.content.models import Credentials, Media, Network, Post, Variant
from src.publish.base import NetworkAdapter, PublishResult, split_media
from src.publish.errors import ErrorKind, PublishError, kind_for_status, kind_for_transport
from src.publish.media import MediaPreparer

logger = logging.getLogger(__name__)

TIKTOK_API_BASE = "https://open.tiktokapis.com/v2"
TITLE_MAX_CHARS = 2200
DEFAULT_PRIVACY_LEVEL = "MUTUAL_FOLLOW_FRIENDS"

_AUTH_CODES = {"access_token_invalid", "scope_not_authorized", "scope_permission_missed"}
_RATE_CODES = {"rate_limit_exceeded", "spam_risk_too_many_posts", "spam_risk_user_banned_from_posting"}


class TikTokError(PublishError):
    """Raised when the TikTok API rejects a publish request."""

    network = Network.TIKTOK


def classify_tiktok_error(code: str, status_code: int = 200) -> ErrorKind:
    if code in _AUTH_CODES:
        return ErrorKind.AUTH_INVALID
    if code in _RATE_CODES:
        return ErrorKind.RATE_LIMITED
    if status_code >= 400:
        return kind_for_status(status_code)
    return ErrorKind.REMOTE_REJECTED


class TikTokAdapter(NetworkAdapter):
    """Starts a direct-post video upload that TikTok pulls from our storage."""

    network = Network.TIKTOK

    def __init__(
        self,
        preparer: MediaPreparer,
        *,
        base_url: str = TIKTOK_API_BASE,
        timeout: float = 30.0,
        privacy_level: str = DEFAULT_PRIVACY_LEVEL,
    ) -> None:
        self.preparer = preparer
        self.privacy_level = privacy_level
        self._http = httpx.Client(base_url=base_url, timeout=timeout)

    def build_payload(self, title: str, video_url: str) -> dict:
        return {
            "post_info": {
                "title": title[:TITLE_MAX_CHARS],
                "privacy_level": self.privacy_level,
                "disable_duet": True,
                "disable_comment": False,
                "disable_stitch": True,
                "video_cover_timestamp_ms": 1000,
            },
            "source_info": {
                "source": "PULL_FROM_URL",
                "video_url": video_url,
            },
        }

    def publish(
        self,
        credentials: Credentials,
        post: Post,
        variant: Variant,
        media: Sequence[Media],
    ) -> PublishResult:
        _, videos = split_media(media)
        if not videos:
            raise TikTokError("TikTok requires a video.", ErrorKind.VALIDATION)

        video_url = self.preparer.resolve_url(videos[0])
        payload = self.build_payload(variant.effective_text(post), video_url)

        try:
            resp = self._http.post(
                "/post/publish/video/init/",
                json=payload,
                headers={
                    "Authorization": f"Bearer {credentials.access_token}",
                    "Content-Type": "application/json; charset=UTF-8",
                },
            )
        except httpx.HTTPError as exc:
            raise TikTokError(f"TikTok request failed: {exc}", kind_for_transport(exc)) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        error = body.get("error") or {}
        code = error.get("code", "")
        if resp.status_code >= 400 or (error and code != "ok"):
            message = error.get("message") or code or f"HTTP {resp.status_code}"
            raise TikTokError(f"TikTok error: {message}", classify_tiktok_error(code, resp.status_code))

        publish_id = str((body.get("data") or {}).get("publish_id", ""))
        if not publish_id:
            raise TikTokError("TikTok response did not include a publish_id.")
        logger.info("TikTok accepted video for post %s (publish_id=%s)", post.id, publish_id)
        return PublishResult(external_id=publish_id, accepted_only=True)

    def close(self) -> None:
        self._http.close()
