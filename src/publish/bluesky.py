"""
Bluesky (AT Protocol) publishing adapter.

Docs: https://docs.bsky.app/docs/advanced-guides/posts

Credentials: handle (``identifier``) + app password (``password``).

A post is exactly one of:
  text     no media
  images   up to 4 images, each uploaded as a blob (≤ ~1 MB, compressed if needed)
  video    exactly one video, published as an external-link embed pointing
           at the stored video URL (no native video upload)

Hashtags become rich-text facets. Facet offsets are UTF-8 BYTE offsets,
not character offsets: "é #tag" starts the tag at byte 3, not char 2.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from src.content.models import Credentials, Media, Network, Post, Variant
from src.publish.base import NetworkAdapter, PublishResult, split_media
from src.publish.errors import (
    ErrorKind,
    PublishError,
    as_partial_upload,
    kind_for_status,
    kind_for_transport,
)
from src.publish.media import BLUESKY_MAX_IMAGE_BYTES, MediaPreparer

logger = logging.getLogger(__name__)

BSKY_SERVICE = "https://bsky.social"
POST_COLLECTION = "app.bsky.feed.post"
MAX_IMAGES = 4
GET_POSTS_BATCH = 25

# '#' followed by Unicode letters, numbers or underscore
HASHTAG_RE = re.compile(r"#\w+")

_AUTH_ERRORS = {"AuthenticationRequired", "ExpiredToken", "InvalidToken", "AuthFactorTokenRequired"}


class BlueskyError(PublishError):
    """Raised when the AT Protocol service returns an error."""

    network = Network.BLUESKY


def build_hashtag_facets(text: str) -> list[dict[str, Any]]:
    """Return ``app.bsky.richtext.facet#tag`` facets for every #hashtag in ``text``."""
    facets: list[dict[str, Any]] = []
    for match in HASHTAG_RE.finditer(text):
        byte_start = len(text[: match.start()].encode("utf-8"))
        byte_end = byte_start + len(match.group(0).encode("utf-8"))
        facets.append(
            {
                "index": {"byteStart": byte_start, "byteEnd": byte_end},
                "features": [
                    {"$type": "app.bsky.richtext.facet#tag", "tag": match.group(0)[1:]}
                ],
            }
        )
    return facets


def permalink_for(uri: str) -> Optional[str]:
    """Map ``at://<did>/app.bsky.feed.post/<rkey>`` to its bsky.app URL."""
    parts = uri.removeprefix("at://").split("/")
    if len(parts) != 3 or parts[1] != POST_COLLECTION:
        return None
    return f"https://bsky.app/profile/{parts[0]}/post/{parts[2]}"


# ---------------------------------------------------------------------------
# XRPC client
# ---------------------------------------------------------------------------


@dataclass
class BlueskySession:
    did: str
    access_jwt: str
    service_url: str


class BlueskyClient:
    """
    Minimal XRPC client: session, blob upload, record creation, post lookup.

    Sessions are returned to the caller, never cached, so one client can be
    shared across threads and accounts.
    """

    def __init__(self, service_url: str = BSKY_SERVICE, *, timeout: float = 30.0) -> None:
        self.service_url = service_url
        self._http = httpx.Client(timeout=timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _url(self, service_url: str, nsid: str) -> str:
        return f"{service_url.rstrip('/')}/xrpc/{nsid}"

    @staticmethod
    def _auth(session: BlueskySession) -> dict[str, str]:
        return {"Authorization": f"Bearer {session.access_jwt}"}

    def _parse(self, resp: httpx.Response, what: str) -> dict:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.is_error:
            error = body.get("error", "") if isinstance(body, dict) else ""
            message = body.get("message", "") if isinstance(body, dict) else ""
            if resp.status_code == 401 or error in _AUTH_ERRORS:
                kind = ErrorKind.AUTH_INVALID
            elif error == "RateLimitExceeded":
                kind = ErrorKind.RATE_LIMITED
            else:
                kind = kind_for_status(resp.status_code)
            detail = ": ".join(p for p in (error, message) if p) or resp.text
            raise BlueskyError(f"Bluesky {what} error {resp.status_code}: {detail}", kind)
        return body

    def _request(self, method: str, url: str, what: str, **kwargs: Any) -> dict:
        try:
            resp = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise BlueskyError(f"Bluesky {what} failed: {exc}", kind_for_transport(exc)) from exc
        return self._parse(resp, what)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def create_session(self, credentials: Credentials) -> BlueskySession:
        """Authenticate and create an AT Protocol session."""
        service = credentials.service_url or self.service_url
        body = self._request(
            "POST",
            self._url(service, "com.atproto.server.createSession"),
            "auth",
            json={"identifier": credentials.identifier, "password": credentials.password},
        )
        return BlueskySession(did=body["did"], access_jwt=body["accessJwt"], service_url=service)

    def upload_blob(self, session: BlueskySession, data: bytes, mime: str) -> dict:
        """Upload binary data and return the blob reference."""
        body = self._request(
            "POST",
            self._url(session.service_url, "com.atproto.repo.uploadBlob"),
            "upload",
            content=data,
            headers={**self._auth(session), "Content-Type": mime},
        )
        return body["blob"]

    def create_record(self, session: BlueskySession, record: dict) -> dict:
        """Create a post record; returns ``{"uri": ..., "cid": ...}``."""
        return self._request(
            "POST",
            self._url(session.service_url, "com.atproto.repo.createRecord"),
            "createRecord",
            json={"repo": session.did, "collection": POST_COLLECTION, "record": record},
            headers=self._auth(session),
        )

    def get_posts(self, session: BlueskySession, uris: Sequence[str]) -> list[dict]:
        """Return post views (with like/reply/repost counts) for the given URIs."""
        posts: list[dict] = []
        for i in range(0, len(uris), GET_POSTS_BATCH):
            batch = list(uris[i : i + GET_POSTS_BATCH])
            body = self._request(
                "GET",
                self._url(session.service_url, "app.bsky.feed.getPosts"),
                "getPosts",
                params={"uris": batch},
                headers=self._auth(session),
            )
            posts.extend(body.get("posts") or [])
        return posts

    def close(self) -> None:
        self._http.close()


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class BlueskyAdapter(NetworkAdapter):
    """Publishes text, image or external-link video posts to Bluesky."""

    network = Network.BLUESKY

    def __init__(
        self,
        preparer: MediaPreparer,
        client: Optional[BlueskyClient] = None,
        *,
        max_image_bytes: int = BLUESKY_MAX_IMAGE_BYTES,
    ) -> None:
        self.preparer = preparer
        self.client = client or BlueskyClient()
        self.max_image_bytes = max_image_bytes

    def publish(
        self,
        credentials: Credentials,
        post: Post,
        variant: Variant,
        media: Sequence[Media],
    ) -> PublishResult:
        images, videos = split_media(media)
        if len(videos) > 1:
            raise BlueskyError("Bluesky allows only one video per post.", ErrorKind.UNSUPPORTED_CONTENT)
        if videos and images:
            raise BlueskyError(
                "Bluesky does not allow mixing images and video in the same post.",
                ErrorKind.UNSUPPORTED_CONTENT,
            )

        text = variant.effective_text(post)
        record: dict[str, Any] = {
            "$type": POST_COLLECTION,
            "text": text,
            "createdAt": dt.datetime.now(dt.timezone.utc).isoformat(),
        }
        facets = build_hashtag_facets(text)
        if facets:
            record["facets"] = facets

        # Download/compress before logging in so media problems cost no remote calls.
        prepared = [self.preparer.prepare_image(m, self.max_image_bytes) for m in images[:MAX_IMAGES]]
        video_url = self.preparer.resolve_url(videos[0]) if videos else None

        session = self.client.create_session(credentials)

        uploaded: list[str] = []
        try:
            if prepared:
                embedded = []
                for image in prepared:
                    blob = self.client.upload_blob(session, image.data, image.mime)
                    uploaded.append(str((blob.get("ref") or {}).get("$link", "")))
                    embedded.append({"image": blob, "alt": post.title or "Post image"})
                record["embed"] = {"$type": "app.bsky.embed.images", "images": embedded}
            elif video_url:
                record["embed"] = {
                    "$type": "app.bsky.embed.external",
                    "external": {"uri": video_url, "title": post.title or "Video", "description": ""},
                }
            created = self.client.create_record(session, record)
        except BlueskyError as exc:
            raise as_partial_upload(exc, uploaded) from exc

        uri: str = created["uri"]
        logger.info("Published Bluesky post %s", uri)
        return PublishResult(external_id=uri, permalink=permalink_for(uri))

    def close(self) -> None:
        self.client.close()
