"""
Facebook Page publishing adapter.

Credentials: a user access token. ``/me/accounts`` lists the managed
Pages; the adapter always uses the FIRST page returned. There is no page
selection: accounts managing several pages publish to whichever page
Facebook lists first.

Flow:
  text only        POST /{page_id}/feed    message=…
  one image        POST /{page_id}/photos  url=…, caption=…
  several images   POST /{page_id}/photos  published=false (each)
                   POST /{page_id}/feed    attached_media[i]={"media_fbid": …}
  video            POST /{page_id}/videos  file_url=…, description=…
"""

from __future__ import annotations

import json
import logging
from typing import Sequence

from src.content.models import Credentials, Media, Network, Post, Variant
from src.publish.base import NetworkAdapter, PublishResult, split_media
from src.publish.errors import PublishError, as_partial_upload
from src.publish.graph import GRAPH_BASE, GraphClient
from src.publish.media import MediaPreparer

logger = logging.getLogger(__name__)

_MAX_PHOTOS = 10


class FacebookError(PublishError):
    """Raised when the Graph API rejects a Page publish."""

    network = Network.FACEBOOK


class FacebookAdapter(NetworkAdapter):
    """Publishes to the first Facebook Page the user manages."""

    network = Network.FACEBOOK

    def __init__(
        self,
        preparer: MediaPreparer,
        *,
        base_url: str = GRAPH_BASE,
        timeout: float = 30.0,
    ) -> None:
        self.preparer = preparer
        self._graph = GraphClient(FacebookError, base_url=base_url, timeout=timeout)

    def resolve_page(self, user_token: str) -> tuple[str, str]:
        """Return (page_id, page_access_token) of the first managed page."""
        pages = self._graph.list_pages(user_token)
        if len(pages) > 1:
            logger.info("User manages %d pages; using the first (%s)", len(pages), pages[0].get("id"))
        page = pages[0]
        return str(page["id"]), page["access_token"]

    def publish(
        self,
        credentials: Credentials,
        post: Post,
        variant: Variant,
        media: Sequence[Media],
    ) -> PublishResult:
        images, videos = split_media(media)
        message = variant.effective_text(post)
        if videos:
            urls = [self.preparer.resolve_url(videos[0])]
        else:
            urls = [self.preparer.resolve_url(m) for m in images[:_MAX_PHOTOS]]

        page_id, token = self.resolve_page(credentials.access_token)

        if videos:
            body = self._graph.post(
                f"/{page_id}/videos",
                {"file_url": urls[0], "description": message},
                token,
            )
            post_id = str(body["id"])
        elif len(urls) == 1:
            body = self._graph.post(f"/{page_id}/photos", {"url": urls[0], "caption": message}, token)
            post_id = str(body.get("post_id") or body["id"])
        elif urls:
            post_id = self._post_album(page_id, token, urls, message)
        else:
            body = self._graph.post(f"/{page_id}/feed", {"message": message}, token)
            post_id = str(body["id"])

        logger.info("Published Facebook post %s on page %s", post_id, page_id)
        permalink = self._graph.lookup_field(post_id, "permalink_url", token)
        return PublishResult(external_id=post_id, permalink=permalink)

    def _post_album(self, page_id: str, token: str, urls: list[str], message: str) -> str:
        photo_ids: list[str] = []
        try:
            for url in urls:
                body = self._graph.post(
                    f"/{page_id}/photos", {"url": url, "published": "false"}, token
                )
                photo_ids.append(str(body["id"]))
            payload: dict = {"message": message}
            for i, photo_id in enumerate(photo_ids):
                payload[f"attached_media[{i}]"] = json.dumps({"media_fbid": photo_id})
            body = self._graph.post(f"/{page_id}/feed", payload, token)
        except FacebookError as exc:
            raise as_partial_upload(exc, photo_ids) from exc
        return str(body["id"])

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def list_feed(self, credentials: Credentials, limit: int = 100) -> list[dict]:
        """Return the first page's recent feed with engagement summaries."""
        page_id, token = self.resolve_page(credentials.access_token)
        fields = "id,created_time,permalink_url,shares,likes.summary(true).limit(0),comments.summary(true).limit(0)"
        body = self._graph.get(f"/{page_id}/feed", {"fields": fields, "limit": limit}, token)
        return list(body.get("data") or [])

    def close(self) -> None:
        self._graph.close()
