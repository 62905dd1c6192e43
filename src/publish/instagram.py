"""
Instagram Graph API publishing adapter.

Docs: https://developers.facebook.com/docs/instagram-api/guides/content-publishing

Credentials: a user access token. The adapter resolves the Facebook Page
that has an ``instagram_business_account`` and publishes with that page's
token.

Flow (single image / video):
  1. POST /{ig_user_id}/media              → container_id
  2. POST /{ig_user_id}/media_publish      → media_id   (retried while "not ready")

Flow (carousel — up to 10 items):
  1. POST /{ig_user_id}/media for each item (is_carousel_item=true)  → child_ids
  2. POST /{ig_user_id}/media with CAROUSEL + children=[child_ids]    → parent_id
  3. POST /{ig_user_id}/media_publish with creation_id=parent_id      → media_id

Items beyond the 10th are dropped (with a warning), not rejected.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from src.content.models import Credentials, Media, Network, Post, Variant
from src.publish.base import NetworkAdapter, PublishResult
from src.publish.errors import ErrorKind, PublishError
from src.publish.graph import GRAPH_BASE, GraphClient
from src.publish.media import MediaPreparer

logger = logging.getLogger(__name__)

_CAROUSEL_MAX = 10
_NOT_READY_MESSAGE = "Media ID is not available"


class InstagramError(PublishError):
    """Raised when the Instagram Graph API returns an error response."""

    network = Network.INSTAGRAM


def is_media_not_ready(exc: PublishError) -> bool:
    return _NOT_READY_MESSAGE in exc.message


class InstagramAdapter(NetworkAdapter):
    """
    Two-phase container publisher.

    Usage::

        adapter = InstagramAdapter(MediaPreparer(app_url="https://app.example.com"))
        result = adapter.publish(credentials, post, variant, post.ordered_media)
        result.external_id   # Instagram media id
        result.permalink     # https://www.instagram.com/p/<shortcode>/ (best effort)
    """

    network = Network.INSTAGRAM

    def __init__(
        self,
        preparer: MediaPreparer,
        *,
        base_url: str = GRAPH_BASE,
        timeout: float = 30.0,
        publish_attempts: int = 5,
        publish_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.preparer = preparer
        self.publish_attempts = publish_attempts
        self.publish_delay = publish_delay
        self._sleep = sleep
        self._graph = GraphClient(InstagramError, base_url=base_url, timeout=timeout)

    # ------------------------------------------------------------------
    # Account resolution
    # ------------------------------------------------------------------

    def resolve_account(self, user_token: str) -> tuple[str, str]:
        """Return (ig_user_id, page_access_token) for the first page with an IG account."""
        pages = self._graph.list_pages(
            user_token,
            fields="id,name,access_token,instagram_business_account{id,username}",
        )
        for page in pages:
            account = page.get("instagram_business_account") or {}
            if account.get("id"):
                return str(account["id"]), page["access_token"]
        raise InstagramError(
            "None of the linked Facebook Pages has an Instagram business account.",
            ErrorKind.AUTH_INVALID,
        )

    # ------------------------------------------------------------------
    # Container creation
    # ------------------------------------------------------------------

    def create_container(
        self,
        ig_user_id: str,
        token: str,
        media_url: str,
        *,
        is_video: bool = False,
        caption: str = "",
        is_carousel_item: bool = False,
    ) -> str:
        """
        Create a single-item media container.

        Returns the container_id (not yet published).
        """
        payload: dict = {}
        if is_video:
            payload["media_type"] = "VIDEO"
            payload["video_url"] = media_url
        else:
            payload["image_url"] = media_url
        if is_carousel_item:
            payload["is_carousel_item"] = "true"
        else:
            payload["caption"] = caption

        body = self._graph.post(f"/{ig_user_id}/media", payload, token)
        container_id: str = body["id"]
        logger.info("Created %s container: %s", "video" if is_video else "image", container_id)
        return container_id

    def create_carousel_container(
        self,
        ig_user_id: str,
        token: str,
        children_ids: list[str],
        caption: str = "",
    ) -> str:
        """
        Create a carousel parent container from existing child containers.

        Returns the parent container_id.
        """
        payload = {
            "media_type": "CAROUSEL",
            "caption": caption,
            "children": ",".join(children_ids),
        }
        body = self._graph.post(f"/{ig_user_id}/media", payload, token)
        container_id: str = body["id"]
        logger.info("Created carousel container: %s (%d children)", container_id, len(children_ids))
        return container_id

    def publish_container(self, ig_user_id: str, token: str, container_id: str) -> str:
        """
        Publish a container, retrying while Instagram reports it is not ready.

        Only the "media not ready" signature is retried, at a fixed delay,
        up to ``publish_attempts`` times. Any other error is raised at once.

        Returns the media_id (the published post's ID).
        """
        for attempt in range(1, self.publish_attempts + 1):
            try:
                body = self._graph.post(
                    f"/{ig_user_id}/media_publish",
                    {"creation_id": container_id},
                    token,
                )
            except InstagramError as exc:
                if not is_media_not_ready(exc):
                    raise
                exc.kind = ErrorKind.TRANSIENT_REMOTE
                if attempt == self.publish_attempts:
                    raise
                logger.warning(
                    "Container %s not ready (attempt %d/%d), retrying in %.0fs",
                    container_id,
                    attempt,
                    self.publish_attempts,
                    self.publish_delay,
                )
                self._sleep(self.publish_delay)
                continue
            media_id: str = body["id"]
            logger.info("Published container %s → media %s", container_id, media_id)
            return media_id

        raise InstagramError(
            f"Container {container_id} could not be published.",
            ErrorKind.TRANSIENT_REMOTE,
        )

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self,
        credentials: Credentials,
        post: Post,
        variant: Variant,
        media: Sequence[Media],
    ) -> PublishResult:
        items = sorted(media, key=lambda m: m.media_order)
        if not items:
            raise InstagramError("Instagram requires at least one media item.", ErrorKind.VALIDATION)
        if len(items) > _CAROUSEL_MAX:
            logger.warning(
                "Instagram supports at most %d items; dropping %d from post %s",
                _CAROUSEL_MAX,
                len(items) - _CAROUSEL_MAX,
                post.id,
            )
            items = items[:_CAROUSEL_MAX]

        # Resolve every URL up front so a bad locator fails before any remote call.
        urls = [self.preparer.resolve_url(m) for m in items]
        caption = variant.effective_text(post)
        ig_user_id, token = self.resolve_account(credentials.access_token)

        if len(items) == 1:
            container_id = self.create_container(
                ig_user_id, token, urls[0], is_video=items[0].is_video, caption=caption
            )
        else:
            children = [
                self.create_container(
                    ig_user_id, token, url, is_video=m.is_video, is_carousel_item=True
                )
                for m, url in zip(items, urls)
            ]
            container_id = self.create_carousel_container(ig_user_id, token, children, caption)

        media_id = self.publish_container(ig_user_id, token, container_id)
        permalink = self._graph.lookup_field(media_id, "permalink", token)
        return PublishResult(external_id=media_id, permalink=permalink)

    # ------------------------------------------------------------------
    # Insights / feed
    # ------------------------------------------------------------------

    def list_media(self, credentials: Credentials, limit: int = 100) -> list[dict]:
        """Return the account's recent media with engagement counters."""
        ig_user_id, token = self.resolve_account(credentials.access_token)
        fields = "id,caption,permalink,timestamp,like_count,comments_count,media_type,media_product_type"
        body = self._graph.get(f"/{ig_user_id}/media", {"fields": fields, "limit": limit}, token)
        return list(body.get("data") or [])

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._graph.close()

