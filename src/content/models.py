"""
Cross-network post data models.

State machine (post and variant):
  draft ──→ scheduled ──→ published
    └──────────────────────↗

A Post is composed once and distributed as one Variant per network.
Media belongs to the Post and is shared by every Variant.
"""

from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _short_id() -> str:
    return str(uuid.uuid4())[:8]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Network(str, Enum):
    BLUESKY = "bluesky"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    TIKTOK = "tiktok"
    TWITTER = "twitter"


class PostStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class Media(BaseModel):
    """One ordered media item attached to a post."""

    id: str = Field(default_factory=_short_id)
    post_id: str = ""
    media_order: int = 1               # 1-based, contiguous per post
    type: MediaType
    mime: str = ""
    size: int = 0
    url: str                           # absolute URL or app-relative path

    @property
    def is_image(self) -> bool:
        return self.type == MediaType.IMAGE or self.mime.lower().startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.type == MediaType.VIDEO or self.mime.lower().startswith("video/")


class Schedule(BaseModel):
    """When a post should be published automatically."""

    run_at: dt.datetime                # authoritative UTC instant
    timezone: str = "UTC"              # display label only

    @field_validator("run_at")
    @classmethod
    def _ensure_aware(cls, v: dt.datetime) -> dt.datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=dt.timezone.utc)
        return v.astimezone(dt.timezone.utc)

    def is_due(self, now: Optional[dt.datetime] = None) -> bool:
        return self.run_at <= (now or _utcnow())


class Variant(BaseModel):
    """One network-specific rendering of a post."""

    id: str = Field(default_factory=_short_id)
    post_id: str = ""
    network: Network
    text: str = ""
    status: PostStatus = PostStatus.DRAFT

    # External references, filled in once published
    uri: Optional[str] = None          # platform-native id (meaning differs per network)
    permalink: Optional[str] = None
    sent_at: Optional[dt.datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == PostStatus.PUBLISHED

    def effective_text(self, post: "Post") -> str:
        if self.text and self.text.strip():
            return self.text
        return post.body or ""


class Metric(BaseModel):
    """Latest engagement snapshot of a published variant."""

    variant_id: str
    post_id: str
    network: Network
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0
    collected_at: dt.datetime = Field(default_factory=_utcnow)

    def counters(self) -> tuple[int, int, int, int]:
        return (self.likes, self.comments, self.shares, self.impressions)


class Credentials(BaseModel):
    """
    Already-decrypted credentials for one network account.

    Only the fields a network needs are filled in:
      bluesky   — identifier (handle) + password (app password), service_url
      instagram — access_token (user token; the page token is resolved)
      facebook  — access_token (user token; the page token is resolved)
      tiktok    — access_token
      twitter   — consumer_key/secret + access_token/secret (OAuth 1.0a)
    """

    model_config = ConfigDict(frozen=True)

    network: Network
    access_token: str = ""
    access_secret: str = ""
    identifier: str = ""
    password: str = ""
    consumer_key: str = ""
    consumer_secret: str = ""
    bearer_token: str = ""
    service_url: str = ""


# ---------------------------------------------------------------------------
# Core post model
# ---------------------------------------------------------------------------


class Post(BaseModel):
    """One logical post and its per-network variants."""

    id: str = Field(default_factory=_short_id)
    organization_id: str = ""
    author_id: str
    title: str
    body: str = ""
    category: str = "Other"
    visible: bool = False
    status: PostStatus = PostStatus.DRAFT

    media: list[Media] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)
    schedule: Optional[Schedule] = None

    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)

    @property
    def networks(self) -> set[Network]:
        return {v.network for v in self.variants}

    @property
    def ordered_media(self) -> list[Media]:
        return sorted(self.media, key=lambda m: m.media_order)

    @property
    def pending_variants(self) -> list[Variant]:
        return [v for v in self.variants if not v.is_published]

    @property
    def all_published(self) -> bool:
        return bool(self.variants) and all(v.is_published for v in self.variants)

    def variant(self, variant_id: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.id == variant_id), None)

    def touch(self) -> None:
        self.updated_at = _utcnow()
