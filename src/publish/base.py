"""
Network adapter contract.

One adapter per network translates a canonical Post + Variant into that
network's publish protocol. Adapters never touch local storage: the
orchestrator persists whatever ``publish`` returns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence

from src.content.models import Credentials, Media, Network, Post, Variant


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class PublishResult:
    """What a network returned for a successful publish."""

    external_id: str
    permalink: Optional[str] = None
    # True when the network only accepted an async job (TikTok): the post is
    # queued provider-side, not confirmed live.
    accepted_only: bool = False


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class NetworkAdapter(ABC):
    """Common interface for all network publishers."""

    network: ClassVar[Network]

    @abstractmethod
    def publish(
        self,
        credentials: Credentials,
        post: Post,
        variant: Variant,
        media: Sequence[Media],
    ) -> PublishResult:
        """Publish one variant, raising ``PublishError`` on failure."""
        ...

    def close(self) -> None:
        """Release any pooled connections."""

    def __enter__(self) -> "NetworkAdapter":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def split_media(media: Sequence[Media]) -> tuple[list[Media], list[Media]]:
    """Return (images, videos) in media order."""
    ordered = sorted(media, key=lambda m: m.media_order)
    videos = [m for m in ordered if m.is_video]
    images = [m for m in ordered if m.is_image and not m.is_video]
    return images, videos
