"""
Media preparer: fetch stored media and fit it to a network's binary limits.

Bluesky caps image blobs at ~1 MB. Oversized images are downscaled to at
most 2048 px wide, then re-encoded starting at quality 85 and stepping
down by 10. Below quality 30 we give up and raise rather than upload a
mangled or oversized image.

Nothing is persisted; adapters call this inline.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from src.content.models import Media
from src.publish.errors import ErrorKind, MediaError

logger = logging.getLogger(__name__)

BLUESKY_MAX_IMAGE_BYTES = 1_000_000
MAX_WIDTH = 2048
START_QUALITY = 85
MIN_QUALITY = 30
QUALITY_STEP = 10


@dataclass
class PreparedImage:
    data: bytes
    mime: str


def compress_to_limit(
    data: bytes,
    mime: str = "image/jpeg",
    max_bytes: int = BLUESKY_MAX_IMAGE_BYTES,
) -> PreparedImage:
    """
    Re-encode ``data`` until it fits in ``max_bytes``.

    PNG input is first tried as an optimised PNG; if that is still too
    large it goes through the JPEG quality ladder like any other image.

    Raises:
        MediaError: if the image cannot be decoded, or does not fit even
            at the lowest allowed quality.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise MediaError(f"Could not decode image: {exc}", ErrorKind.UNSUPPORTED_CONTENT) from exc

    if img.width > MAX_WIDTH:
        height = max(1, round(img.height * MAX_WIDTH / img.width))
        img = img.resize((MAX_WIDTH, height), Image.Resampling.LANCZOS)

    if "png" in (mime or "").lower():
        buf = io.BytesIO()
        img.save(buf, format="PNG", optimize=True)
        if buf.tell() <= max_bytes:
            return PreparedImage(buf.getvalue(), "image/png")

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        img = background
    elif img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    quality = START_QUALITY
    size = 0
    while quality >= MIN_QUALITY:
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality, optimize=True)
        size = buf.tell()
        if size <= max_bytes:
            logger.info("Compressed image to %d bytes at quality %d", size, quality)
            return PreparedImage(buf.getvalue(), "image/jpeg")
        quality -= QUALITY_STEP

    raise MediaError(
        f"Could not compress image below {max_bytes} bytes (final size: {size})",
        ErrorKind.UNSUPPORTED_CONTENT,
    )


class MediaPreparer:
    """
    Resolve and download stored media.

    Usage::

        preparer = MediaPreparer(app_url="https://app.example.com")
        url = preparer.resolve_url(media)          # absolute URL for pull-based APIs
        image = preparer.prepare_image(media, max_bytes=1_000_000)
    """

    def __init__(
        self,
        app_url: str = "",
        *,
        timeout: float = 30.0,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.app_url = app_url
        self._http = http or httpx.Client(timeout=timeout, follow_redirects=True)

    def resolve_url(self, media: Media) -> str:
        """Return an absolute URL for the media's storage locator."""
        locator = media.url
        if locator.startswith(("http://", "https://")):
            return locator
        if not self.app_url:
            raise MediaError(
                f"Base URL not configured; cannot build an absolute URL for {locator!r}"
            )
        base = self.app_url if self.app_url.startswith("http") else f"https://{self.app_url}"
        return f"{base.rstrip('/')}/{locator.lstrip('/')}"

    def fetch(self, media: Media) -> bytes:
        """Download the media bytes."""
        url = self.resolve_url(media)
        try:
            resp = self._http.get(url)
        except httpx.HTTPError as exc:
            raise MediaError(f"Could not download media {url}: {exc}") from exc
        if resp.status_code >= 400:
            raise MediaError(f"Could not download media {url}: HTTP {resp.status_code}")
        return resp.content

    def prepare_image(self, media: Media, max_bytes: int = BLUESKY_MAX_IMAGE_BYTES) -> PreparedImage:
        """Download an image and compress it only if it exceeds ``max_bytes``."""
        data = self.fetch(media)
        mime = media.mime or "image/jpeg"
        if len(data) <= max_bytes:
            return PreparedImage(data, mime)
        logger.info("Image %s is %d bytes, compressing to %d", media.id, len(data), max_bytes)
        return compress_to_limit(data, mime, max_bytes)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "MediaPreparer":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
