"""
Per-network media capability rules.

Pure functions: given the set of networks a post targets, decide which
media combinations are legal before anything is submitted.

  defaults   : max_images=10, max_videos=1, allow_mix=True, min_media=0
  tiktok     : video only (max_images=0, min_media>=1, allow_mix=False)
  bluesky    : max_images<=4, allow_mix=False
  instagram  : min_media>=1

Rules combine by taking the most restrictive value, so the result does not
depend on the order networks were selected in.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence, Union

from src.content.models import Media, MediaType, Network


@dataclass(frozen=True)
class Constraints:
    max_images: int = 10
    max_videos: int = 1
    allow_mix: bool = True
    min_media: int = 0


@dataclass(frozen=True)
class Decision:
    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


ALLOW = Decision(ok=True)


def _tiktok(c: Constraints) -> Constraints:
    return replace(c, max_images=0, min_media=max(c.min_media, 1), allow_mix=False)


def _bluesky(c: Constraints) -> Constraints:
    return replace(c, max_images=min(c.max_images, 4), allow_mix=False)


def _instagram(c: Constraints) -> Constraints:
    return replace(c, min_media=max(c.min_media, 1))


_OVERRIDES = {
    Network.TIKTOK: _tiktok,
    Network.BLUESKY: _bluesky,
    Network.INSTAGRAM: _instagram,
}


def evaluate_constraints(networks: Iterable[Network]) -> Constraints:
    """Return the combined media constraints for the selected networks."""
    constraints = Constraints()
    for network in set(networks):
        override = _OVERRIDES.get(Network(network))
        if override is not None:
            constraints = override(constraints)
    return constraints


# ---------------------------------------------------------------------------
# Media checks
# ---------------------------------------------------------------------------


MediaLike = Union[Media, MediaType, str]


def media_kind(item: MediaLike) -> Optional[MediaType]:
    """Classify a Media, a MediaType or a MIME string; None if unsupported."""
    if isinstance(item, Media):
        if item.is_video:
            return MediaType.VIDEO
        if item.is_image:
            return MediaType.IMAGE
        return None
    if isinstance(item, MediaType):
        return item
    top = item.lower().split("/", 1)[0]
    if top in ("image", "video"):
        return MediaType(top)
    try:
        return MediaType(item.lower())
    except ValueError:
        return None


def _counts(kinds: Iterable[MediaType]) -> tuple[int, int]:
    images = videos = 0
    for kind in kinds:
        if kind == MediaType.IMAGE:
            images += 1
        elif kind == MediaType.VIDEO:
            videos += 1
    return images, videos


def _check_counts(images: int, videos: int, constraints: Constraints) -> Decision:
    if images > constraints.max_images:
        if constraints.max_images == 0:
            return Decision(False, "No images allowed for the selected networks.")
        return Decision(False, f"Image limit exceeded ({constraints.max_images}).")
    if videos > constraints.max_videos:
        return Decision(False, f"Video limit exceeded ({constraints.max_videos}).")
    if not constraints.allow_mix and images and videos:
        return Decision(
            False, "The selected networks do not allow mixing images and videos."
        )
    return ALLOW


def can_add_media(
    candidate: MediaLike,
    current: Sequence[MediaLike],
    constraints: Constraints,
) -> Decision:
    """
    Decide whether ``candidate`` may be appended to ``current``.

    A pure reducer step: calling it for each item in turn accepts a
    sequence exactly when ``check_media_set`` accepts the final set.
    """
    kind = media_kind(candidate)
    if kind is None:
        return Decision(False, "Unsupported file type.")

    kinds = [k for k in (media_kind(m) for m in current) if k is not None]
    images, videos = _counts([*kinds, kind])

    # Only the candidate's own limit is new; the rest was accepted before.
    if kind == MediaType.IMAGE and images > constraints.max_images:
        return _check_counts(images, 0, constraints)
    if kind == MediaType.VIDEO and videos > constraints.max_videos:
        return _check_counts(0, videos, constraints)
    return _check_counts(images, videos, constraints)


def check_media_set(
    media: Sequence[MediaLike],
    constraints: Constraints,
    *,
    require_minimum: bool = False,
) -> Decision:
    """Evaluate a complete media set in one shot."""
    kinds = []
    for item in media:
        kind = media_kind(item)
        if kind is None:
            return Decision(False, "Unsupported file type.")
        kinds.append(kind)

    decision = _check_counts(*_counts(kinds), constraints)
    if not decision:
        return decision
    if require_minimum and len(kinds) < constraints.min_media:
        return Decision(
            False,
            f"At least {constraints.min_media} media file(s) required.",
        )
    return ALLOW
