"""
Publishing package — Bluesky, Instagram, Facebook, TikTok, X/Twitter, orchestrator.
"""

from src.publish.base import NetworkAdapter, PublishResult
from src.publish.bluesky import BlueskyAdapter, BlueskyError
from src.publish.errors import ErrorKind, MediaError, PublishError
from src.publish.facebook import FacebookAdapter, FacebookError
from src.publish.instagram import InstagramAdapter, InstagramError
from src.publish.orchestrator import PublishOrchestrator, VariantPublishResult
from src.publish.tiktok import TikTokAdapter, TikTokError
from src.publish.twitter import TwitterAdapter, TwitterError

__all__ = [
    "NetworkAdapter",
    "PublishResult",
    "ErrorKind",
    "PublishError",
    "MediaError",
    "BlueskyAdapter",
    "BlueskyError",
    "InstagramAdapter",
    "InstagramError",
    "FacebookAdapter",
    "FacebookError",
    "TikTokAdapter",
    "TikTokError",
    "TwitterAdapter",
    "TwitterError",
    "PublishOrchestrator",
    "VariantPublishResult",
]
