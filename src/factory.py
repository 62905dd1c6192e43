"""
Wiring: build adapters, fetchers, the orchestrator and the reconciliation
engine from application settings.

Core classes take every value explicitly; this module is the only place
that reads ``Settings`` on their behalf.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from src.content.credentials import CredentialStore, SettingsCredentialStore
from src.content.models import Network
from src.content.storage import PostStore
from src.metrics.fetchers import (
    BlueskyMetricsFetcher,
    FacebookMetricsFetcher,
    InstagramMetricsFetcher,
    MetricsFetcher,
    TwitterMetricsFetcher,
)
from src.metrics.reconcile import ReconciliationEngine
from src.metrics.store import MetricStore
from src.publish.base import NetworkAdapter
from src.publish.bluesky import BlueskyAdapter, BlueskyClient
from src.publish.facebook import FacebookAdapter
from src.publish.instagram import InstagramAdapter
from src.publish.media import MediaPreparer
from src.publish.orchestrator import PublishOrchestrator
from src.publish.tiktok import TikTokAdapter
from src.publish.twitter import TwitterAdapter

if TYPE_CHECKING:
    from config.settings import Settings


def _settings(settings: Optional["Settings"]) -> "Settings":
    if settings is not None:
        return settings
    from config.settings import settings as default_settings

    return default_settings


def build_adapters(settings: "Settings", preparer: MediaPreparer) -> dict[Network, NetworkAdapter]:
    """One adapter per network, keyed by the network enum."""
    timeout = settings.request_timeout
    return {
        Network.BLUESKY: BlueskyAdapter(
            preparer,
            BlueskyClient(settings.bluesky_service_url, timeout=timeout),
            max_image_bytes=settings.bluesky_max_image_bytes,
        ),
        Network.INSTAGRAM: InstagramAdapter(
            preparer,
            base_url=settings.graph_api_base,
            timeout=timeout,
            publish_attempts=settings.instagram_publish_attempts,
            publish_delay=settings.instagram_publish_delay,
        ),
        Network.FACEBOOK: FacebookAdapter(
            preparer, base_url=settings.graph_api_base, timeout=timeout
        ),
        Network.TIKTOK: TikTokAdapter(
            preparer,
            base_url=settings.tiktok_api_base,
            timeout=timeout,
            privacy_level=settings.tiktok_privacy_level,
        ),
        Network.TWITTER: TwitterAdapter(
            preparer,
            consumer_key=settings.twitter_api_key,
            consumer_secret=settings.twitter_api_secret,
            timeout=timeout,
        ),
    }


def build_fetchers(settings: "Settings", preparer: MediaPreparer) -> dict[Network, MetricsFetcher]:
    """Metrics fetchers over their own transports. TikTok has none."""
    timeout = settings.request_timeout
    return {
        Network.BLUESKY: BlueskyMetricsFetcher(
            BlueskyClient(settings.bluesky_service_url, timeout=timeout)
        ),
        Network.INSTAGRAM: InstagramMetricsFetcher(
            InstagramAdapter(preparer, base_url=settings.graph_api_base, timeout=timeout)
        ),
        Network.FACEBOOK: FacebookMetricsFetcher(
            FacebookAdapter(preparer, base_url=settings.graph_api_base, timeout=timeout)
        ),
        Network.TWITTER: TwitterMetricsFetcher(
            TwitterAdapter(
                preparer,
                consumer_key=settings.twitter_api_key,
                consumer_secret=settings.twitter_api_secret,
                timeout=timeout,
            )
        ),
    }


def build_orchestrator(
    settings: Optional["Settings"] = None,
    store: Optional[PostStore] = None,
    credentials: Optional[CredentialStore] = None,
) -> PublishOrchestrator:
    s = _settings(settings)
    preparer = MediaPreparer(s.app_url, timeout=s.request_timeout)
    return PublishOrchestrator(
        store or PostStore(s.db_path),
        build_adapters(s, preparer),
        credentials or SettingsCredentialStore(s),
        max_workers=s.publish_workers,
        preparer=preparer,
    )


def build_engine(
    settings: Optional["Settings"] = None,
    post_store: Optional[PostStore] = None,
    metric_store: Optional[MetricStore] = None,
    credentials: Optional[CredentialStore] = None,
) -> ReconciliationEngine:
    s = _settings(settings)
    preparer = MediaPreparer(s.app_url, timeout=s.request_timeout)
    return ReconciliationEngine(
        post_store or PostStore(s.db_path),
        metric_store or MetricStore(s.db_path),
        build_fetchers(s, preparer),
        credentials or SettingsCredentialStore(s),
        max_workers=s.metrics_workers,
        preparer=preparer,
    )
