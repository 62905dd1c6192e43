"""
Metrics reconciliation engine.

Matches locally stored variant references (uri / permalink) against the
remote posts each network reports, and writes one Metric row per matched
variant.

Lookup keys per network:
  bluesky    record URI, exact
  instagram  media id, plus the permalink shortcode (/p/<code>/, /reel/, /tv/)
  facebook   full "<page>_<post>" id, plus the part after the first "_",
             then any id containing (or contained in) the stored one
  twitter    tweet id, exact

Fetches run concurrently, one per network; matching and writes run in the
calling thread, network by network. A failing network is reported as a
warning and the others carry on. Running the engine twice against the same
remote data changes nothing the second time.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from src.content.credentials import CredentialStore
from src.content.models import Metric, Network, PostStatus, Variant
from src.content.storage import PostStore
from src.metrics.fetchers import MetricsFetcher, RemoteMetric
from src.metrics.store import MetricStore
from src.publish.errors import PublishError
from src.publish.media import MediaPreparer

logger = logging.getLogger(__name__)

_SHORTCODE_RE = re.compile(r"/(?:p|reel|tv)/([a-zA-Z0-9_-]+)")


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


def instagram_shortcode(permalink: Optional[str]) -> Optional[str]:
    """Extract the shortcode from an Instagram permalink."""
    if not permalink:
        return None
    match = _SHORTCODE_RE.search(permalink)
    return match.group(1) if match else None


def facebook_secondary_key(post_id: Optional[str]) -> Optional[str]:
    """``"<page>_<post>"`` → ``"<post>"``; None when there is no ``_``."""
    if not post_id or "_" not in post_id:
        return None
    return post_id.split("_", 1)[1] or None


def _secondary_keys(network: Network, primary: Optional[str], permalink: Optional[str]) -> list[str]:
    keys: list[Optional[str]] = []
    if network == Network.INSTAGRAM:
        keys = [instagram_shortcode(permalink), instagram_shortcode(primary)]
    elif network == Network.FACEBOOK:
        keys = [facebook_secondary_key(primary)]
    return [k for k in keys if k]


def build_lookup(network: Network, remote: Iterable[RemoteMetric]) -> dict[str, RemoteMetric]:
    """Index remote metrics by natural id, then by the network's secondary keys."""
    items = list(remote)
    lookup: dict[str, RemoteMetric] = {}
    for item in items:
        lookup[item.remote_id] = item
    # Secondary keys never shadow a primary id
    for item in items:
        for key in _secondary_keys(network, item.remote_id, item.permalink):
            lookup.setdefault(key, item)
    return lookup


def match_variant(
    network: Network,
    variant: Variant,
    lookup: Mapping[str, RemoteMetric],
) -> Optional[RemoteMetric]:
    """
    Exact uri / permalink first, then the network's secondary keys.

    Facebook then falls back to the first lookup key that contains the
    variant uri or is contained in it.
    """
    for key in (variant.uri, variant.permalink):
        if key and key in lookup:
            return lookup[key]
    for key in _secondary_keys(network, variant.uri, variant.permalink):
        if key in lookup:
            return lookup[key]
    if network == Network.FACEBOOK and variant.uri:
        for key, item in lookup.items():
            if key in variant.uri or variant.uri in key:
                return item
    return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class RefreshReport:
    """Outcome of one ``refresh_metrics`` run."""

    processed_count: int = 0                     # variants matched to a remote post
    written_count: int = 0                       # variants whose rows actually changed
    per_network: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class ReconciliationEngine:
    """
    Usage::

        engine = ReconciliationEngine(posts, metrics, fetchers, credentials)
        report = engine.refresh_metrics("user-1")
        report.processed_count
    """

    def __init__(
        self,
        post_store: PostStore,
        metric_store: MetricStore,
        fetchers: Mapping[Network, MetricsFetcher],
        credentials: CredentialStore,
        *,
        max_workers: int = 4,
        preparer: Optional[MediaPreparer] = None,
    ) -> None:
        self.post_store = post_store
        self.metric_store = metric_store
        self.fetchers = dict(fetchers)
        self.credentials = credentials
        self.max_workers = max(1, max_workers)
        self.preparer = preparer          # shared by the fetchers' adapters

    def _fetch_all(
        self,
        user_id: str,
        by_network: dict[Network, list[Variant]],
        report: RefreshReport,
    ) -> dict[Network, list[RemoteMetric]]:
        jobs = []
        for network, variants in by_network.items():
            fetcher = self.fetchers.get(network)
            if fetcher is None:
                logger.debug("No metrics fetcher for %s; skipping", network.value)
                continue
            creds = self.credentials.get(user_id, network)
            if creds is None:
                report.warnings.append(f"{network.value}: no linked account")
                logger.warning("No %s credentials for user %s; skipping", network.value, user_id)
                continue
            known_ids = [v.uri for v in variants if v.uri]
            jobs.append((network, fetcher, creds, known_ids))

        fetched: dict[Network, list[RemoteMetric]] = {}
        if not jobs:
            return fetched

        workers = min(self.max_workers, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="metrics") as pool:
            futures = {
                pool.submit(fetcher.fetch, creds, known_ids): network
                for network, fetcher, creds, known_ids in jobs
            }
            for future in as_completed(futures):
                network = futures[future]
                try:
                    fetched[network] = future.result()
                except PublishError as exc:
                    report.warnings.append(f"{network.value}: {exc.message}")
                    logger.warning("Fetching %s metrics failed (%s): %s", network.value, exc.kind.value, exc.message)
                except Exception as exc:
                    report.warnings.append(f"{network.value}: {exc}")
                    logger.exception("Unexpected error fetching %s metrics", network.value)
        return fetched

    def refresh_metrics(self, user_id: str) -> RefreshReport:
        """Fetch remote metrics for every network and reconcile them locally."""
        report = RefreshReport()
        variants = self.post_store.list_referenced_variants(user_id)
        by_network: dict[Network, list[Variant]] = {}
        for variant in variants:
            by_network.setdefault(variant.network, []).append(variant)

        fetched = self._fetch_all(user_id, by_network, report)

        touched_posts: set[str] = set()
        for network in sorted(fetched, key=lambda n: n.value):
            lookup = build_lookup(network, fetched[network])
            matched = 0
            for variant in by_network[network]:
                remote = match_variant(network, variant, lookup)
                if remote is None:
                    continue
                matched += 1
                wrote = self.metric_store.upsert(
                    Metric(
                        variant_id=variant.id,
                        post_id=variant.post_id,
                        network=network,
                        likes=remote.likes,
                        comments=remote.comments,
                        shares=remote.shares,
                        impressions=remote.impressions,
                    )
                )
                changed = self.post_store.update_variant_reference(
                    variant.id,
                    status=PostStatus.PUBLISHED,
                    sent_at=remote.created_at,
                )
                if wrote or changed:
                    report.written_count += 1
                if changed:
                    touched_posts.add(variant.post_id)
            report.per_network[network.value] = matched
            report.processed_count += matched
            logger.info(
                "%s: matched %d of %d variant(s) against %d remote post(s)",
                network.value,
                matched,
                len(by_network[network]),
                len(fetched[network]),
            )

        for post_id in sorted(touched_posts):
            self.post_store.refresh_post_status(post_id)
        return report

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the fetchers' transports. The stores stay open."""
        for fetcher in self.fetchers.values():
            fetcher.close()
        if self.preparer is not None:
            self.preparer.close()

    def __enter__(self) -> "ReconciliationEngine":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
