"""
Tests for src/metrics/store.py
"""

from __future__ import annotations

import pytest

from src.content.models import Metric, Network
from src.metrics.store import MetricStore


def _metric(variant_id: str, network: Network = Network.BLUESKY, post_id: str = "P1", **counters) -> Metric:
    return Metric(variant_id=variant_id, post_id=post_id, network=network, **counters)


# ---------------------------------------------------------------------------
# upsert
# ---------------------------------------------------------------------------


class TestUpsert:
    def test_insert_then_read(self, metric_store: MetricStore) -> None:
        assert metric_store.upsert(_metric("V1", likes=3, comments=1, shares=2, impressions=40))

        stored = metric_store.get("V1")
        assert stored is not None
        assert stored.counters() == (3, 1, 2, 40)
        assert stored.network == Network.BLUESKY

    def test_unchanged_counters_skip_the_write(self, metric_store: MetricStore) -> None:
        metric_store.upsert(_metric("V1", likes=3))
        first = metric_store.get("V1")

        assert metric_store.upsert(_metric("V1", likes=3)) is False
        assert metric_store.get("V1").collected_at == first.collected_at

    def test_changed_counters_overwrite(self, metric_store: MetricStore) -> None:
        metric_store.upsert(_metric("V1", likes=3))

        assert metric_store.upsert(_metric("V1", likes=7)) is True
        assert metric_store.get("V1").likes == 7
        assert metric_store.summary()["variants"] == 1

    def test_missing_variant(self, metric_store: MetricStore) -> None:
        assert metric_store.get("nope") is None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_list_for_post_ordered_by_network(self, metric_store: MetricStore) -> None:
        metric_store.upsert(_metric("V2", Network.TWITTER))
        metric_store.upsert(_metric("V1", Network.BLUESKY))
        metric_store.upsert(_metric("V3", Network.BLUESKY, post_id="P2"))

        assert [m.network for m in metric_store.list_for_post("P1")] == [Network.BLUESKY, Network.TWITTER]

    def test_top_variants(self, metric_store: MetricStore) -> None:
        metric_store.upsert(_metric("V1", likes=5))
        metric_store.upsert(_metric("V2", likes=50, post_id="P2"))
        metric_store.upsert(_metric("V3", Network.TWITTER, likes=500))

        top = metric_store.top_variants(Network.BLUESKY, metric="likes", limit=1)

        assert top == [
            {"variant_id": "V2", "post_id": "P2", "likes": 50, "collected_at": top[0]["collected_at"]}
        ]

    def test_top_variants_rejects_unknown_counter(self, metric_store: MetricStore) -> None:
        with pytest.raises(ValueError):
            metric_store.top_variants(Network.BLUESKY, metric="likes; DROP TABLE metrics")

    def test_summary(self, metric_store: MetricStore) -> None:
        metric_store.upsert(_metric("V1", likes=1, shares=2))
        metric_store.upsert(_metric("V2", Network.TWITTER, likes=10, impressions=100))
        metric_store.upsert(_metric("V3", Network.TWITTER, post_id="P2", likes=5))

        everything = metric_store.summary()
        assert everything["network"] == "all"
        assert everything["variants"] == 3
        assert everything["distinct_posts"] == 2
        assert everything["likes"] == 16

        twitter = metric_store.summary(Network.TWITTER)
        assert twitter["network"] == "twitter"
        assert twitter["impressions"] == 100
        assert twitter["shares"] == 0

    def test_empty_summary(self, metric_store: MetricStore) -> None:
        summary = metric_store.summary(Network.FACEBOOK)
        assert summary["variants"] == 0
        assert summary["likes"] == 0
