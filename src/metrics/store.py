"""
Metric snapshot store.

Holds the latest engagement counters of each published variant so
performance can be compared across posts and networks.

Metrics table:
  variant_id    TEXT PK  (one live row per variant)
  post_id       TEXT
  network       TEXT
  likes         INTEGER
  comments      INTEGER
  shares        INTEGER
  impressions   INTEGER
  collected_at  TEXT  (ISO 8601, when the counters last changed)

Rows are overwritten in place, never appended. ``upsert`` skips the write
when no counter changed, so refreshing twice against the same remote data
leaves the table byte-for-byte identical.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Optional

import sqlite_utils

from src.content.models import Metric, Network

logger = logging.getLogger(__name__)

COUNTERS = ("likes", "comments", "shares", "impressions")


class MetricStore:
    """
    Persistent metric storage backed by SQLite.

    Usage::

        store = MetricStore(Path("output/crosspost.db"))
        store.upsert(Metric(variant_id="v1", post_id="p1", network=Network.BLUESKY, likes=12))
        metric = store.get("v1")
        top = store.top_variants(Network.BLUESKY, metric="likes")
    """

    TABLE = "metrics"

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite_utils.Database(db_path)
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        if self.TABLE not in self._db.table_names():
            self._db[self.TABLE].create(
                {
                    "variant_id": str,
                    "post_id": str,
                    "network": str,
                    "likes": int,
                    "comments": int,
                    "shares": int,
                    "impressions": int,
                    "collected_at": str,
                },
                pk="variant_id",
            )
            self._db[self.TABLE].create_index(["post_id"])
            self._db[self.TABLE].create_index(["network"])

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def upsert(self, metric: Metric) -> bool:
        """Insert or overwrite a variant's metric row. Returns True if a write happened."""
        current = self.get(metric.variant_id)
        if (
            current is not None
            and current.counters() == metric.counters()
            and current.post_id == metric.post_id
            and current.network == metric.network
        ):
            return False

        self._db[self.TABLE].insert(self._to_row(metric), replace=True)
        logger.info(
            "Stored metrics for %s/%s: likes=%d comments=%d shares=%d impressions=%d",
            metric.network.value,
            metric.variant_id,
            *metric.counters(),
        )
        return True

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, variant_id: str) -> Optional[Metric]:
        """Return the metric row of a variant, or None if not found."""
        try:
            row = self._db[self.TABLE].get(variant_id)
        except sqlite_utils.db.NotFoundError:
            return None
        return self._from_row(row)

    def list_for_post(self, post_id: str) -> list[Metric]:
        """Return the metric rows of every variant of a post."""
        rows = self._db[self.TABLE].rows_where(
            "post_id = ?",
            [post_id],
            order_by="network",
        )
        return [self._from_row(r) for r in rows]

    def top_variants(
        self,
        network: Network,
        metric: str = "likes",
        limit: int = 10,
    ) -> list[dict]:
        """Return top N variants on a network by one counter."""
        if metric not in COUNTERS:
            raise ValueError(f"metric must be one of {COUNTERS}, got {metric!r}")
        rows = self._db.execute(
            f"""
            SELECT variant_id, post_id, {metric}, collected_at
            FROM {self.TABLE}
            WHERE network = ?
            ORDER BY {metric} DESC
            LIMIT ?
            """,
            [Network(network).value, limit],
        ).fetchall()
        return [
            {
                "variant_id": r[0],
                "post_id": r[1],
                metric: r[2],
                "collected_at": r[3],
            }
            for r in rows
        ]

    def summary(self, network: Optional[Network] = None) -> dict:
        """Return aggregate stats: variants tracked and counter totals."""
        where = "WHERE network = ?" if network else ""
        params = [Network(network).value] if network else []

        row = self._db.execute(
            f"""
            SELECT COUNT(*), COUNT(DISTINCT post_id),
                   COALESCE(SUM(likes), 0), COALESCE(SUM(comments), 0),
                   COALESCE(SUM(shares), 0), COALESCE(SUM(impressions), 0)
            FROM {self.TABLE} {where}
            """,
            params,
        ).fetchone()

        return {
            "network": Network(network).value if network else "all",
            "variants": row[0],
            "distinct_posts": row[1],
            "likes": row[2],
            "comments": row[3],
            "shares": row[4],
            "impressions": row[5],
        }

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(metric: Metric) -> dict:
        return {
            "variant_id": metric.variant_id,
            "post_id": metric.post_id,
            "network": metric.network.value,
            "likes": metric.likes,
            "comments": metric.comments,
            "shares": metric.shares,
            "impressions": metric.impressions,
            "collected_at": metric.collected_at.isoformat(),
        }

    @staticmethod
    def _from_row(row: dict) -> Metric:
        return Metric(
            variant_id=row["variant_id"],
            post_id=row["post_id"],
            network=Network(row["network"]),
            likes=row["likes"] or 0,
            comments=row["comments"] or 0,
            shares=row["shares"] or 0,
            impressions=row["impressions"] or 0,
            collected_at=dt.datetime.fromisoformat(row["collected_at"]),
        )

    # ------------------------------------------------------------------
    # Context manager / cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> "MetricStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
