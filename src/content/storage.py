"""
SQLite-backed persistent storage for posts, media, variants and schedules.

Uses sqlite-utils. One row per entity; a Post is reassembled from its
rows on read so callers always get a consistent snapshot.

Tables:
  posts      id PK, organization_id, author_id, title, body, category,
             visible, status, created_at, updated_at
  media      id PK, post_id, media_order (1-based), type, mime, size, url
  variants   id PK, post_id, network, text, status, uri, permalink,
             date_sent, time_sent
  schedules  post_id PK, run_at (ISO 8601, UTC), timezone

``date_sent`` / ``time_sent`` hold one UTC instant split in two columns.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Optional

import sqlite_utils

from src.content.models import (
    Media,
    MediaType,
    Network,
    Post,
    PostStatus,
    Schedule,
    Variant,
)

logger = logging.getLogger(__name__)


def _iso(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat(timespec="microseconds")


def _split_instant(value: Optional[dt.datetime]) -> tuple[Optional[str], Optional[str]]:
    if value is None:
        return None, None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    utc = value.astimezone(dt.timezone.utc)
    return utc.date().isoformat(), utc.time().isoformat(timespec="microseconds")


def _join_instant(date_sent: Optional[str], time_sent: Optional[str]) -> Optional[dt.datetime]:
    if not date_sent:
        return None
    joined = dt.datetime.fromisoformat(f"{date_sent}T{time_sent or '00:00:00'}")
    return joined.replace(tzinfo=dt.timezone.utc)


class PostStore:
    """Persistent storage for Post aggregates backed by SQLite."""

    POSTS = "posts"
    MEDIA = "media"
    VARIANTS = "variants"
    SCHEDULES = "schedules"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite_utils.Database(db_path)
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema setup
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        tables = self._db.table_names()
        if self.POSTS not in tables:
            self._db[self.POSTS].create(
                {
                    "id": str,
                    "organization_id": str,
                    "author_id": str,
                    "title": str,
                    "body": str,
                    "category": str,
                    "visible": int,
                    "status": str,
                    "created_at": str,
                    "updated_at": str,
                },
                pk="id",
                not_null={"id", "author_id", "status"},
            )
            self._db[self.POSTS].create_index(["author_id"])
            self._db[self.POSTS].create_index(["status"])
        if self.MEDIA not in tables:
            self._db[self.MEDIA].create(
                {
                    "id": str,
                    "post_id": str,
                    "media_order": int,
                    "type": str,
                    "mime": str,
                    "size": int,
                    "url": str,
                },
                pk="id",
            )
            self._db[self.MEDIA].create_index(["post_id", "media_order"])
        if self.VARIANTS not in tables:
            self._db[self.VARIANTS].create(
                {
                    "id": str,
                    "post_id": str,
                    "network": str,
                    "text": str,
                    "status": str,
                    "uri": str,
                    "permalink": str,
                    "date_sent": str,
                    "time_sent": str,
                },
                pk="id",
            )
            self._db[self.VARIANTS].create_index(["post_id"])
            self._db[self.VARIANTS].create_index(["network"])
        if self.SCHEDULES not in tables:
            self._db[self.SCHEDULES].create(
                {"post_id": str, "run_at": str, "timezone": str},
                pk="post_id",
            )
            self._db[self.SCHEDULES].create_index(["run_at"])
            logger.debug("Created post store tables in %s", self.db_path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_post(self, post: Post) -> Post:
        """
        Insert or replace a post with its media, variants and schedule.

        Media is renumbered 1..n in its current order. A post carrying a
        schedule escalates from DRAFT to SCHEDULED, along with its draft
        variants.
        """
        for index, media in enumerate(post.ordered_media, start=1):
            media.media_order = index
            media.post_id = post.id
        for variant in post.variants:
            variant.post_id = post.id
        if post.schedule is not None and post.status == PostStatus.DRAFT:
            post.status = PostStatus.SCHEDULED
            for variant in post.variants:
                if variant.status == PostStatus.DRAFT:
                    variant.status = PostStatus.SCHEDULED

        with self._db.conn:
            self._db[self.POSTS].insert(self._post_row(post), replace=True)
            self._db[self.MEDIA].delete_where("post_id = ?", [post.id])
            self._db[self.VARIANTS].delete_where("post_id = ?", [post.id])
            self._db[self.SCHEDULES].delete_where("post_id = ?", [post.id])
            if post.media:
                self._db[self.MEDIA].insert_all(
                    [self._media_row(m) for m in post.media], replace=True
                )
            if post.variants:
                self._db[self.VARIANTS].insert_all(
                    [self._variant_row(v) for v in post.variants], replace=True
                )
            if post.schedule is not None:
                self._db[self.SCHEDULES].insert(
                    {
                        "post_id": post.id,
                        "run_at": _iso(post.schedule.run_at),
                        "timezone": post.schedule.timezone,
                    },
                    replace=True,
                )
        logger.info(
            "Saved post %s (%d media, %d variants, status=%s)",
            post.id,
            len(post.media),
            len(post.variants),
            post.status.value,
        )
        return post

    def mark_variant_published(
        self,
        variant_id: str,
        uri: str,
        permalink: Optional[str] = None,
        sent_at: Optional[dt.datetime] = None,
    ) -> None:
        """Record the external reference of a successful publish."""
        date_sent, time_sent = _split_instant(
            sent_at or dt.datetime.now(dt.timezone.utc)
        )
        update: dict = {
            "status": PostStatus.PUBLISHED.value,
            "uri": uri,
            "date_sent": date_sent,
            "time_sent": time_sent,
        }
        if permalink:
            update["permalink"] = permalink
        self._db[self.VARIANTS].update(variant_id, update)

    def update_variant_reference(
        self,
        variant_id: str,
        *,
        status: Optional[PostStatus] = None,
        sent_at: Optional[dt.datetime] = None,
    ) -> bool:
        """Apply status / sent_at if they differ. Returns True if a write happened."""
        current = self.get_variant(variant_id)
        if current is None:
            return False
        update: dict = {}
        if status is not None and current.status != status:
            update["status"] = status.value
        if sent_at is not None:
            date_sent, time_sent = _split_instant(sent_at)
            if current.sent_at != _join_instant(date_sent, time_sent):
                update["date_sent"], update["time_sent"] = date_sent, time_sent
        if not update:
            return False
        self._db[self.VARIANTS].update(variant_id, update)
        return True

    def set_post_status(self, post_id: str, status: PostStatus) -> None:
        self._db[self.POSTS].update(
            post_id,
            {"status": status.value, "updated_at": _iso(dt.datetime.now(dt.timezone.utc))},
        )

    def refresh_post_status(self, post_id: str) -> Optional[PostStatus]:
        """Promote the post to PUBLISHED once every variant is published."""
        post = self.get_post(post_id)
        if post is None:
            return None
        if post.all_published and post.status != PostStatus.PUBLISHED:
            self.set_post_status(post_id, PostStatus.PUBLISHED)
            logger.info("Post %s published on all networks", post_id)
            return PostStatus.PUBLISHED
        return post.status

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_post(self, post_id: str) -> Optional[Post]:
        """Return the full Post snapshot, or None if not found."""
        try:
            row = self._db[self.POSTS].get(post_id)
        except sqlite_utils.db.NotFoundError:
            return None
        return self._assemble(row)

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        try:
            row = self._db[self.VARIANTS].get(variant_id)
        except sqlite_utils.db.NotFoundError:
            return None
        return self._variant_from_row(row)

    def list_due_posts(self, now: Optional[dt.datetime] = None) -> list[Post]:
        """Posts not yet fully published whose schedule has elapsed, oldest first."""
        cutoff = _iso(now or dt.datetime.now(dt.timezone.utc))
        rows = self._db.query(
            f"""
            SELECT p.* FROM {self.POSTS} p
            JOIN {self.SCHEDULES} s ON s.post_id = p.id
            WHERE p.status != ? AND s.run_at <= ?
            ORDER BY s.run_at ASC
            """,
            [PostStatus.PUBLISHED.value, cutoff],
        )
        return [self._assemble(r) for r in list(rows)]

    def list_referenced_variants(self, author_id: str) -> list[Variant]:
        """Variants of the author's posts that carry a uri or a permalink."""
        rows = self._db.query(
            f"""
            SELECT v.* FROM {self.VARIANTS} v
            JOIN {self.POSTS} p ON p.id = v.post_id
            WHERE p.author_id = ?
              AND (v.uri IS NOT NULL OR v.permalink IS NOT NULL)
            ORDER BY v.id
            """,
            [author_id],
        )
        return [self._variant_from_row(r) for r in rows]

    def stats(self) -> dict[str, int]:
        """Return post count per status."""
        result: dict[str, int] = {}
        for row in self._db.execute(
            f"SELECT status, COUNT(*) FROM {self.POSTS} GROUP BY status"
        ).fetchall():
            result[row[0]] = row[1]
        return result

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def _assemble(self, row: dict) -> Post:
        media = [
            self._media_from_row(r)
            for r in self._db[self.MEDIA].rows_where(
                "post_id = ?", [row["id"]], order_by="media_order ASC"
            )
        ]
        variants = [
            self._variant_from_row(r)
            for r in self._db[self.VARIANTS].rows_where(
                "post_id = ?", [row["id"]], order_by="id"
            )
        ]
        schedule: Optional[Schedule] = None
        for srow in self._db[self.SCHEDULES].rows_where("post_id = ?", [row["id"]]):
            schedule = Schedule(
                run_at=dt.datetime.fromisoformat(srow["run_at"]),
                timezone=srow["timezone"] or "UTC",
            )
        return Post(
            id=row["id"],
            organization_id=row["organization_id"] or "",
            author_id=row["author_id"],
            title=row["title"] or "",
            body=row["body"] or "",
            category=row["category"] or "Other",
            visible=bool(row["visible"]),
            status=PostStatus(row["status"]),
            media=media,
            variants=variants,
            schedule=schedule,
            created_at=dt.datetime.fromisoformat(row["created_at"]),
            updated_at=dt.datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _post_row(post: Post) -> dict:
        return {
            "id": post.id,
            "organization_id": post.organization_id,
            "author_id": post.author_id,
            "title": post.title,
            "body": post.body,
            "category": post.category,
            "visible": int(post.visible),
            "status": post.status.value,
            "created_at": _iso(post.created_at),
            "updated_at": _iso(post.updated_at),
        }

    @staticmethod
    def _media_row(media: Media) -> dict:
        return {
            "id": media.id,
            "post_id": media.post_id,
            "media_order": media.media_order,
            "type": media.type.value,
            "mime": media.mime,
            "size": media.size,
            "url": media.url,
        }

    @staticmethod
    def _media_from_row(row: dict) -> Media:
        return Media(
            id=row["id"],
            post_id=row["post_id"],
            media_order=row["media_order"],
            type=MediaType(row["type"]),
            mime=row["mime"] or "",
            size=row["size"] or 0,
            url=row["url"],
        )

    @staticmethod
    def _variant_row(variant: Variant) -> dict:
        date_sent, time_sent = _split_instant(variant.sent_at)
        return {
            "id": variant.id,
            "post_id": variant.post_id,
            "network": variant.network.value,
            "text": variant.text,
            "status": variant.status.value,
            "uri": variant.uri,
            "permalink": variant.permalink,
            "date_sent": date_sent,
            "time_sent": time_sent,
        }

    @staticmethod
    def _variant_from_row(row: dict) -> Variant:
        return Variant(
            id=row["id"],
            post_id=row["post_id"],
            network=Network(row["network"]),
            text=row["text"] or "",
            status=PostStatus(row["status"]),
            uri=row["uri"],
            permalink=row["permalink"],
            sent_at=_join_instant(row["date_sent"], row["time_sent"]),
        )

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> "PostStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
