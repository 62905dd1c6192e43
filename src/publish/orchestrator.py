"""
Publish orchestrator.

Drives variants through ``draft/scheduled → published``:

  publish_variant(post_id, variant_id)  one variant, in the calling thread
  publish_all_pending(post_id)          every unpublished variant, concurrently
  run_due(now)                          publish_all_pending for each due post

Adapters run on a thread pool and only do remote I/O. Results are written
to the PostStore from the calling thread, one variant row at a time, so a
failure on one network never blocks or rolls back another network's
success. Once every variant is published the post itself becomes
PUBLISHED.

A variant that is already PUBLISHED is reported as a skipped success and
never re-sent.
"""

from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Mapping, Optional

from src.content.credentials import CredentialStore
from src.content.models import Network, Post, Variant
from src.content.rules import check_media_set, evaluate_constraints
from src.content.storage import PostStore
from src.publish.base import NetworkAdapter
from src.publish.errors import ErrorKind, PublishError
from src.publish.media import MediaPreparer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class VariantPublishResult:
    """Outcome of one variant publish attempt."""

    post_id: str
    variant_id: str
    network: Optional[Network] = None
    ok: bool = False
    external_id: Optional[str] = None
    permalink: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    skipped: bool = False          # already published, nothing sent
    accepted_only: bool = False    # provider accepted an async job (TikTok)
    sent_at: Optional[dt.datetime] = None

    @classmethod
    def failure(
        cls,
        post_id: str,
        variant_id: str,
        network: Optional[Network],
        exc: PublishError,
    ) -> "VariantPublishResult":
        return cls(
            post_id=post_id,
            variant_id=variant_id,
            network=network,
            error=exc.message,
            error_kind=exc.kind,
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PublishOrchestrator:
    """
    Fan-out publisher over one adapter per network.

    Usage::

        orchestrator = PublishOrchestrator(store, adapters, credentials)
        result = orchestrator.publish_variant("a1b2c3d4", "v9f8e7d6")
        results = orchestrator.publish_all_pending("a1b2c3d4")
        by_post = orchestrator.run_due()
    """

    def __init__(
        self,
        store: PostStore,
        adapters: Mapping[Network, NetworkAdapter],
        credentials: CredentialStore,
        *,
        max_workers: int = 5,
        preparer: Optional[MediaPreparer] = None,
    ) -> None:
        self.store = store
        self.adapters = dict(adapters)
        self.credentials = credentials
        self.max_workers = max(1, max_workers)
        self.preparer = preparer          # shared by the adapters, closed with them

    # ------------------------------------------------------------------
    # Single attempt (safe to run on a worker thread)
    # ------------------------------------------------------------------

    def _validate(self, post: Post) -> None:
        constraints = evaluate_constraints(post.networks)
        decision = check_media_set(post.ordered_media, constraints, require_minimum=True)
        if not decision:
            raise PublishError(decision.reason, ErrorKind.VALIDATION)

    def _attempt(self, post: Post, variant: Variant, user_id: str) -> VariantPublishResult:
        """Publish one variant; touches no local storage."""
        try:
            adapter = self.adapters.get(variant.network)
            if adapter is None:
                raise PublishError(
                    f"No adapter configured for {variant.network.value}.",
                    ErrorKind.NOT_FOUND,
                    variant.network,
                )
            creds = self.credentials.get(user_id, variant.network)
            if creds is None:
                raise PublishError(
                    f"No {variant.network.value} account linked for user {user_id}.",
                    ErrorKind.AUTH_INVALID,
                    variant.network,
                )
            self._validate(post)
            published = adapter.publish(creds, post, variant, post.ordered_media)
        except PublishError as exc:
            logger.warning(
                "Publishing variant %s to %s failed (%s): %s",
                variant.id,
                variant.network.value,
                exc.kind.value,
                exc.message,
            )
            return VariantPublishResult.failure(post.id, variant.id, variant.network, exc)
        except Exception as exc:
            logger.exception("Unexpected error publishing variant %s", variant.id)
            return VariantPublishResult.failure(
                post.id,
                variant.id,
                variant.network,
                PublishError(f"Unexpected error: {exc}", ErrorKind.REMOTE_REJECTED, variant.network),
            )

        return VariantPublishResult(
            post_id=post.id,
            variant_id=variant.id,
            network=variant.network,
            ok=True,
            external_id=published.external_id,
            permalink=published.permalink,
            accepted_only=published.accepted_only,
            sent_at=dt.datetime.now(dt.timezone.utc),
        )

    def _record(self, result: VariantPublishResult) -> None:
        if not result.ok or result.skipped or result.external_id is None:
            return
        self.store.mark_variant_published(
            result.variant_id,
            result.external_id,
            permalink=result.permalink,
            sent_at=result.sent_at,
        )
        logger.info(
            "Variant %s published on %s as %s%s",
            result.variant_id,
            result.network.value if result.network else "-",
            result.external_id,
            " (accepted for processing)" if result.accepted_only else "",
        )

    @staticmethod
    def _skipped(post: Post, variant: Variant) -> VariantPublishResult:
        return VariantPublishResult(
            post_id=post.id,
            variant_id=variant.id,
            network=variant.network,
            ok=True,
            external_id=variant.uri,
            permalink=variant.permalink,
            skipped=True,
            sent_at=variant.sent_at,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def publish_variant(
        self,
        post_id: str,
        variant_id: str,
        acting_user_id: Optional[str] = None,
    ) -> VariantPublishResult:
        """Publish one variant now and persist the outcome."""
        post = self.store.get_post(post_id)
        if post is None:
            return VariantPublishResult.failure(
                post_id, variant_id, None,
                PublishError(f"Post {post_id} not found.", ErrorKind.NOT_FOUND),
            )
        variant = post.variant(variant_id)
        if variant is None:
            return VariantPublishResult.failure(
                post_id, variant_id, None,
                PublishError(f"Variant {variant_id} not found in post {post_id}.", ErrorKind.NOT_FOUND),
            )
        if variant.is_published:
            logger.info("Variant %s already published; skipping", variant_id)
            return self._skipped(post, variant)

        result = self._attempt(post, variant, acting_user_id or post.author_id)
        self._record(result)
        self.store.refresh_post_status(post_id)
        return result

    def publish_all_pending(
        self,
        post_id: str,
        acting_user_id: Optional[str] = None,
    ) -> list[VariantPublishResult]:
        """
        Publish every unpublished variant of a post concurrently.

        Returns one result per pending variant, in the post's variant order.

        Raises:
            PublishError: (NOT_FOUND) if the post does not exist.
        """
        post = self.store.get_post(post_id)
        if post is None:
            raise PublishError(f"Post {post_id} not found.", ErrorKind.NOT_FOUND)

        pending = post.pending_variants
        if not pending:
            logger.info("Post %s has no pending variants", post_id)
            self.store.refresh_post_status(post_id)
            return []

        user_id = acting_user_id or post.author_id
        by_variant: dict[str, VariantPublishResult] = {}
        workers = min(self.max_workers, len(pending))
        logger.info("Publishing %d variant(s) of post %s", len(pending), post_id)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="publish") as pool:
            futures = {pool.submit(self._attempt, post, v, user_id): v for v in pending}
            for future in as_completed(futures):
                variant = futures[future]
                result = future.result()
                self._record(result)
                by_variant[variant.id] = result

        self.store.refresh_post_status(post_id)
        return [by_variant[v.id] for v in pending]

    def run_due(self, now: Optional[dt.datetime] = None) -> dict[str, list[VariantPublishResult]]:
        """Publish all pending variants of every post whose schedule has elapsed."""
        due = self.store.list_due_posts(now)
        if not due:
            logger.info("No posts due")
            return {}

        results: dict[str, list[VariantPublishResult]] = {}
        for post in due:
            results[post.id] = self.publish_all_pending(post.id, post.author_id)
        return results

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        for adapter in self.adapters.values():
            adapter.close()
        if self.preparer is not None:
            self.preparer.close()

    def __enter__(self) -> "PublishOrchestrator":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
