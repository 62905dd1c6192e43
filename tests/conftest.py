"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import pytest

from src.content.models import Media, MediaType, Network, Post, Variant
from src.content.storage import PostStore
from src.metrics.store import MetricStore


def make_media(kind: MediaType = MediaType.IMAGE, order: int = 1, url: Optional[str] = None) -> Media:
    ext = "jpg" if kind == MediaType.IMAGE else "mp4"
    mime = "image/jpeg" if kind == MediaType.IMAGE else "video/mp4"
    return Media(
        type=kind,
        mime=mime,
        media_order=order,
        url=url or f"https://cdn.example.com/m{order}.{ext}",
    )


def make_post(
    networks: tuple[Network, ...] = (Network.BLUESKY,),
    media: Optional[list[Media]] = None,
    title: str = "Launch day",
    body: str = "We are live! #launch",
    author_id: str = "user-1",
) -> Post:
    return Post(
        author_id=author_id,
        title=title,
        body=body,
        media=media or [],
        variants=[Variant(network=n) for n in networks],
    )


@pytest.fixture
def post_factory() -> Callable[..., Post]:
    return make_post


@pytest.fixture
def media_factory() -> Callable[..., Media]:
    return make_media


@pytest.fixture
def post_store(tmp_path: Path) -> PostStore:
    """A fresh SQLite post store per test."""
    store = PostStore(tmp_path / "crosspost.db")
    yield store
    store.close()


@pytest.fixture
def metric_store(tmp_path: Path) -> MetricStore:
    store = MetricStore(tmp_path / "crosspost.db")
    yield store
    store.close()
