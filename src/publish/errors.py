"""
Publish error taxonomy.

Every adapter failure surfaces as a ``PublishError`` carrying an
``ErrorKind`` so callers can decide whether to re-link, retry later or
fix the content. Provider messages are kept verbatim.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import httpx

from src.content.models import Network


class ErrorKind(str, Enum):
    VALIDATION = "validation"                    # caught before any remote call
    UNSUPPORTED_CONTENT = "unsupported_content"  # media mix the network cannot take
    AUTH_INVALID = "auth_invalid"                # credentials rejected / expired
    RATE_LIMITED = "rate_limited"
    TRANSIENT_REMOTE = "transient_remote"        # e.g. Instagram "media not ready"
    REMOTE_REJECTED = "remote_rejected"          # provider-side validation failure
    PARTIAL_UPLOAD = "partial_upload"            # assets uploaded, post creation failed
    TIMEOUT = "timeout"
    MEDIA_UNAVAILABLE = "media_unavailable"      # local media could not be fetched/prepared
    NOT_FOUND = "not_found"                      # post / variant / adapter missing


class PublishError(Exception):
    """Raised when publishing (or fetching metrics from) a network fails."""

    network: Optional[Network] = None

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.REMOTE_REJECTED,
        network: Optional[Network] = None,
        *,
        uploaded_ids: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        if network is not None:
            self.network = network
        self.uploaded_ids = list(uploaded_ids or [])

    def __repr__(self) -> str:
        net = self.network.value if self.network else "-"
        return f"{type(self).__name__}({self.kind.value}, {net}, {self.message!r})"


class MediaError(PublishError):
    """Raised when media cannot be fetched or fitted to a network's limits."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.MEDIA_UNAVAILABLE,
        network: Optional[Network] = None,
        *,
        uploaded_ids: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, kind, network, uploaded_ids=uploaded_ids)


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    if status_code == 401:
        return ErrorKind.AUTH_INVALID
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    return ErrorKind.REMOTE_REJECTED


def kind_for_transport(exc: httpx.HTTPError) -> ErrorKind:
    """Map an httpx transport failure to an error kind."""
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    return ErrorKind.TRANSIENT_REMOTE


def as_partial_upload(exc: PublishError, uploaded_ids: list[str]) -> PublishError:
    """Re-label a failure that happened after binary assets were uploaded."""
    if not uploaded_ids:
        return exc
    partial = type(exc)(
        f"{exc.message} (after uploading {len(uploaded_ids)} media item(s))",
        ErrorKind.PARTIAL_UPLOAD,
        uploaded_ids=uploaded_ids,
    )
    partial.network = exc.network
    return partial
