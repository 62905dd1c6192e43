"""
Meta Graph API transport shared by the Instagram and Facebook adapters.

Docs: https://developers.facebook.com/docs/graph-api/

Both networks publish through a Facebook Page: the user token lists the
managed pages (``/me/accounts``), and each page carries its own page-scoped
access token used for every subsequent call.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from src.publish.errors import ErrorKind, PublishError, kind_for_status, kind_for_transport

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.facebook.com/v21.0"

_AUTH_CODES = {102, 190}
_RATE_LIMIT_CODES = {4, 17, 32, 613}


def classify_graph_error(error: dict, status_code: int = 400) -> ErrorKind:
    code = error.get("code")
    if code in _AUTH_CODES:
        return ErrorKind.AUTH_INVALID
    if code in _RATE_LIMIT_CODES:
        return ErrorKind.RATE_LIMITED
    return kind_for_status(status_code)


class GraphClient:
    """
    Thin wrapper around the Graph API, raising ``error_cls`` on failure.

    Usage::

        graph = GraphClient(error_cls=InstagramError)
        pages = graph.list_pages(user_token, fields="id,access_token")
        body = graph.post("/123/media", {"image_url": url}, page_token)
    """

    def __init__(
        self,
        error_cls: type[PublishError] = PublishError,
        *,
        base_url: str = GRAPH_BASE,
        timeout: float = 30.0,
    ) -> None:
        self._error_cls = error_cls
        self._http = httpx.Client(base_url=base_url, timeout=timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parse(self, resp: httpx.Response) -> dict:
        try:
            body = resp.json()
        except ValueError:
            body = {"raw": resp.text}
        if not isinstance(body, dict):
            body = {"data": body}
        if "error" in body:
            error = body["error"] if isinstance(body["error"], dict) else {"message": str(body["error"])}
            msg = error.get("message", str(error))
            raise self._error_cls(msg, classify_graph_error(error, resp.status_code))
        if resp.is_error:
            raise self._error_cls(
                body.get("raw") or f"Graph API HTTP {resp.status_code}",
                kind_for_status(resp.status_code),
            )
        return body

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def post(self, path: str, data: dict, token: str) -> dict:
        """POST form data to the Graph API and return parsed JSON, raising on error."""
        payload = dict(data)
        payload["access_token"] = token
        try:
            resp = self._http.post(path, data=payload)
        except httpx.HTTPError as exc:
            raise self._error_cls(f"Graph API request failed: {exc}", kind_for_transport(exc)) from exc
        return self._parse(resp)

    def get(self, path: str, params: dict, token: str) -> dict:
        query = dict(params)
        query["access_token"] = token
        try:
            resp = self._http.get(path, params=query)
        except httpx.HTTPError as exc:
            raise self._error_cls(f"Graph API request failed: {exc}", kind_for_transport(exc)) from exc
        return self._parse(resp)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def list_pages(self, user_token: str, fields: str = "id,name,access_token") -> list[dict]:
        """Return the Facebook Pages managed by the user token's owner."""
        body = self.get("/me/accounts", {"fields": fields}, user_token)
        pages: list[dict] = body.get("data") or []
        if not pages:
            raise self._error_cls(
                "No Facebook Pages are associated with this account.",
                ErrorKind.AUTH_INVALID,
            )
        return pages

    def lookup_field(self, object_id: str, field: str, token: str) -> Optional[str]:
        """Best-effort single field lookup; returns None instead of raising."""
        try:
            body = self.get(f"/{object_id}", {"fields": field}, token)
        except PublishError as exc:
            logger.warning("Could not fetch %s for %s: %s", field, object_id, exc)
            return None
        value = body.get(field)
        return str(value) if value else None

    def close(self) -> None:
        self._http.close()
