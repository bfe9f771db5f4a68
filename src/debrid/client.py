"""httpx-based client for the Real-Debrid REST API.

Every method is bounded by a fixed timeout and returns an ``ApiCallResult``;
HTTP errors and transport failures never raise. Only local misconfiguration
(e.g. an empty base URL) propagates to the caller.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import httpx

from src.debrid.models import (
    ApiCallResult,
    CacheInfo,
    CacheItem,
    DownloadItem,
    UnrestrictedLink,
    UserInfo,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://api.real-debrid.com/rest/1.0"
REQUEST_TIMEOUT_SECONDS = 30.0
LIST_LIMIT = 100

T = TypeVar("T")


def _error_text(resp: httpx.Response) -> str:
    """Prefer the API's JSON ``error`` field, fall back to the reason phrase."""
    try:
        body = resp.json()
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    except ValueError:
        pass
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def _transport_error_text(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return f"timeout: {exc}" if str(exc) else "timeout"
    if isinstance(exc, httpx.TransportError):
        return f"network error: {exc}" if str(exc) else f"network error: {type(exc).__name__}"
    return f"{type(exc).__name__}: {exc}"


class DebridClient:
    """Synchronous httpx client for the Real-Debrid API."""

    def __init__(
        self,
        token: str,
        base_url: str = BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Real-Debrid base URL must not be empty")
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}

    def _request(
        self,
        method: str,
        path: str,
        parse: Callable[[Any], T],
        params: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
    ) -> ApiCallResult[T]:
        """Perform one request; convert every failure into a result object."""
        t0 = time.perf_counter()
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.request(
                    method,
                    f"{self._base_url}{path}",
                    headers=self._headers,
                    params=params,
                    data=data,
                )
        except httpx.HTTPError as e:
            elapsed = int((time.perf_counter() - t0) * 1000)
            logger.debug("%s %s failed: %s", method, path, e)
            return ApiCallResult(success=False, error=_transport_error_text(e), elapsed_ms=elapsed)

        elapsed = int((time.perf_counter() - t0) * 1000)
        if not resp.is_success:
            return ApiCallResult(
                success=False,
                http_status=resp.status_code,
                error=_error_text(resp),
                elapsed_ms=elapsed,
            )

        try:
            payload = parse(resp.json() if resp.content else None)
        except ValueError as e:
            logger.warning("Unexpected response body from %s %s: %s", method, path, e)
            return ApiCallResult(
                success=False,
                http_status=resp.status_code,
                error=f"invalid response: {e}",
                elapsed_ms=elapsed,
            )

        return ApiCallResult(
            success=True, http_status=resp.status_code, data=payload, elapsed_ms=elapsed,
        )

    # ── High-level methods ───────────────────────────────────────────────

    def check_user(self) -> ApiCallResult[UserInfo]:
        """GET /user — authentication check used as the API health probe."""
        return self._request("GET", "/user", lambda body: UserInfo.model_validate(body or {}))

    def list_downloads(self, limit: int = LIST_LIMIT) -> ApiCallResult[list[DownloadItem]]:
        """GET /downloads"""
        return self._request(
            "GET", "/downloads",
            lambda body: [DownloadItem.model_validate(d) for d in _as_list(body)],
            params={"limit": limit},
        )

    def list_cache(self, limit: int = LIST_LIMIT) -> ApiCallResult[list[CacheItem]]:
        """GET /torrents — cached items in the account, keyed by content hash."""
        return self._request(
            "GET", "/torrents",
            lambda body: [CacheItem.model_validate(t) for t in _as_list(body)],
            params={"limit": limit},
        )

    def cache_info(self, cache_id: str) -> ApiCallResult[CacheInfo]:
        """GET /torrents/info/{id}"""
        return self._request("GET", f"/torrents/info/{cache_id}", CacheInfo.model_validate)

    def unrestrict_link(self, link: str) -> ApiCallResult[UnrestrictedLink]:
        """POST /unrestrict/link — resolve a hoster link to a direct CDN URL."""
        return self._request(
            "POST", "/unrestrict/link", UnrestrictedLink.model_validate, data={"link": link},
        )

    def instant_availability_raw(self, content_hash: str) -> ApiCallResult[Any]:
        """GET /torrents/instantAvailability/{hash} — untouched body, for debugging."""
        return self._request(
            "GET", f"/torrents/instantAvailability/{content_hash}", lambda body: body,
        )


def _as_list(body: Any) -> list[Any]:
    if body is None:
        return []
    if not isinstance(body, list):
        raise ValueError(f"expected a JSON array, got {type(body).__name__}")
    return body
