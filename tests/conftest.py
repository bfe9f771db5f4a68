"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from src.debrid.client import DebridClient

API_BASE = "https://api.rd.test/rest/1.0"
API_HOST = "api.rd.test"
HASH = "a1b2c3d4e5" * 4
DOWNLOAD_ID = "EGGIJCYACQYH2E68"
DOWNLOAD_PAGE = f"https://real-debrid.com/d/{DOWNLOAD_ID}"


class FakeDebrid:
    """In-memory Real-Debrid API + CDN for httpx.MockTransport.

    ``overrides`` maps (method, path) to a Response or an exception to raise;
    API paths are given without the /rest/1.0 prefix.
    """

    def __init__(self) -> None:
        self.cache: list[dict[str, Any]] = [
            {"id": "C1", "hash": HASH.upper(), "filename": "tv.mkv", "status": "downloaded"},
        ]
        self.info: dict[str, dict[str, Any]] = {
            "C1": {"id": "C1", "hash": HASH, "status": "downloaded",
                   "links": ["https://real-debrid.com/d/LINK1"]},
        }
        self.downloads: list[dict[str, Any]] = [
            {"id": DOWNLOAD_ID, "filename": "movie.mkv", "host": "real-debrid.com",
             "download": "https://cdn1.rd.test/dl/movie.mkv"},
        ]
        self.unrestricted: dict[str, Any] = {
            "id": "U1", "filename": "tv.mkv", "host": "real-debrid.com",
            "download": "https://cdn2.rd.test/dl/tv.mkv",
        }
        self.cdn_status = 200
        self.cdn_head_status: int | None = None
        self.overrides: dict[tuple[str, str], httpx.Response | Exception] = {}
        self.requests: list[httpx.Request] = []

    def calls(self, method: str | None = None) -> list[tuple[str, str]]:
        return [
            (r.method, r.url.path) for r in self.requests if method is None or r.method == method
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.url.host == API_HOST:
            path = path.removeprefix("/rest/1.0")

        override = self.overrides.get((request.method, path))
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override

        if request.url.host == API_HOST:
            return self._api(request, path)
        if request.method == "HEAD" and self.cdn_head_status is not None:
            return httpx.Response(self.cdn_head_status)
        return httpx.Response(self.cdn_status)

    def _api(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/user":
            return httpx.Response(200, json={"id": 1, "username": "tester", "type": "premium"})
        if path == "/torrents":
            return httpx.Response(200, json=self.cache)
        if path.startswith("/torrents/info/"):
            item = self.info.get(path.rsplit("/", 1)[-1])
            if item is None:
                return httpx.Response(404, json={"error": "unknown_ressource"})
            return httpx.Response(200, json=item)
        if path == "/unrestrict/link":
            return httpx.Response(200, json=self.unrestricted)
        if path == "/downloads":
            return httpx.Response(200, json=self.downloads)
        if path.startswith("/torrents/instantAvailability/"):
            return httpx.Response(200, json={})
        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
def fake_debrid() -> FakeDebrid:
    return FakeDebrid()


@pytest.fixture
def transport(fake_debrid: FakeDebrid) -> httpx.MockTransport:
    return httpx.MockTransport(fake_debrid.handler)


@pytest.fixture
def debrid_client(transport: httpx.MockTransport) -> DebridClient:
    return DebridClient(token="test-token", base_url=API_BASE, timeout=5.0, transport=transport)


@pytest.fixture
def streams_file(tmp_path: Path) -> Path:
    path = tmp_path / "streams.json"
    path.write_text(json.dumps({
        "apiCheck": True,
        "streams": [
            {"id": "tv", "type": "hash", "hash": HASH},
            {"id": "movie", "type": "download", "url": DOWNLOAD_PAGE},
        ],
    }), encoding="utf-8")
    return path
