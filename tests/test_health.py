"""Tests for the health check engine: classification, probe, resolution protocols."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from src.health.engine import (
    CHECK_RUNNERS,
    ProbeResult,
    check_api_health,
    check_stream,
    classify_error,
    head_with_ttfb,
    parse_download_id,
)
from src.health.outcomes import ErrorKind, FailureStep, StreamFailure, StreamSuccess
from src.streams.registry import HashTarget, TargetMode, UrlTarget
from tests.conftest import DOWNLOAD_ID, DOWNLOAD_PAGE, HASH, FakeDebrid

# ── Classification ───────────────────────────────────────────────────────────


class TestClassifyError:
    def test_status_codes(self) -> None:
        assert classify_error(429) == ErrorKind.RATE_LIMIT
        assert classify_error(403) == ErrorKind.FORBIDDEN
        assert classify_error(500) == ErrorKind.SERVER_ERROR
        assert classify_error(503) == ErrorKind.SERVER_ERROR
        assert classify_error(0) == ErrorKind.TIMEOUT

    def test_messages(self) -> None:
        assert classify_error(None, "timeout: read timed out") == ErrorKind.TIMEOUT
        assert classify_error(None, "network error: Connection refused") == ErrorKind.NETWORK
        assert classify_error(None, "ECONNREFUSED") == ErrorKind.NETWORK
        assert classify_error(None, "something odd") == ErrorKind.UNKNOWN
        assert classify_error(None) == ErrorKind.UNKNOWN

    def test_status_wins_over_message(self) -> None:
        assert classify_error(429, "timeout") == ErrorKind.RATE_LIMIT

    def test_other_client_errors_are_unknown(self) -> None:
        assert classify_error(404) == ErrorKind.UNKNOWN
        assert classify_error(401, "bad_token") == ErrorKind.UNKNOWN


class TestParseDownloadId:
    def test_valid(self) -> None:
        assert parse_download_id(DOWNLOAD_PAGE) == DOWNLOAD_ID
        assert parse_download_id(f"{DOWNLOAD_PAGE}?x=1") == DOWNLOAD_ID

    def test_invalid(self) -> None:
        assert parse_download_id("https://real-debrid.com/downloads") is None
        assert parse_download_id("not a url") is None
        assert parse_download_id("") is None


# ── Probe ────────────────────────────────────────────────────────────────────


class TestHeadWithTtfb:
    def test_head_ok(self, transport, fake_debrid: FakeDebrid) -> None:
        result = head_with_ttfb("https://cdn2.rd.test/dl/tv.mkv", transport=transport)
        assert result.http_status == 200
        assert result.host == "cdn2.rd.test"
        assert result.ttfb_ms >= 0
        assert fake_debrid.calls() == [("HEAD", "/dl/tv.mkv")]

    def test_follows_redirects_to_final_host(self, transport, fake_debrid: FakeDebrid) -> None:
        fake_debrid.overrides[("HEAD", "/go")] = httpx.Response(
            302, headers={"Location": "https://edge-7.rd.test/dl/tv.mkv"},
        )
        result = head_with_ttfb("https://cdn2.rd.test/go", transport=transport)
        assert result.http_status == 200
        assert result.host == "edge-7.rd.test"

    def test_method_not_allowed_falls_back_to_ranged_get(
        self, transport, fake_debrid: FakeDebrid,
    ) -> None:
        fake_debrid.cdn_head_status = 405
        fake_debrid.cdn_status = 206
        result = head_with_ttfb("https://cdn2.rd.test/dl/tv.mkv", transport=transport)
        assert result.http_status == 206
        get = fake_debrid.requests[-1]
        assert get.method == "GET"
        assert get.headers["Range"] == "bytes=0-0"

    def test_not_implemented_falls_back(self, transport, fake_debrid: FakeDebrid) -> None:
        fake_debrid.cdn_head_status = 501
        result = head_with_ttfb("https://cdn2.rd.test/dl/tv.mkv", transport=transport)
        assert result.http_status == 200
        assert fake_debrid.calls("GET")

    def test_network_failure_falls_back_to_get(self, transport, fake_debrid: FakeDebrid) -> None:
        fake_debrid.overrides[("HEAD", "/dl/tv.mkv")] = httpx.ConnectError("reset by peer")
        result = head_with_ttfb("https://cdn2.rd.test/dl/tv.mkv", transport=transport)
        assert result.http_status == 200
        assert result.error is None

    def test_total_failure_reports_status_zero(self, transport, fake_debrid: FakeDebrid) -> None:
        fake_debrid.overrides[("HEAD", "/dl/tv.mkv")] = httpx.ConnectTimeout("timed out")
        fake_debrid.overrides[("GET", "/dl/tv.mkv")] = httpx.ConnectTimeout("timed out")
        result = head_with_ttfb("https://cdn2.rd.test/dl/tv.mkv", transport=transport)
        assert result.http_status == 0
        assert result.host == "cdn2.rd.test"
        assert "ConnectTimeout" in result.error

    def test_error_status_is_returned_as_is(self, transport, fake_debrid: FakeDebrid) -> None:
        fake_debrid.cdn_status = 403
        result = head_with_ttfb("https://cdn2.rd.test/dl/tv.mkv", transport=transport)
        assert result.http_status == 403
        assert fake_debrid.calls("GET") == []


# ── By hash ──────────────────────────────────────────────────────────────────


@pytest.fixture
def hash_target() -> HashTarget:
    return HashTarget(id="tv", hash=HASH)


@pytest.fixture
def url_target() -> UrlTarget:
    return UrlTarget(id="movie", url=DOWNLOAD_PAGE)


class TestCheckByHash:
    def test_success(self, debrid_client, transport, hash_target) -> None:
        outcome = check_stream(debrid_client, hash_target, transport)
        assert isinstance(outcome, StreamSuccess)
        assert outcome.http_status == 200
        assert outcome.cdn_host == "cdn2.rd.test"
        assert outcome.resolution_time_ms >= 0

    def test_hash_match_is_case_insensitive(self, debrid_client, transport, fake_debrid) -> None:
        fake_debrid.cache[0]["hash"] = HASH.lower()
        outcome = check_stream(debrid_client, HashTarget(id="tv", hash=HASH.upper()), transport)
        assert outcome.success

    def test_hash_not_in_cache(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.cache = [{"id": "C9", "hash": "f" * 40}]
        outcome = check_stream(debrid_client, hash_target, transport)
        assert isinstance(outcome, StreamFailure)
        assert outcome.failure_step == FailureStep.CACHE_NOT_IN_ACCOUNT
        assert outcome.error_kind == ErrorKind.UNKNOWN

    def test_cache_list_failure(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.overrides[("GET", "/torrents")] = httpx.Response(429, json={"error": "too_many_requests"})
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.failure_step == FailureStep.CACHE_NOT_IN_ACCOUNT
        assert outcome.error_kind == ErrorKind.RATE_LIMIT
        assert outcome.http_status == 429

    def test_cache_list_timeout(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.overrides[("GET", "/torrents")] = httpx.ReadTimeout("timed out")
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.failure_step == FailureStep.CACHE_NOT_IN_ACCOUNT
        assert outcome.error_kind == ErrorKind.TIMEOUT

    def test_no_links(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.info["C1"]["links"] = []
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.failure_step == FailureStep.NO_LINKS

    def test_cache_info_failure(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.info.clear()
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.failure_step == FailureStep.NO_LINKS
        assert outcome.http_status == 404

    def test_unrestrict_failure(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.overrides[("POST", "/unrestrict/link")] = httpx.Response(503)
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.failure_step == FailureStep.UNRESTRICT_FAILED
        assert outcome.error_kind == ErrorKind.SERVER_ERROR

    def test_unrestrict_without_download(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.unrestricted["download"] = ""
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.failure_step == FailureStep.UNRESTRICT_FAILED

    def test_unrestrict_rate_limited(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.overrides[("POST", "/unrestrict/link")] = httpx.Response(429)
        outcome = check_stream(debrid_client, hash_target, transport)
        assert outcome.error_kind == ErrorKind.RATE_LIMIT

    def test_cdn_rate_limited(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        fake_debrid.cdn_status = 429
        outcome = check_stream(debrid_client, hash_target, transport)
        assert isinstance(outcome, StreamFailure)
        assert outcome.failure_step == FailureStep.CDN_PROBE_FAILED
        assert outcome.error_kind == ErrorKind.RATE_LIMIT
        assert outcome.cdn_host == "cdn2.rd.test"
        assert outcome.http_status == 429

    def test_read_only_against_account(self, debrid_client, transport, fake_debrid, hash_target) -> None:
        check_stream(debrid_client, hash_target, transport)
        paths = [p for _, p in fake_debrid.calls()]
        assert not any("addMagnet" in p or "selectFiles" in p or "delete" in p for p in paths)
        assert fake_debrid.calls("DELETE") == []

    def test_ttfb_example(self, debrid_client, hash_target) -> None:
        probe = ProbeResult(ttfb_ms=420, http_status=200, host="rbx-cdn.rd.test")
        with patch("src.health.engine.head_with_ttfb", return_value=probe):
            outcome = check_stream(debrid_client, hash_target)
        assert outcome.to_dict() == {
            "success": True,
            "resolutionTimeMs": outcome.resolution_time_ms,
            "timeToFirstByteMs": 420,
            "cdnHost": "rbx-cdn.rd.test",
            "httpStatus": 200,
        }

    def test_host_falls_back_to_service_host(self, debrid_client, hash_target) -> None:
        probe = ProbeResult(ttfb_ms=10, http_status=200, host="")
        with patch("src.health.engine.head_with_ttfb", return_value=probe):
            outcome = check_stream(debrid_client, hash_target)
        assert outcome.cdn_host == "real-debrid.com"


# ── By URL ───────────────────────────────────────────────────────────────────


class TestCheckByUrl:
    def test_success(self, debrid_client, transport, url_target) -> None:
        outcome = check_stream(debrid_client, url_target, transport)
        assert isinstance(outcome, StreamSuccess)
        assert outcome.cdn_host == "cdn1.rd.test"

    def test_unparsable_url(self, debrid_client, transport, fake_debrid) -> None:
        outcome = check_stream(debrid_client, UrlTarget(id="x", url="https://example.com/"), transport)
        assert outcome.failure_step == FailureStep.DOWNLOAD_NOT_FOUND
        assert fake_debrid.requests == []

    def test_id_not_in_downloads(self, debrid_client, transport, fake_debrid, url_target) -> None:
        fake_debrid.downloads = []
        outcome = check_stream(debrid_client, url_target, transport)
        assert outcome.failure_step == FailureStep.DOWNLOAD_NOT_FOUND

    def test_list_failure(self, debrid_client, transport, fake_debrid, url_target) -> None:
        fake_debrid.overrides[("GET", "/downloads")] = httpx.Response(403, json={"error": "permission_denied"})
        outcome = check_stream(debrid_client, url_target, transport)
        assert outcome.failure_step == FailureStep.DOWNLOAD_NOT_FOUND
        assert outcome.error_kind == ErrorKind.FORBIDDEN

    def test_cdn_server_error(self, debrid_client, transport, fake_debrid, url_target) -> None:
        fake_debrid.cdn_status = 502
        outcome = check_stream(debrid_client, url_target, transport)
        assert outcome.failure_step == FailureStep.CDN_PROBE_FAILED
        assert outcome.error_kind == ErrorKind.SERVER_ERROR
        assert "timeToFirstByteMs" not in outcome.to_dict()

    def test_cdn_rate_limited(self, debrid_client, transport, fake_debrid, url_target) -> None:
        fake_debrid.cdn_status = 429
        outcome = check_stream(debrid_client, url_target, transport)
        assert outcome.error_kind == ErrorKind.RATE_LIMIT


# ── Dispatcher / API check ───────────────────────────────────────────────────


class TestCheckStream:
    def test_never_raises(self, debrid_client, hash_target) -> None:
        def boom(*args):
            raise RuntimeError("boom")

        with patch.dict(CHECK_RUNNERS, {TargetMode.BY_HASH: boom}):
            outcome = check_stream(debrid_client, hash_target)
        assert isinstance(outcome, StreamFailure)
        assert outcome.error_kind == ErrorKind.UNKNOWN
        assert outcome.failure_step is None


class TestCheckApiHealth:
    def test_ok(self, debrid_client) -> None:
        outcome = check_api_health(debrid_client)
        assert outcome.success
        assert outcome.http_status == 200
        assert outcome.error is None

    def test_invalid_token(self, debrid_client, fake_debrid) -> None:
        fake_debrid.overrides[("GET", "/user")] = httpx.Response(401, json={"error": "bad_token"})
        outcome = check_api_health(debrid_client)
        assert not outcome.success
        assert outcome.http_status == 401
        assert outcome.error == "bad_token"

    def test_timeout_is_status_zero(self, debrid_client, fake_debrid) -> None:
        fake_debrid.overrides[("GET", "/user")] = httpx.ConnectTimeout("timed out")
        outcome = check_api_health(debrid_client)
        assert not outcome.success
        assert outcome.http_status == 0
        assert "timeout" in outcome.error
