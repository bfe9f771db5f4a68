"""Health check engine — resolves stream targets and probes the CDN.

Two resolution protocols, picked by the target's mode:
  byHash: list cache → cache info → unrestrict first link → probe
  byUrl:  parse /d/<ID> → list downloads → direct link → probe

Nothing here raises: every remote failure becomes a classified outcome.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from src.debrid.client import DebridClient
from src.debrid.models import ApiCallResult
from src.health.outcomes import (
    ApiHealthOutcome,
    CheckOutcome,
    ErrorKind,
    FailureStep,
    StreamFailure,
    StreamSuccess,
)
from src.streams.registry import HashTarget, StreamTarget, TargetMode, UrlTarget

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 30.0

_DOWNLOAD_PATH_RE = re.compile(r"^/d/([^/?#]+)")
_NETWORK_TERMS = (
    "network", "connect", "fetch", "econnrefused", "refused", "reset", "unreachable", "dns",
)


# ── Classification ───────────────────────────────────────────────────────────


def classify_error(status: int | None, message: str | None = None) -> ErrorKind:
    """Map an HTTP status and/or error message to an ErrorKind.

    Independent of which stage produced the status.
    """
    msg = (message or "").lower()
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status == 403:
        return ErrorKind.FORBIDDEN
    if status is not None and status >= 500:
        return ErrorKind.SERVER_ERROR
    if status == 0 or "timeout" in msg or "timed out" in msg:
        return ErrorKind.TIMEOUT
    if any(term in msg for term in _NETWORK_TERMS):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def host_from_url(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def parse_download_id(url: str) -> str | None:
    """Extract the download ID from a real-debrid.com/d/<ID> URL."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    match = _DOWNLOAD_PATH_RE.match(path)
    return match.group(1) if match else None


# ── Probe ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProbeResult:
    ttfb_ms: int
    http_status: int  # 0 = no response
    host: str
    error: str | None = None


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


def _ranged_get(client: httpx.Client, url: str, t0: float, failed_at_ms: int | None) -> ProbeResult:
    """Fallback probe: GET the first byte only, timed from the original start."""
    try:
        with client.stream("GET", url, headers={"Range": "bytes=0-0"}) as resp:
            return ProbeResult(
                ttfb_ms=_elapsed_ms(t0), http_status=resp.status_code, host=resp.url.host,
            )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return ProbeResult(
            ttfb_ms=failed_at_ms if failed_at_ms is not None else _elapsed_ms(t0),
            http_status=0,
            host=host_from_url(url),
            error=f"{type(e).__name__}: {e}",
        )


def head_with_ttfb(
    url: str,
    timeout: float = PROBE_TIMEOUT_SECONDS,
    transport: httpx.BaseTransport | None = None,
) -> ProbeResult:
    """HEAD the URL (following redirects) and time the response headers.

    405/501 and transport failures fall back to a ranged GET.
    """
    t0 = time.perf_counter()
    with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
        try:
            resp = client.head(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            failed_at = _elapsed_ms(t0)
            logger.debug("HEAD %s failed (%s), retrying with ranged GET", host_from_url(url), e)
            return _ranged_get(client, url, t0, failed_at)

        if resp.status_code in (405, 501):
            return _ranged_get(client, url, t0, None)
        return ProbeResult(ttfb_ms=_elapsed_ms(t0), http_status=resp.status_code, host=resp.url.host)


# ── Check runners ────────────────────────────────────────────────────────────


def _resolution_failure(
    step: FailureStep, result: ApiCallResult | None, t0: float,
) -> StreamFailure:
    if result is None:
        kind, status = ErrorKind.UNKNOWN, None
    else:
        kind, status = classify_error(result.http_status, result.error), result.http_status
    return StreamFailure(
        error_kind=kind, failure_step=step, http_status=status, resolution_time_ms=_elapsed_ms(t0),
    )


def _probe_outcome(
    direct_url: str, fallback_host: str, resolution_ms: int, transport: httpx.BaseTransport | None,
) -> CheckOutcome:
    probe = head_with_ttfb(direct_url, transport=transport)
    host = probe.host or fallback_host
    if 200 <= probe.http_status < 400:
        return StreamSuccess(
            resolution_time_ms=resolution_ms,
            ttfb_ms=probe.ttfb_ms,
            cdn_host=host,
            http_status=probe.http_status,
        )
    return StreamFailure(
        error_kind=classify_error(probe.http_status, probe.error),
        failure_step=FailureStep.CDN_PROBE_FAILED,
        http_status=probe.http_status,
        cdn_host=host,
        resolution_time_ms=resolution_ms,
    )


def check_stream_by_hash(
    client: DebridClient, target: HashTarget, transport: httpx.BaseTransport | None = None,
) -> CheckOutcome:
    """Use an item already cached in the account; never adds or deletes."""
    t0 = time.perf_counter()

    listing = client.list_cache()
    if not listing.success or listing.data is None:
        return _resolution_failure(FailureStep.CACHE_NOT_IN_ACCOUNT, listing, t0)

    wanted = target.hash.lower()
    item = next((c for c in listing.data if c.hash.lower() == wanted), None)
    if item is None:
        return _resolution_failure(FailureStep.CACHE_NOT_IN_ACCOUNT, None, t0)

    info = client.cache_info(item.id)
    if not info.success or info.data is None:
        return _resolution_failure(FailureStep.NO_LINKS, info, t0)
    if not info.data.links:
        return _resolution_failure(FailureStep.NO_LINKS, None, t0)

    unrestricted = client.unrestrict_link(info.data.links[0])
    if not unrestricted.success or unrestricted.data is None:
        return _resolution_failure(FailureStep.UNRESTRICT_FAILED, unrestricted, t0)
    if not unrestricted.data.download:
        return _resolution_failure(FailureStep.UNRESTRICT_FAILED, None, t0)

    return _probe_outcome(
        unrestricted.data.download, unrestricted.data.host, _elapsed_ms(t0), transport,
    )


def check_stream_by_url(
    client: DebridClient, target: UrlTarget, transport: httpx.BaseTransport | None = None,
) -> CheckOutcome:
    """Find a download by its page URL in the account's downloads list."""
    t0 = time.perf_counter()

    download_id = parse_download_id(target.url)
    if not download_id:
        return _resolution_failure(FailureStep.DOWNLOAD_NOT_FOUND, None, t0)

    listing = client.list_downloads()
    if not listing.success or listing.data is None:
        return _resolution_failure(FailureStep.DOWNLOAD_NOT_FOUND, listing, t0)

    item = next((d for d in listing.data if d.id == download_id), None)
    if item is None or not item.download:
        return _resolution_failure(FailureStep.DOWNLOAD_NOT_FOUND, None, t0)

    return _probe_outcome(item.download, item.host, _elapsed_ms(t0), transport)


# Dispatcher
CHECK_RUNNERS: dict[TargetMode, Callable[..., CheckOutcome]] = {
    TargetMode.BY_HASH: check_stream_by_hash,
    TargetMode.BY_URL: check_stream_by_url,
}


def check_stream(
    client: DebridClient, target: StreamTarget, transport: httpx.BaseTransport | None = None,
) -> CheckOutcome:
    """Resolve and probe one target. Never raises."""
    try:
        runner = CHECK_RUNNERS[target.mode]
        return runner(client, target, transport)
    except Exception as e:
        logger.exception("Stream check crashed: %s", target.id)
        return StreamFailure(error_kind=classify_error(None, str(e)))


def check_api_health(client: DebridClient) -> ApiHealthOutcome:
    """Authenticated GET /user, timed."""
    result = client.check_user()
    return ApiHealthOutcome(
        success=result.success,
        response_time_ms=result.elapsed_ms,
        http_status=result.http_status or 0,
        error=None if result.success else result.error,
    )
