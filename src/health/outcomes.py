"""Outcome types written to history.

A stream check is either a ``StreamSuccess`` or a ``StreamFailure``; the two
share no timing fields, so success timing and failure classification cannot
appear on the same record. Serialized field names are the camelCase wire
names read by the dashboard.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


class ErrorKind(str, Enum):
    RATE_LIMIT = "rateLimit"
    FORBIDDEN = "forbidden"
    SERVER_ERROR = "serverError"
    TIMEOUT = "timeout"
    NETWORK = "network"
    UNKNOWN = "unknown"


class FailureStep(str, Enum):
    CACHE_NOT_IN_ACCOUNT = "cacheNotInAccount"
    NO_LINKS = "noLinks"
    UNRESTRICT_FAILED = "unrestrictFailed"
    DOWNLOAD_NOT_FOUND = "downloadNotFound"
    CDN_PROBE_FAILED = "cdnProbeFailed"


FAILURE_STEP_LABELS = {
    FailureStep.CACHE_NOT_IN_ACCOUNT: "hash not found in account cache",
    FailureStep.NO_LINKS: "cached item has no links",
    FailureStep.UNRESTRICT_FAILED: "could not unrestrict link",
    FailureStep.DOWNLOAD_NOT_FOUND: "download not found",
    FailureStep.CDN_PROBE_FAILED: "CDN probe failed",
}


def describe_step(step: FailureStep | None) -> str:
    """Human-readable failure stage for logs."""
    if step is None:
        return "unexpected error"
    return FAILURE_STEP_LABELS[step]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ── Stream outcomes ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StreamSuccess:
    resolution_time_ms: int
    ttfb_ms: int
    cdn_host: str
    http_status: int

    success = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "resolutionTimeMs": self.resolution_time_ms,
            "timeToFirstByteMs": self.ttfb_ms,
            "cdnHost": self.cdn_host,
            "httpStatus": self.http_status,
        }


@dataclass(frozen=True)
class StreamFailure:
    error_kind: ErrorKind
    # None only for the catch-all entry of an unexpected per-target error
    failure_step: FailureStep | None = None
    http_status: int | None = None
    cdn_host: str | None = None
    resolution_time_ms: int | None = None

    success = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": False, "errorKind": self.error_kind.value}
        if self.failure_step is not None:
            d["failureStep"] = self.failure_step.value
        if self.http_status is not None:
            d["httpStatus"] = self.http_status
        if self.cdn_host:
            d["cdnHost"] = self.cdn_host
        if self.resolution_time_ms is not None:
            d["resolutionTimeMs"] = self.resolution_time_ms
        return d


CheckOutcome = Union[StreamSuccess, StreamFailure]


def outcome_from_dict(raw: dict[str, Any]) -> CheckOutcome:
    if raw.get("success"):
        return StreamSuccess(
            resolution_time_ms=int(raw.get("resolutionTimeMs", 0)),
            ttfb_ms=int(raw.get("timeToFirstByteMs", 0)),
            cdn_host=str(raw.get("cdnHost", "")),
            http_status=int(raw.get("httpStatus", 0)),
        )
    step = raw.get("failureStep")
    return StreamFailure(
        error_kind=_enum_or(ErrorKind, raw.get("errorKind"), ErrorKind.UNKNOWN),
        failure_step=_enum_or(FailureStep, step, None) if step else None,
        http_status=raw.get("httpStatus"),
        cdn_host=raw.get("cdnHost"),
        resolution_time_ms=raw.get("resolutionTimeMs"),
    )


def _enum_or(enum_cls: Any, value: Any, default: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return default


# ── API health ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ApiHealthOutcome:
    success: bool
    response_time_ms: int
    http_status: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "responseTimeMs": self.response_time_ms,
            "httpStatus": self.http_status,
        }
        if self.error:
            d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ApiHealthOutcome:
        return cls(
            success=bool(raw.get("success")),
            response_time_ms=int(raw.get("responseTimeMs", 0)),
            http_status=int(raw.get("httpStatus", 0)),
            error=raw.get("error"),
        )


# ── History record ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HistoryRecord:
    """One completed cycle. ``streams`` preserves configured target order."""

    timestamp: str = field(default_factory=utc_now_iso)
    api_health: ApiHealthOutcome | None = None
    streams: dict[str, CheckOutcome] | None = None

    @property
    def at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    def stream_counts(self) -> tuple[int, int]:
        """(succeeded, failed) stream checks in this record."""
        if not self.streams:
            return 0, 0
        ok = sum(1 for o in self.streams.values() if o.success)
        return ok, len(self.streams) - ok

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"timestamp": self.timestamp}
        if self.api_health is not None:
            d["apiHealth"] = self.api_health.to_dict()
        if self.streams is not None:
            d["streams"] = {sid: o.to_dict() for sid, o in self.streams.items()}
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> HistoryRecord:
        if not isinstance(raw, dict) or not isinstance(raw.get("timestamp"), str):
            raise ValueError("history record needs a string 'timestamp'")
        api = raw.get("apiHealth")
        streams = raw.get("streams")
        return cls(
            timestamp=raw["timestamp"],
            api_health=ApiHealthOutcome.from_dict(api) if isinstance(api, dict) else None,
            streams=(
                {sid: outcome_from_dict(o) for sid, o in streams.items()}
                if isinstance(streams, dict) else None
            ),
        )
