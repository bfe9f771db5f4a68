"""Cycle scheduler — runs the API check and all stream checks every N seconds.

One cycle at a time. The interval is read from settings each time the next
cycle is scheduled, so a changed CHECK_INTERVAL_SECONDS applies from the next
cycle on. stop() cancels the pending timer and waits for an in-flight cycle to
finish writing its record; it never aborts one.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

import httpx

from src.config import DEFAULT_CHECK_INTERVAL_SECONDS, Settings, load_settings
from src.debrid.client import DebridClient
from src.health.engine import check_api_health, check_stream
from src.health.history import HistoryStore
from src.health.outcomes import (
    ApiHealthOutcome,
    CheckOutcome,
    ErrorKind,
    HistoryRecord,
    StreamFailure,
    describe_step,
    parse_timestamp,
    utc_now_iso,
)
from src.streams.registry import StreamRegistry, StreamsConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

STOP_POLL_SECONDS = 0.1
AUTH_HINT = (
    "REAL_DEBRID_API_KEY may be invalid or expired — check .env and "
    "https://real-debrid.com/apitoken"
)


class Phase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class SchedulerState:
    """Immutable snapshot of process health."""

    start_time: str
    last_run: str | None
    last_error: str | None

    def to_dict(self) -> dict[str, Any]:
        uptime = datetime.now(timezone.utc) - parse_timestamp(self.start_time)
        return {
            "uptimeMs": int(uptime.total_seconds() * 1000),
            "startTime": self.start_time,
            "lastRun": self.last_run,
            "lastError": self.last_error,
        }


def default_client_factory(cfg: Settings) -> DebridClient | None:
    """Build a client from settings; None when no token is configured."""
    if not cfg.real_debrid_api_key:
        return None
    return DebridClient(
        token=cfg.real_debrid_api_key,
        base_url=cfg.real_debrid_base_url,
        timeout=cfg.request_timeout_seconds,
    )


class CycleScheduler:
    """Owns the check cycle and the SchedulerState it produces."""

    def __init__(
        self,
        store: HistoryStore,
        registry: StreamRegistry,
        settings_loader: Callable[[], Settings] = load_settings,
        client_factory: Callable[[Settings], DebridClient | None] = default_client_factory,
        probe_transport: httpx.BaseTransport | None = None,
        stop_poll_seconds: float = STOP_POLL_SECONDS,
    ) -> None:
        self.store = store
        self.registry = registry
        self._settings_loader = settings_loader
        self._client_factory = client_factory
        self._probe_transport = probe_transport
        self._stop_poll = stop_poll_seconds
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="debrid-check")
        # Appends are queued in the order their timestamps were taken
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history-write")

        self._phase = Phase.IDLE
        self._started = False
        self._in_flight = False
        self._timer: asyncio.TimerHandle | None = None
        self._cycle_task: asyncio.Task[HistoryRecord | None] | None = None
        self._last_interval: float = DEFAULT_CHECK_INTERVAL_SECONDS

        self._start_time = utc_now_iso()
        self._last_run: str | None = None
        self._last_error: str | None = None
        self._last_timestamp: str | None = None

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def snapshot(self) -> SchedulerState:
        return SchedulerState(
            start_time=self._start_time, last_run=self._last_run, last_error=self._last_error,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Begin the first cycle immediately; later cycles follow the interval."""
        if self._started or self._phase is not Phase.IDLE:
            logger.warning("Scheduler already started (phase=%s)", self._phase.value)
            return
        self._started = True
        if not self._settings_loader().real_debrid_api_key:
            logger.warning("REAL_DEBRID_API_KEY not set — checks requiring it are skipped")
        self._launch()
        logger.info("Cycle scheduler started")

    async def stop(self) -> None:
        """Cancel the pending timer and wait for any in-flight cycle."""
        self._phase = Phase.STOPPING
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        while self._in_flight:
            await asyncio.sleep(self._stop_poll)
        self._executor.shutdown(wait=False)
        self._writer.shutdown(wait=False)
        logger.info("Cycle scheduler stopped")

    def _launch(self) -> None:
        self._in_flight = True
        self._phase = Phase.RUNNING
        self._cycle_task = asyncio.get_running_loop().create_task(
            self._cycle_then_reschedule(), name="debrid-check-cycle",
        )

    def _on_timer(self) -> None:
        self._timer = None
        if self._phase is Phase.STOPPING:
            return
        if self._in_flight:
            # Coalesced: the running cycle schedules the next one when it completes
            logger.debug("Timer fired during an in-flight cycle — ignored")
            return
        self._launch()

    def _schedule_next(self) -> None:
        if self._timer is not None:
            return
        try:
            interval = float(self._settings_loader().check_interval_seconds)
            self._last_interval = interval
        except Exception:
            logger.exception("Could not read check interval, reusing %ss", self._last_interval)
            interval = self._last_interval
        self._timer = asyncio.get_running_loop().call_later(interval, self._on_timer)
        logger.debug("Next check in %.1fs", interval)

    async def _cycle_then_reschedule(self) -> HistoryRecord | None:
        try:
            return await self.run_cycle()
        finally:
            self._in_flight = False
            if self._phase is not Phase.STOPPING:
                self._phase = Phase.IDLE
                self._schedule_next()

    # ── Cycle ─────────────────────────────────────────────────────────────

    async def _in_executor(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def _append(self, record: HistoryRecord) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._writer, self.store.append, record)

    def _next_timestamp(self) -> str:
        """Record timestamp, clamped so successive appends never go backwards."""
        ts = utc_now_iso()
        if self._last_timestamp and parse_timestamp(ts) < parse_timestamp(self._last_timestamp):
            ts = self._last_timestamp
        self._last_timestamp = ts
        return ts

    async def _check_streams(
        self, client: DebridClient, config: StreamsConfig,
    ) -> dict[str, CheckOutcome]:
        streams: dict[str, CheckOutcome] = {}
        for target in config.streams:
            try:
                streams[target.id] = await self._in_executor(
                    check_stream, client, target, self._probe_transport,
                )
            except Exception:
                logger.exception("Stream check error: %s", target.id)
                streams[target.id] = StreamFailure(error_kind=ErrorKind.UNKNOWN)
        return streams

    async def run_cycle(self) -> HistoryRecord | None:
        """One full cycle. Returns the appended record, or None if the cycle failed."""
        try:
            cfg = self._settings_loader()
            config = self.registry.reload()
            client = self._client_factory(cfg)

            api_health: ApiHealthOutcome | None = None
            streams: dict[str, CheckOutcome] | None = None
            if client is not None:
                if config.api_check:
                    api_health = await self._in_executor(check_api_health, client)
                if config.streams:
                    streams = await self._check_streams(client, config)

            record = HistoryRecord(
                timestamp=self._next_timestamp(), api_health=api_health, streams=streams,
            )
            await self._append(record)

            self._last_run = record.timestamp
            self._last_error = None
            self._log_summary(record, config)
            return record
        except Exception as e:
            self._last_error = str(e) or type(e).__name__
            logger.error("%s", json.dumps({"msg": "check_error", "error": self._last_error}))
            logger.debug("Cycle failure detail", exc_info=True)
            return None

    async def run_one_off_api_check(self) -> ApiHealthOutcome | None:
        """Probe the API now and append the result. None when no token is set."""
        client = self._client_factory(self._settings_loader())
        if client is None:
            return None
        outcome = await self._in_executor(check_api_health, client)
        record = HistoryRecord(timestamp=self._next_timestamp(), api_health=outcome, streams={})
        await self._append(record)
        logger.info("On-demand API check: %s (%dms)", outcome.http_status, outcome.response_time_ms)
        return outcome

    def _log_summary(self, record: HistoryRecord, config: StreamsConfig) -> None:
        ok, failed = record.stream_counts()
        line: dict[str, Any] = {
            "msg": "check_complete",
            "timestamp": record.timestamp,
            "api": "skipped" if record.api_health is None else (
                "ok" if record.api_health.success else "fail"
            ),
            "streams": {"ok": ok, "fail": failed},
        }
        if record.api_health is not None:
            line["apiStatus"] = record.api_health.http_status
            if record.api_health.error:
                line["apiError"] = record.api_health.error
            if record.api_health.http_status == 401:
                line["hint"] = AUTH_HINT
        if failed and record.streams:
            refs = {t.id: t.reference for t in config.streams}
            line["streamReasons"] = {
                sid: describe_step(o.failure_step)
                for sid, o in record.streams.items() if isinstance(o, StreamFailure)
            }
            line["streamRefs"] = {sid: refs[sid] for sid in line["streamReasons"] if sid in refs}
        logger.info("%s", json.dumps(line))
