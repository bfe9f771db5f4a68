"""History store — append-only JSON-lines log with a rolling retention window.

One HistoryRecord per line. Every append loads, prunes and atomically rewrites
the whole file under a process-wide lock, so the on-demand check and the
scheduled cycle never interleave their read-modify-write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from src.health.outcomes import HistoryRecord, parse_timestamp

logger = logging.getLogger(__name__)

RETENTION = timedelta(days=7)

_locks_guard = threading.Lock()
_write_locks: dict[Path, threading.Lock] = {}


def _lock_for(path: Path) -> threading.Lock:
    with _locks_guard:
        return _write_locks.setdefault(path, threading.Lock())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HistoryStore:
    """JSON-lines storage for cycle records."""

    def __init__(
        self,
        path: Path | str,
        retention: timedelta = RETENTION,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._path = Path(path).resolve()
        self._retention = retention
        self._clock = clock
        self._lock = _lock_for(self._path)

    @property
    def path(self) -> Path:
        return self._path

    def ensure_dir(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

    # ── Load / prune ──────────────────────────────────────────────────────

    def _load(self) -> list[HistoryRecord]:
        """Read every parseable record, skipping corrupt lines. Missing file = empty history."""
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("History file unreadable, treating as empty: %s", e)
            return []

        records: list[HistoryRecord] = []
        skipped = 0
        # Decoded per line so one bad byte only costs its own record
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                records.append(HistoryRecord.from_dict(json.loads(line.decode("utf-8"))))
            except (ValueError, TypeError, AttributeError, ArithmeticError, RecursionError):
                skipped += 1
        if skipped:
            logger.warning("Skipped %d corrupt line(s) in %s", skipped, self._path)
        return records

    def _prune(self, records: list[HistoryRecord]) -> list[HistoryRecord]:
        """Keep records no older than the retention window, in stored order."""
        cutoff = self._clock() - self._retention
        kept = []
        for r in records:
            try:
                if r.at >= cutoff:
                    kept.append(r)
            except ValueError:
                logger.debug("Dropping record with bad timestamp: %r", r.timestamp)
        return kept

    def _write(self, records: list[HistoryRecord]) -> None:
        self.ensure_dir()
        content = "".join(json.dumps(r.to_dict(), separators=(",", ":")) + "\n" for r in records)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    # ── Public API ────────────────────────────────────────────────────────

    def append(self, record: HistoryRecord) -> None:
        """Add one record, drop expired ones, rewrite the file."""
        with self._lock:
            records = self._load()
            records.append(record)
            pruned = self._prune(records)
            self._write(pruned)
        logger.debug("History append: %d records retained", len(pruned))

    def read_all(self) -> list[HistoryRecord]:
        """All retained records in append order. Prunes the result, not the file."""
        return self._prune(self._load())

    def latest(self) -> HistoryRecord | None:
        records = self.read_all()
        return records[-1] if records else None

    def query(self, start: str | None = None, end: str | None = None) -> list[HistoryRecord]:
        """Records within [start, end]. Unparsable bounds are ignored."""
        lo, hi = _parse_bound(start), _parse_bound(end)
        result = []
        for r in self.read_all():
            at = r.at
            if lo is not None and at < lo:
                continue
            if hi is not None and at > hi:
                continue
            result.append(r)
        return result

    def stream_points(
        self, stream_id: str, start: str | None = None, end: str | None = None,
    ) -> list[dict[str, Any]]:
        """Flattened ``{timestamp, ...outcome}`` series for one stream."""
        points = []
        for r in self.query(start, end):
            outcome = (r.streams or {}).get(stream_id)
            if outcome is not None:
                points.append({"timestamp": r.timestamp, **outcome.to_dict()})
        return points


def _parse_bound(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None
