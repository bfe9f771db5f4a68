"""Stream registry — loads streams.json and provides typed targets.

File format (JSON, or YAML since it is parsed with ``yaml.safe_load``)::

    {
      "apiCheck": true,
      "streams": [
        {"id": "tv", "type": "hash", "hash": "<40 hex chars>"},
        {"id": "movie", "type": "download", "url": "https://real-debrid.com/d/ABC123"}
      ]
    }
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

import yaml

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")


# ── Data models ──────────────────────────────────────────────────────────────


class TargetMode(str, Enum):
    BY_HASH = "byHash"
    BY_URL = "byUrl"


@dataclass(frozen=True)
class HashTarget:
    """Stream resolved from a content hash already cached in the account."""

    id: str
    hash: str
    mode: TargetMode = field(default=TargetMode.BY_HASH, init=False)

    @property
    def reference(self) -> str:
        return self.hash


@dataclass(frozen=True)
class UrlTarget:
    """Stream resolved from a real-debrid.com/d/<ID> download page URL."""

    id: str
    url: str
    mode: TargetMode = field(default=TargetMode.BY_URL, init=False)

    @property
    def reference(self) -> str:
        return self.url


StreamTarget = Union[HashTarget, UrlTarget]


@dataclass(frozen=True)
class StreamsConfig:
    """One load of streams.json."""

    api_check: bool = True
    streams: tuple[StreamTarget, ...] = ()


# ── Registry ─────────────────────────────────────────────────────────────────


class StreamRegistry:
    """Loads and caches stream targets from streams.json."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._config = StreamsConfig()
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> StreamsConfig:
        """Parse the streams file. A missing or malformed file yields the default config."""
        if self._loaded and not force:
            return self._config

        self._loaded = True
        self._config = StreamsConfig()
        if not self._path.exists():
            logger.warning("Streams file not found: %s — API check only", self._path)
            return self._config

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to parse %s: %s", self._path, e)
            return self._config

        self._config = parse_streams_config(raw)
        logger.debug("Loaded %d stream targets from %s", len(self._config.streams), self._path)
        return self._config

    def reload(self) -> StreamsConfig:
        """Force reload from disk."""
        return self.load(force=True)


# ── Parsers ──────────────────────────────────────────────────────────────────


def parse_streams_config(raw: Any) -> StreamsConfig:
    """Build a StreamsConfig from decoded JSON, skipping malformed entries."""
    if not isinstance(raw, dict) or not isinstance(raw.get("apiCheck"), bool):
        logger.warning("Streams config missing boolean 'apiCheck' — using defaults")
        return StreamsConfig()

    targets: list[StreamTarget] = []
    seen: set[str] = set()
    for entry in raw.get("streams") or []:
        target = _parse_target(entry)
        if target is None:
            logger.warning("Skipping malformed stream entry: %r", entry)
            continue
        if target.id in seen:
            logger.warning("Skipping duplicate stream id: %s", target.id)
            continue
        seen.add(target.id)
        targets.append(target)

    return StreamsConfig(api_check=raw["apiCheck"], streams=tuple(targets))


def _parse_target(entry: Any) -> StreamTarget | None:
    if not isinstance(entry, dict) or not isinstance(entry.get("id"), str) or not entry["id"]:
        return None

    kind = entry.get("type")
    has_hash = isinstance(entry.get("hash"), str)
    has_url = isinstance(entry.get("url"), str)

    # Exactly one payload, matching the tag
    if kind == "hash" and has_hash and not has_url:
        if not _HASH_RE.match(entry["hash"]):
            return None
        return HashTarget(id=entry["id"], hash=entry["hash"])
    if kind == "download" and has_url and not has_hash:
        return UrlTarget(id=entry["id"], url=entry["url"])
    return None
