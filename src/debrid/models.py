"""Pydantic models for Real-Debrid API responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


# ── Call result ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ApiCallResult(Generic[T]):
    """Uniform outcome of one remote call. Never raised, always returned."""

    success: bool
    http_status: int | None = None
    error: str | None = None
    data: T | None = None
    elapsed_ms: int = 0


# ── Responses ────────────────────────────────────────────────────────────────


class DownloadItem(BaseModel):
    id: str
    filename: str = ""
    mimeType: str = ""
    filesize: int = 0
    link: str = ""
    host: str = ""
    download: str = ""
    generated: str = ""


class CacheItem(BaseModel):
    id: str
    filename: str = ""
    hash: str
    bytes: int = 0
    status: str = ""
    progress: float = 0
    added: str = ""


class CacheFile(BaseModel):
    id: int
    path: str = ""
    bytes: int = 0
    selected: int = 0


class CacheInfo(BaseModel):
    id: str
    hash: str = ""
    status: str = ""
    links: list[str] = []
    files: list[CacheFile] | None = None


class UnrestrictedLink(BaseModel):
    id: str = ""
    filename: str = ""
    download: str = ""
    host: str = ""


class UserInfo(BaseModel):
    id: int | None = None
    username: str = ""
    type: str = ""
    expiration: str | None = None
