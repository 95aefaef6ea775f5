"""Local cache bridge: mirrors in-memory form state between reloads.

Entries are keyed by ``(owner_key, draft_key)`` where ``draft_key`` is the
draft id, or ``"draft"`` before the remote store has created one.

Every call is best-effort: when the medium is unreachable or full the bridge
logs a warning and carries on, leaving the remote store as the only copy.
Reads ignore entries older than the TTL or written with another envelope
version.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import redis

from draftflow.config import settings
from draftflow.engine.errors import CacheUnavailable

logger = logging.getLogger(__name__)

DEFAULT_DRAFT_KEY = "draft"


@dataclass
class CacheEntry:
    """Snapshot of one owner's in-memory draft."""
    sections: dict[int, dict] = field(default_factory=dict)
    edited_at: dict[int, float] = field(default_factory=dict)
    current_section: int = 0
    progress: dict | None = None
    # Last time this snapshot matched what the remote store confirmed
    saved_at: float | None = None
    written_at: float = 0.0

    def to_json(self, version: str) -> str:
        return json.dumps({
            "data": {
                "sections": {str(k): v for k, v in self.sections.items()},
                "edited_at": {str(k): v for k, v in self.edited_at.items()},
                "current_section": self.current_section,
                "progress": self.progress,
                "saved_at": self.saved_at,
            },
            "timestamp": self.written_at,
            "version": version,
        })

    @classmethod
    def from_payload(cls, payload: dict) -> "CacheEntry":
        data = payload.get("data") or {}
        return cls(
            sections={int(k): v for k, v in (data.get("sections") or {}).items()},
            edited_at={int(k): float(v) for k, v in (data.get("edited_at") or {}).items()},
            current_section=int(data.get("current_section", 0)),
            progress=data.get("progress"),
            saved_at=data.get("saved_at"),
            written_at=float(payload.get("timestamp", 0.0)),
        )


# ── Media ────────────────────────────────────────────────────

class CacheMedium(Protocol):
    """Synchronous key/value store.  Implementations raise CacheUnavailable."""

    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str, ttl: int) -> None: ...
    def delete(self, key: str) -> None: ...


class MemoryCacheMedium:
    """Process-local medium; ``max_entries`` simulates a full store."""

    def __init__(self, max_entries: int | None = None):
        self._data: dict[str, str] = {}
        self.max_entries = max_entries
        self.available = True

    def get(self, key: str) -> Optional[str]:
        self._check()
        return self._data.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self._check()
        if (
            self.max_entries is not None
            and key not in self._data
            and len(self._data) >= self.max_entries
        ):
            raise CacheUnavailable("Local cache is full")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._check()
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def _check(self) -> None:
        if not self.available:
            raise CacheUnavailable("Local cache medium is offline")


class RedisCacheMedium:
    """Redis-backed medium (synchronous client, so writes never yield)."""

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self._client = client or redis.Redis.from_url(
            url or settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=0.5,
            socket_timeout=0.5,
        )

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis read failed: {e}") from e

    def set(self, key: str, value: str, ttl: int) -> None:
        try:
            self._client.setex(key, ttl, value)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis write failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis delete failed: {e}") from e


def build_medium(backend: str | None = None) -> CacheMedium:
    """Pick the medium named by ``local_cache_backend``."""
    backend = backend or settings.local_cache_backend
    if backend == "redis":
        return RedisCacheMedium()
    if backend == "memory":
        return MemoryCacheMedium()
    raise ValueError(f"Unknown local cache backend: {backend}")


# ── Bridge ───────────────────────────────────────────────────

class LocalCacheBridge:
    def __init__(
        self,
        medium: CacheMedium | None = None,
        *,
        ttl_seconds: int | None = None,
        version: str | None = None,
        prefix: str = "draftflow",
        clock: Callable[[], float] = time.time,
    ):
        self.medium = medium if medium is not None else build_medium()
        self.ttl_seconds = ttl_seconds or settings.local_cache_ttl_seconds
        self.version = version or settings.local_cache_version
        self.prefix = prefix
        self._clock = clock

    def key(self, owner_key: str, draft_key: str | None) -> str:
        return f"{self.prefix}:{owner_key}:{draft_key or DEFAULT_DRAFT_KEY}"

    def write(self, owner_key: str, draft_key: str | None, entry: CacheEntry) -> bool:
        """Overwrite the stored snapshot.  Returns False when the medium failed."""
        entry.written_at = self._clock()
        key = self.key(owner_key, draft_key)
        try:
            self.medium.set(key, entry.to_json(self.version), self.ttl_seconds)
        except CacheUnavailable as e:
            logger.warning(f"Local cache write skipped for {key}: {e.message}")
            return False
        return True

    def read(self, owner_key: str, draft_key: str | None) -> CacheEntry | None:
        key = self.key(owner_key, draft_key)
        try:
            raw = self.medium.get(key)
        except CacheUnavailable as e:
            logger.warning(f"Local cache read skipped for {key}: {e.message}")
            return None
        if not raw:
            logger.debug(f"Local cache MISS: {key}")
            return None

        try:
            payload = json.loads(raw)
            entry = CacheEntry.from_payload(payload)
        except (ValueError, TypeError, AttributeError):
            logger.warning(f"Discarding unreadable local cache entry {key}")
            return None

        if payload.get("version") != self.version:
            logger.info(f"Ignoring local cache entry {key} with version {payload.get('version')}")
            return None
        if self._clock() - entry.written_at > self.ttl_seconds:
            logger.info(f"Ignoring stale local cache entry {key}")
            return None

        logger.debug(f"Local cache HIT: {key}")
        return entry

    def clear(self, owner_key: str, draft_key: str | None) -> None:
        key = self.key(owner_key, draft_key)
        try:
            self.medium.delete(key)
        except CacheUnavailable as e:
            logger.warning(f"Local cache clear skipped for {key}: {e.message}")

    def mark_saved(self, owner_key: str, draft_key: str | None, saved_at: float) -> None:
        """Record that the stored snapshot now matches the remote store."""
        entry = self.read(owner_key, draft_key)
        if entry is None:
            return
        entry.saved_at = saved_at
        self.write(owner_key, draft_key, entry)

    def move(self, owner_key: str, old_key: str | None, new_key: str) -> None:
        """Re-key an entry, e.g. once the remote store assigns a draft id."""
        entry = self.read(owner_key, old_key)
        if entry is None:
            return
        if self.write(owner_key, new_key, entry):
            self.clear(owner_key, old_key)
