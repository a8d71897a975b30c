# src/secure_viewer/services/rate_limiter.py
"""Fixed-window request throttling keyed by (client identity, endpoint).

Counters reset at fixed window boundaries rather than sliding. A client can
therefore land up to twice the nominal limit across a boundary (the tail of
one window plus the head of the next); that is an accepted property of the
scheme, not a defect.
"""

from __future__ import annotations

import logging
import threading
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final, Protocol

import redis

from secure_viewer.core.exceptions import TransientStoreError
from secure_viewer.core.settings import settings

logger = logging.getLogger(__name__)

_LOCK_STRIPES: Final[int] = 64
_REDIS_KEY_PREFIX: Final[str] = "ratelimit"
_MAX_CAS_ATTEMPTS: Final[int] = 16


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    reset_at: datetime


@dataclass
class RateLimitEntry:
    """Counter for one key inside one window."""

    count: int
    window_start_ms: int
    window_ms: int

    def is_stale(self, now_ms: int) -> bool:
        return now_ms - self.window_start_ms >= self.window_ms


class RateLimiter(Protocol):
    """Interface shared by the in-process and Redis backends."""

    def check(
        self,
        client_identity: str,
        endpoint: str,
        limit: int | None = None,
        window_ms: int | None = None,
    ) -> RateLimitResult: ...

    def reset(self, client_identity: str, endpoint: str | None = None) -> None: ...

    def sweep(self) -> int: ...


def _validate(limit: int, window_ms: int) -> None:
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if window_ms < 1:
        raise ValueError("window_ms must be positive")


class InMemoryRateLimiter:
    """Process-local fixed-window limiter.

    Mutations for a key are serialized on one of a fixed set of striped
    locks, so concurrent bursts on the same key are never undercounted and
    lock memory stays bounded.
    """

    def __init__(
        self,
        limit: int | None = None,
        window_ms: int | None = None,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.limit = settings.rate_limit_max if limit is None else limit
        self.window_ms = settings.rate_limit_window_ms if window_ms is None else window_ms
        _validate(self.limit, self.window_ms)
        self._clock = clock
        self._entries: dict[tuple[str, str], RateLimitEntry] = {}
        self._stripes = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        digest = zlib.crc32(f"{key[0]}\x00{key[1]}".encode())
        return self._stripes[digest % _LOCK_STRIPES]

    def check(
        self,
        client_identity: str,
        endpoint: str,
        limit: int | None = None,
        window_ms: int | None = None,
    ) -> RateLimitResult:
        """Admit or reject one request and update the counter."""
        limit = self.limit if limit is None else limit
        window_ms = self.window_ms if window_ms is None else window_ms
        _validate(limit, window_ms)

        key = (client_identity, endpoint)
        with self._lock_for(key):
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or entry.is_stale(now):
                entry = RateLimitEntry(count=1, window_start_ms=now, window_ms=window_ms)
                self._entries[key] = entry
                return RateLimitResult(
                    allowed=True,
                    remaining=limit - 1,
                    reset_at=_to_datetime(now + window_ms),
                )

            reset_at = _to_datetime(entry.window_start_ms + entry.window_ms)
            if entry.count >= limit:
                logger.info("Rate limit hit for %s on %s", client_identity, endpoint)
                return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=limit - entry.count,
                reset_at=reset_at,
            )

    def info(
        self,
        client_identity: str,
        endpoint: str,
        limit: int | None = None,
    ) -> RateLimitResult | None:
        """Return the current state for a key without counting a request."""
        limit = self.limit if limit is None else limit
        key = (client_identity, endpoint)
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None or entry.is_stale(self._clock()):
                return None
            return RateLimitResult(
                allowed=entry.count < limit,
                remaining=max(0, limit - entry.count),
                reset_at=_to_datetime(entry.window_start_ms + entry.window_ms),
            )

    def reset(self, client_identity: str, endpoint: str | None = None) -> None:
        """Clear one endpoint, or every endpoint, for a client."""
        if endpoint is not None:
            keys = [(client_identity, endpoint)]
        else:
            keys = [key for key in list(self._entries) if key[0] == client_identity]
        for key in keys:
            with self._lock_for(key):
                self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every counter."""
        for key in list(self._entries):
            with self._lock_for(key):
                self._entries.pop(key, None)

    def sweep(self) -> int:
        """Evict entries whose window has elapsed; return how many were removed."""
        removed = 0
        for key in list(self._entries):
            # One stripe per record examined; never the whole table.
            with self._lock_for(key):
                entry = self._entries.get(key)
                if entry is not None and entry.is_stale(self._clock()):
                    del self._entries[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimiter:
    """Fixed-window limiter shared across processes through Redis.

    Each key is a hash ``{count, window_start}`` updated with an optimistic
    WATCH/MULTI loop; the key's TTL replaces the periodic sweep. Redis
    failures fail closed.
    """

    def __init__(
        self,
        client: Any,
        limit: int | None = None,
        window_ms: int | None = None,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._redis = client
        self.limit = settings.rate_limit_max if limit is None else limit
        self.window_ms = settings.rate_limit_window_ms if window_ms is None else window_ms
        _validate(self.limit, self.window_ms)
        self._clock = clock

    @staticmethod
    def _key(client_identity: str, endpoint: str) -> str:
        return f"{_REDIS_KEY_PREFIX}:{client_identity}:{endpoint}"

    def check(
        self,
        client_identity: str,
        endpoint: str,
        limit: int | None = None,
        window_ms: int | None = None,
    ) -> RateLimitResult:
        limit = self.limit if limit is None else limit
        window_ms = self.window_ms if window_ms is None else window_ms
        _validate(limit, window_ms)
        key = self._key(client_identity, endpoint)

        try:
            with self._redis.pipeline() as pipe:
                for _ in range(_MAX_CAS_ATTEMPTS):
                    try:
                        pipe.watch(key)
                        raw = pipe.hgetall(key) or {}
                        now = self._clock()
                        count = int(raw.get(b"count", raw.get("count", 0)))
                        window_start = int(raw.get(b"window_start", raw.get("window_start", 0)))

                        if not raw or now - window_start >= window_ms:
                            count, window_start = 1, now
                        elif count >= limit:
                            pipe.unwatch()
                            logger.info("Rate limit hit for %s on %s", client_identity, endpoint)
                            return RateLimitResult(
                                allowed=False,
                                remaining=0,
                                reset_at=_to_datetime(window_start + window_ms),
                            )
                        else:
                            count += 1

                        pipe.multi()
                        pipe.hset(key, mapping={"count": count, "window_start": window_start})
                        pipe.pexpire(key, max(1, window_start + window_ms - now))
                        pipe.execute()
                        return RateLimitResult(
                            allowed=True,
                            remaining=limit - count,
                            reset_at=_to_datetime(window_start + window_ms),
                        )
                    except redis.WatchError:
                        continue
        except redis.RedisError as err:
            raise TransientStoreError("Rate limit store unavailable") from err

        raise TransientStoreError("Rate limit store contention; giving up")

    def reset(self, client_identity: str, endpoint: str | None = None) -> None:
        try:
            if endpoint is not None:
                self._redis.delete(self._key(client_identity, endpoint))
                return
            pattern = f"{_REDIS_KEY_PREFIX}:{client_identity}:*"
            for key in self._redis.scan_iter(match=pattern):
                self._redis.delete(key)
        except redis.RedisError as err:
            raise TransientStoreError("Rate limit store unavailable") from err

    def sweep(self) -> int:
        # Keys carry their own TTL.
        return 0


def get_rate_limiter() -> RateLimiter:
    """Build the limiter selected by ``RATE_LIMIT_BACKEND``."""
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(redis.from_url(settings.redis_url))  # type: ignore[no-untyped-call]
    return InMemoryRateLimiter()
