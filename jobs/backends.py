"""Key/value storage backends for the job queue.

Both backends expose the same small, redis-py shaped surface: plain keys with
TTL, sorted sets, lists and a ``pipeline()`` context manager that applies the
queued writes atomically when the block exits without an error.
"""
from __future__ import annotations

import itertools
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import redis

from observability.logger import get_logger

LOGGER = get_logger("issue_relay.jobs.backends")

Score = Union[float, int, str]


class InMemoryBackend:
    """Process-local backend with lazy TTL expiry.

    Sorted-set ties are broken by insertion order; re-adding a member moves it
    behind existing members with the same score.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: Dict[str, Any] = {}
        self._expiry: Dict[str, float] = {}
        self._sequence = itertools.count()
        self._lock = threading.RLock()

    # -- keys -----------------------------------------------------------------

    def _alive(self, key: str) -> bool:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return key in self._data

    def _typed(self, key: str, kind: type) -> Any:
        if not self._alive(key):
            return None
        value = self._data[key]
        if not isinstance(value, kind):
            raise TypeError(f"Key {key!r} holds {type(value).__name__}, expected {kind.__name__}")
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._typed(key, str)

    def set(self, key: str, value: str) -> bool:
        with self._lock:
            self._data[key] = str(value)
            self._expiry.pop(key, None)
            return True

    def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        with self._lock:
            self._data[key] = str(value)
            self._expiry[key] = self._clock() + int(ttl_seconds)
            return True

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            if not self._alive(key):
                return False
            self._expiry[key] = self._clock() + int(ttl_seconds)
            return True

    def ttl(self, key: str) -> int:
        with self._lock:
            if not self._alive(key):
                return -2
            deadline = self._expiry.get(key)
            if deadline is None:
                return -1
            return max(0, int(round(deadline - self._clock())))

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._alive(key):
                    removed += 1
                self._data.pop(key, None)
                self._expiry.pop(key, None)
        return removed

    def ping(self) -> bool:
        return True

    # -- sorted sets ----------------------------------------------------------

    def _zset(self, key: str, *, create: bool = False) -> Optional[Dict[str, Tuple[float, int]]]:
        zset = self._typed(key, dict)
        if zset is None and create:
            zset = {}
            self._data[key] = zset
        return zset

    def _zsorted(self, key: str) -> List[Tuple[str, float]]:
        zset = self._zset(key) or {}
        ordered = sorted(zset.items(), key=lambda item: item[1])
        return [(member, score) for member, (score, _seq) in ordered]

    def zadd(self, key: str, mapping: Dict[str, Score]) -> int:
        with self._lock:
            zset = self._zset(key, create=True)
            added = 0
            for member, score in mapping.items():
                if member not in zset:
                    added += 1
                zset[member] = (float(score), next(self._sequence))
            return added

    def zrange(self, key: str, start: int, end: int) -> List[str]:
        with self._lock:
            members = [member for member, _score in self._zsorted(key)]
        return _inclusive_slice(members, start, end)

    def zscore(self, key: str, member: str) -> Optional[float]:
        with self._lock:
            entry = (self._zset(key) or {}).get(member)
            return entry[0] if entry else None

    def zcard(self, key: str) -> int:
        with self._lock:
            return len(self._zset(key) or {})

    def zrem(self, key: str, *members: str) -> int:
        with self._lock:
            zset = self._zset(key)
            if not zset:
                return 0
            removed = sum(1 for member in members if zset.pop(member, None) is not None)
            if not zset:
                self._data.pop(key, None)
            return removed

    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> int:
        low, high = float(min_score), float(max_score)
        with self._lock:
            zset = self._zset(key)
            if not zset:
                return 0
            doomed = [member for member, (score, _seq) in zset.items() if low <= score <= high]
            for member in doomed:
                del zset[member]
            if not zset:
                self._data.pop(key, None)
            return len(doomed)

    # -- lists ----------------------------------------------------------------

    def lpush(self, key: str, *values: str) -> int:
        with self._lock:
            items = self._typed(key, list)
            if items is None:
                items = []
                self._data[key] = items
            for value in values:
                items.insert(0, str(value))
            return len(items)

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        with self._lock:
            items = list(self._typed(key, list) or [])
        return _inclusive_slice(items, start, end)

    def ltrim(self, key: str, start: int, end: int) -> bool:
        with self._lock:
            items = self._typed(key, list)
            if items is None:
                return True
            kept = _inclusive_slice(items, start, end)
            if kept:
                items[:] = kept
            else:
                self._data.pop(key, None)
                self._expiry.pop(key, None)
            return True

    # -- batching -------------------------------------------------------------

    @contextmanager
    def pipeline(self) -> Iterator["_InMemoryPipeline"]:
        pipe = _InMemoryPipeline(self)
        yield pipe
        pipe.execute()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"InMemoryBackend(keys={len(self._data)})"


class _InMemoryPipeline:
    """Buffers writes and applies them under the backend lock."""

    def __init__(self, backend: InMemoryBackend) -> None:
        self._backend = backend
        self._commands: List[Tuple[str, tuple]] = []

    def _queue(self, name: str, *args: Any) -> "_InMemoryPipeline":
        self._commands.append((name, args))
        return self

    def set(self, key: str, value: str) -> "_InMemoryPipeline":
        return self._queue("set", key, value)

    def setex(self, key: str, ttl_seconds: int, value: str) -> "_InMemoryPipeline":
        return self._queue("setex", key, ttl_seconds, value)

    def expire(self, key: str, ttl_seconds: int) -> "_InMemoryPipeline":
        return self._queue("expire", key, ttl_seconds)

    def zadd(self, key: str, mapping: Dict[str, Score]) -> "_InMemoryPipeline":
        return self._queue("zadd", key, dict(mapping))

    def zrem(self, key: str, *members: str) -> "_InMemoryPipeline":
        return self._queue("zrem", key, *members)

    def lpush(self, key: str, *values: str) -> "_InMemoryPipeline":
        return self._queue("lpush", key, *values)

    def ltrim(self, key: str, start: int, end: int) -> "_InMemoryPipeline":
        return self._queue("ltrim", key, start, end)

    def execute(self) -> List[Any]:
        commands, self._commands = self._commands, []
        with self._backend._lock:
            return [getattr(self._backend, name)(*args) for name, args in commands]


class RedisBackend:
    """Redis-backed implementation using redis-py with decoded responses."""

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    @property
    def client(self) -> "redis.Redis":
        return self._client

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str) -> bool:
        return bool(self._client.set(key, value))

    def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        return bool(self._client.setex(key, ttl_seconds, value))

    def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self._client.expire(key, ttl_seconds))

    def ttl(self, key: str) -> int:
        return int(self._client.ttl(key))

    def delete(self, *keys: str) -> int:
        return int(self._client.delete(*keys))

    def ping(self) -> bool:
        return bool(self._client.ping())

    def zadd(self, key: str, mapping: Dict[str, Score]) -> int:
        return int(self._client.zadd(key, mapping))

    def zrange(self, key: str, start: int, end: int) -> List[str]:
        return list(self._client.zrange(key, start, end))

    def zscore(self, key: str, member: str) -> Optional[float]:
        return self._client.zscore(key, member)

    def zcard(self, key: str) -> int:
        return int(self._client.zcard(key))

    def zrem(self, key: str, *members: str) -> int:
        return int(self._client.zrem(key, *members))

    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> int:
        return int(self._client.zremrangebyscore(key, min_score, max_score))

    def lpush(self, key: str, *values: str) -> int:
        return int(self._client.lpush(key, *values))

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        return list(self._client.lrange(key, start, end))

    def ltrim(self, key: str, start: int, end: int) -> bool:
        return bool(self._client.ltrim(key, start, end))

    @contextmanager
    def pipeline(self) -> Iterator[Any]:
        with self._client.pipeline(transaction=True) as pipe:
            yield pipe
            pipe.execute()


Backend = Union[InMemoryBackend, RedisBackend]


def create_backend(url: Optional[str] = None) -> Backend:
    """Return a Redis backend for ``url`` or an in-memory one when it is empty."""

    if url:
        LOGGER.info("job_backend_selected", extra={"backend": "redis"})
        return RedisBackend.from_url(url)
    LOGGER.info("job_backend_selected", extra={"backend": "memory"})
    return InMemoryBackend()


def _inclusive_slice(items: List[str], start: int, end: int) -> List[str]:
    size = len(items)
    if start < 0:
        start = max(0, size + start)
    if end < 0:
        end = size + end
    if start > end or start >= size:
        return []
    return items[start : end + 1]


__all__ = ["Backend", "InMemoryBackend", "RedisBackend", "create_backend"]
