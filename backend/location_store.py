"""
Exploragon Location Store Module - Persistence boundary for player positions

Two record families per user:
- current fix: one JSON record with a short TTL (presence)
- history timeline: timestamp-ordered records, capped in size, longer TTL

RedisLocationStore is the shared deployment store. InMemoryLocationStore has
the same TTL and ordering behaviour for single-process runs and tests.
"""

import bisect
import json
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Tuple

import redis

from logger import setup_logger

logger = setup_logger("location_store")

CURRENT_KEY_PREFIX = "gps:user:"
HISTORY_KEY_PREFIX = "gps:history:"
SCAN_COUNT = 100


class StoreUnavailableError(Exception):
    """The persistence layer could not be reached."""


def _encode(record: dict) -> str:
    return json.dumps(record, sort_keys=True, separators=(",", ":"))


class LocationStore(ABC):
    """Narrow key/value interface the tracker reads and writes through."""

    @abstractmethod
    def set_current(self, username: str, record: dict, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def get_current(self, username: str) -> Optional[dict]:
        ...

    @abstractmethod
    def scan_current(self) -> Dict[str, dict]:
        ...

    @abstractmethod
    def append_history(self, username: str, record: dict, max_entries: int, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def get_history(self, username: str, limit: Optional[int] = None) -> List[dict]:
        """Most recent first."""

    @abstractmethod
    def scan_history_users(self) -> List[str]:
        ...

    @abstractmethod
    def ping(self) -> bool:
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryLocationStore(LocationStore):
    """Thread-safe in-process store with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._current: Dict[str, Tuple[dict, float]] = {}
        # username -> (sort keys, records, expires_at); sort key is (timestamp, encoded record)
        self._history: Dict[str, Tuple[List[Tuple[int, str]], List[dict], float]] = {}

    def _expired(self, expires_at: float) -> bool:
        return self._clock() >= expires_at

    def _purge(self):
        """Drop expired keys (must be called with lock held)."""
        for username in [u for u, (_, exp) in self._current.items() if self._expired(exp)]:
            del self._current[username]
        for username in [u for u, (_, _, exp) in self._history.items() if self._expired(exp)]:
            del self._history[username]

    def set_current(self, username: str, record: dict, ttl_seconds: int) -> None:
        with self._lock:
            self._current[username] = (dict(record), self._clock() + ttl_seconds)

    def get_current(self, username: str) -> Optional[dict]:
        with self._lock:
            self._purge()
            item = self._current.get(username)
            return dict(item[0]) if item else None

    def scan_current(self) -> Dict[str, dict]:
        with self._lock:
            self._purge()
            return {u: dict(rec) for u, (rec, _) in self._current.items()}

    def append_history(self, username: str, record: dict, max_entries: int, ttl_seconds: int) -> None:
        with self._lock:
            self._purge()
            keys, records, _ = self._history.get(username, ([], [], 0.0))
            # Sorted-set order: score, then member bytes
            key = (record["timestamp"], _encode(record))
            idx = bisect.bisect_left(keys, key)
            if idx == len(keys) or keys[idx] != key:
                keys.insert(idx, key)
                records.insert(idx, dict(record))
            if len(records) > max_entries:
                del keys[:len(keys) - max_entries]
                del records[:len(records) - max_entries]
            self._history[username] = (keys, records, self._clock() + ttl_seconds)

    def get_history(self, username: str, limit: Optional[int] = None) -> List[dict]:
        with self._lock:
            self._purge()
            item = self._history.get(username)
            if not item:
                return []
            newest_first = [dict(r) for r in reversed(item[1])]
        if limit is not None:
            newest_first = newest_first[:max(0, limit)]
        return newest_first

    def scan_history_users(self) -> List[str]:
        with self._lock:
            self._purge()
            return list(self._history.keys())

    def ping(self) -> bool:
        return True


# =============================================================================
# REDIS STORE
# =============================================================================

@contextmanager
def _redis_errors(operation: str):
    try:
        yield
    except redis.RedisError as e:
        logger.error(f"Redis {operation} failed: {e}")
        raise StoreUnavailableError(f"Location store unavailable during {operation}") from e


class RedisLocationStore(LocationStore):
    """Redis-backed store: string keys with EX for current fixes, sorted sets for history."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisLocationStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        return cls(client)

    def _scan_keys(self, pattern: str) -> List[str]:
        keys: List[str] = []
        cursor = 0
        while True:
            cursor, batch = self._client.scan(cursor=cursor, match=pattern, count=SCAN_COUNT)
            keys.extend(batch)
            if int(cursor) == 0:
                return keys

    def set_current(self, username: str, record: dict, ttl_seconds: int) -> None:
        with _redis_errors("set_current"):
            self._client.set(CURRENT_KEY_PREFIX + username, _encode(record), ex=ttl_seconds)

    def get_current(self, username: str) -> Optional[dict]:
        with _redis_errors("get_current"):
            raw = self._client.get(CURRENT_KEY_PREFIX + username)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed current record for {username}")
            return None

    def scan_current(self) -> Dict[str, dict]:
        result: Dict[str, dict] = {}
        with _redis_errors("scan_current"):
            keys = self._scan_keys(CURRENT_KEY_PREFIX + "*")
            for start in range(0, len(keys), SCAN_COUNT):
                chunk = keys[start:start + SCAN_COUNT]
                values = self._client.mget(chunk)
                for key, raw in zip(chunk, values):
                    if not raw:
                        continue
                    try:
                        record = json.loads(raw)
                        result[record["username"]] = record
                    except (ValueError, KeyError, TypeError):
                        logger.warning(f"Ignoring malformed record at {key}")
        return result

    def append_history(self, username: str, record: dict, max_entries: int, ttl_seconds: int) -> None:
        key = HISTORY_KEY_PREFIX + username
        with _redis_errors("append_history"):
            pipe = self._client.pipeline()
            pipe.zadd(key, {_encode(record): record["timestamp"]})
            pipe.zremrangebyrank(key, 0, -(max_entries + 1))
            pipe.expire(key, ttl_seconds)
            pipe.execute()

    def get_history(self, username: str, limit: Optional[int] = None) -> List[dict]:
        if limit is not None and limit <= 0:
            return []
        end = -1 if limit is None else limit - 1
        with _redis_errors("get_history"):
            members = self._client.zrevrange(HISTORY_KEY_PREFIX + username, 0, end)
        history = []
        for raw in members:
            try:
                history.append(json.loads(raw))
            except ValueError:
                logger.warning(f"Ignoring malformed history entry for {username}")
        return history

    def scan_history_users(self) -> List[str]:
        with _redis_errors("scan_history_users"):
            keys = self._scan_keys(HISTORY_KEY_PREFIX + "*")
        return [k[len(HISTORY_KEY_PREFIX):] for k in keys]

    def ping(self) -> bool:
        with _redis_errors("ping"):
            return bool(self._client.ping())


def create_store(redis_url: Optional[str] = None) -> LocationStore:
    """Redis store when a URL is configured, in-memory otherwise."""
    if redis_url:
        logger.info("Using Redis location store")
        return RedisLocationStore.from_url(redis_url)
    logger.info("REDIS_URL not set, using in-memory location store")
    return InMemoryLocationStore()
