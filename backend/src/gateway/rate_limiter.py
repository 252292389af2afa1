"""
Client-side sliding-window rate limiting.

Each category keeps the epoch-millisecond timestamps of its recent calls.
The window survives restarts through a small sqlite key/value table, one row
per ``rateLimit_<category>`` key holding a JSON array.
"""

from __future__ import annotations

import json
import logging
import math
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from gateway.errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_calls: int
    window_ms: int


DEFAULT_RULES: Dict[str, RateLimitRule] = {
    "transactions": RateLimitRule(max_calls=10, window_ms=60_000),
    "queries": RateLimitRule(max_calls=60, window_ms=60_000),
    "wallet_connections": RateLimitRule(max_calls=5, window_ms=60_000),
}


def storage_key(category: str) -> str:
    return f"rateLimit_{category}"


def _parse_timestamps(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(data, list):
        return []
    timestamps: List[int] = []
    for ts in data:
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            continue
        if isinstance(ts, float) and not math.isfinite(ts):
            continue
        timestamps.append(int(ts))
    return timestamps


class MemoryRateLimitStore:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> List[int]:
        return _parse_timestamps(self._data.get(key))

    def save(self, key: str, timestamps: List[int]):
        self._data[key] = json.dumps(timestamps)

    def delete(self, key: str):
        self._data.pop(key, None)


class RateLimitStore:
    """
    sqlite-backed store. A missing, corrupt or unwritable database never
    raises: reads come back as an empty window and failed writes are logged.
    """

    def __init__(self, path: str):
        self.path = path
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._init_schema()
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"[RateLimit] Store at {path} unavailable, windows start empty: {e}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self):
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rate_limits (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def load(self, key: str) -> List[int]:
        try:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM rate_limits WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"[RateLimit] Failed to load {key}: {e}")
            return []
        return _parse_timestamps(row["value"] if row else None)

    def save(self, key: str, timestamps: List[int]):
        try:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO rate_limits (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, json.dumps(timestamps)),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"[RateLimit] Failed to save {key}: {e}")

    def delete(self, key: str):
        try:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM rate_limits WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"[RateLimit] Failed to delete {key}: {e}")


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    def __init__(
        self,
        category: str,
        max_calls: int,
        window_ms: int,
        store=None,
        clock: Callable[[], int] = _now_ms,
    ):
        if max_calls < 1 or window_ms < 1:
            raise ValueError("max_calls and window_ms must be positive")
        self.category = category
        self.key = storage_key(category)
        self.max_calls = max_calls
        self.window_ms = window_ms
        self.store = store if store is not None else MemoryRateLimitStore()
        self._clock = clock
        self._lock = threading.Lock()

    def _valid(self, now: int) -> List[int]:
        return [ts for ts in self.store.load(self.key) if now - ts < self.window_ms]

    def can_make_call(self) -> bool:
        with self._lock:
            return len(self._valid(self._clock())) < self.max_calls

    def record_call(self):
        with self._lock:
            now = self._clock()
            timestamps = self._valid(now)
            timestamps.append(now)
            self.store.save(self.key, timestamps)

    def remaining_calls(self) -> int:
        with self._lock:
            return max(0, self.max_calls - len(self._valid(self._clock())))

    def reset(self):
        with self._lock:
            self.store.delete(self.key)

    def check(self):
        """
        Atomically consult and record: raises RateLimitError when the window is
        full, otherwise records the call.
        """
        with self._lock:
            now = self._clock()
            timestamps = self._valid(now)
            if len(timestamps) >= self.max_calls:
                retry_after = max(0, min(timestamps) + self.window_ms - now)
                logger.info(f"[RateLimit] {self.category} limited, retry in {retry_after}ms")
                raise RateLimitError(retry_after, category=self.category)
            timestamps.append(now)
            self.store.save(self.key, timestamps)


class RateLimiterRegistry:
    """One limiter per category, all sharing a store."""

    def __init__(self, store=None, rules: Optional[Dict[str, RateLimitRule]] = None, clock: Callable[[], int] = _now_ms):
        self.store = store if store is not None else MemoryRateLimitStore()
        self.rules = dict(DEFAULT_RULES if rules is None else rules)
        self._clock = clock
        self._limiters: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, category: str) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(category)
            if limiter is None:
                rule = self.rules[category]
                limiter = RateLimiter(category, rule.max_calls, rule.window_ms, store=self.store, clock=self._clock)
                self._limiters[category] = limiter
            return limiter
