"""In-memory TTL cache with single-flight deduplication.

`get_or_compute` guarantees that for one key the compute function runs at
most once while a computation is in flight: the first caller creates a
`concurrent.futures.Future` and computes, later callers wait on that future
and receive the same value (or the same exception). Errors are never cached.

When an executor is supplied the computation runs on it, so a caller that
stops waiting (`wait_timeout`) leaves the shared computation running; its
result is still cached for the next caller.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, Optional, Set, Union

from pydantic import BaseModel

from econlens.services.metrics import InsightMetrics

logger = logging.getLogger(__name__)

TTL = Union[float, Callable[[Any], float]]


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    shared: int = 0    # callers that attached to an in-flight computation
    errors: int = 0
    size: int = 0
    inflight: int = 0


class _Entry:
    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, expires_at: float):
        self.value = value
        self.expires_at = expires_at


def _namespace(key: str) -> str:
    return key.split(":", 1)[0] if ":" in key else "default"


class SingleFlightCache:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        executor: Optional[Executor] = None,
        metrics: Optional[InsightMetrics] = None,
    ):
        self._clock = clock
        self._executor = executor
        self._metrics = metrics
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._inflight: Dict[str, Future] = {}
        self._stale: Set[str] = set()
        self._stats = CacheStats()

    def _live_entry(self, key: str) -> Optional[_Entry]:
        # caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _record(self, key: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_cache_lookup(_namespace(key), outcome)

    def get_or_compute(
        self,
        key: str,
        ttl_seconds: TTL,
        compute_fn: Callable[[], Any],
        wait_timeout: Optional[float] = None,
    ) -> Any:
        """Return the cached value for `key`, computing it once if absent.

        `ttl_seconds` may be a number or a callable receiving the computed
        value, for callers whose entries live for different durations.

        Raises whatever `compute_fn` raised (to every waiter of that flight),
        or `TimeoutError` when `wait_timeout` elapses first.
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is not None:
                self._stats.hits += 1
                hit = True
            else:
                hit = False
                future = self._inflight.get(key)
                owner = future is None
                if owner:
                    future = Future()
                    self._inflight[key] = future
                    self._stats.misses += 1
                else:
                    self._stats.shared += 1

        if hit:
            self._record(key, "hit")
            return entry.value

        if owner:
            self._record(key, "miss")
            logger.debug("Cache miss for %s; computing", key)
            if self._executor is not None:
                try:
                    self._executor.submit(self._run, key, ttl_seconds, compute_fn, future)
                except Exception as exc:
                    with self._lock:
                        self._inflight.pop(key, None)
                        self._stale.discard(key)
                        self._stats.errors += 1
                    logger.warning("Could not schedule computation for %s: %s", key, exc)
                    future.set_exception(exc)
            else:
                self._run(key, ttl_seconds, compute_fn, future)
        else:
            self._record(key, "shared")
            logger.debug("Attached to in-flight computation for %s", key)

        return future.result(timeout=wait_timeout)

    def _run(self, key: str, ttl_seconds: TTL, compute_fn: Callable[[], Any], future: Future) -> None:
        try:
            value = compute_fn()
        except Exception as exc:
            with self._lock:
                self._inflight.pop(key, None)
                self._stale.discard(key)
                self._stats.errors += 1
            logger.debug("Computation for %s failed: %s", key, exc)
            future.set_exception(exc)
            return

        ttl = ttl_seconds(value) if callable(ttl_seconds) else ttl_seconds
        with self._lock:
            if key in self._stale:
                # invalidated while computing; waiters still get the value
                self._stale.discard(key)
            else:
                self._entries[key] = _Entry(value, self._clock() + float(ttl))
            self._inflight.pop(key, None)
        future.set_result(value)

    def peek(self, key: str) -> Optional[Any]:
        """Non-blocking lookup; ignores in-flight computations and does not touch stats."""
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry is not None else None

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, self._clock() + float(ttl_seconds))

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key in self._inflight:
                self._stale.add(key)
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            self._stale.update(k for k in self._inflight if k.startswith(prefix))
        if doomed:
            logger.info("Invalidated %d cache entries with prefix %s", len(doomed), prefix)
        return len(doomed)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            doomed = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def stats(self) -> CacheStats:
        with self._lock:
            return self._stats.model_copy(update={"size": len(self._entries), "inflight": len(self._inflight)})
