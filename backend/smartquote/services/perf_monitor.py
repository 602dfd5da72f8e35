"""Performance monitoring utilities for the SmartQuote quoting pipeline."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("smartquote-api.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def calculate_all(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "timed_function": func.__qualname__,
                    "timed_module": func.__module__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


def timed_async(func: Callable) -> Callable:
    """Async counterpart of :func:`timed`."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "async function timed",
                extra={
                    "timed_function": func.__qualname__,
                    "timed_module": func.__module__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class ParseMetricsTracker:
    """
    Thread-safe in-memory tracker for document parsing metrics.

    Tracks:
    - Total parses served and how many came from the cache
    - Parses that fell back to the fast strategy
    - Per-method durations (fast / accurate / accurate_fallback_fast)
    - Error count broken down by strategy
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._parses_processed: int = 0
        self._cache_hits: int = 0
        self._fallbacks: int = 0
        self._method_durations: Dict[str, list] = {}  # method -> [duration_ms, ...]
        self._error_counts: Dict[str, int] = {}       # strategy -> count
        self._slowest_parse_ms: float = 0.0
        self._slowest_method: Optional[str] = None

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_parse(self, method: str, duration_ms: float, fallback: bool = False) -> None:
        """Call once per parse that produced a result (cache hits excluded)."""
        with self._lock:
            self._parses_processed += 1
            self._method_durations.setdefault(method, []).append(duration_ms)
            if fallback:
                self._fallbacks += 1
            if duration_ms > self._slowest_parse_ms:
                self._slowest_parse_ms = duration_ms
                self._slowest_method = method

    def record_cache_hit(self) -> None:
        with self._lock:
            self._parses_processed += 1
            self._cache_hits += 1

    def record_error(self, strategy: str) -> None:
        """Increment the error counter for a parsing strategy."""
        with self._lock:
            self._error_counts[strategy] = self._error_counts.get(strategy, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Return a snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            parses_processed        : int
            cache_hits              : int
            cache_hit_rate          : float  (0 if none processed)
            fallbacks               : int
            slowest_method          : str | None
            slowest_parse_ms        : float
            error_count             : int   (total across strategies)
            error_count_by_strategy : dict  {strategy: count}
            method_avg_durations_ms : dict  {method: avg_ms}
        """
        with self._lock:
            hit_rate = (
                round(self._cache_hits / self._parses_processed, 4)
                if self._parses_processed > 0
                else 0.0
            )
            method_avgs: Dict[str, float] = {}
            for method, durations in self._method_durations.items():
                method_avgs[method] = round(sum(durations) / len(durations), 2) if durations else 0.0

            return {
                "parses_processed": self._parses_processed,
                "cache_hits": self._cache_hits,
                "cache_hit_rate": hit_rate,
                "fallbacks": self._fallbacks,
                "slowest_method": self._slowest_method,
                "slowest_parse_ms": round(self._slowest_parse_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_strategy": dict(self._error_counts),
                "method_avg_durations_ms": method_avgs,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._parses_processed = 0
            self._cache_hits = 0
            self._fallbacks = 0
            self._method_durations.clear()
            self._error_counts.clear()
            self._slowest_parse_ms = 0.0
            self._slowest_method = None


# Module-level singleton; the orchestrator records here unless given its own tracker.
tracker = ParseMetricsTracker()
