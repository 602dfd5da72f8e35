"""
ParseCache — bounded TTL cache of parse results keyed by content hash.

Entries expire after ``ttl_seconds`` and are dropped on read; at capacity the
oldest entry is evicted.  The clock is injectable so tests can move time.
"""
import hashlib
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from smartquote.config import PARSE_CACHE_MAX_ENTRIES, PARSE_CACHE_TTL_SECONDS
from smartquote.models.quote_schema import Attachment, ParseResult

logger = logging.getLogger("smartquote-api.parse_cache")

_WS_RE = re.compile(r"\s+")

ContentPart = Union[str, Attachment]


def content_hash(content: Sequence[ContentPart]) -> str:
    """
    Stable SHA-256 over normalized document content.

    Text parts are whitespace-collapsed so that reformatting alone does not
    miss the cache; attachments contribute their MIME type and a digest of
    the payload.
    """
    digest = hashlib.sha256()
    for part in content:
        if isinstance(part, Attachment):
            digest.update(b"A:")
            digest.update(part.mime_type.encode("utf-8"))
            digest.update(b":")
            digest.update(hashlib.sha256(part.data.encode("utf-8")).digest())
        else:
            digest.update(b"T:")
            digest.update(_WS_RE.sub(" ", str(part)).strip().encode("utf-8"))
        digest.update(b"\x1e")
    return digest.hexdigest()


@dataclass
class _CacheEntry:
    result: ParseResult
    stored_at: float


class ParseCache:

    def __init__(
        self,
        ttl_seconds: float = PARSE_CACHE_TTL_SECONDS,
        max_entries: int = PARSE_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if now - e.stored_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def get(self, key: str) -> Optional[Tuple[ParseResult, float]]:
        """Return ``(result, age_ms)`` for a live entry, else None."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            entry = self._entries.get(key)
            if entry is None:
                return None
            return entry.result, (now - entry.stored_at) * 1000

    def put(self, key: str, result: ParseResult) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("parse cache eviction", extra={"cache_key": evicted[:12]})
            self._entries[key] = _CacheEntry(result=result, stored_at=now)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def stats(self) -> Dict[str, float]:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            oldest = next(iter(self._entries.values()), None)
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "oldest_age_ms": (now - oldest.stored_at) * 1000 if oldest else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
