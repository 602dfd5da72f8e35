"""
Catalogue Index — normalized lookup over canonical product keys.

The index is rebuilt only when the key set actually changes (SHA-1 of the
joined keys).  A rebuild produces a brand-new immutable snapshot which is
swapped in under a lock, so readers holding a snapshot never observe a
half-built map and never block on a rebuild they don't need.
"""
import hashlib
import logging
import re
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger("smartquote-api.catalogue")

_STRIP_RE = re.compile(r"[\W_]+")
_TOKEN_SPLIT_RE = re.compile(r"[\s()\-_/.,:;]+")


def normalize_code(code: str) -> str:
    """Uppercase and strip whitespace/punctuation: ``'flx-4p (a)'`` → ``'FLX4PA'``."""
    return _STRIP_RE.sub("", (code or "").upper())


def tokenize_code(code: str) -> List[str]:
    """Split an uppercased code on separator characters, dropping empty tokens."""
    return [t for t in _TOKEN_SPLIT_RE.split((code or "").upper()) if t]


def _hash_keys(keys: List[str]) -> str:
    digest = hashlib.sha1()
    for key in keys:
        digest.update(key.encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()


@dataclass(frozen=True)
class IndexSnapshot:
    """One immutable build of the index for a specific key set."""
    keys_hash: str
    keys: Tuple[str, ...]                 # canonical keys, original order
    normalized: Dict[str, str]            # normalized → canonical (first key wins)
    key_tokens: Tuple[FrozenSet[str], ...]  # aligned with ``keys``

    @classmethod
    def build(cls, keys: List[str], keys_hash: str) -> "IndexSnapshot":
        normalized: Dict[str, str] = {}
        for key in keys:
            norm = normalize_code(key)
            if norm:
                normalized.setdefault(norm, key)
        return cls(
            keys_hash=keys_hash,
            keys=tuple(keys),
            normalized=normalized,
            key_tokens=tuple(frozenset(tokenize_code(k)) for k in keys),
        )

    @classmethod
    def empty(cls) -> "IndexSnapshot":
        return cls.build([], _hash_keys([]))

    def lookup(self, code: str) -> Optional[str]:
        """Exact normalized lookup; returns the canonical key or None."""
        return self.normalized.get(normalize_code(code))

    def __len__(self) -> int:
        return len(self.keys)


class CatalogueIndex:
    """
    Read-mostly cache of an IndexSnapshot.

    ``snapshot_for(keys)`` returns the current snapshot when the key set is
    unchanged and rebuilds (copy-on-rebuild, atomic swap) otherwise.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None) -> None:
        self._lock = threading.Lock()
        self._snapshot: IndexSnapshot = IndexSnapshot.empty()
        self.rebuild_count: int = 0
        if keys is not None:
            self.snapshot_for(keys)

    @property
    def current(self) -> IndexSnapshot:
        return self._snapshot

    def snapshot_for(self, keys: Iterable[str]) -> IndexSnapshot:
        key_list = list(keys)
        keys_hash = _hash_keys(key_list)

        snapshot = self._snapshot
        if snapshot.keys_hash == keys_hash:
            return snapshot

        with self._lock:
            # Another caller may have rebuilt while we waited
            snapshot = self._snapshot
            if snapshot.keys_hash != keys_hash:
                snapshot = IndexSnapshot.build(key_list, keys_hash)
                self._snapshot = snapshot
                self.rebuild_count += 1
                logger.debug(
                    "catalogue index rebuilt",
                    extra={"key_count": len(key_list), "rebuild_count": self.rebuild_count},
                )
        return snapshot

    def clear(self) -> None:
        """Drop the cached snapshot (e.g. after a config reload)."""
        with self._lock:
            self._snapshot = IndexSnapshot.empty()
