# scholar_scraper/dedup.py
"""
DedupStore: the set of (email, source_url) keys already emitted.

try_insert() is a single check-and-set under a lock, so the crawl loop and
background validation completions can call it concurrently and still get
exactly one winner per key. discard() gives a key back when the record it
guarded never made it into the sink.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

DedupKey = tuple[str, str]


def make_key(email: str, source_url: str) -> DedupKey:
    return ((email or "").strip().lower(), (source_url or "").strip())


class DedupStore:
    def __init__(self, keys: Iterable[DedupKey] | None = None) -> None:
        self._lock = threading.Lock()
        self._keys: set[DedupKey] = set()
        if keys is not None:
            for email, url in keys:
                self._keys.add(make_key(email, url))

    def try_insert(self, email: str, source_url: str) -> bool:
        """True if the key was new (and is now recorded); False for a duplicate."""
        key = make_key(email, source_url)
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def discard(self, email: str, source_url: str) -> bool:
        """Forget a key; True if it was present."""
        key = make_key(email, source_url)
        with self._lock:
            if key not in self._keys:
                return False
            self._keys.remove(key)
            return True

    def contains(self, email: str, source_url: str) -> bool:
        key = make_key(email, source_url)
        with self._lock:
            return key in self._keys

    def count_unique(self, emails: Iterable[str] | None = None) -> int:
        """
        Count distinct emails (global identity, source ignored).

        With no argument, counts the emails recorded in the store; otherwise
        counts the distinct, case-folded entries of `emails`.
        """
        if emails is None:
            with self._lock:
                return len({email for email, _ in self._keys})
        return len({(e or "").strip().lower() for e in emails if e and e.strip()})

    def keys(self) -> list[DedupKey]:
        with self._lock:
            return sorted(self._keys)

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return self.contains(str(key[0]), str(key[1]))


__all__ = ["DedupKey", "DedupStore", "make_key"]
