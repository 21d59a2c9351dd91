# scholar_scraper/sink/memory.py
from __future__ import annotations

import logging
import threading

from scholar_scraper.dedup import DedupKey, make_key
from scholar_scraper.export.exporter import render
from scholar_scraper.models import ContactRecord

from .base import filter_records, search_records

log = logging.getLogger(__name__)


class MemorySink:
    """In-process ResultSink; records are kept in persist() order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[DedupKey, ContactRecord] = {}

    def persist(self, record: ContactRecord) -> None:
        key = make_key(record.email, record.source_url)
        with self._lock:
            if key in self._rows:
                log.debug("ignoring repeat persist for %s @ %s", record.email, record.source_url)
                return
            self._rows[key] = record

    def mark_verified(self, email: str, source_url: str, verified: bool) -> bool:
        with self._lock:
            rec = self._rows.get(make_key(email, source_url))
            if rec is None:
                return False
            rec.verified = bool(verified)
            return True

    def records(self) -> list[ContactRecord]:
        with self._lock:
            return list(self._rows.values())

    def keys(self) -> list[DedupKey]:
        with self._lock:
            return list(self._rows)

    def search(self, query: str) -> list[ContactRecord]:
        return search_records(self.records(), query)

    def filter(
        self,
        *,
        verified: bool | None = None,
        journal: str | None = None,
        exclude_duplicates: bool = False,
    ) -> list[ContactRecord]:
        return filter_records(
            self.records(),
            verified=verified,
            journal=journal,
            exclude_duplicates=exclude_duplicates,
        )

    def export_all(self, fmt: str, *, with_stats: bool = False) -> bytes:
        return render(self.records(), fmt, with_stats=with_stats)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


__all__ = ["MemorySink"]
