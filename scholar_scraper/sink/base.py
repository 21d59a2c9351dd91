# scholar_scraper/sink/base.py
from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from scholar_scraper.models import ContactRecord


@runtime_checkable
class ResultSink(Protocol):
    """
    Where emitted contacts go.

    The orchestrator calls persist() at most once per (email, source_url)
    and mark_verified() later, from a validation worker thread, so
    implementations must tolerate calls from more than one thread.
    """

    def persist(self, record: ContactRecord) -> None: ...

    def mark_verified(self, email: str, source_url: str, verified: bool) -> bool: ...

    def export_all(self, fmt: str, *, with_stats: bool = False) -> bytes: ...

    def records(self) -> list[ContactRecord]: ...

    def clear(self) -> None: ...


def search_records(records: Iterable[ContactRecord], query: str) -> list[ContactRecord]:
    """Case-insensitive substring match over email, name, journal and topic."""
    q = (query or "").strip().lower()
    if not q:
        return list(records)
    out = []
    for r in records:
        hay = " ".join(v for v in (r.email, r.name, r.journal, r.topic) if v).lower()
        if q in hay:
            out.append(r)
    return out


def filter_records(
    records: Iterable[ContactRecord],
    *,
    verified: bool | None = None,
    journal: str | None = None,
    exclude_duplicates: bool = False,
) -> list[ContactRecord]:
    out = []
    for r in records:
        if verified is not None and r.verified is not verified:
            continue
        if journal and (r.journal or "").lower() != journal.lower():
            continue
        if exclude_duplicates and r.duplicate:
            continue
        out.append(r)
    return out


__all__ = ["ResultSink", "filter_records", "search_records"]
