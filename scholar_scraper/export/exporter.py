# scholar_scraper/export/exporter.py
"""
Result export.

Renders ContactRecords as csv / json / txt:

  name, email, journal, topic, verified, duplicate, source_url, timestamp

Key decisions:

- CSV column order above is fixed; cells containing a comma, quote or newline
  are quoted with inner quotes doubled (csv.QUOTE_MINIMAL). Booleans are
  written as "true"/"false", missing fields as empty cells.
- JSON is a list of record dicts, or with with_stats=True an envelope
  {"metadata": {"export_date", "version", "statistics"}, "data": [...]}.
- TXT is one "Name:/Email:/.../---" block per record; missing fields are "N/A".
- Statistics (summarize) count on the records given, in the order given.
"""

from __future__ import annotations

import csv
import io
import json
from collections import Counter
from collections.abc import Iterable
from typing import Any

from scholar_scraper.models import ContactRecord
from scholar_scraper.utils import utc_now_iso_z

EXPORT_VERSION = "1.0.0"
EXPORT_FORMATS: tuple[str, ...] = ("csv", "json", "txt")
CSV_COLUMNS: tuple[str, ...] = (
    "name",
    "email",
    "journal",
    "topic",
    "verified",
    "duplicate",
    "source_url",
    "timestamp",
)


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_csv(records: Iterable[ContactRecord]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for rec in records:
        row = rec.to_dict()
        writer.writerow([_csv_cell(row[col]) for col in CSV_COLUMNS])
    return buf.getvalue()


def to_json(records: Iterable[ContactRecord], *, with_stats: bool = False) -> str:
    rows = list(records)
    data = [r.to_dict() for r in rows]
    if not with_stats:
        return json.dumps(data, indent=2, ensure_ascii=False)
    envelope = {
        "metadata": {
            "export_date": utc_now_iso_z(),
            "version": EXPORT_VERSION,
            "statistics": summarize(rows),
        },
        "data": data,
    }
    return json.dumps(envelope, indent=2, ensure_ascii=False)


def to_txt(records: Iterable[ContactRecord]) -> str:
    blocks = []
    for r in records:
        blocks.append(
            "\n".join(
                [
                    f"Name: {r.name or 'N/A'}",
                    f"Email: {r.email}",
                    f"Journal: {r.journal or 'N/A'}",
                    f"Topic: {r.topic or 'N/A'}",
                    f"Verified: {'Yes' if r.verified else 'No'}",
                    f"Source: {r.source_url}",
                    f"Date: {r.timestamp}",
                    "---",
                ]
            )
        )
    return "\n\n".join(blocks)


def summarize(records: Iterable[ContactRecord]) -> dict[str, Any]:
    """
    Export statistics for a set of records.

    Journals are counted under "Unknown" when missing and listed most
    frequent first; date_range is None/None for an empty set.
    """
    rows = list(records)
    journals = Counter(r.journal or "Unknown" for r in rows)
    stamps = sorted(r.captured_at for r in rows)
    return {
        "total_records": len(rows),
        "verified_emails": sum(1 for r in rows if r.verified),
        "unverified_emails": sum(1 for r in rows if not r.verified),
        "duplicates": sum(1 for r in rows if r.duplicate),
        "unique_emails": len({r.email.lower() for r in rows}),
        "journals": dict(sorted(journals.items(), key=lambda kv: (-kv[1], kv[0]))),
        "date_range": {
            "earliest": utc_now_iso_z(stamps[0]) if stamps else None,
            "latest": utc_now_iso_z(stamps[-1]) if stamps else None,
        },
    }


def render_stats_text(stats: dict[str, Any]) -> str:
    lines = [
        "Scholar Scraper - Export Statistics",
        "=" * 50,
        "",
        f"Export Date: {utc_now_iso_z()}",
        f"Total Records: {stats['total_records']}",
        f"Verified Emails: {stats['verified_emails']}",
        f"Unverified Emails: {stats['unverified_emails']}",
        f"Unique Emails: {stats['unique_emails']}",
        f"Duplicates: {stats['duplicates']}",
        "",
    ]
    dr = stats.get("date_range") or {}
    if dr.get("earliest") and dr.get("latest"):
        lines.append(f"Date Range: {dr['earliest'][:10]} - {dr['latest'][:10]}")
        lines.append("")
    lines.append("Journals:")
    lines.append("-" * 20)
    for journal, count in (stats.get("journals") or {}).items():
        lines.append(f"{journal}: {count}")
    return "\n".join(lines)


def render(records: Iterable[ContactRecord], fmt: str, *, with_stats: bool = False) -> bytes:
    """
    Render records in one of EXPORT_FORMATS as UTF-8 bytes.

    with_stats only changes JSON output (the metadata envelope); for csv/txt
    callers fetch render_stats_text(summarize(...)) separately.
    """
    fmt = (fmt or "").strip().lower()
    if fmt == "csv":
        text = to_csv(records)
    elif fmt == "json":
        text = to_json(records, with_stats=with_stats)
    elif fmt == "txt":
        text = to_txt(records)
    else:
        raise ValueError(f"Unsupported export format: {fmt!r} (expected one of {EXPORT_FORMATS})")
    return text.encode("utf-8")


__all__ = [
    "CSV_COLUMNS",
    "EXPORT_FORMATS",
    "render",
    "render_stats_text",
    "summarize",
    "to_csv",
    "to_json",
    "to_txt",
]
