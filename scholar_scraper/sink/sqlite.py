# scholar_scraper/sink/sqlite.py
"""
SQLite-backed ResultSink.

One `results` table, unique on (email, source_url), so a re-run over the same
pages cannot create a second row for a contact; seed the next job's
DedupStore from keys() to keep suppressing them in callbacks as well.

The connection is shared across threads (MX completions call mark_verified
from worker threads) and every statement runs under one lock.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

from scholar_scraper import config
from scholar_scraper.dedup import DedupKey
from scholar_scraper.export.exporter import render
from scholar_scraper.models import ContactRecord
from scholar_scraper.utils import parse_iso_z, utc_now, utc_now_iso_z

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS results (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT,
    email       TEXT NOT NULL,
    journal     TEXT,
    topic       TEXT,
    verified    INTEGER NOT NULL DEFAULT 0,
    duplicate   INTEGER NOT NULL DEFAULT 0,
    source_url  TEXT NOT NULL,
    timestamp   TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_results_email_source ON results(email, source_url);
CREATE INDEX IF NOT EXISTS ix_results_journal ON results(journal);
"""

_COLUMNS = "name, email, journal, topic, verified, duplicate, source_url, timestamp"


def _row_to_record(row: sqlite3.Row) -> ContactRecord:
    return ContactRecord(
        email=row["email"],
        source_url=row["source_url"],
        name=row["name"],
        journal=row["journal"],
        topic=row["topic"],
        verified=bool(row["verified"]),
        duplicate=bool(row["duplicate"]),
        captured_at=parse_iso_z(row["timestamp"]) or utc_now(),
    )


def _like_escape(q: str) -> str:
    return q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteSink:
    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path or config.DB_PATH
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._con = sqlite3.connect(self.db_path, check_same_thread=False)
        self._con.row_factory = sqlite3.Row
        with self._lock:
            self._con.executescript(SCHEMA)
            self._con.commit()

    # ---- ResultSink ----------------------------------------------------------

    def persist(self, record: ContactRecord) -> None:
        with self._lock:
            cur = self._con.execute(
                f"INSERT OR IGNORE INTO results ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.name,
                    record.email,
                    record.journal,
                    record.topic,
                    int(record.verified),
                    int(record.duplicate),
                    record.source_url,
                    utc_now_iso_z(record.captured_at),
                ),
            )
            self._con.commit()
        if cur.rowcount == 0:
            log.debug("row already present for %s @ %s", record.email, record.source_url)

    def mark_verified(self, email: str, source_url: str, verified: bool) -> bool:
        with self._lock:
            cur = self._con.execute(
                "UPDATE results SET verified = ? WHERE lower(email) = lower(?) AND source_url = ?",
                (int(bool(verified)), email, source_url),
            )
            self._con.commit()
        return cur.rowcount > 0

    def records(self) -> list[ContactRecord]:
        return self._select("", ())

    def export_all(self, fmt: str, *, with_stats: bool = False) -> bytes:
        return render(self.records(), fmt, with_stats=with_stats)

    def clear(self) -> None:
        with self._lock:
            self._con.execute("DELETE FROM results")
            self._con.commit()

    # ---- Queries -------------------------------------------------------------

    def keys(self) -> list[DedupKey]:
        with self._lock:
            rows = self._con.execute("SELECT email, source_url FROM results ORDER BY id").fetchall()
        return [(r["email"], r["source_url"]) for r in rows]

    def search(self, query: str) -> list[ContactRecord]:
        q = (query or "").strip().lower()
        if not q:
            return self.records()
        pat = f"%{_like_escape(q)}%"
        where = " OR ".join(
            f"lower(coalesce({col}, '')) LIKE ? ESCAPE '\\'"
            for col in ("email", "name", "journal", "topic")
        )
        return self._select(f"WHERE {where}", (pat, pat, pat, pat))

    def filter(
        self,
        *,
        verified: bool | None = None,
        journal: str | None = None,
        exclude_duplicates: bool = False,
    ) -> list[ContactRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if verified is not None:
            clauses.append("verified = ?")
            params.append(int(verified))
        if journal:
            clauses.append("lower(journal) = lower(?)")
            params.append(journal)
        if exclude_duplicates:
            clauses.append("duplicate = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._select(where, tuple(params))

    def count(self) -> int:
        with self._lock:
            return int(self._con.execute("SELECT COUNT(*) FROM results").fetchone()[0])

    def close(self) -> None:
        with self._lock:
            self._con.close()

    # ---- internals -----------------------------------------------------------

    def _select(self, where: str, params: tuple) -> list[ContactRecord]:
        sql = f"SELECT {_COLUMNS} FROM results {where} ORDER BY id"
        with self._lock:
            rows = self._con.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]


__all__ = ["SCHEMA", "SqliteSink"]
