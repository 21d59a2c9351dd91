# scholar_scraper/models.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from scholar_scraper import config
from scholar_scraper.exceptions import ErrorKind
from scholar_scraper.utils import utc_now, utc_now_iso_z

# --- Contacts ----------------------------------------------------------------


@dataclass
class RawContact:
    """
    One candidate pulled out of a page before validation.

    Fields:
      - email: lowercased address as matched on the page
      - name: best-effort author name (first author-ish element), else None
      - journal: best-effort journal/publication name, else None
      - topic: page title, else None
    """

    email: str
    name: str | None = None
    journal: str | None = None
    topic: str | None = None


@dataclass
class ContactRecord:
    """
    A validated contact as handed to callbacks and the result sink.

    Only `verified` and `duplicate` change after emission: `verified` is set
    by the background MX check, `duplicate` by the dedup store.
    """

    email: str
    source_url: str
    name: str | None = None
    journal: str | None = None
    topic: str | None = None
    verified: bool = False
    duplicate: bool = False
    captured_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str]:
        """Dedup identity: (email, source_url)."""
        return (self.email, self.source_url)

    @property
    def timestamp(self) -> str:
        return utc_now_iso_z(self.captured_at)

    @classmethod
    def from_raw(cls, raw: RawContact, source_url: str) -> ContactRecord:
        return cls(
            email=raw.email,
            source_url=source_url,
            name=raw.name or None,
            journal=raw.journal or None,
            topic=raw.topic or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Export shape; keys follow the CSV column names."""
        return {
            "name": self.name,
            "email": self.email,
            "journal": self.journal,
            "topic": self.topic,
            "verified": self.verified,
            "duplicate": self.duplicate,
            "source_url": self.source_url,
            "timestamp": self.timestamp,
        }


# --- Jobs --------------------------------------------------------------------


class JobStatus(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    PAUSED = "Paused"
    STOPPED = "Stopped"
    COMPLETED = "Completed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.RUNNING, JobStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.STOPPED, JobStatus.COMPLETED)


class EntryState(str, Enum):
    PENDING = "Pending"
    IN_FLIGHT = "InFlight"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class ScrapeOptions:
    """
    Options accepted by start_scraping().

    rate_limit_ms must be >= 0 and max_retries >= 1; the backoff knobs exist so
    tests and impatient operators can shrink the 1s/2s/4s... schedule.
    """

    rate_limit_ms: int = 3000
    max_retries: int = 3
    fetch_timeout_ms: int = 30000
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 10000

    def __post_init__(self) -> None:
        if int(self.rate_limit_ms) < 0:
            raise ValueError(f"rate_limit_ms must be >= 0; got {self.rate_limit_ms!r}")
        if int(self.max_retries) < 1:
            raise ValueError(f"max_retries must be >= 1; got {self.max_retries!r}")
        if int(self.fetch_timeout_ms) <= 0:
            raise ValueError(f"fetch_timeout_ms must be > 0; got {self.fetch_timeout_ms!r}")
        if int(self.backoff_base_ms) < 0 or int(self.backoff_max_ms) < 0:
            raise ValueError("backoff delays must be >= 0")

    @classmethod
    def from_config(cls, **overrides: Any) -> ScrapeOptions:
        """Defaults from the environment; explicit (non-None) overrides win."""
        cfg = config.load_settings()
        values: dict[str, Any] = {
            "rate_limit_ms": cfg.rate_limit_ms,
            "max_retries": cfg.max_retries,
            "fetch_timeout_ms": cfg.fetch_timeout_ms,
            "backoff_base_ms": cfg.backoff_base_ms,
            "backoff_max_ms": cfg.backoff_max_ms,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class QueueEntry:
    url: str
    attempt: int = 0
    state: EntryState = EntryState.PENDING
    last_error: ErrorKind | None = None


@dataclass
class JobStats:
    processed: int = 0
    errors: int = 0
    emails_found: int = 0
    duplicates: int = 0
    rejected: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class CrawlJob:
    """
    One run of the URL queue.

    `cursor` is the index of the next URL to dispatch and is the only
    resumption point; `entries` mirrors `urls` one-to-one.
    """

    urls: tuple[str, ...]
    rate_limit_ms: int
    max_retries: int
    status: JobStatus = JobStatus.IDLE
    cursor: int = 0
    entries: list[QueueEntry] = field(default_factory=list)
    stats: JobStats = field(default_factory=JobStats)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.entries:
            self.entries = [QueueEntry(url=u) for u in self.urls]

    @property
    def total(self) -> int:
        return len(self.urls)

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "cursor": self.cursor,
            "total": self.total,
            "rate_limit_ms": self.rate_limit_ms,
            "max_retries": self.max_retries,
            "stats": self.stats.to_dict(),
            "started_at": utc_now_iso_z(self.started_at) if self.started_at else None,
            "finished_at": utc_now_iso_z(self.finished_at) if self.finished_at else None,
            "failed": [
                {"url": e.url, "kind": e.last_error.value if e.last_error else None}
                for e in self.entries
                if e.state is EntryState.FAILED
            ],
        }


__all__ = [
    "RawContact",
    "ContactRecord",
    "JobStatus",
    "EntryState",
    "ScrapeOptions",
    "QueueEntry",
    "JobStats",
    "CrawlJob",
]
