from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from scholar_scraper import config
from scholar_scraper.resolve.mx import domain_of, resolve_mx

"""
Email validation helpers.

Three checks, in pipeline order:

  1. validate_format(): the one authoritative syntax regex.
  2. is_excluded(): role / system inboxes we never emit (noreply@, info@ ...).
  3. validate_domain(): MX lookup for the email's domain. Advisory only: it
     sets ContactRecord.verified and never blocks or suppresses emission.

DomainValidator runs (3) on a small thread pool so the crawl loop can hand
off lookups and move on to the next URL.
"""

log = logging.getLogger(__name__)

# local@domain.tld, dot-atom local part, hostname labels, alpha TLD
EMAIL_FORMAT_RE = re.compile(
    r"[A-Za-z0-9%+_-]+(?:\.[A-Za-z0-9%+_-]+)*"
    r"@"
    r"(?:[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?\.)+[A-Za-z]{2,}"
)

# Substring patterns matched case-insensitively against the raw address.
EXCLUDE_PATTERNS: tuple[str, ...] = (
    "noreply",
    "no-reply",
    "donotreply",
    "support@",
    "admin@",
    "info@",
    "webmaster@",
)


def validate_format(email: str) -> bool:
    if not email or not isinstance(email, str):
        return False
    return EMAIL_FORMAT_RE.fullmatch(email.strip()) is not None


def is_excluded(email: str) -> bool:
    """
    Return True for role / system addresses.

    Examples that return True:
      - noreply@journal.org, no-reply.alerts@x.com, donotreply@x.com
      - support@uni.edu, Admin@uni.edu, info@lab.org, webmaster@site.com
    """
    low = (email or "").lower()
    return any(pat in low for pat in EXCLUDE_PATTERNS)


def is_acceptable(email: str) -> bool:
    """Format-valid and not a role/system address."""
    return validate_format(email) and not is_excluded(email)


def validate_domain(email: str, *, timeout_s: float | None = None) -> bool:
    """
    True if the email's domain has at least one MX record.

    Any failure (bad address, NXDOMAIN, null MX, resolver timeout) is False.
    """
    domain = domain_of(email)
    if not domain:
        return False
    try:
        return resolve_mx(domain, timeout_s=timeout_s).ok
    except Exception:
        log.debug("mx check failed for %s", domain, exc_info=True)
        return False


class DomainValidator:
    """
    Background MX checker.

    submit() returns a Future[bool] that never raises; the optional callback
    runs on the worker thread once the result is known.
    """

    def __init__(
        self,
        *,
        max_workers: int | None = None,
        timeout_s: float | None = None,
        check: Callable[..., bool] | None = None,
    ) -> None:
        self.timeout_s = config.MX_TIMEOUT_S if timeout_s is None else float(timeout_s)
        self._check = check or validate_domain
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers or config.MX_WORKERS)),
            thread_name_prefix="mx-check",
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def _run(self, email: str, on_done: Callable[[bool], None] | None) -> bool:
        try:
            ok = bool(self._check(email, timeout_s=self.timeout_s))
        except Exception:
            log.debug("domain check raised for %s", email, exc_info=True)
            ok = False
        if on_done is not None:
            try:
                on_done(ok)
            except Exception:
                log.exception("domain check callback failed for %s", email)
        return ok

    def submit(self, email: str, on_done: Callable[[bool], None] | None = None) -> Future:
        fut = self._pool.submit(self._run, email, on_done)
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(self._forget)
        return fut

    def _forget(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)

    def _snapshot(self) -> list[Future]:
        with self._lock:
            return list(self._pending)

    def pending(self) -> list[Future]:
        return [f for f in self._snapshot() if not f.done()]

    def cancel_pending(self) -> int:
        """Cancel lookups that have not started yet; returns how many were cancelled."""
        return sum(1 for f in self._snapshot() if f.cancel())

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=not wait)


__all__ = [
    "EMAIL_FORMAT_RE",
    "EXCLUDE_PATTERNS",
    "validate_format",
    "is_excluded",
    "is_acceptable",
    "validate_domain",
    "DomainValidator",
]
