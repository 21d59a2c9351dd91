# scholar_scraper/crawl/orchestrator.py
"""
Crawl-job orchestration.

One job at a time walks its URL list strictly in order:

  wait while Paused -> check stop -> on_progress -> fetch+extract (with
  retries) -> validate/dedup/persist -> on_result | on_error -> rate-limit
  wait -> next URL

Flow control lives on a single background thread per job. pause(), resume()
and stop() only flip state under the condition variable; the job thread
notices at its next checkpoint (before dispatch, during any wait). A fetch
already in flight is never interrupted.

Retries use tenacity with an exponential wait of base * 2^(attempt-1) capped
at backoff_max. The backoff sleep is routed through _sleep() so stop() cuts
it short and abandons the remaining attempts.

MX checks are fire-and-forget on the DomainValidator pool; completions
update the already-persisted row via sink.mark_verified().
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import wait as wait_futures
from typing import Any

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from scholar_scraper import config
from scholar_scraper.access import AccessGate, AllowAllGate
from scholar_scraper.dedup import DedupStore
from scholar_scraper.emails.validate import DomainValidator, is_excluded, validate_format
from scholar_scraper.exceptions import (
    ErrorKind,
    ExtractionFailure,
    FetchError,
    JobAlreadyActive,
    RetryableError,
    Unauthorized,
)
from scholar_scraper.extract.contacts import extract as extract_contacts
from scholar_scraper.fetch.client import PageFetcher, RenderedContent
from scholar_scraper.models import (
    ContactRecord,
    CrawlJob,
    EntryState,
    JobStats,
    JobStatus,
    QueueEntry,
    RawContact,
    ScrapeOptions,
)
from scholar_scraper.sink.base import ResultSink
from scholar_scraper.sink.memory import MemorySink
from scholar_scraper.utils import utc_now

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]
ResultCallback = Callable[[list[ContactRecord]], None]
ErrorCallback = Callable[[str, ErrorKind], None]
VerifiedCallback = Callable[[ContactRecord], None]
Extractor = Callable[[Any, str], list[RawContact]]


class _BackoffInterrupted(Exception):
    """stop() arrived while waiting between attempts."""


# --------------------------------------------------------------------------------------------------
# Handle
# --------------------------------------------------------------------------------------------------


class JobHandle:
    """What start() returns: a view on one job plus its control methods."""

    def __init__(self, orchestrator: JobOrchestrator, job: CrawlJob, thread: threading.Thread) -> None:
        self._orch = orchestrator
        self.job = job
        self._thread = thread

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def stats(self) -> JobStats:
        return self.job.stats

    @property
    def cursor(self) -> int:
        return self.job.cursor

    def is_done(self) -> bool:
        return self.job.status.is_terminal

    def wait(self, timeout: float | None = None) -> JobStatus:
        """Block until the job thread exits (or timeout); returns the status."""
        self._thread.join(timeout)
        return self.job.status

    def wait_for_validations(self, timeout: float | None = None) -> bool:
        """Block until queued MX checks settle; True if none are left running."""
        _, not_done = wait_futures(self._orch.validator.pending(), timeout=timeout)
        return not not_done

    def pause(self) -> bool:
        return self._orch.pause()

    def resume(self) -> bool:
        return self._orch.resume()

    def stop(self) -> None:
        self._orch.stop()

    def snapshot(self) -> dict[str, Any]:
        return self.job.snapshot()


# --------------------------------------------------------------------------------------------------
# Orchestrator
# --------------------------------------------------------------------------------------------------


class JobOrchestrator:
    def __init__(
        self,
        fetcher: PageFetcher,
        sink: ResultSink | None = None,
        *,
        gate: AccessGate | None = None,
        dedup: DedupStore | None = None,
        validator: DomainValidator | None = None,
        extractor: Extractor | None = None,
        pause_poll_ms: int | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.sink = sink if sink is not None else MemorySink()
        self.gate = gate or AllowAllGate()
        self.dedup = dedup if dedup is not None else DedupStore()
        self._owns_validator = validator is None
        self.validator = validator or DomainValidator()
        self.extractor = extractor or extract_contacts
        poll_ms = config.SCRAPE_PAUSE_POLL_MS if pause_poll_ms is None else pause_poll_ms
        self._poll_s = max(0.001, poll_ms / 1000.0)

        self._cond = threading.Condition()
        self._job: CrawlJob | None = None
        self._handle: JobHandle | None = None
        self._stop_requested = False

        self._on_progress: ProgressCallback | None = None
        self._on_result: ResultCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._on_verified: VerifiedCallback | None = None

    # ---- state ---------------------------------------------------------------

    @property
    def job(self) -> CrawlJob | None:
        return self._job

    @property
    def handle(self) -> JobHandle | None:
        return self._handle

    @property
    def status(self) -> JobStatus:
        with self._cond:
            return self._job.status if self._job is not None else JobStatus.IDLE

    def is_active(self) -> bool:
        return self.status.is_active

    # ---- control surface -----------------------------------------------------

    def start(
        self,
        urls: Iterable[str],
        options: ScrapeOptions | Mapping[str, Any] | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_verified: VerifiedCallback | None = None,
    ) -> JobHandle:
        """
        Start a job on a background thread and return its handle.

        Raises:
          - JobAlreadyActive if a job is Running or Paused
          - Unauthorized if the access gate says no
          - ValueError for invalid options or URLs
        A previous Completed/Stopped job is discarded implicitly.
        """
        opts = _coerce_options(options)
        url_list = _clean_urls(urls)

        with self._cond:
            if self._job is not None and self._job.status.is_active:
                raise JobAlreadyActive(f"a job is already {self._job.status.value}")
            if not self.gate.authorize():
                raise Unauthorized("operator is not allowed to start scraping jobs")

            job = CrawlJob(
                urls=tuple(url_list),
                rate_limit_ms=opts.rate_limit_ms,
                max_retries=opts.max_retries,
                status=JobStatus.RUNNING,
                started_at=utc_now(),
            )
            self._job = job
            self._stop_requested = False
            self._on_progress = on_progress
            self._on_result = on_result
            self._on_error = on_error
            self._on_verified = on_verified

            thread = threading.Thread(target=self._run, args=(job, opts), name="crawl-job", daemon=True)
            self._handle = JobHandle(self, job, thread)

        log.info(
            "job started: %d url(s), rate_limit_ms=%d max_retries=%d",
            job.total,
            opts.rate_limit_ms,
            opts.max_retries,
        )
        thread.start()
        return self._handle

    def run(
        self,
        urls: Iterable[str],
        options: ScrapeOptions | Mapping[str, Any] | None = None,
        **callbacks: Any,
    ) -> JobHandle:
        """start() and wait for the job to end."""
        handle = self.start(urls, options, **callbacks)
        handle.wait()
        return handle

    def pause(self) -> bool:
        with self._cond:
            if self._job is None or self._job.status is not JobStatus.RUNNING:
                return False
            self._job.status = JobStatus.PAUSED
            self._cond.notify_all()
        log.info("pause requested at cursor=%d", self._job.cursor)
        return True

    def resume(self) -> bool:
        with self._cond:
            if self._job is None or self._job.status is not JobStatus.PAUSED:
                return False
            self._job.status = JobStatus.RUNNING
            self._cond.notify_all()
        log.info("resume requested at cursor=%d", self._job.cursor)
        return True

    def stop(self) -> None:
        """Idempotent; the job becomes Stopped at its next checkpoint."""
        with self._cond:
            if self._job is None or not self._job.status.is_active or self._stop_requested:
                return
            self._stop_requested = True
            self._cond.notify_all()
        log.info("stop requested")

    def reset(self) -> None:
        """Forget the finished job and return to Idle; results and dedup state are kept."""
        with self._cond:
            if self._job is not None and self._job.status.is_active:
                raise JobAlreadyActive("cannot reset while a job is active")
            self._job = None
            self._handle = None
            self._stop_requested = False

    def clear_results(self) -> None:
        """Empty the sink and the dedup index together."""
        with self._cond:
            if self._job is not None and self._job.status.is_active:
                raise JobAlreadyActive("cannot clear results while a job is active")
            self.sink.clear()
            self.dedup.clear()

    def close(self) -> None:
        self.stop()
        if self._handle is not None:
            self._handle.wait()
        if self._owns_validator:
            self.validator.shutdown(wait=False)

    # ---- waits ---------------------------------------------------------------

    def _stopping(self) -> bool:
        with self._cond:
            return self._stop_requested

    def _sleep(self, seconds: float) -> bool:
        """Interruptible sleep; False if stop() was requested before it ran out."""
        deadline = time.monotonic() + max(0.0, seconds)
        with self._cond:
            while not self._stop_requested:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return True
                self._cond.wait(timeout=min(remaining, self._poll_s))
            return False

    def _wait_while_paused(self, job: CrawlJob) -> bool:
        """Cooperative pause wait; False if stop() was requested."""
        with self._cond:
            while job.status is JobStatus.PAUSED and not self._stop_requested:
                self._cond.wait(timeout=self._poll_s)
            return not self._stop_requested

    def _backoff_sleep(self, seconds: float) -> None:
        if not self._sleep(seconds):
            raise _BackoffInterrupted()

    def _stop_if_requested(self, retry_state: Any) -> bool:
        return self._stopping()

    # ---- job thread ----------------------------------------------------------

    def _run(self, job: CrawlJob, opts: ScrapeOptions) -> None:
        try:
            while True:
                if job.cursor >= job.total:
                    break
                if not self._wait_while_paused(job):
                    break

                idx = job.cursor
                url = job.urls[idx]
                self._emit("on_progress", self._on_progress, idx + 1, job.total, url)
                self._process_url(job, job.entries[idx], opts)

                with self._cond:
                    job.cursor = idx + 1
                if job.cursor < job.total and job.rate_limit_ms > 0:
                    if not self._sleep(job.rate_limit_ms / 1000.0):
                        break
        except Exception:
            log.exception("crawl loop aborted at cursor=%d", job.cursor)
        finally:
            self._finish(job)

    def _finish(self, job: CrawlJob) -> None:
        with self._cond:
            job.status = JobStatus.COMPLETED if job.cursor >= job.total else JobStatus.STOPPED
            job.finished_at = utc_now()
            self._cond.notify_all()

        if job.status is JobStatus.STOPPED:
            cancelled = self.validator.cancel_pending()
            if cancelled:
                log.debug("cancelled %d queued MX check(s)", cancelled)

        s = job.stats
        log.info(
            "job %s: %d/%d url(s) processed, errors=%d emails=%d duplicates=%d rejected=%d",
            job.status.value,
            s.processed,
            job.total,
            s.errors,
            s.emails_found,
            s.duplicates,
            s.rejected,
        )

    def _process_url(self, job: CrawlJob, entry: QueueEntry, opts: ScrapeOptions) -> None:
        url = entry.url
        errors: list[RetryableError] = []

        def attempt() -> list[RawContact]:
            entry.attempt += 1
            entry.state = EntryState.IN_FLIGHT
            try:
                return self._fetch_and_extract(url, opts.fetch_timeout_ms)
            except RetryableError as exc:
                entry.state = EntryState.PENDING
                entry.last_error = exc.kind
                errors.append(exc)
                raise

        retrying = Retrying(
            stop=stop_any(stop_after_attempt(job.max_retries), self._stop_if_requested),
            wait=wait_exponential(
                multiplier=opts.backoff_base_ms / 1000.0,
                max=opts.backoff_max_ms / 1000.0,
            ),
            retry=retry_if_exception_type(RetryableError),
            sleep=self._backoff_sleep,
            before_sleep=before_sleep_log(log, logging.DEBUG),
            reraise=True,
        )

        try:
            raws = retrying(attempt)
        except (RetryableError, _BackoffInterrupted):
            last = errors[-1]
            entry.state = EntryState.FAILED
            job.stats.processed += 1
            job.stats.errors += 1
            log.warning("giving up on %s after %d attempt(s): %s", url, entry.attempt, last)
            self._emit("on_error", self._on_error, url, last.kind)
            return

        entry.state = EntryState.COMPLETED
        job.stats.processed += 1
        records = self._ingest(job, url, raws)
        self._emit("on_result", self._on_result, records)

    def _fetch_and_extract(self, url: str, timeout_ms: int) -> list[RawContact]:
        """One independent attempt: fetch, then extract from what came back."""
        try:
            content = self.fetcher.fetch(url, timeout_ms)
        except RetryableError:
            raise
        except TimeoutError as exc:
            raise FetchError(ErrorKind.TIMEOUT, url, str(exc) or "timed out") from exc
        except Exception as exc:
            raise FetchError(ErrorKind.NETWORK_ERROR, url, f"{type(exc).__name__}: {exc}") from exc

        page = content.html if isinstance(content, RenderedContent) else content
        try:
            return list(self.extractor(page, url))
        except RetryableError:
            raise
        except Exception as exc:
            raise ExtractionFailure(url, f"{type(exc).__name__}: {exc}") from exc

    def _ingest(self, job: CrawlJob, url: str, raws: list[RawContact]) -> list[ContactRecord]:
        """Validate, dedup and persist one page's candidates; returns what on_result sees."""
        out: list[ContactRecord] = []
        for raw in raws:
            email = (raw.email or "").strip().lower()
            if not validate_format(email) or is_excluded(email):
                job.stats.rejected += 1
                log.debug("rejected %r from %s", raw.email, url)
                continue

            rec = ContactRecord.from_raw(raw, url)
            rec.email = email
            job.stats.emails_found += 1

            if not self.dedup.try_insert(rec.email, rec.source_url):
                rec.duplicate = True
                job.stats.duplicates += 1
            else:
                try:
                    self.sink.persist(rec)
                except Exception:
                    # release the key so a later sighting can still be stored
                    self.dedup.discard(rec.email, rec.source_url)
                    job.stats.emails_found -= 1
                    log.exception("sink failed to persist %s from %s", rec.email, url)
                    continue
                self._dispatch_validation(rec)
            out.append(rec)
        return out

    def _dispatch_validation(self, rec: ContactRecord) -> None:
        on_verified = self._on_verified

        def done(ok: bool) -> None:
            rec.verified = ok
            self.sink.mark_verified(rec.email, rec.source_url, ok)
            log.debug("mx %s -> %s", rec.email, ok)
            if on_verified is not None:
                self._emit("on_verified", on_verified, rec)

        self.validator.submit(rec.email, done)

    @staticmethod
    def _emit(name: str, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            log.warning("%s callback raised", name, exc_info=True)


# --------------------------------------------------------------------------------------------------
# Helpers / submission surface
# --------------------------------------------------------------------------------------------------


def _coerce_options(options: ScrapeOptions | Mapping[str, Any] | None) -> ScrapeOptions:
    if options is None:
        return ScrapeOptions.from_config()
    if isinstance(options, ScrapeOptions):
        return options
    try:
        return ScrapeOptions.from_config(**dict(options))
    except TypeError as exc:
        raise ValueError(f"invalid scrape options: {exc}") from exc


def _clean_urls(urls: Iterable[str]) -> list[str]:
    if isinstance(urls, str):
        raise ValueError("urls must be a sequence of strings, not a single string")
    out: list[str] = []
    for u in urls:
        if not isinstance(u, str) or not u.strip():
            raise ValueError(f"invalid url: {u!r}")
        out.append(u.strip())
    return out


# Shared orchestrator behind start_scraping(); one per process so the
# one-active-job rule holds across calls.
_default_lock = threading.Lock()
_default: JobOrchestrator | None = None
_default_owned_fetcher: PageFetcher | None = None


def _close_default_locked() -> None:
    global _default, _default_owned_fetcher
    if _default is not None:
        _default.close()
    if _default_owned_fetcher is not None:
        close = getattr(_default_owned_fetcher, "close", None)
        if callable(close):
            close()
    _default = None
    _default_owned_fetcher = None


def _default_orchestrator_locked(
    fetcher: PageFetcher | None,
    sink: ResultSink | None,
    gate: AccessGate | None,
) -> JobOrchestrator:
    global _default, _default_owned_fetcher
    orch = _default
    if orch is not None:
        same = (
            (fetcher is None or fetcher is orch.fetcher)
            and (sink is None or sink is orch.sink)
            and (gate is None or gate is orch.gate)
        )
        # an active job keeps its orchestrator; start() then refuses the new one
        if same or orch.is_active():
            return orch
        _close_default_locked()

    owned: PageFetcher | None = None
    if fetcher is None:
        from scholar_scraper.fetch.client import HttpPageFetcher

        fetcher = owned = HttpPageFetcher()
    _default = JobOrchestrator(fetcher, sink, gate=gate)
    _default_owned_fetcher = owned
    return _default


def default_orchestrator() -> JobOrchestrator | None:
    with _default_lock:
        return _default


def shutdown_default_orchestrator() -> None:
    """Stop the shared orchestrator's job (if any) and release what it owns."""
    with _default_lock:
        _close_default_locked()


def start_scraping(
    urls: Iterable[str],
    options: ScrapeOptions | Mapping[str, Any] | None = None,
    *,
    fetcher: PageFetcher | None = None,
    sink: ResultSink | None = None,
    gate: AccessGate | None = None,
    orchestrator: JobOrchestrator | None = None,
    on_progress: ProgressCallback | None = None,
    on_result: ResultCallback | None = None,
    on_error: ErrorCallback | None = None,
    on_verified: VerifiedCallback | None = None,
) -> JobHandle:
    """
    Job submission entry point.

    Without an explicit orchestrator, every call goes through one shared,
    lazily built orchestrator, so a second submission while a job is Running
    or Paused raises JobAlreadyActive. Collaborators passed while that
    orchestrator is idle replace it (the old one is closed); an omitted
    fetcher means an HttpPageFetcher owned and closed by the shared instance.
    """
    callbacks = {
        "on_progress": on_progress,
        "on_result": on_result,
        "on_error": on_error,
        "on_verified": on_verified,
    }
    if orchestrator is not None:
        return orchestrator.start(urls, options, **callbacks)
    with _default_lock:
        orch = _default_orchestrator_locked(fetcher, sink, gate)
        return orch.start(urls, options, **callbacks)


__all__ = [
    "JobHandle",
    "JobOrchestrator",
    "default_orchestrator",
    "shutdown_default_orchestrator",
    "start_scraping",
]
