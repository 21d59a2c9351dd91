# tests/test_orchestrator.py
from __future__ import annotations

import threading

import pytest
from fakes import BlockingFetcher, FakeFetcher, page, timeout, wait_until

from scholar_scraper.access import DenyAllGate
from scholar_scraper.crawl.orchestrator import (
    JobOrchestrator,
    default_orchestrator,
    shutdown_default_orchestrator,
    start_scraping,
)
from scholar_scraper.dedup import DedupStore
from scholar_scraper.emails.validate import DomainValidator
from scholar_scraper.exceptions import ErrorKind, FetchError, JobAlreadyActive, Unauthorized
from scholar_scraper.models import EntryState, JobStatus, ScrapeOptions
from scholar_scraper.sink.memory import MemorySink

FAST = ScrapeOptions(rate_limit_ms=0, max_retries=1, backoff_base_ms=0)


class Recorder:
    def __init__(self) -> None:
        self.progress: list[tuple[int, int, str]] = []
        self.results: list[list] = []
        self.errors: list[tuple[str, ErrorKind]] = []
        self.verified: list = []
        self._lock = threading.Lock()

    def on_progress(self, current: int, total: int, url: str) -> None:
        self.progress.append((current, total, url))

    def on_result(self, records: list) -> None:
        self.results.append(list(records))

    def on_error(self, url: str, kind: ErrorKind) -> None:
        self.errors.append((url, kind))

    def on_verified(self, record) -> None:
        with self._lock:
            self.verified.append(record)

    def callbacks(self) -> dict:
        return {
            "on_progress": self.on_progress,
            "on_result": self.on_result,
            "on_error": self.on_error,
            "on_verified": self.on_verified,
        }


def _orch(fetcher, **kw) -> JobOrchestrator:
    kw.setdefault("validator", DomainValidator(max_workers=2, timeout_s=0.5))
    kw.setdefault("pause_poll_ms", 5)
    return JobOrchestrator(fetcher, kw.pop("sink", MemorySink()), **kw)


def _record_sleeps(orch: JobOrchestrator) -> list[float]:
    delays: list[float] = []

    def fake_sleep(seconds: float) -> bool:
        delays.append(round(seconds, 3))
        return True

    orch._sleep = fake_sleep  # type: ignore[method-assign]
    return delays


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


def test_one_success_one_timeout_completes():
    fetcher = FakeFetcher({"a.test": page("x@uni.edu"), "b.test": timeout})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)
    rec = Recorder()

    handle = orch.start(["a.test", "b.test"], FAST, **rec.callbacks())

    assert handle.wait(5) is JobStatus.COMPLETED
    assert [r.email for r in sink.records()] == ["x@uni.edu"]
    assert rec.errors == [("b.test", ErrorKind.TIMEOUT)]
    assert handle.stats.processed == 2
    assert handle.stats.errors == 1
    assert handle.job.entries[0].state is EntryState.COMPLETED
    assert handle.job.entries[1].state is EntryState.FAILED


def test_same_url_twice_marks_second_record_duplicate():
    fetcher = FakeFetcher({"a.test": page("x@uni.edu")})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)
    rec = Recorder()

    handle = orch.start(["a.test", "a.test"], FAST, **rec.callbacks())
    handle.wait(5)

    assert len(sink.records()) == 1
    assert [r.duplicate for batch in rec.results for r in batch] == [False, True]
    assert handle.stats.duplicates == 1


def test_role_accounts_never_reach_the_sink():
    fetcher = FakeFetcher({"a.test": page("admin@uni.edu", "x@uni.edu", "noreply@journal.org")})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)
    rec = Recorder()

    handle = orch.start(["a.test"], FAST, **rec.callbacks())
    handle.wait(5)
    handle.wait_for_validations(5)

    assert [r.email for r in sink.records()] == ["x@uni.edu"]
    assert [r.email for r in rec.results[0]] == ["x@uni.edu"]
    assert handle.stats.rejected == 2


def test_progress_fires_once_per_url_in_order():
    urls = ["u1", "u2", "u3", "u4"]
    fetcher = FakeFetcher({"u1": page(), "u2": timeout, "u3": page("a@b.org"), "u4": ""})
    orch = _orch(fetcher)
    rec = Recorder()

    orch.start(urls, FAST, **rec.callbacks()).wait(5)

    assert [p[0] for p in rec.progress] == [1, 2, 3, 4]
    assert [p[2] for p in rec.progress] == urls
    assert all(p[1] == 4 for p in rec.progress)
    assert fetcher.calls == urls


def test_empty_url_list_completes_immediately():
    orch = _orch(FakeFetcher({}))
    handle = orch.start([], FAST)
    assert handle.wait(5) is JobStatus.COMPLETED
    assert handle.job.total == 0


def test_fetch_timeout_is_passed_to_fetcher():
    fetcher = FakeFetcher({"a.test": page()})
    orch = _orch(fetcher)
    orch.start(["a.test"], ScrapeOptions(rate_limit_ms=0, max_retries=1, fetch_timeout_ms=1234)).wait(5)
    assert fetcher.timeouts == [1234]


# ---------------------------------------------------------------------------
# Retries / backoff
# ---------------------------------------------------------------------------


def test_backoff_doubles_between_attempts_then_succeeds():
    fetcher = FakeFetcher({"a.test": [timeout, timeout, page("x@uni.edu")]})
    orch = _orch(fetcher)
    delays = _record_sleeps(orch)
    rec = Recorder()

    handle = orch.start(["a.test"], ScrapeOptions(rate_limit_ms=0, max_retries=3), **rec.callbacks())
    handle.wait(5)

    assert delays == [1.0, 2.0]
    assert fetcher.calls == ["a.test"] * 3
    assert rec.errors == []
    assert handle.job.entries[0].attempt == 3


def test_backoff_is_capped_and_attempts_never_exceed_max_retries():
    fetcher = FakeFetcher({"a.test": timeout})
    orch = _orch(fetcher)
    delays = _record_sleeps(orch)
    rec = Recorder()

    handle = orch.start(["a.test"], ScrapeOptions(rate_limit_ms=0, max_retries=6), **rec.callbacks())
    handle.wait(5)

    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert len(fetcher.calls) == 6
    assert handle.job.entries[0].attempt == 6
    # exhausted retries are reported once, not per attempt
    assert rec.errors == [("a.test", ErrorKind.TIMEOUT)]


def test_last_error_kind_is_reported():
    blocked = FetchError(ErrorKind.BLOCKED, "a.test", "HTTP 403")
    fetcher = FakeFetcher({"a.test": [timeout, blocked]})
    orch = _orch(fetcher)
    _record_sleeps(orch)
    rec = Recorder()

    orch.start(["a.test"], ScrapeOptions(rate_limit_ms=0, max_retries=2), **rec.callbacks()).wait(5)

    assert rec.errors == [("a.test", ErrorKind.BLOCKED)]


def test_empty_page_is_an_extraction_failure():
    fetcher = FakeFetcher({"a.test": "   "})
    orch = _orch(fetcher)
    rec = Recorder()

    orch.start(["a.test"], FAST, **rec.callbacks()).wait(5)

    assert rec.errors == [("a.test", ErrorKind.EXTRACTION_FAILURE)]


def test_unexpected_fetcher_exception_becomes_network_error():
    fetcher = FakeFetcher({"a.test": RuntimeError("socket closed"), "b.test": page("y@uni.edu")})
    orch = _orch(fetcher)
    rec = Recorder()

    handle = orch.start(["a.test", "b.test"], FAST, **rec.callbacks())

    assert handle.wait(5) is JobStatus.COMPLETED
    assert rec.errors == [("a.test", ErrorKind.NETWORK_ERROR)]
    assert [r.email for r in rec.results[0]] == ["y@uni.edu"]


def test_each_retry_re_extracts_fresh_content():
    fetcher = FakeFetcher({"a.test": ["", page("late@uni.edu")]})
    orch = _orch(fetcher)
    _record_sleeps(orch)
    rec = Recorder()

    orch.start(["a.test"], ScrapeOptions(rate_limit_ms=0, max_retries=2), **rec.callbacks()).wait(5)

    assert rec.errors == []
    assert [r.email for r in rec.results[0]] == ["late@uni.edu"]


# ---------------------------------------------------------------------------
# Pause / resume / stop
# ---------------------------------------------------------------------------


def test_pause_then_resume_keeps_cursor():
    rec = Recorder()
    holder: dict = {}

    def pausing(url: str) -> str:
        holder["orch"].pause()
        return page("p1@uni.edu")

    fetcher = FakeFetcher({"p1": pausing, "p2": page("p2@uni.edu"), "p3": page("p3@uni.edu")})
    orch = _orch(fetcher)
    holder["orch"] = orch

    handle = orch.start(["p1", "p2", "p3"], FAST, **rec.callbacks())

    assert wait_until(lambda: orch.status is JobStatus.PAUSED and handle.cursor == 1)
    # stays parked while paused
    assert not wait_until(lambda: len(fetcher.calls) > 1, timeout=0.2)
    assert [p[2] for p in rec.progress] == ["p1"]

    assert orch.resume() is True
    assert handle.wait(5) is JobStatus.COMPLETED
    assert fetcher.calls == ["p1", "p2", "p3"]
    assert [p[0] for p in rec.progress] == [1, 2, 3]


def test_pause_and_resume_outside_running_are_noops():
    orch = _orch(FakeFetcher({}))
    assert orch.pause() is False
    assert orch.resume() is False
    assert orch.status is JobStatus.IDLE


def test_stop_mid_job_halts_dispatch_but_reports_in_flight_outcome():
    rec = Recorder()
    holder: dict = {}

    def stopping(url: str) -> str:
        holder["orch"].stop()
        return page("u2@uni.edu")

    fetcher = FakeFetcher({"u1": page("u1@uni.edu"), "u2": stopping, "u3": page(), "u4": page()})
    orch = _orch(fetcher)
    holder["orch"] = orch

    handle = orch.start(["u1", "u2", "u3", "u4"], FAST, **rec.callbacks())

    assert handle.wait(5) is JobStatus.STOPPED
    assert fetcher.calls == ["u1", "u2"]
    assert [r.email for batch in rec.results for r in batch] == ["u1@uni.edu", "u2@uni.edu"]
    assert handle.cursor == 2


def test_stop_is_idempotent():
    fetcher = BlockingFetcher({"a": page(), "b": page()})
    orch = _orch(fetcher)
    handle = orch.start(["a", "b"], FAST)
    assert fetcher.entered.wait(5)

    orch.stop()
    orch.stop()
    fetcher.release()

    assert handle.wait(5) is JobStatus.STOPPED
    orch.stop()
    assert orch.status is JobStatus.STOPPED


def test_stop_interrupts_rate_limit_wait():
    fetcher = FakeFetcher({"a": page(), "b": page()})
    orch = _orch(fetcher)

    handle = orch.start(["a", "b"], ScrapeOptions(rate_limit_ms=60_000, max_retries=1))
    assert wait_until(lambda: handle.cursor == 1)
    orch.stop()

    assert handle.wait(2) is JobStatus.STOPPED
    assert fetcher.calls == ["a"]


def test_stop_interrupts_backoff_and_reports_error_once():
    fetcher = FakeFetcher({"a": timeout, "b": page()})
    orch = _orch(fetcher)
    rec = Recorder()

    handle = orch.start(
        ["a", "b"],
        ScrapeOptions(rate_limit_ms=0, max_retries=3, backoff_base_ms=60_000, backoff_max_ms=60_000),
        **rec.callbacks(),
    )
    assert wait_until(lambda: len(fetcher.calls) == 1)
    orch.stop()

    assert handle.wait(2) is JobStatus.STOPPED
    assert fetcher.calls == ["a"]
    assert rec.errors == [("a", ErrorKind.TIMEOUT)]


def test_stop_while_paused_ends_job():
    holder: dict = {}

    def pausing(url: str) -> str:
        holder["orch"].pause()
        return page()

    fetcher = FakeFetcher({"a": pausing, "b": page()})
    orch = _orch(fetcher)
    holder["orch"] = orch
    handle = orch.start(["a", "b"], FAST)

    assert wait_until(lambda: orch.status is JobStatus.PAUSED and handle.cursor == 1)
    orch.stop()

    assert handle.wait(2) is JobStatus.STOPPED
    assert fetcher.calls == ["a"]


# ---------------------------------------------------------------------------
# Job lifecycle / access
# ---------------------------------------------------------------------------


def test_start_while_running_raises_job_already_active():
    fetcher = BlockingFetcher({"a": page()})
    orch = _orch(fetcher)
    handle = orch.start(["a"], FAST)
    assert fetcher.entered.wait(5)

    with pytest.raises(JobAlreadyActive):
        orch.start(["b"], FAST)

    fetcher.release()
    assert handle.wait(5) is JobStatus.COMPLETED


def test_start_after_completion_is_allowed():
    fetcher = FakeFetcher({"a": page("a@uni.edu"), "b": page("b@uni.edu")})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)

    orch.start(["a"], FAST).wait(5)
    second = orch.start(["b"], FAST)

    assert second.wait(5) is JobStatus.COMPLETED
    assert sorted(r.email for r in sink.records()) == ["a@uni.edu", "b@uni.edu"]


def test_unauthorized_gate_refuses_start():
    orch = _orch(FakeFetcher({"a": page()}), gate=DenyAllGate())
    with pytest.raises(Unauthorized):
        orch.start(["a"], FAST)
    assert orch.status is JobStatus.IDLE


def test_invalid_options_raise_value_error():
    orch = _orch(FakeFetcher({"a": page()}))
    with pytest.raises(ValueError):
        orch.start(["a"], {"rate_limit_ms": -1})
    with pytest.raises(ValueError):
        orch.start(["a"], {"max_retries": 0})
    with pytest.raises(ValueError):
        orch.start("a", FAST)
    assert orch.status is JobStatus.IDLE


def test_reset_rejected_while_active_and_returns_to_idle_after():
    fetcher = BlockingFetcher({"a": page()})
    orch = _orch(fetcher)
    handle = orch.start(["a"], FAST)
    assert fetcher.entered.wait(5)

    with pytest.raises(JobAlreadyActive):
        orch.reset()

    fetcher.release()
    handle.wait(5)
    orch.reset()
    assert orch.status is JobStatus.IDLE


# ---------------------------------------------------------------------------
# Validation / persistence
# ---------------------------------------------------------------------------


def test_mx_result_updates_persisted_record():
    fetcher = FakeFetcher({"a.test": page("good@uni.edu", "bad@nowhere.invalid")})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)
    rec = Recorder()

    handle = orch.start(["a.test"], FAST, **rec.callbacks())
    handle.wait(5)
    assert handle.wait_for_validations(5)

    by_email = {r.email: r.verified for r in sink.records()}
    assert by_email == {"good@uni.edu": True, "bad@nowhere.invalid": False}
    assert sorted(r.email for r in rec.verified) == ["bad@nowhere.invalid", "good@uni.edu"]


def test_seeded_dedup_suppresses_previous_contacts():
    fetcher = FakeFetcher({"a.test": page("x@uni.edu")})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink, dedup=DedupStore(keys=[("x@uni.edu", "a.test")]))
    rec = Recorder()

    orch.start(["a.test"], FAST, **rec.callbacks()).wait(5)

    assert sink.records() == []
    assert rec.results[0][0].duplicate is True


def test_callback_exceptions_do_not_break_the_job():
    def boom(*args):
        raise RuntimeError("ui went away")

    fetcher = FakeFetcher({"a": page("x@uni.edu"), "b": timeout})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)

    handle = orch.start(["a", "b"], FAST, on_progress=boom, on_result=boom, on_error=boom)

    assert handle.wait(5) is JobStatus.COMPLETED
    assert len(sink.records()) == 1


def test_clear_results_empties_sink_and_dedup():
    fetcher = FakeFetcher({"a": page("x@uni.edu")})
    sink = MemorySink()
    orch = _orch(fetcher, sink=sink)
    orch.start(["a"], FAST).wait(5)

    orch.clear_results()

    assert sink.records() == []
    assert len(orch.dedup) == 0
    orch.start(["a"], FAST).wait(5)
    assert len(sink.records()) == 1


def test_start_scraping_uses_given_collaborators():
    fetcher = FakeFetcher({"a.test": page("x@uni.edu")})
    sink = MemorySink()
    handle = start_scraping(["a.test"], {"rate_limit_ms": 0, "max_retries": 1}, fetcher=fetcher, sink=sink)

    assert handle.wait(5) is JobStatus.COMPLETED
    assert [r.email for r in sink.records()] == ["x@uni.edu"]


def test_start_scraping_refuses_second_job_while_first_runs():
    fetcher = BlockingFetcher({"a.test": page("x@uni.edu"), "b.test": page()})
    handle = start_scraping(["a.test"], FAST, fetcher=fetcher)
    assert fetcher.entered.wait(5)

    with pytest.raises(JobAlreadyActive):
        start_scraping(["b.test"], FAST)
    # other collaborators do not get a second orchestrator either
    with pytest.raises(JobAlreadyActive):
        start_scraping(["b.test"], FAST, fetcher=FakeFetcher({"b.test": page()}))

    fetcher.release()
    assert handle.wait(5) is JobStatus.COMPLETED
    assert fetcher.calls == ["a.test"]
    assert default_orchestrator().fetcher is fetcher


def test_start_scraping_reuses_and_closes_its_own_fetcher(monkeypatch):
    import scholar_scraper.fetch.client as client_mod

    built: list[FakeFetcher] = []

    def make_fetcher(*a, **kw):
        f = FakeFetcher({"a.test": page("x@uni.edu"), "b.test": page("y@uni.edu")})
        built.append(f)
        return f

    monkeypatch.setattr(client_mod, "HttpPageFetcher", make_fetcher)

    first = start_scraping(["a.test"], FAST)
    assert first.wait(5) is JobStatus.COMPLETED
    orch = default_orchestrator()
    second = start_scraping(["b.test"], FAST)
    assert second.wait(5) is JobStatus.COMPLETED

    assert default_orchestrator() is orch
    assert len(built) == 1
    assert [r.email for r in orch.sink.records()] == ["x@uni.edu", "y@uni.edu"]

    shutdown_default_orchestrator()
    assert built[0].closed
    assert default_orchestrator() is None


class FailOnceSink(MemorySink):
    def __init__(self) -> None:
        super().__init__()
        self.failures = 0

    def persist(self, record) -> None:
        if self.failures == 0:
            self.failures += 1
            raise OSError("disk full")
        super().persist(record)


def test_failed_persist_releases_key_for_later_sighting():
    rec = Recorder()
    sink = FailOnceSink()
    orch = _orch(FakeFetcher({"a.test": page("x@uni.edu")}), sink=sink)

    handle = orch.run(["a.test", "a.test"], FAST, **rec.callbacks())

    assert handle.status is JobStatus.COMPLETED
    assert [r.email for r in sink.records()] == ["x@uni.edu"]
    # the unsaved record is not reported; the retry sighting is a fresh contact
    assert rec.results[0] == []
    assert [(r.email, r.duplicate) for r in rec.results[1]] == [("x@uni.edu", False)]
    assert handle.stats.emails_found == 1
    assert handle.stats.duplicates == 0
    assert orch.dedup.contains("x@uni.edu", "a.test")


def test_pause_during_last_url_still_completes():
    holder: dict = {}

    def pausing(url: str) -> str:
        holder["orch"].pause()
        return page("last@uni.edu")

    orch = _orch(FakeFetcher({"a": pausing}))
    holder["orch"] = orch
    handle = orch.start(["a"], FAST)

    assert handle.wait(2) is JobStatus.COMPLETED
    assert handle.cursor == 1
