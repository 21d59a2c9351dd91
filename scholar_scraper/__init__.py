"""
scholar_scraper: harvest contact emails from academic article pages.

Typical use:

    from scholar_scraper import JobOrchestrator, HttpPageFetcher, SqliteSink

    orch = JobOrchestrator(HttpPageFetcher(), SqliteSink("data/results.db"))
    handle = orch.start(urls, {"rate_limit_ms": 3000, "max_retries": 3})
    handle.wait()
"""

from __future__ import annotations

from scholar_scraper.crawl.orchestrator import JobHandle, JobOrchestrator, start_scraping
from scholar_scraper.fetch.client import HttpPageFetcher, PageFetcher, RenderedContent
from scholar_scraper.models import ContactRecord, JobStatus, ScrapeOptions
from scholar_scraper.sink import MemorySink, ResultSink, SqliteSink

__version__ = "0.1.0"

__all__ = [
    "ContactRecord",
    "HttpPageFetcher",
    "JobHandle",
    "JobOrchestrator",
    "JobStatus",
    "MemorySink",
    "PageFetcher",
    "RenderedContent",
    "ResultSink",
    "ScrapeOptions",
    "SqliteSink",
    "start_scraping",
]
