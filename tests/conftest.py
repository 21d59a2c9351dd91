# ruff: noqa: E402
# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path

import dns.resolver
import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import scholar_scraper.resolve.mx as mxmod


def fake_mx_lookup(domain: str, timeout_s: float) -> list[tuple[int, str]]:
    """
    Offline stand-in for the dnspython lookup.

      - *.invalid         -> NXDOMAIN
      - nullmx.test       -> Null MX
      - everything else   -> one MX host "mx.<domain>"
    """
    if domain.endswith(".invalid"):
        raise dns.resolver.NXDOMAIN()
    if domain == "nullmx.test":
        return [(0, ".")]
    return [(10, f"mx.{domain}")]


@pytest.fixture(autouse=True)
def _offline_dns(monkeypatch: pytest.MonkeyPatch):
    """No test touches real DNS; the MX cache starts empty every time."""
    monkeypatch.setattr(mxmod, "_mx_lookup_with_dnspython", fake_mx_lookup)
    mxmod.clear_cache()
    yield
    mxmod.clear_cache()


@pytest.fixture(autouse=True)
def _no_dotenv_leak(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    # Tests assume the documented defaults and a throwaway DB location
    for var in (
        "SCRAPE_RATE_LIMIT_MS",
        "SCRAPE_MAX_RETRIES",
        "SCRAPE_BACKOFF_BASE_MS",
        "SCRAPE_BACKOFF_MAX_MS",
        "FETCH_TIMEOUT_MS",
        "SCRAPER_ACCESS_ENABLED",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DB_PATH", str(tmp_path / "results.db"))


@pytest.fixture(autouse=True)
def _fresh_default_orchestrator():
    """start_scraping() shares one orchestrator per process; reset it around each test."""
    from scholar_scraper.crawl.orchestrator import shutdown_default_orchestrator

    shutdown_default_orchestrator()
    yield
    shutdown_default_orchestrator()
