from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _getenv_list_str(name: str, default_csv: str, *, sep: str = ",") -> list[str]:
    raw = os.getenv(name, default_csv).strip()
    out: list[str] = []
    for tok in (t.strip() for t in raw.split(sep)):
        if tok:
            out.append(tok)
    return out


def _getenv_bool(name: str, default: bool) -> bool:
    """
    Read a loosely-typed boolean from the environment.

    Treats "1", "true", "yes", "on" (case-insensitive) as True;
    "0", "false", "no", "off", "" as False. If unset, returns default.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off", ""}:
        return False
    # Fallback: any other non-empty value -> True
    return True


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

# -------------------------------
# Job defaults
# -------------------------------
SCRAPE_RATE_LIMIT_MS: int = _getenv_int("SCRAPE_RATE_LIMIT_MS", 3000)
SCRAPE_MAX_RETRIES: int = _getenv_int("SCRAPE_MAX_RETRIES", 3)
SCRAPE_BACKOFF_BASE_MS: int = _getenv_int("SCRAPE_BACKOFF_BASE_MS", 1000)
SCRAPE_BACKOFF_MAX_MS: int = _getenv_int("SCRAPE_BACKOFF_MAX_MS", 10000)
# Poll interval for the pause loop and interruptible sleeps
SCRAPE_PAUSE_POLL_MS: int = _getenv_int("SCRAPE_PAUSE_POLL_MS", 100)

# -------------------------------
# Fetch config
# -------------------------------
FETCH_TIMEOUT_MS: int = _getenv_int("FETCH_TIMEOUT_MS", 30000)
FETCH_CONNECT_TIMEOUT_S: float = _getenv_float("FETCH_CONNECT_TIMEOUT_S", 10.0)
FETCH_MAX_REDIRECTS: int = _getenv_int("FETCH_MAX_REDIRECTS", 5)
FETCH_MAX_READ_BYTES: int = _getenv_int("FETCH_MAX_READ_BYTES", 2_000_000)  # ≈2MB cap

_DEFAULT_USER_AGENTS = "|".join(
    [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:89.0) Gecko/20100101 Firefox/89.0",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    ]
)
# UA strings contain commas, so the pool is pipe-separated
FETCH_USER_AGENTS: list[str] = _getenv_list_str("FETCH_USER_AGENTS", _DEFAULT_USER_AGENTS, sep="|")

# -------------------------------
# MX validation config
# -------------------------------
MX_TIMEOUT_S: float = _getenv_float("MX_TIMEOUT_S", 2.0)
MX_CACHE_TTL_S: int = _getenv_int("MX_CACHE_TTL_S", 3600)
MX_WORKERS: int = _getenv_int("MX_WORKERS", 4)

# -------------------------------
# Access / storage / logging
# -------------------------------
SCRAPER_ACCESS_ENABLED: bool = _getenv_bool("SCRAPER_ACCESS_ENABLED", True)
DB_PATH: str = _getenv_str("DB_PATH", (ROOT / "data" / "scholar_scraper.db").as_posix())
LOG_LEVEL: str = _getenv_str("LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class Settings:
    rate_limit_ms: int = SCRAPE_RATE_LIMIT_MS
    max_retries: int = SCRAPE_MAX_RETRIES
    backoff_base_ms: int = SCRAPE_BACKOFF_BASE_MS
    backoff_max_ms: int = SCRAPE_BACKOFF_MAX_MS
    pause_poll_ms: int = SCRAPE_PAUSE_POLL_MS
    fetch_timeout_ms: int = FETCH_TIMEOUT_MS
    mx_timeout_s: float = MX_TIMEOUT_S
    mx_cache_ttl_s: int = MX_CACHE_TTL_S
    mx_workers: int = MX_WORKERS
    access_enabled: bool = SCRAPER_ACCESS_ENABLED
    db_path: str = DB_PATH
    log_level: str = LOG_LEVEL
    user_agents: list[str] = field(default_factory=lambda: list(FETCH_USER_AGENTS))


def load_settings() -> Settings:
    """
    Snapshot the current environment into a Settings object.

    Re-reads the environment (not the import-time constants) so callers that
    monkeypatch env vars get fresh values.
    """
    return Settings(
        rate_limit_ms=_getenv_int("SCRAPE_RATE_LIMIT_MS", 3000),
        max_retries=_getenv_int("SCRAPE_MAX_RETRIES", 3),
        backoff_base_ms=_getenv_int("SCRAPE_BACKOFF_BASE_MS", 1000),
        backoff_max_ms=_getenv_int("SCRAPE_BACKOFF_MAX_MS", 10000),
        pause_poll_ms=_getenv_int("SCRAPE_PAUSE_POLL_MS", 100),
        fetch_timeout_ms=_getenv_int("FETCH_TIMEOUT_MS", 30000),
        mx_timeout_s=_getenv_float("MX_TIMEOUT_S", 2.0),
        mx_cache_ttl_s=_getenv_int("MX_CACHE_TTL_S", 3600),
        mx_workers=_getenv_int("MX_WORKERS", 4),
        access_enabled=_getenv_bool("SCRAPER_ACCESS_ENABLED", True),
        db_path=_getenv_str("DB_PATH", (ROOT / "data" / "scholar_scraper.db").as_posix()),
        log_level=_getenv_str("LOG_LEVEL", "INFO").upper(),
        user_agents=_getenv_list_str("FETCH_USER_AGENTS", _DEFAULT_USER_AGENTS, sep="|"),
    )
