# scholar_scraper/fetch/client.py
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from scholar_scraper import config
from scholar_scraper.exceptions import ErrorKind, FetchError

log = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------------------
# Module configuration
# --------------------------------------------------------------------------------------------------

FETCH_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

# Statuses that mean "the site is refusing us" rather than a transient fault
BLOCKED_STATUSES = frozenset({403, 429, 451})

# --------------------------------------------------------------------------------------------------
# Results / Protocol
# --------------------------------------------------------------------------------------------------


@dataclass
class RenderedContent:
    url: str
    html: str
    status: int = 200
    effective_url: str | None = None
    content_type: str | None = None


@runtime_checkable
class PageFetcher(Protocol):
    """
    Anything that can turn a URL into page content.

    Implementations raise FetchError(kind=Timeout|NetworkError|Blocked) and
    must honour timeout_ms themselves.
    """

    def fetch(self, url: str, timeout_ms: int) -> RenderedContent: ...


# --------------------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------------------


def _cap_body(body: bytes, limit: int) -> bytes:
    if limit > 0 and len(body) > limit:
        return body[:limit]
    return body


def _decode(body: bytes, encoding: str | None) -> str:
    try:
        return body.decode(encoding or "utf-8", "replace")
    except LookupError:
        return body.decode("utf-8", "replace")


def pick_user_agent(pool: list[str] | None = None, rng: random.Random | None = None) -> str:
    agents = [a for a in (pool if pool is not None else config.FETCH_USER_AGENTS) if a]
    if not agents:
        return "Mozilla/5.0"
    return (rng or random).choice(agents)


# --------------------------------------------------------------------------------------------------
# Client
# --------------------------------------------------------------------------------------------------


class HttpPageFetcher:
    """
    Plain-HTTP PageFetcher on top of httpx.

    No JavaScript rendering; pages that need a browser should be served by a
    different PageFetcher. Error mapping:
      - httpx.TimeoutException           -> Timeout
      - 403/429/451                      -> Blocked
      - other non-2xx, transport errors  -> NetworkError
    The orchestrator owns retries and rate limiting, so this class does neither.
    """

    def __init__(
        self,
        *,
        user_agent: str | None = None,
        user_agents: list[str] | None = None,
        client: httpx.Client | None = None,
        max_read_bytes: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.user_agent = user_agent or pick_user_agent(user_agents, rng)
        self.max_read_bytes = (
            config.FETCH_MAX_READ_BYTES if max_read_bytes is None else int(max_read_bytes)
        )
        self._owns_client = client is None
        self._client = client or httpx.Client(
            headers={"User-Agent": self.user_agent, "Accept": FETCH_ACCEPT},
            timeout=httpx.Timeout(config.FETCH_TIMEOUT_MS / 1000.0, connect=config.FETCH_CONNECT_TIMEOUT_S),
            follow_redirects=True,
            max_redirects=config.FETCH_MAX_REDIRECTS,
        )

    def fetch(self, url: str, timeout_ms: int) -> RenderedContent:
        timeout_s = max(0.001, timeout_ms / 1000.0)
        timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, config.FETCH_CONNECT_TIMEOUT_S))
        try:
            resp = self._client.get(url, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise FetchError(ErrorKind.TIMEOUT, url, str(exc) or "timed out") from exc
        except httpx.TooManyRedirects as exc:
            raise FetchError(ErrorKind.NETWORK_ERROR, url, "too many redirects") from exc
        except httpx.HTTPError as exc:
            raise FetchError(ErrorKind.NETWORK_ERROR, url, f"{type(exc).__name__}: {exc}") from exc

        status = resp.status_code
        if status in BLOCKED_STATUSES:
            raise FetchError(ErrorKind.BLOCKED, url, f"HTTP {status}")
        if status < 200 or status >= 300:
            raise FetchError(ErrorKind.NETWORK_ERROR, url, f"HTTP {status}")

        body = _cap_body(resp.content or b"", self.max_read_bytes)
        log.debug("fetched %s status=%s bytes=%d", url, status, len(body))
        return RenderedContent(
            url=url,
            html=_decode(body, resp.encoding),
            status=status,
            effective_url=str(resp.url),
            content_type=resp.headers.get("Content-Type"),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpPageFetcher:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


__all__ = [
    "BLOCKED_STATUSES",
    "HttpPageFetcher",
    "PageFetcher",
    "RenderedContent",
    "pick_user_agent",
]
