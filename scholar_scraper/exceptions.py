# scholar_scraper/exceptions.py
"""
Shared exception classes used across the codebase.

Job-level errors (JobAlreadyActive, Unauthorized) are raised to the caller of
start(). Per-URL errors (FetchError, ExtractionFailure) are retryable and never
escape the orchestrator's control loop; they surface through on_error with an
ErrorKind.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds reported to on_error(url, kind)."""

    TIMEOUT = "Timeout"
    NETWORK_ERROR = "NetworkError"
    BLOCKED = "Blocked"
    EXTRACTION_FAILURE = "ExtractionFailure"


class ScraperError(Exception):
    pass


class JobAlreadyActive(ScraperError):
    """Raised when start() is called while a job is Running or Paused."""


class Unauthorized(ScraperError):
    """Raised when the access gate refuses to let the operator start a job."""


class RetryableError(ScraperError):
    """
    Base for per-URL failures that the orchestrator retries.

    Carries the ErrorKind that is reported once retries are exhausted.
    """

    kind: ErrorKind = ErrorKind.NETWORK_ERROR

    def __init__(self, url: str, detail: str = "") -> None:
        self.url = url
        self.detail = detail
        msg = f"{self.kind.value} for {url}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class FetchError(RetryableError):
    """
    Raised by a PageFetcher when a page cannot be retrieved.

    Examples:
        - FetchError(ErrorKind.TIMEOUT, url)       read/connect timeout
        - FetchError(ErrorKind.NETWORK_ERROR, url) DNS failure, reset, 5xx
        - FetchError(ErrorKind.BLOCKED, url)       403/429/451, captcha walls
    """

    def __init__(self, kind: ErrorKind, url: str, detail: str = "") -> None:
        if kind is ErrorKind.EXTRACTION_FAILURE:
            raise ValueError("FetchError kind must be Timeout, NetworkError or Blocked")
        self.kind = kind
        super().__init__(url, detail)


class ExtractionFailure(RetryableError):
    """Raised when page content is empty or cannot be parsed at all."""

    kind = ErrorKind.EXTRACTION_FAILURE


class ValidationTimeout(ScraperError):
    """Raised by the MX lookup when the resolver times out; never fatal."""


__all__ = [
    "ErrorKind",
    "ScraperError",
    "JobAlreadyActive",
    "Unauthorized",
    "RetryableError",
    "FetchError",
    "ExtractionFailure",
    "ValidationTimeout",
]
