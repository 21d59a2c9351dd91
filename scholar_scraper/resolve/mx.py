# scholar_scraper/resolve/mx.py
from __future__ import annotations

import logging
import threading
import time
import unicodedata
from dataclasses import dataclass, field

import dns.exception
import dns.resolver

from scholar_scraper import config
from scholar_scraper.exceptions import ValidationTimeout

log = logging.getLogger(__name__)

# -----------------------------
# Normalization helpers
# -----------------------------


def norm_domain(domain: str | None) -> str | None:
    """
    NFKC → lower → IDNA ASCII if possible, else fallback to raw.
    """
    if not domain:
        return None
    s = unicodedata.normalize("NFKC", str(domain)).strip().strip(".").lower()
    if not s:
        return None
    try:
        return s.encode("idna").decode("ascii")
    except UnicodeError:
        return s


def domain_of(email: str) -> str | None:
    _, sep, domain = (email or "").strip().rpartition("@")
    if not sep:
        return None
    return norm_domain(domain)


# -----------------------------
# DNS lookup (patch point)
# -----------------------------


def _mx_lookup_with_dnspython(domain: str, timeout_s: float) -> list[tuple[int, str]]:
    """
    Return list of (preference, host) for MX records.
    - Preserve the special host "." for Null MX (RFC 7505).
    - Otherwise return hostnames WITHOUT trailing dot.
    - Raises ValidationTimeout when the resolver gives up.
    """
    resolver = dns.resolver.Resolver()
    resolver.lifetime = timeout_s
    resolver.timeout = timeout_s

    try:
        answers = resolver.resolve(domain, "MX")
    except dns.exception.Timeout as exc:
        raise ValidationTimeout(f"MX lookup timed out for {domain}") from exc

    pairs: list[tuple[int, str]] = []
    for r in answers:
        pref = int(getattr(r, "preference", 0))
        exch = getattr(r, "exchange", None)
        if exch is None:
            host = ""
        else:
            full = exch.to_text()  # may be '.' or 'host.'
            host = "." if full == "." else exch.to_text(omit_final_dot=True)
        pairs.append((pref, host))
    return pairs


# -----------------------------
# Result type + cache
# -----------------------------


@dataclass
class MXResult:
    domain: str
    mx_hosts: list[str] = field(default_factory=list)
    failure: str | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return bool(self.mx_hosts) and self.failure is None


@dataclass
class _CacheEntry:
    result: MXResult
    expires_at: float


_CACHE: dict[str, _CacheEntry] = {}
_CACHE_LOCK = threading.Lock()


def _now() -> float:
    return time.monotonic()


def _cache_get(domain: str) -> MXResult | None:
    with _CACHE_LOCK:
        entry = _CACHE.get(domain)
        if entry is None:
            return None
        if entry.expires_at <= _now():
            _CACHE.pop(domain, None)
            return None
        r = entry.result
        return MXResult(domain=r.domain, mx_hosts=list(r.mx_hosts), failure=r.failure, cached=True)


def _cache_put(result: MXResult, ttl_s: float) -> None:
    # timeouts are never cached
    if result.failure == "timeout" or ttl_s <= 0:
        return
    with _CACHE_LOCK:
        _CACHE[result.domain] = _CacheEntry(result=result, expires_at=_now() + ttl_s)


def clear_cache() -> None:
    with _CACHE_LOCK:
        _CACHE.clear()


def _serialize_hosts(pairs: list[tuple[int, str]]) -> list[str]:
    """Sort by (preference ASC, host ASC) and drop empty hosts."""
    cleaned: list[tuple[int, str]] = []
    for p, h in pairs:
        h2 = str(h).rstrip(".").lower()
        if not h2:
            continue
        cleaned.append((int(p), h2))
    cleaned.sort(key=lambda t: (t[0], t[1]))
    return [h for _, h in cleaned]


# -----------------------------
# Public API
# -----------------------------


def resolve_mx(
    domain: str,
    *,
    timeout_s: float | None = None,
    ttl_s: float | None = None,
    force: bool = False,
) -> MXResult:
    """
    Resolve MX for a domain with a short in-process cache.

    Behavior:
      - Null MX (single record with host ".") → failure="null_mx".
      - NXDOMAIN / NoAnswer / NoNameservers → failure="<ExceptionName>".
      - Resolver timeout → failure="timeout" (not cached).
      - Never raises for DNS problems; raises ValueError for an empty domain.
    """
    canon = norm_domain(domain)
    if not canon:
        raise ValueError("empty domain")

    timeout = config.MX_TIMEOUT_S if timeout_s is None else float(timeout_s)
    ttl = config.MX_CACHE_TTL_S if ttl_s is None else float(ttl_s)

    if not force:
        hit = _cache_get(canon)
        if hit is not None:
            return hit

    result = MXResult(domain=canon)
    try:
        pairs = _mx_lookup_with_dnspython(canon, timeout)
        if len(pairs) == 1 and pairs[0][1] in (".", ""):
            result.failure = "null_mx"
        else:
            result.mx_hosts = _serialize_hosts(pairs)
            if not result.mx_hosts:
                result.failure = "no_mx"
    except ValidationTimeout:
        result.failure = "timeout"
    except dns.exception.DNSException as exc:
        result.failure = type(exc).__name__

    log.debug("mx %s -> hosts=%s failure=%s", canon, result.mx_hosts, result.failure)
    _cache_put(result, ttl)
    return result


def has_mx(domain: str, *, timeout_s: float | None = None) -> bool:
    return resolve_mx(domain, timeout_s=timeout_s).ok


__all__ = [
    "MXResult",
    "norm_domain",
    "domain_of",
    "resolve_mx",
    "has_mx",
    "clear_cache",
]
