# tests/test_mx.py
from __future__ import annotations

import pytest

import scholar_scraper.resolve.mx as mxmod
from scholar_scraper.resolve.mx import domain_of, norm_domain, resolve_mx


def _patch_mx_pairs(monkeypatch, pairs: list[tuple[int, str]]) -> dict:
    calls = {"count": 0}

    def fake(domain: str, timeout_s: float):
        calls["count"] += 1
        return list(pairs)

    monkeypatch.setattr(mxmod, "_mx_lookup_with_dnspython", fake)
    return calls


def test_norm_domain_and_domain_of():
    assert norm_domain("  Example.COM. ") == "example.com"
    assert norm_domain("bücher.de") == "xn--bcher-kva.de"
    assert norm_domain("") is None
    assert domain_of("X@Uni.Edu") == "uni.edu"
    assert domain_of("no-at-sign") is None


def test_hosts_sorted_by_preference_then_name(monkeypatch):
    _patch_mx_pairs(monkeypatch, [(20, "b.mx.example."), (10, "z.mx.example"), (10, "a.mx.example")])
    r = resolve_mx("example.com")
    assert r.ok
    assert r.mx_hosts == ["a.mx.example", "z.mx.example", "b.mx.example"]


def test_null_mx_is_not_ok(monkeypatch):
    _patch_mx_pairs(monkeypatch, [(0, ".")])
    r = resolve_mx("example.com")
    assert not r.ok
    assert r.failure == "null_mx"


def test_nxdomain_reports_exception_name():
    r = resolve_mx("nowhere.invalid")
    assert not r.ok
    assert r.failure == "NXDOMAIN"


def test_results_are_cached_until_ttl(monkeypatch):
    calls = _patch_mx_pairs(monkeypatch, [(10, "mx.example.com")])
    clock = {"now": 1000.0}
    monkeypatch.setattr(mxmod, "_now", lambda: clock["now"])

    assert resolve_mx("example.com", ttl_s=60).cached is False
    assert resolve_mx("example.com", ttl_s=60).cached is True
    assert calls["count"] == 1

    clock["now"] += 61
    assert resolve_mx("example.com", ttl_s=60).cached is False
    assert calls["count"] == 2

    resolve_mx("example.com", ttl_s=60, force=True)
    assert calls["count"] == 3


def test_timeouts_are_not_cached(monkeypatch):
    from scholar_scraper.exceptions import ValidationTimeout

    calls = {"count": 0}

    def slow(domain, timeout_s):
        calls["count"] += 1
        raise ValidationTimeout(domain)

    monkeypatch.setattr(mxmod, "_mx_lookup_with_dnspython", slow)
    assert resolve_mx("example.com").failure == "timeout"
    assert resolve_mx("example.com").failure == "timeout"
    assert calls["count"] == 2


def test_empty_domain_raises():
    with pytest.raises(ValueError):
        resolve_mx("  ")
