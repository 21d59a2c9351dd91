# tests/test_cli.py
from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import FakeFetcher, page, timeout

import scholar_scraper.cli as cli
from scholar_scraper.models import ContactRecord
from scholar_scraper.sink.sqlite import SqliteSink


@pytest.fixture()
def db(tmp_path: Path) -> str:
    return str(tmp_path / "cli.db")


@pytest.fixture()
def fake_fetcher(monkeypatch):
    fetcher = FakeFetcher({"a.test": page("x@uni.edu", journal="J1"), "b.test": timeout})
    monkeypatch.setattr(cli, "HttpPageFetcher", lambda *a, **kw: fetcher)
    return fetcher


def test_scrape_persists_and_exports(db, fake_fetcher, capsys):
    rc = cli.main(
        ["scrape", "a.test", "b.test", "--rate-limit-ms", "0", "--max-retries", "1", "--db", db, "--export", "csv"]
    )
    out, err = capsys.readouterr()

    assert rc == 0
    assert out.splitlines()[0] == "name,email,journal,topic,verified,duplicate,source_url,timestamp"
    assert "x@uni.edu" in out
    assert "[1/2] a.test" in err
    assert "failed: b.test (Timeout)" in err
    assert fake_fetcher.closed


def test_rerun_does_not_persist_twice(db, fake_fetcher, capsys):
    args = ["scrape", "a.test", "--rate-limit-ms", "0", "--max-retries", "1", "--db", db]
    assert cli.main(args) == 0
    assert cli.main(args) == 0
    _, err = capsys.readouterr()

    assert "x@uni.edu (duplicate)" in err
    sink = SqliteSink(db)
    try:
        assert sink.count() == 1
    finally:
        sink.close()


def test_scrape_reads_urls_file(db, fake_fetcher, tmp_path, capsys):
    urls = tmp_path / "urls.txt"
    urls.write_text("# seeds\na.test\n\n", encoding="utf-8")
    assert cli.main(["scrape", "--urls-file", str(urls), "--rate-limit-ms", "0", "--db", db]) == 0
    assert fake_fetcher.calls == ["a.test"]


def test_scrape_without_urls_is_usage_error(db, capsys):
    assert cli.main(["scrape", "--db", db]) == 2


def test_scrape_rejects_bad_options(db, fake_fetcher, capsys):
    assert cli.main(["scrape", "a.test", "--max-retries", "0", "--db", db]) == 2


def test_scrape_refused_when_access_disabled(db, fake_fetcher, monkeypatch, capsys):
    monkeypatch.setenv("SCRAPER_ACCESS_ENABLED", "false")
    assert cli.main(["scrape", "a.test", "--db", db]) == 2
    assert "not allowed" in capsys.readouterr().err


def _seed(db: str) -> None:
    sink = SqliteSink(db)
    try:
        sink.persist(ContactRecord(email="x@uni.edu", source_url="https://j/1", journal="J1", verified=True))
        sink.persist(ContactRecord(email="y@uni.edu", source_url="https://j/2"))
    finally:
        sink.close()


def test_export_json_with_stats(db, capsys):
    _seed(db)
    assert cli.main(["export", "--format", "json", "--with-stats", "--db", db]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["metadata"]["statistics"]["verified_emails"] == 1
    assert [r["email"] for r in payload["data"]] == ["x@uni.edu", "y@uni.edu"]


def test_export_txt_to_file_writes_stats_alongside(db, tmp_path, capsys):
    _seed(db)
    out = tmp_path / "export.txt"
    assert cli.main(["export", "--format", "txt", "--with-stats", "--db", db, "--out", str(out)]) == 0
    assert "Email: x@uni.edu" in out.read_text(encoding="utf-8")
    assert "Total Records: 2" in (tmp_path / "export.stats.txt").read_text(encoding="utf-8")


def test_stats_command(db, capsys):
    _seed(db)
    assert cli.main(["stats", "--db", db, "--json"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_records"] == 2
    assert stats["journals"] == {"J1": 1, "Unknown": 1}


def test_links_command(monkeypatch, capsys):
    html = '<a href="/article/1">1</a><a href="/paper/2">2</a>'
    fetcher = FakeFetcher({"https://j.example/search": html})
    monkeypatch.setattr(cli, "HttpPageFetcher", lambda *a, **kw: fetcher)

    assert cli.main(["links", "https://j.example/search", "--max-links", "5"]) == 0
    assert capsys.readouterr().out.splitlines() == [
        "https://j.example/article/1",
        "https://j.example/paper/2",
    ]

