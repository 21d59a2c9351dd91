# scholar_scraper/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from scholar_scraper import config
from scholar_scraper.access import EnvAccessGate
from scholar_scraper.crawl.orchestrator import JobHandle, JobOrchestrator
from scholar_scraper.dedup import DedupStore
from scholar_scraper.exceptions import ErrorKind, FetchError, JobAlreadyActive, Unauthorized
from scholar_scraper.export.exporter import EXPORT_FORMATS, render, render_stats_text, summarize
from scholar_scraper.extract.links import collect_links
from scholar_scraper.fetch.client import HttpPageFetcher
from scholar_scraper.models import JobStatus, ScrapeOptions
from scholar_scraper.sink.sqlite import SqliteSink

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STOPPED = 1
EXIT_USAGE = 2


def _configure_logging(level: str) -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s %(message)s",
    )


def _read_urls(args: argparse.Namespace) -> list[str]:
    urls = list(args.urls or [])
    if args.urls_file:
        for line in Path(args.urls_file).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    return urls


def _write_output(data: bytes, out: str | None) -> None:
    if out:
        Path(out).write_bytes(data)
        print(f"Wrote {len(data)} bytes to {out}", file=sys.stderr)
    else:
        sys.stdout.write(data.decode("utf-8"))
        if not data.endswith(b"\n"):
            sys.stdout.write("\n")


def _wait(handle: JobHandle, orch: JobOrchestrator) -> JobStatus:
    # join in slices so Ctrl-C reaches the main thread
    try:
        while not handle.is_done():
            handle.wait(timeout=0.5)
    except KeyboardInterrupt:
        print("Stopping after the current page...", file=sys.stderr)
        orch.stop()
        handle.wait()
    return handle.status


def _cmd_scrape(args: argparse.Namespace) -> int:
    urls = _read_urls(args)
    if not urls:
        print("error: no URLs given (pass URLs or --urls-file)", file=sys.stderr)
        return EXIT_USAGE

    try:
        opts = ScrapeOptions.from_config(rate_limit_ms=args.rate_limit_ms, max_retries=args.max_retries)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    sink = SqliteSink(args.db)
    fetcher = HttpPageFetcher()
    orch = JobOrchestrator(fetcher, sink, gate=EnvAccessGate(), dedup=DedupStore(keys=sink.keys()))

    def on_progress(current: int, total: int, url: str) -> None:
        print(f"[{current}/{total}] {url}", file=sys.stderr)

    def on_result(records: list) -> None:
        for r in records:
            tag = " (duplicate)" if r.duplicate else ""
            print(f"  {r.email}{tag}", file=sys.stderr)

    def on_error(url: str, kind: ErrorKind) -> None:
        print(f"  failed: {url} ({kind.value})", file=sys.stderr)

    try:
        try:
            handle = orch.start(urls, opts, on_progress=on_progress, on_result=on_result, on_error=on_error)
        except (Unauthorized, JobAlreadyActive) as exc:
            print(f"error: {exc}", file=sys.stderr)
            return EXIT_USAGE

        status = _wait(handle, orch)
        handle.wait_for_validations(timeout=max(1.0, config.MX_TIMEOUT_S * 4))
        stats = handle.stats
        print(
            f"{status.value}: {stats.processed}/{handle.job.total} page(s), "
            f"{stats.emails_found} email(s), {stats.duplicates} duplicate(s), {stats.errors} error(s)",
            file=sys.stderr,
        )
        if args.export:
            _write_output(sink.export_all(args.export), args.out)
    finally:
        orch.close()
        fetcher.close()
        sink.close()

    return EXIT_OK if status is JobStatus.COMPLETED else EXIT_STOPPED


def _cmd_export(args: argparse.Namespace) -> int:
    sink = SqliteSink(args.db)
    try:
        records = sink.records()
        _write_output(render(records, args.format, with_stats=args.with_stats), args.out)
        if args.with_stats and args.format != "json":
            text = render_stats_text(summarize(records))
            if args.out:
                stats_path = Path(args.out).with_suffix(".stats.txt")
                stats_path.write_text(text + "\n", encoding="utf-8")
                print(f"Wrote statistics to {stats_path}", file=sys.stderr)
            else:
                print(text, file=sys.stderr)
    finally:
        sink.close()
    return EXIT_OK


def _cmd_links(args: argparse.Namespace) -> int:
    with HttpPageFetcher() as fetcher:
        try:
            page = fetcher.fetch(args.url, config.FETCH_TIMEOUT_MS)
        except FetchError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return EXIT_STOPPED
    for link in collect_links(page.html, page.effective_url or args.url, max_links=args.max_links):
        print(link)
    return EXIT_OK


def _cmd_stats(args: argparse.Namespace) -> int:
    sink = SqliteSink(args.db)
    try:
        stats = summarize(sink.records())
    finally:
        sink.close()
    if args.json:
        print(json.dumps(stats, indent=2, sort_keys=True))
    else:
        print(render_stats_text(stats))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scholar-scraper",
        description="Harvest contact emails from article pages and export them.",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        help=f"Logging level (default: {config.LOG_LEVEL}).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scrape = subparsers.add_parser("scrape", help="Run a crawl job over a list of URLs.")
    scrape.add_argument("urls", nargs="*", help="Page URLs, processed in the order given.")
    scrape.add_argument("--urls-file", help="File with one URL per line ('#' comments allowed).")
    scrape.add_argument(
        "--rate-limit-ms",
        type=int,
        default=None,
        help=f"Delay between pages (default: {config.SCRAPE_RATE_LIMIT_MS}).",
    )
    scrape.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help=f"Attempts per page (default: {config.SCRAPE_MAX_RETRIES}).",
    )
    scrape.add_argument("--db", default=config.DB_PATH, help="SQLite results file.")
    scrape.add_argument("--export", choices=EXPORT_FORMATS, help="Export all results when the job ends.")
    scrape.add_argument("--out", help="Write the export here instead of stdout.")
    scrape.set_defaults(func=_cmd_scrape)

    export = subparsers.add_parser("export", help="Export stored results.")
    export.add_argument("--format", choices=EXPORT_FORMATS, default="csv")
    export.add_argument("--db", default=config.DB_PATH, help="SQLite results file.")
    export.add_argument("--out", help="Output file (default: stdout).")
    export.add_argument(
        "--with-stats",
        action="store_true",
        help="JSON: wrap in a metadata envelope; csv/txt: also write a statistics file.",
    )
    export.set_defaults(func=_cmd_export)

    links = subparsers.add_parser("links", help="List article links found on a search-result page.")
    links.add_argument("url")
    links.add_argument("--max-links", type=int, default=50)
    links.set_defaults(func=_cmd_links)

    stats = subparsers.add_parser("stats", help="Summarize stored results.")
    stats.add_argument("--db", default=config.DB_PATH, help="SQLite results file.")
    stats.add_argument("--json", action="store_true", help="Emit JSON instead of text.")
    stats.set_defaults(func=_cmd_stats)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    func = getattr(args, "func", None)
    if func is None:
        parser.error("no command specified")
        return EXIT_USAGE

    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
