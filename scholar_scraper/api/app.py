from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from scholar_scraper import config
from scholar_scraper.access import AccessGate, EnvAccessGate
from scholar_scraper.crawl.orchestrator import JobOrchestrator
from scholar_scraper.exceptions import JobAlreadyActive, Unauthorized
from scholar_scraper.export.exporter import EXPORT_FORMATS, render, summarize
from scholar_scraper.fetch.client import PageFetcher
from scholar_scraper.models import JobStatus, ScrapeOptions
from scholar_scraper.sink.base import ResultSink, filter_records, search_records

log = logging.getLogger(__name__)

_MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
    "txt": "text/plain; charset=utf-8",
}


class StartJobRequest(BaseModel):
    urls: list[str] = Field(min_length=1)
    rate_limit_ms: int | None = Field(default=None, ge=0)
    max_retries: int | None = Field(default=None, ge=1)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    """
    JSON error payload with a consistent shape.

    Example:
        { "error": "job_already_active", "detail": "a job is already Running" }
    """
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


def _idle_snapshot() -> dict[str, Any]:
    return {"status": JobStatus.IDLE.value, "cursor": 0, "total": 0, "stats": None}


def _parse_bool(raw: str | None) -> bool | None:
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def create_app(
    orchestrator: JobOrchestrator | None = None,
    *,
    fetcher: PageFetcher | None = None,
    sink: ResultSink | None = None,
    gate: AccessGate | None = None,
) -> FastAPI:
    """
    Build the job-control API.

    With no orchestrator, one is created on first use around an
    HttpPageFetcher, a SqliteSink at DB_PATH and the env-driven access gate.
    """
    app = FastAPI(title="Scholar Scraper API")
    app.state.orchestrator = orchestrator

    def get_orchestrator(request: Request) -> JobOrchestrator:
        orch = request.app.state.orchestrator
        if orch is None:
            from scholar_scraper.fetch.client import HttpPageFetcher
            from scholar_scraper.sink.sqlite import SqliteSink

            orch = JobOrchestrator(
                fetcher or HttpPageFetcher(),
                sink if sink is not None else SqliteSink(config.DB_PATH),
                gate=gate or EnvAccessGate(),
            )
            request.app.state.orchestrator = orch
        return orch

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(422, "invalid_options", str(exc.errors()))

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    # ---- jobs ----------------------------------------------------------------

    @app.post("/jobs", status_code=202)
    def start_job(body: StartJobRequest, orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        try:
            opts = ScrapeOptions.from_config(rate_limit_ms=body.rate_limit_ms, max_retries=body.max_retries)
            handle = orch.start(body.urls, opts)
        except JobAlreadyActive as exc:
            return _error_response(409, "job_already_active", str(exc))
        except Unauthorized as exc:
            return _error_response(403, "unauthorized", str(exc))
        except ValueError as exc:
            return _error_response(422, "invalid_options", str(exc))
        return handle.snapshot()

    @app.post("/jobs/pause")
    def pause_job(orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        if not orch.pause():
            return _error_response(409, "invalid_state", f"cannot pause while {orch.status.value}")
        return {"status": orch.status.value}

    @app.post("/jobs/resume")
    def resume_job(orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        if not orch.resume():
            return _error_response(409, "invalid_state", f"cannot resume while {orch.status.value}")
        return {"status": orch.status.value}

    @app.post("/jobs/stop", status_code=202)
    def stop_job(orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        if not orch.is_active():
            return _error_response(409, "invalid_state", f"no active job ({orch.status.value})")
        orch.stop()
        return {"status": orch.status.value, "stop_requested": True}

    @app.get("/jobs/current")
    def current_job(orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        handle = orch.handle
        return handle.snapshot() if handle is not None else _idle_snapshot()

    # ---- results -------------------------------------------------------------

    @app.get("/results")
    def list_results(
        q: str | None = None,
        verified: str | None = None,
        orch: JobOrchestrator = Depends(get_orchestrator),
    ) -> Any:
        rows = orch.sink.records()
        if q:
            rows = search_records(rows, q)
        rows = filter_records(rows, verified=_parse_bool(verified))
        return {"count": len(rows), "results": [r.to_dict() for r in rows]}

    @app.get("/results/export")
    def export_results(
        format: str = "csv",
        with_stats: bool = False,
        orch: JobOrchestrator = Depends(get_orchestrator),
    ) -> Any:
        fmt = format.strip().lower()
        if fmt not in EXPORT_FORMATS:
            return _error_response(422, "invalid_format", f"format must be one of {', '.join(EXPORT_FORMATS)}")
        body = render(orch.sink.records(), fmt, with_stats=with_stats)
        return Response(
            content=body,
            media_type=_MEDIA_TYPES[fmt],
            headers={"Content-Disposition": f'attachment; filename="scholar_scraper_export.{fmt}"'},
        )

    @app.delete("/results")
    def clear_results(orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        removed = len(orch.sink.records())
        try:
            orch.clear_results()
        except JobAlreadyActive as exc:
            return _error_response(409, "job_already_active", str(exc))
        log.info("cleared %d result(s)", removed)
        return {"cleared": removed}

    @app.get("/stats")
    def stats(orch: JobOrchestrator = Depends(get_orchestrator)) -> Any:
        job = orch.job
        return {
            "job": job.stats.to_dict() if job is not None else None,
            "status": orch.status.value,
            "results": summarize(orch.sink.records()),
        }

    return app


app = create_app()

__all__ = ["StartJobRequest", "app", "create_app"]
