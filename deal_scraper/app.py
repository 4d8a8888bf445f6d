"""FastAPI application exposing source management, runs and conflicts."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import ConflictResolutionError, SourceConfigError
from .logging import get_logger
from .runtime import Runtime, build_runtime
from .time_utils import parse_date_bound

logger = get_logger(__name__)


class SourcePayload(BaseModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    config: Dict[str, Any]
    priority: int = 0
    is_active: bool = True
    id: Optional[int] = None


class DryRunPayload(BaseModel):
    url: str = Field(..., min_length=1)
    config: Dict[str, Any]


class ResolvePayload(BaseModel):
    decision: Literal["accept", "reject"]
    resolved_by: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime: Runtime | None = getattr(app.state, "runtime", None)
    owned = runtime is None
    if runtime is None:
        runtime = build_runtime()
        app.state.runtime = runtime
    scheduler_enabled = runtime.config.scheduler_enabled
    try:
        if scheduler_enabled:
            await runtime.scheduler.start()
        yield
    finally:
        if scheduler_enabled:
            await runtime.scheduler.stop()
        if owned:
            runtime.close()


def get_runtime(request: Request) -> Runtime:
    runtime: Runtime = request.app.state.runtime
    return runtime


def create_app(runtime: Runtime | None = None) -> FastAPI:
    api = FastAPI(title="Bank Deal Scraper", version="1.0.0", lifespan=lifespan)
    if runtime is not None:
        api.state.runtime = runtime

    @api.exception_handler(SourceConfigError)
    async def config_error_handler(request: Request, exc: SourceConfigError) -> JSONResponse:
        logger.warning("source_config_rejected", path=request.url.path, problems=list(exc.problems))
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.describe(), "problems": list(exc.problems)},
        )

    @api.get("/health")
    def health(runtime: Runtime = Depends(get_runtime)) -> dict:
        report = runtime.service.overall_health()
        report["timezone"] = runtime.config.timezone_name
        return report

    @api.get("/templates")
    def templates(runtime: Runtime = Depends(get_runtime)) -> list:
        return [template.to_dict() for template in runtime.service.templates()]

    @api.get("/sources")
    def list_sources(
        active_only: bool = Query(False, description="Only return active sources"),
        runtime: Runtime = Depends(get_runtime),
    ) -> list:
        return [source.to_dict() for source in runtime.service.list_sources(active_only=active_only)]

    @api.post("/sources", status_code=status.HTTP_201_CREATED)
    def save_source(payload: SourcePayload, runtime: Runtime = Depends(get_runtime)) -> dict:
        try:
            saved = runtime.service.save_source(
                name=payload.name,
                url=payload.url,
                tree=payload.config,
                priority=payload.priority,
                is_active=payload.is_active,
                source_id=payload.id,
            )
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return saved.to_dict()

    @api.post("/sources/test")
    def test_source(payload: DryRunPayload, runtime: Runtime = Depends(get_runtime)) -> dict:
        """Dry run of an unsaved configuration."""
        return runtime.service.test_config(payload.url, payload.config).to_dict()

    @api.post("/sources/{source_id}/run", status_code=status.HTTP_202_ACCEPTED)
    def run_source(source_id: int, runtime: Runtime = Depends(get_runtime)) -> dict:
        try:
            ticket = runtime.service.run_source(source_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        if not ticket.accepted:
            raise HTTPException(status_code=409, detail=ticket.reason)
        return ticket.to_dict()

    @api.post("/sources/{source_id}/cancel")
    def cancel_run(source_id: int, runtime: Runtime = Depends(get_runtime)) -> dict:
        if not runtime.service.cancel_run(source_id):
            raise HTTPException(status_code=404, detail=f"No run in progress for source {source_id}")
        return {"source_id": source_id, "cancel_requested": True}

    @api.get("/sources/{source_id}/health")
    def source_health(source_id: int, runtime: Runtime = Depends(get_runtime)) -> dict:
        try:
            return runtime.service.source_health(source_id).to_dict()
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @api.get("/runs")
    def list_runs(
        source_id: Optional[int] = Query(None),
        run_status: Optional[str] = Query(None, alias="status"),
        started_after: Optional[str] = Query(None, description="Date or relative expression"),
        started_before: Optional[str] = Query(None, description="Date or relative expression"),
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=200),
        runtime: Runtime = Depends(get_runtime),
    ) -> dict:
        tz = runtime.config.timezone
        try:
            runs, total = runtime.service.list_runs(
                source_id=source_id,
                status=run_status,
                started_after=parse_date_bound(started_after, tz),
                started_before=parse_date_bound(started_before, tz),
                page=page,
                page_size=page_size,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "runs": [run.to_dict() for run in runs],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    @api.get("/conflicts")
    def list_conflicts(
        conflict_status: Optional[str] = Query(None, alias="status"),
        source_id: Optional[int] = Query(None),
        runtime: Runtime = Depends(get_runtime),
    ) -> list:
        try:
            conflicts = runtime.service.list_conflicts(status=conflict_status, source_id=source_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return [conflict.to_dict() for conflict in conflicts]

    @api.post("/conflicts/{conflict_id}/resolve")
    def resolve_conflict(
        conflict_id: int,
        payload: ResolvePayload,
        runtime: Runtime = Depends(get_runtime),
    ) -> dict:
        try:
            conflict = runtime.service.resolve_conflict(
                conflict_id, payload.decision, resolved_by=payload.resolved_by
            )
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ConflictResolutionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return conflict.to_dict()

    return api


app = create_app()
