"""Admin routes for sync control and static feed refresh."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from transit_sync.errors import FeedFormatError, NetworkError, StoreError
from transit_sync.logging import get_logger
from transit_sync.routers.deps import ContextDep

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class SyncStartRequest(BaseModel):
    interval_sec: Optional[int] = Field(
        default=None,
        ge=1,
        le=3600,
        description="Cycle period in seconds. Defaults to env SYNC_INTERVAL_SEC.",
    )


class StaticRefreshRequest(BaseModel):
    force: bool = Field(
        default=False,
        description="If true, download and load even when the archive looks unchanged.",
    )


class StaticRefreshResponse(BaseModel):
    status: str
    report: Optional[dict[str, Any]] = None


# No auth: admin routes are meant to sit behind the deployment's private network.
@router.post("/sync/start", summary="Start the realtime sync loop")
async def start_sync(context: ContextDep, body: Optional[SyncStartRequest] = None) -> dict[str, Any]:
    interval = body.interval_sec if body else None
    await context.orchestrator.start(interval_sec=interval)
    return context.orchestrator.get_metrics().to_dict()


@router.post("/sync/stop", summary="Stop the realtime sync loop")
async def stop_sync(context: ContextDep) -> dict[str, Any]:
    await context.orchestrator.stop()
    return context.orchestrator.get_metrics().to_dict()


@router.post("/sync/run-once", summary="Run one sync cycle now")
async def run_sync_once(context: ContextDep) -> dict[str, Any]:
    report = await context.orchestrator.run_once()
    return report.to_dict()


@router.get("/sync/metrics", summary="Sync counters and derived health")
async def get_sync_metrics(context: ContextDep) -> dict[str, Any]:
    metrics = context.orchestrator.get_metrics()
    return {**metrics.to_dict(), "healthy": context.orchestrator.is_healthy()}


@router.post(
    "/static/refresh",
    response_model=StaticRefreshResponse,
    summary="Refresh the static GTFS snapshot",
    description=(
        "Check the published archive for changes and reload it when it changed. "
        "The load is all-or-nothing: on failure the previous snapshot stays live."
    ),
)
async def refresh_static(
    context: ContextDep, body: Optional[StaticRefreshRequest] = None
) -> dict[str, Any]:
    force = body.force if body else False
    try:
        report = await context.refresher.refresh(force=force)
    except FeedFormatError as exc:
        logger.warning("Static refresh rejected", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NetworkError as exc:
        logger.warning("Static refresh download failed", error=str(exc), online=exc.online)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StoreError as exc:
        logger.error("Static refresh write failed", error=str(exc))
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if report is None:
        return {"status": "up_to_date", "report": None}
    status = "unchanged" if report.skipped_unchanged else "loaded"
    return {"status": status, "report": report.to_dict()}


@router.get("/static/update-available", summary="Check for a newer static archive")
async def static_update_available(context: ContextDep) -> dict[str, bool]:
    return {"update_available": await context.feed_client.is_update_available()}
