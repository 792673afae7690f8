"""
Streams router: manifest resolution, the resolution cache, and liveness
checks (single URL and background health checks over the catalog).
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from catalog import CatalogService
from database import get_session
from liveness_prober import LivenessResult, get_prober
from manifest_resolver import get_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/streams", tags=["Streams"])

# Keeps the running health check task referenced until it finishes
_health_check_task: Optional[asyncio.Task] = None


class ResolveRequest(BaseModel):
    url: str
    headers: dict[str, str] = {}


class ResolveBatchRequest(BaseModel):
    urls: list[str]


class CheckRequest(BaseModel):
    url: str
    headers: dict[str, str] = {}


@router.post("/resolve")
async def resolve_stream(request: ResolveRequest):
    """Resolve one stream URL to a concrete playable URL."""
    logger.debug("[RESOLVE] POST /api/streams/resolve")
    result = await get_resolver().resolve_stream(request.url, headers=request.headers or None)
    return result.to_dict()


@router.post("/resolve/batch")
async def resolve_batch(request: ResolveBatchRequest):
    """Resolve many URLs in bounded slices. Results are in completion order."""
    outcome = await get_resolver().resolve_many(request.urls)
    return {
        "total": outcome.total,
        "completed": outcome.completed,
        "results": [r.to_dict() for r in outcome.results],
    }


@router.get("/cache")
async def get_cache_stats():
    return get_resolver().cache.stats()


@router.delete("/cache")
async def clear_cache():
    cleared = get_resolver().clear_cache()
    return {"cleared": cleared}


def _persist_result(result: LivenessResult) -> None:
    session = get_session()
    try:
        CatalogService(session).apply_liveness([result])
    finally:
        session.close()


@router.post("/health-check")
async def start_health_check():
    """Probe every playable channel in the background."""
    global _health_check_task
    prober = get_prober()
    if prober.is_running():
        raise HTTPException(status_code=409, detail="A health check is already running")

    session = get_session()
    try:
        records = CatalogService(session).playable_channels()
    finally:
        session.close()

    run = prober.start_run(records)

    async def run_with_logging():
        try:
            await prober.run_health_check(run, records, on_result=_persist_result)
        except Exception as e:
            logger.exception("[PROBE] Background health check failed: %s", e)

    _health_check_task = asyncio.create_task(run_with_logging())
    logger.info("[PROBE] Started background health check %s over %s channel(s)", run.id, run.total)
    return {"status": "started", "run": run.to_dict()}


@router.get("/health-check/progress")
async def health_check_progress():
    return get_prober().get_progress()


@router.post("/health-check/cancel")
async def cancel_health_check():
    return get_prober().cancel_health_check()


@router.post("/check")
async def check_stream(request: CheckRequest):
    """Probe one URL for liveness."""
    result = await get_prober().check_url(request.url, headers=request.headers or None)
    return result.to_dict()
