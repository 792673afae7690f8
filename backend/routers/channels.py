"""
Channels router: listing, bulk edits, dead-channel removal, groups,
cross-source combine and playlist export.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel

from catalog import CatalogService
from config import get_settings
from database import get_session
from m3u_exporter import DEFAULT_PLAYLIST_NAME, M3U_MEDIA_TYPE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels", tags=["Channels"])


class BulkToggleRequest(BaseModel):
    channel_ids: list[str]
    enabled: bool


class BulkMoveRequest(BaseModel):
    channel_ids: list[str]
    group: str


class ReorderRequest(BaseModel):
    channel_ids: list[str]


@router.get("")
async def list_channels(
    enabled_only: bool = False,
    group: Optional[str] = None,
    search: Optional[str] = None,
    source_id: Optional[str] = None,
):
    """List catalog channels in display order."""
    logger.debug("[CATALOG] GET /api/channels - group=%s search=%s", group, search)
    session = get_session()
    try:
        channels = CatalogService(session).list_channels(
            enabled_only=enabled_only, group=group, search=search, source_id=source_id
        )
        return {"channels": [c.to_dict() for c in channels], "total": len(channels)}
    finally:
        session.close()


@router.post("/bulk/toggle")
async def bulk_toggle(request: BulkToggleRequest):
    session = get_session()
    try:
        updated = CatalogService(session).set_channels_enabled(request.channel_ids, request.enabled)
        logger.info("[CATALOG] %s %s channel(s)", "Enabled" if request.enabled else "Disabled", updated)
        return {"updated": updated}
    finally:
        session.close()


@router.post("/bulk/move")
async def bulk_move(request: BulkMoveRequest):
    session = get_session()
    try:
        updated = CatalogService(session).move_channels(request.channel_ids, request.group)
        return {"updated": updated, "group": request.group.strip()}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        session.close()


@router.post("/reorder")
async def reorder(request: ReorderRequest):
    session = get_session()
    try:
        return {"updated": CatalogService(session).reorder_channels(request.channel_ids)}
    finally:
        session.close()


@router.delete("/dead")
async def remove_dead_channels():
    """Delete every channel whose last probe reported it dead."""
    session = get_session()
    try:
        return {"removed": CatalogService(session).remove_dead_channels()}
    finally:
        session.close()


@router.get("/groups")
async def list_groups():
    session = get_session()
    try:
        return {"groups": CatalogService(session).list_groups()}
    finally:
        session.close()


@router.get("/combine")
async def combine_channels(min_sources: Optional[int] = Query(default=None, ge=1)):
    """Channels offered by at least min_sources distinct sources, grouped by normalized name."""
    threshold = min_sources or get_settings().combine_min_sources
    session = get_session()
    try:
        groups = CatalogService(session).combine(threshold)
        return {"min_sources": threshold, "groups": [g.to_dict() for g in groups]}
    finally:
        session.close()


@router.get("/export.m3u")
async def export_playlist(
    include_disabled: bool = False,
    group: Optional[str] = None,
    sort_by_group: bool = True,
    playlist_name: str = DEFAULT_PLAYLIST_NAME,
):
    """Download the catalog as an #EXTM3U playlist."""
    session = get_session()
    try:
        content = CatalogService(session).export_m3u(
            include_disabled=include_disabled,
            filter_group=group,
            sort_by_group=sort_by_group,
            playlist_name=playlist_name,
        )
    finally:
        session.close()
    return Response(
        content=content,
        media_type=M3U_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="playlist.m3u"'},
    )
