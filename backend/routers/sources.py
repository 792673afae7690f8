"""
Sources router: import, refresh, enable/disable and delete playlist sources,
plus the built-in selection models used to filter imports.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from catalog import CatalogService, SourceNotFoundError
from channel_matcher import BUILT_IN_MODELS, get_built_in_model, preview_patterns
from database import get_session
from feed_parser import ValidationError
from fetch_pipeline import NetworkError, get_fetcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sources", tags=["Sources"])


class CreateSourceRequest(BaseModel):
    name: str
    origin: str = "url"  # "url", "text", "manual"
    url: Optional[str] = None
    content: Optional[str] = None
    selection_patterns: list[str] = []
    selection_group: Optional[str] = None
    model_id: Optional[str] = None  # Built-in selection model, overrides selection_patterns


class UpdateSourceRequest(BaseModel):
    enabled: bool


class PreviewPatternsRequest(BaseModel):
    patterns: list[str]
    source_id: Optional[str] = None  # Preview against one source only


def _import_error(source_id: Optional[str], e: Exception) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail={"message": str(e), "source_id": source_id})
    return HTTPException(status_code=502, detail={"message": str(e), "source_id": source_id})


@router.get("")
async def list_sources():
    """List all sources."""
    logger.debug("[CATALOG] GET /api/sources")
    session = get_session()
    try:
        sources = CatalogService(session).list_sources()
        return {"sources": [s.to_dict() for s in sources]}
    finally:
        session.close()


@router.post("")
async def create_source(request: CreateSourceRequest):
    """Add a source and import its channels."""
    logger.debug("[CATALOG] POST /api/sources - name=%s origin=%s", request.name, request.origin)

    patterns = request.selection_patterns
    group = request.selection_group
    if request.model_id:
        model = get_built_in_model(request.model_id)
        if model is None:
            raise HTTPException(status_code=404, detail=f"Selection model not found: {request.model_id}")
        patterns = model.patterns
        if model.single_group and not group:
            group = model.default_group_name

    session = get_session()
    try:
        catalog = CatalogService(session)
        try:
            source = catalog.add_source(
                request.name,
                request.origin,
                url=request.url,
                content=request.content,
                selection_patterns=patterns,
                selection_group=group,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        try:
            source = await catalog.refresh_source(source.id, get_fetcher())
        except (ValidationError, NetworkError) as e:
            raise _import_error(source.id, e)
        return source.to_dict()
    finally:
        session.close()


@router.get("/selection-models")
async def list_selection_models():
    """Built-in selection models."""
    return {
        "models": [
            {
                "id": m.id,
                "name": m.name,
                "patterns": m.patterns,
                "single_group": m.single_group,
                "default_group_name": m.default_group_name,
                "built_in": m.built_in,
            }
            for m in BUILT_IN_MODELS
        ]
    }


@router.post("/selection-models/preview")
async def preview_selection(request: PreviewPatternsRequest):
    """How many catalog channels each pattern would select, with examples."""
    session = get_session()
    try:
        channels = CatalogService(session).list_channels(source_id=request.source_id)
        names = [c.name for c in channels]
        return {"total_channels": len(names), "patterns": preview_patterns(names, request.patterns)}
    finally:
        session.close()


@router.post("/{source_id}/refresh")
async def refresh_source(source_id: str):
    """Re-import a source, replacing its channels."""
    logger.debug("[CATALOG] POST /api/sources/%s/refresh", source_id)
    session = get_session()
    try:
        source = await CatalogService(session).refresh_source(source_id, get_fetcher())
        return source.to_dict()
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    except (ValidationError, NetworkError) as e:
        raise _import_error(source_id, e)
    finally:
        session.close()


@router.patch("/{source_id}")
async def update_source(source_id: str, request: UpdateSourceRequest):
    """Enable or disable a source."""
    session = get_session()
    try:
        source = CatalogService(session).set_source_enabled(source_id, request.enabled)
        logger.info("[CATALOG] Source %s %s", source_id, "enabled" if request.enabled else "disabled")
        return source.to_dict()
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    finally:
        session.close()


@router.delete("/{source_id}")
async def delete_source(source_id: str):
    """Delete a source and its channels."""
    session = get_session()
    try:
        removed = CatalogService(session).delete_source(source_id)
        return {"status": "deleted", "channels_removed": removed}
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    finally:
        session.close()
