"""
Settings router: read and update the catalog settings.

Services built from settings are closed and dropped on save so the next
request rebuilds them with the new values.
"""
import logging

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError as PydanticValidationError

from cache import set_cache
from config import CatalogSettings, get_settings, save_settings, set_log_level
from fetch_pipeline import get_fetcher, set_fetcher
from liveness_prober import get_prober, set_prober
from manifest_resolver import set_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("")
async def get_current_settings():
    logger.debug("[SETTINGS] GET /api/settings")
    return get_settings().model_dump()


@router.post("")
async def update_settings(request: dict):
    """Merge the given fields into the current settings and save them."""
    current_settings = get_settings()
    merged = {**current_settings.model_dump(), **request}
    try:
        new_settings = CatalogSettings(**merged)
    except PydanticValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))

    save_settings(new_settings)

    if new_settings.backend_log_level != current_settings.backend_log_level:
        logger.info("[SETTINGS] Applying new backend log level: %s", new_settings.backend_log_level)
        set_log_level(new_settings.backend_log_level)

    # A running health check keeps its prober until it finishes
    prober = get_prober()
    if not prober.is_running():
        set_prober(None)
        await prober.aclose()

    old_fetcher = get_fetcher()
    set_fetcher(None)
    set_resolver(None)
    await old_fetcher.aclose()

    if new_settings.resolution_cache_ttl != current_settings.resolution_cache_ttl:
        logger.info("[SETTINGS] Resolution cache TTL changed to %ss, dropping cached results",
                    new_settings.resolution_cache_ttl)
        set_cache(None)

    logger.info("[SETTINGS] Settings saved successfully")
    return {"status": "saved", "settings": new_settings.model_dump()}
