import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from config import get_log_level_from_env, get_settings, set_log_level
from database import init_db
from fetch_pipeline import get_fetcher
from liveness_prober import get_prober
from log_utils import install_safe_logging
from routers import channels, settings, sources, streams

logging.basicConfig(
    level=get_log_level_from_env(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
install_safe_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    set_log_level(get_settings().backend_log_level)
    logger.info("[CATALOG] Channel catalog service started")
    yield
    await get_fetcher().aclose()
    await get_prober().aclose()
    logger.info("[CATALOG] Channel catalog service stopped")


app = FastAPI(
    title="Channel Catalog",
    description="Live channel catalog: playlist import, matching, manifest resolution and liveness checks",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sources.router)
app.include_router(channels.router)
app.include_router(streams.router)
app.include_router(settings.router)


# Health check
@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "channel-catalog"}


# Serve static files in production
static_dir = os.path.join(os.path.dirname(__file__), "static")
if os.path.exists(static_dir):
    app.mount(
        "/assets", StaticFiles(directory=os.path.join(static_dir, "assets")), name="assets"
    )

    @app.get("/{full_path:path}")
    async def serve_spa(full_path: str):
        # Serve index.html for all non-API routes (SPA routing)
        index_path = os.path.join(static_dir, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "Frontend not built"}
