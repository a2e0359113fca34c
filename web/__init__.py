"""
CodeRide Live — web server.
FastAPI REST + WebSocket surface over the live activity pipeline.

Run:  coderide-live [--port 8765] [--host 127.0.0.1]
"""

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

from config import app_config
from web import api_live

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title=app_config.title)


@app.middleware("http")
async def no_cache_live(request, call_next):
    """Live snapshots must never be served from a browser cache."""
    response = await call_next(request)
    if request.url.path.startswith("/api/live/"):
        response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return response


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(api_live.router)
