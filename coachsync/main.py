from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coachsync.config import get_settings
from coachsync.db import engine

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from coachsync.api import health, integrations, webhooks  # noqa: E402
from coachsync.services.stale_sync_reaper import stale_sync_reaper  # noqa: E402

app = FastAPI(title="CoachSync Integrations API")

# CORS setup
origins = [settings.frontend_origin]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Startup / shutdown hooks
# ---------------------------------------------------------------------------


@app.on_event("startup")
async def startup_event():
    """Startup event handler."""
    logger.info("Using Alembic for database migrations")
    await stale_sync_reaper.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown event handler."""
    await stale_sync_reaper.stop()
    await engine.dispose()


# Include API routers
app.include_router(health.router)
app.include_router(integrations.router)
app.include_router(webhooks.router)
