from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from coachsync.config import get_settings
from coachsync.db import get_db
from coachsync.models.enums import Provider
from coachsync.services.oauth_service import build_oauth_configs

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "message": "Service is running"}


@router.get("/database")
async def database_health(session: AsyncSession = Depends(get_db)):
    """Check the database answers a trivial query."""
    try:
        await session.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        return JSONResponse(content={"status": "unhealthy", "error": str(e)}, status_code=503)


@router.get("/providers")
async def provider_configuration():
    """Report which providers have OAuth client credentials configured."""
    settings = get_settings()
    configs = build_oauth_configs(settings)
    providers = {
        provider.value: {
            "oauth_configured": bool(configs[provider].client_id and configs[provider].client_secret),
            "webhook_secret_configured": bool(
                settings.strava_webhook_secret
                if provider is Provider.STRAVA
                else settings.myfitnesspal_webhook_secret
            ),
        }
        for provider in Provider
    }
    return {"providers": providers}
