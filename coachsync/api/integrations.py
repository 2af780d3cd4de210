from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from coachsync.db import get_db
from coachsync.exceptions import (
    IntegrationNotFoundOrInactive,
    OAuthExchangeError,
    ProviderAPIError,
    SyncAlreadyInProgress,
    Unauthorized,
    UnsupportedProvider,
)
from coachsync.models.enums import Provider
from coachsync.schemas.integration import (
    AuthorizeIntegrationRequest,
    AuthorizeIntegrationResponse,
    Integration,
    OAuthCallbackRequest,
    ProviderType,
    SyncLog,
)
from coachsync.services.integration_service import IntegrationService, create_integration_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["Integrations"])


def get_integration_service(session: AsyncSession = Depends(get_db)) -> IntegrationService:
    return create_integration_service(session)


@router.get("/types", response_model=List[ProviderType])
async def list_integration_types() -> List[ProviderType]:
    """Return the providers a user can connect."""
    return [ProviderType(value=p.value, name=p.name) for p in Provider]


@router.get("/user/{user_id}", response_model=List[Integration])
async def list_user_integrations(
    user_id: UUID,
    service: IntegrationService = Depends(get_integration_service),
) -> List[Integration]:
    integrations = await service.list_for_user(user_id)
    return [Integration.model_validate(i) for i in integrations]


@router.get("/{integration_id}", response_model=Integration)
async def get_integration(
    integration_id: UUID,
    service: IntegrationService = Depends(get_integration_service),
) -> Integration:
    integration = await service.get_integration(integration_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")
    return Integration.model_validate(integration)


@router.post("/{user_id}/authorize", response_model=AuthorizeIntegrationResponse)
async def authorize_integration(
    user_id: UUID,
    request: AuthorizeIntegrationRequest,
    service: IntegrationService = Depends(get_integration_service),
) -> AuthorizeIntegrationResponse:
    try:
        url = service.get_authorization_url(user_id, request.type, request.redirect_url)
    except UnsupportedProvider as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AuthorizeIntegrationResponse(authorization_url=url)


@router.post("/oauth/callback", response_model=Integration)
async def oauth_callback(
    request: OAuthCallbackRequest,
    user_id: UUID = Query(..., description="Authenticated user completing the connection"),
    service: IntegrationService = Depends(get_integration_service),
) -> Integration:
    """Exchange the authorization code and connect (or reconnect) the provider."""
    try:
        integration = await service.create_or_reconnect(
            user_id, request.type, request.authorization_code, request.state
        )
    except Unauthorized:
        raise HTTPException(status_code=401, detail="Invalid state parameter")
    except (OAuthExchangeError, ProviderAPIError, UnsupportedProvider) as e:
        # Provider response bodies stay in the logs
        raise HTTPException(status_code=400, detail=str(e))
    return Integration.model_validate(integration)


@router.delete("/{integration_id}", status_code=204)
async def revoke_integration(
    integration_id: UUID,
    service: IntegrationService = Depends(get_integration_service),
) -> Response:
    if not await service.revoke(integration_id):
        raise HTTPException(status_code=404, detail="Integration not found")
    return Response(status_code=204)


@router.post("/{integration_id}/sync", response_model=SyncLog)
async def trigger_sync(
    integration_id: UUID,
    service: IntegrationService = Depends(get_integration_service),
) -> SyncLog:
    try:
        sync_log = await service.trigger_sync(integration_id)
    except IntegrationNotFoundOrInactive as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SyncAlreadyInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    return SyncLog.model_validate(sync_log)


@router.get("/{integration_id}/sync/history", response_model=List[SyncLog])
async def get_sync_history(
    integration_id: UUID,
    limit: int = Query(10, ge=1, le=100),
    service: IntegrationService = Depends(get_integration_service),
) -> List[SyncLog]:
    history = await service.get_sync_history(integration_id, limit)
    return [SyncLog.model_validate(log) for log in history]
