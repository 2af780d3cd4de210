from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from coachsync.api.integrations import get_integration_service
from coachsync.exceptions import UnsupportedProvider
from coachsync.models.enums import Provider
from coachsync.services.integration_service import IntegrationService
from coachsync.services.webhook_service import (
    WebhookService,
    create_webhook_service,
    extract_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def get_webhook_service(
    integration_service: IntegrationService = Depends(get_integration_service),
) -> WebhookService:
    return create_webhook_service(integration_service)


def _parse_provider(provider: str) -> Provider:
    try:
        return Provider.parse(provider)
    except UnsupportedProvider:
        raise HTTPException(status_code=400, detail="Unknown integration type")


@router.get("/strava")
async def strava_subscription_handshake(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    service: WebhookService = Depends(get_webhook_service),
) -> Dict[str, Any]:
    """Answer Strava's subscription validation request."""
    echoed = service.verify_subscription(mode, verify_token, challenge)
    if echoed is None:
        raise HTTPException(status_code=400, detail="Invalid subscription request")
    return {"hub.challenge": echoed}


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
) -> Dict[str, Any]:
    """Verify and process a provider webhook."""
    provider_type = _parse_provider(provider)

    # Signature is computed over the exact raw body
    body = await request.body()
    headers = dict(request.headers)

    signature = extract_signature(provider_type, headers)
    if not service.verify_signature(provider_type, body, signature):
        logger.warning(f"Invalid webhook signature for {provider_type.value}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    if not await service.process_webhook(provider_type, body, headers):
        logger.warning(f"Failed to process {provider_type.value} webhook")
        raise HTTPException(status_code=400, detail="Webhook not processed")

    logger.info(f"Successfully processed {provider_type.value} webhook")
    return {"success": True}


@router.get("/{provider}/url")
async def webhook_url(
    provider: str,
    service: WebhookService = Depends(get_webhook_service),
) -> Dict[str, str]:
    """Callback URL to register in the provider's developer dashboard."""
    provider_type = _parse_provider(provider)
    return {"provider": provider_type.value, "url": service.get_webhook_url(provider_type)}
