from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Mapping, Optional

from coachsync.config import Settings, get_settings
from coachsync.exceptions import NotSupported
from coachsync.models.enums import Provider
from coachsync.services.integration_service import IntegrationService

logger = logging.getLogger(__name__)

# Event types that mean new or changed data on the provider side
SYNC_EVENT_TYPES = {"create", "update"}


def compute_signature(raw_payload: bytes, secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of the exact raw body."""
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def signature_header_for(provider: Provider) -> str:
    if provider is Provider.STRAVA:
        return "X-Hub-Signature"
    elif provider is Provider.MYFITNESSPAL:
        return "X-Signature"
    raise NotSupported(f"Webhooks are not supported for {provider}")


class WebhookService:
    """Authenticates inbound provider webhooks and turns them into syncs."""

    def __init__(self, integration_service: IntegrationService, settings: Optional[Settings] = None) -> None:
        self.integration_service = integration_service
        self.settings = settings or integration_service.settings

    def _webhook_secret(self, provider: Provider) -> Optional[str]:
        if provider is Provider.STRAVA:
            return self.settings.strava_webhook_secret
        elif provider is Provider.MYFITNESSPAL:
            return self.settings.myfitnesspal_webhook_secret
        raise NotSupported(f"Webhooks are not supported for {provider}")

    def verify_signature(self, provider: Provider, raw_payload: bytes, signature: str) -> bool:
        """Check the provider HMAC signature of a webhook body.

        Without a configured secret verification is skipped and the payload is
        accepted, which is only acceptable for development setups.
        """
        secret = self._webhook_secret(provider)
        if not secret:
            logger.warning(f"No webhook secret configured for {provider.value}; skipping signature check")
            return True

        expected = compute_signature(raw_payload, secret)
        received = (signature or "").strip().lower()
        return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))

    async def process_webhook(
        self, provider: Provider, raw_payload: bytes, headers: Mapping[str, str]
    ) -> bool:
        """Parse and dispatch a webhook. Never raises; failures return False."""
        try:
            logger.info(f"Processing webhook for {provider.value}")
            payload = json.loads(raw_payload)
            if not isinstance(payload, dict):
                logger.warning(f"Ignoring non-object {provider.value} webhook payload")
                return False

            service = self.integration_service.providers.get(provider)
            event = service.parse_webhook(payload)
            if event is None:
                logger.info(f"Ignoring unrecognized {provider.value} webhook event")
                return False

            logger.info(
                f"Handling webhook event: {event.event_type} for user {event.external_user_id}"
            )
            if event.event_type in SYNC_EVENT_TYPES:
                await self.integration_service.trigger_sync_for_external_user(
                    event.provider, event.external_user_id, trigger="webhook"
                )
            return True
        except Exception as e:
            logger.error(f"Failed to process webhook for {provider.value}: {e}")
            return False

    def get_webhook_url(self, provider: Provider) -> str:
        return f"{self.settings.base_url}/api/webhooks/{provider.value}"

    def verify_subscription(self, mode: Optional[str], verify_token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Strava subscription handshake; returns the challenge to echo or None."""
        expected = self.settings.strava_webhook_verify_token
        if mode != "subscribe" or not expected or not verify_token:
            return None
        if hmac.compare_digest(verify_token.encode("utf-8"), expected.encode("utf-8")):
            return challenge
        return None


def extract_signature(provider: Provider, headers: Mapping[str, str]) -> str:
    wanted = signature_header_for(provider).lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def create_webhook_service(integration_service: IntegrationService) -> WebhookService:
    return WebhookService(integration_service)
