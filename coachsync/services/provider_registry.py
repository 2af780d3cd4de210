from __future__ import annotations

from typing import Optional

import httpx

from coachsync.exceptions import NotSupported
from coachsync.models.enums import Provider
from coachsync.services.base_provider import ProviderService
from coachsync.services.myfitnesspal_service import create_myfitnesspal_service
from coachsync.services.strava_service import create_strava_service


class ProviderRegistry:
    """Resolves a provider to its data-API service.

    Every Provider member must have an explicit branch; unknown values raise
    NotSupported rather than being skipped.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30) -> None:
        self._client = client
        self._timeout = timeout

    def get(self, provider: "Provider | str") -> ProviderService:
        try:
            provider = Provider(provider)
        except ValueError:
            raise NotSupported(f"Sync not implemented for {provider}") from None

        if provider is Provider.STRAVA:
            return create_strava_service(client=self._client, timeout=self._timeout)
        elif provider is Provider.MYFITNESSPAL:
            return create_myfitnesspal_service(client=self._client, timeout=self._timeout)
        raise NotSupported(f"Sync not implemented for {provider}")
