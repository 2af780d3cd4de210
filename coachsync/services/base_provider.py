from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from coachsync.exceptions import ProviderAPIError
from coachsync.models.enums import Provider, RecordType

logger = logging.getLogger(__name__)


@dataclass
class WebhookEvent:
    """Provider-neutral envelope for an inbound webhook notification."""

    provider: Provider
    event_type: str
    external_user_id: str
    external_object_id: Optional[str]
    event_time: dt.datetime
    raw_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RecordCandidate:
    record_type: RecordType
    external_id: str
    occurred_at: Optional[dt.datetime]
    payload: Dict[str, Any]


@dataclass
class ProviderSyncBatch:
    records: List[RecordCandidate]
    cursor: Optional[str]


class ProviderService:
    """Shared HTTP plumbing for provider data APIs.

    Subclasses implement account lookup, the incremental sync routine and the
    webhook payload parser for one provider.
    """

    provider: Provider
    base_url: str

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30) -> None:
        self._client = client
        self.timeout = timeout

    async def _get_json(self, access_token: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"{self.provider.value} request to {path} failed: {e}") from e

        if not response.is_success:
            logger.error(
                f"{self.provider.value} API error on {path}: {response.status_code} - {response.text}"
            )
            raise ProviderAPIError(
                f"{self.provider.value} API returned {response.status_code} for {path}",
                status_code=response.status_code,
            )
        return response.json()

    async def fetch_external_user_id(self, access_token: str) -> str:
        raise NotImplementedError

    async def sync(self, access_token: str, cursor: Optional[str]) -> ProviderSyncBatch:
        raise NotImplementedError

    def parse_webhook(self, payload: Dict[str, Any]) -> Optional[WebhookEvent]:
        raise NotImplementedError
