from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

import httpx

from coachsync.exceptions import ProviderAPIError
from coachsync.models.enums import Provider, RecordType
from coachsync.services.base_provider import (
    ProviderService,
    ProviderSyncBatch,
    RecordCandidate,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

STRAVA_API_URL = "https://www.strava.com/api/v3"
STRAVA_PAGE_SIZE = 50
STRAVA_MAX_PAGES = 10

# Activity fields kept on the imported record
ACTIVITY_FIELDS = [
    "id",
    "name",
    "type",
    "sport_type",
    "start_date",
    "start_date_local",
    "distance",
    "moving_time",
    "elapsed_time",
    "total_elevation_gain",
    "calories",
    "average_heartrate",
    "max_heartrate",
    "average_speed",
    "max_speed",
]


def _parse_start_date(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


class StravaService(ProviderService):
    """Strava athlete/activity API and webhook payloads."""

    provider = Provider.STRAVA
    base_url = STRAVA_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
        page_size: int = STRAVA_PAGE_SIZE,
        max_pages: int = STRAVA_MAX_PAGES,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self.page_size = page_size
        self.max_pages = max_pages

    async def fetch_external_user_id(self, access_token: str) -> str:
        athlete = await self._get_json(access_token, "/athlete")
        athlete_id = athlete.get("id") if isinstance(athlete, dict) else None
        if athlete_id is None:
            raise ProviderAPIError("Strava athlete response has no id")
        return str(athlete_id)

    async def sync(self, access_token: str, cursor: Optional[str]) -> ProviderSyncBatch:
        """Fetch activities started after the cursor (unix seconds)."""
        after = int(cursor) if cursor else None
        newest = after
        records: List[RecordCandidate] = []

        for page in range(1, self.max_pages + 1):
            params: Dict[str, Any] = {"per_page": self.page_size, "page": page}
            if after is not None:
                params["after"] = after

            activities = await self._get_json(access_token, "/athlete/activities", params=params)
            if not isinstance(activities, list):
                raise ProviderAPIError("Unexpected Strava activities response")

            for activity in activities:
                if "id" not in activity:
                    logger.warning("Skipping Strava activity without id")
                    continue
                started = _parse_start_date(activity.get("start_date"))
                if started is not None:
                    epoch = int(started.timestamp())
                    newest = epoch if newest is None else max(newest, epoch)
                records.append(
                    RecordCandidate(
                        record_type=RecordType.ACTIVITY,
                        external_id=str(activity["id"]),
                        occurred_at=started,
                        payload={k: activity[k] for k in ACTIVITY_FIELDS if k in activity},
                    )
                )

            if len(activities) < self.page_size:
                break

        logger.info(f"Fetched {len(records)} Strava activities (after={after})")
        return ProviderSyncBatch(
            records=records,
            cursor=str(newest) if newest is not None else cursor,
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> Optional[WebhookEvent]:
        # Only activity events; athlete deauthorization is ignored here
        if payload.get("object_type") != "activity":
            return None
        aspect_type = payload.get("aspect_type")
        if not aspect_type:
            return None

        return WebhookEvent(
            provider=Provider.STRAVA,
            event_type=str(aspect_type),
            external_user_id=str(payload["owner_id"]),
            external_object_id=str(payload["object_id"]),
            event_time=dt.datetime.fromtimestamp(int(payload["event_time"]), tz=dt.timezone.utc),
            raw_data=payload,
        )


def create_strava_service(client: Optional[httpx.AsyncClient] = None, timeout: float = 30) -> StravaService:
    return StravaService(client=client, timeout=timeout)
