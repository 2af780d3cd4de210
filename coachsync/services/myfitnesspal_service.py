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

MYFITNESSPAL_API_URL = "https://api.myfitnesspal.com/v2"
DEFAULT_LOOKBACK_DAYS = 7


class MyFitnessPalService(ProviderService):
    """MyFitnessPal profile/diary API and webhook payloads.

    The cursor is the last diary date synced (ISO `YYYY-MM-DD`). That day is
    fetched again on the next run because entries can still be added to it;
    already-imported entries are skipped by the importer.
    """

    provider = Provider.MYFITNESSPAL
    base_url = MYFITNESSPAL_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        today: Optional[dt.date] = None,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self.lookback_days = lookback_days
        self._today = today

    def _current_date(self) -> dt.date:
        return self._today or dt.datetime.now(dt.timezone.utc).date()

    async def fetch_external_user_id(self, access_token: str) -> str:
        data = await self._get_json(access_token, "/profile")
        profile = data.get("item") if isinstance(data, dict) else None
        if not isinstance(profile, dict):
            raise ProviderAPIError("MyFitnessPal profile response has no item")

        external_id = profile.get("user_id") or profile.get("username")
        if not external_id:
            raise ProviderAPIError("MyFitnessPal profile has no user identifier")
        return str(external_id)

    async def sync(self, access_token: str, cursor: Optional[str]) -> ProviderSyncBatch:
        end = self._current_date()
        if cursor:
            try:
                start = dt.date.fromisoformat(cursor)
            except ValueError as e:
                raise ProviderAPIError(f"Invalid MyFitnessPal sync cursor: {cursor}") from e
        else:
            start = end - dt.timedelta(days=self.lookback_days)

        records: List[RecordCandidate] = []
        day = start
        while day <= end:
            records.extend(await self._fetch_diary_day(access_token, day))
            day += dt.timedelta(days=1)

        logger.info(f"Fetched {len(records)} MyFitnessPal diary entries ({start} - {end})")
        return ProviderSyncBatch(records=records, cursor=end.isoformat())

    async def _fetch_diary_day(self, access_token: str, day: dt.date) -> List[RecordCandidate]:
        data = await self._get_json(access_token, f"/diary/{day.isoformat()}")
        diary = data.get("item") if isinstance(data, dict) else None
        if not isinstance(diary, dict):
            return []

        occurred_at = dt.datetime.combine(day, dt.time.min, tzinfo=dt.timezone.utc)
        entries: List[RecordCandidate] = []
        for meal in diary.get("meals") or []:
            meal_name = meal.get("name") or ""
            for index, food in enumerate(meal.get("foods") or []):
                food_id = food.get("id") or f"{meal_name}:{index}"
                entries.append(
                    RecordCandidate(
                        record_type=RecordType.DIARY_ENTRY,
                        external_id=f"{day.isoformat()}:{food_id}",
                        occurred_at=occurred_at,
                        payload=dict(food, meal_name=meal_name, date=day.isoformat()),
                    )
                )
        return entries

    def parse_webhook(self, payload: Dict[str, Any]) -> Optional[WebhookEvent]:
        user_id = payload.get("user_id")
        if user_id is None:
            return None

        return WebhookEvent(
            provider=Provider.MYFITNESSPAL,
            event_type="update",
            external_user_id=str(user_id),
            external_object_id=None,
            event_time=dt.datetime.now(dt.timezone.utc),
            raw_data=payload,
        )


def create_myfitnesspal_service(
    client: Optional[httpx.AsyncClient] = None, timeout: float = 30
) -> MyFitnessPalService:
    return MyFitnessPalService(client=client, timeout=timeout)
