from __future__ import annotations

import logging
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachsync.models.imported_record import ImportedRecord
from coachsync.models.integration import Integration
from coachsync.services.base_provider import RecordCandidate

logger = logging.getLogger(__name__)


async def import_records(
    session: AsyncSession,
    integration: Integration,
    candidates: List[RecordCandidate],
) -> Tuple[int, int]:
    """Attach new provider records to the user's log.

    Returns (imported, skipped). Records already attached to the integration,
    or repeated within the batch, are skipped. Rows are added to the session
    without committing so the caller controls the unit of work.
    """
    if not candidates:
        return 0, 0

    stmt = select(ImportedRecord.record_type, ImportedRecord.external_id).where(
        ImportedRecord.integration_id == integration.id,
        ImportedRecord.external_id.in_({c.external_id for c in candidates}),
    )
    result = await session.execute(stmt)
    seen = {(row.record_type, row.external_id) for row in result}

    imported = 0
    skipped = 0
    for candidate in candidates:
        key = (candidate.record_type.value, candidate.external_id)
        if key in seen:
            skipped += 1
            continue
        seen.add(key)
        session.add(
            ImportedRecord(
                integration_id=integration.id,
                user_id=integration.user_id,
                provider=integration.provider,
                record_type=candidate.record_type.value,
                external_id=candidate.external_id,
                occurred_at=candidate.occurred_at,
                payload=candidate.payload,
            )
        )
        imported += 1

    logger.debug(f"Integration {integration.id}: {imported} imported, {skipped} skipped")
    return imported, skipped
