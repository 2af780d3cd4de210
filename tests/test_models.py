from __future__ import annotations

import datetime as dt
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from coachsync.db import as_utc, utcnow
from coachsync.exceptions import InvalidSyncTransition, UnsupportedProvider
from coachsync.models.enums import Provider, SyncStatus
from coachsync.models.imported_record import ImportedRecord
from coachsync.models.integration import Integration
from coachsync.models.sync_log import SyncLog


class TestProviderEnum:
    """Test the closed provider set."""

    def test_parse_known_values(self):
        assert Provider.parse("strava") is Provider.STRAVA
        assert Provider.parse(" MyFitnessPal ") is Provider.MYFITNESSPAL
        assert Provider.parse(Provider.STRAVA) is Provider.STRAVA

    def test_parse_unknown_value(self):
        with pytest.raises(UnsupportedProvider):
            Provider.parse("garmin")

    def test_terminal_statuses(self):
        assert SyncStatus.COMPLETED.is_terminal
        assert SyncStatus.FAILED.is_terminal
        assert not SyncStatus.IN_PROGRESS.is_terminal
        assert not SyncStatus.PENDING.is_terminal


class TestIntegrationModel:
    """Test Integration model functionality."""

    @pytest.mark.asyncio
    async def test_integration_creation(self, db_session: AsyncSession, make_integration):
        """Test creating an integration with defaults."""
        integration = await make_integration(external_user_id="12345")

        assert integration.id is not None
        assert integration.is_active is True
        assert integration.provider_type is Provider.STRAVA
        assert integration.extra_metadata == {}
        assert "strava" in repr(integration)

    @pytest.mark.asyncio
    async def test_one_integration_per_user_and_provider(
        self, db_session: AsyncSession, make_integration
    ):
        """A user can hold only one row per provider."""
        user_id = uuid.uuid4()
        await make_integration(user_id=user_id)

        db_session.add(
            Integration(
                user_id=user_id,
                provider="strava",
                external_user_id="other",
                access_token="AT2",
                is_active=True,
                connected_at=utcnow(),
            )
        )
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_same_user_different_providers(self, db_session: AsyncSession, make_integration):
        user_id = uuid.uuid4()
        await make_integration(user_id=user_id, provider="strava")
        await make_integration(user_id=user_id, provider="myfitnesspal", external_user_id="jane")

        result = await db_session.execute(select(Integration).where(Integration.user_id == user_id))
        assert len(result.scalars().all()) == 2


class TestSyncLogModel:
    """Test SyncLog transitions and the in-progress lease."""

    @pytest.mark.asyncio
    async def test_mark_completed(self, db_session: AsyncSession, make_integration):
        integration = await make_integration()
        sync_log = SyncLog(integration_id=integration.id, status=SyncStatus.IN_PROGRESS.value)
        db_session.add(sync_log)
        await db_session.commit()

        sync_log.mark_completed(processed=3, imported=2, skipped=1, cursor="1700000000")
        await db_session.commit()

        assert sync_log.sync_status is SyncStatus.COMPLETED
        assert sync_log.completed_at is not None
        assert (sync_log.records_processed, sync_log.records_imported, sync_log.records_skipped) == (3, 2, 1)
        assert sync_log.sync_cursor == "1700000000"

    @pytest.mark.asyncio
    async def test_mark_failed(self, db_session: AsyncSession, make_integration):
        integration = await make_integration()
        sync_log = SyncLog(integration_id=integration.id, status=SyncStatus.IN_PROGRESS.value)
        db_session.add(sync_log)
        await db_session.commit()

        sync_log.mark_failed("boom")

        assert sync_log.sync_status is SyncStatus.FAILED
        assert sync_log.error_message == "boom"
        assert sync_log.completed_at is not None

    @pytest.mark.parametrize("status", [SyncStatus.COMPLETED, SyncStatus.FAILED])
    def test_terminal_logs_cannot_transition(self, status: SyncStatus):
        """Completed and failed logs are immutable."""
        sync_log = SyncLog(integration_id=uuid.uuid4(), status=status.value)

        with pytest.raises(InvalidSyncTransition):
            sync_log.mark_failed("again")
        with pytest.raises(InvalidSyncTransition):
            sync_log.mark_completed(processed=0, imported=0, skipped=0, cursor=None)

    @pytest.mark.asyncio
    async def test_write_from_outdated_copy_is_rejected(
        self, session_factory, db_session: AsyncSession, make_integration
    ):
        integration = await make_integration()
        sync_log = SyncLog(integration_id=integration.id, status=SyncStatus.IN_PROGRESS.value)
        db_session.add(sync_log)
        await db_session.commit()

        async with session_factory() as other_session:
            copy = await other_session.get(SyncLog, sync_log.id)
            copy.mark_failed("abandoned")
            await other_session.commit()

        sync_log.mark_completed(processed=0, imported=0, skipped=0, cursor=None)
        with pytest.raises(StaleDataError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_only_one_in_progress_log_per_integration(
        self, db_session: AsyncSession, make_integration
    ):
        integration = await make_integration()
        integration_id = integration.id
        db_session.add(SyncLog(integration_id=integration_id, status=SyncStatus.IN_PROGRESS.value))
        await db_session.commit()

        db_session.add(SyncLog(integration_id=integration_id, status=SyncStatus.IN_PROGRESS.value))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_terminal_logs_do_not_hold_the_lease(
        self, db_session: AsyncSession, make_integration
    ):
        integration = await make_integration()
        for status in (SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.FAILED):
            db_session.add(SyncLog(integration_id=integration.id, status=status.value))
        db_session.add(SyncLog(integration_id=integration.id, status=SyncStatus.IN_PROGRESS.value))
        await db_session.commit()

        result = await db_session.execute(
            select(SyncLog).where(SyncLog.integration_id == integration.id)
        )
        assert len(result.scalars().all()) == 4


class TestImportedRecordModel:
    """Test ImportedRecord uniqueness."""

    @pytest.mark.asyncio
    async def test_duplicate_external_record_rejected(
        self, db_session: AsyncSession, make_integration
    ):
        integration = await make_integration()

        def record() -> ImportedRecord:
            return ImportedRecord(
                integration_id=integration.id,
                user_id=integration.user_id,
                provider="strava",
                record_type="activity",
                external_id="987",
                payload={"id": 987},
            )

        db_session.add(record())
        await db_session.commit()

        db_session.add(record())
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()


class TestTimeHelpers:
    def test_as_utc_attaches_utc_to_naive_values(self):
        naive = dt.datetime(2024, 1, 1, 12, 0)
        assert as_utc(naive).tzinfo is dt.timezone.utc
        assert as_utc(None) is None

    def test_as_utc_keeps_aware_values(self):
        aware = utcnow()
        assert as_utc(aware) is aware
