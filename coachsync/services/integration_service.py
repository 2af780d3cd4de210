from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from coachsync.config import Settings, get_settings
from coachsync.db import as_utc, utcnow
from coachsync.exceptions import (
    IntegrationNotFoundOrInactive,
    SyncAlreadyInProgress,
    Unauthorized,
)
from coachsync.models.enums import Provider, SyncStatus
from coachsync.models.integration import Integration
from coachsync.models.sync_log import SyncLog
from coachsync.services.base_provider import ProviderSyncBatch
from coachsync.services.import_service import import_records
from coachsync.services.oauth_service import OAuthService, TokenResponse
from coachsync.services.provider_registry import ProviderRegistry

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this window before syncing
TOKEN_REFRESH_WINDOW = dt.timedelta(minutes=5)


class IntegrationService:
    """Owns the Integration aggregate: connect, revoke, sync and history.

    One instance is bound to one AsyncSession; every public operation is a
    request-scoped unit of work over that session.
    """

    def __init__(
        self,
        session: AsyncSession,
        oauth_service: Optional[OAuthService] = None,
        providers: Optional[ProviderRegistry] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.oauth = oauth_service or OAuthService(self.settings)
        self.providers = providers or ProviderRegistry(timeout=self.settings.http_timeout_seconds)

    # ------------------------------------------------------------------
    # Connect / reconnect
    # ------------------------------------------------------------------

    def get_authorization_url(
        self, user_id: UUID, provider: "Provider | str", redirect_url: Optional[str] = None
    ) -> str:
        return self.oauth.generate_authorization_url(Provider.parse(provider), user_id, redirect_url)

    async def create_or_reconnect(
        self, user_id: UUID, provider: "Provider | str", code: str, state: str
    ) -> Integration:
        """Complete the OAuth callback and upsert the (user, provider) row."""
        provider = Provider.parse(provider)

        state_data = self.oauth.decode_state(state)
        if state_data.user_id != user_id or state_data.provider is not provider:
            raise Unauthorized("Invalid state parameter")

        token = await self.oauth.exchange_code_for_token(provider, code, state)
        external_user_id = await self.providers.get(provider).fetch_external_user_id(
            token.access_token
        )

        integration = await self._get_for_user(user_id, provider)
        if integration is None:
            integration = Integration(user_id=user_id, provider=provider.value)
            self._apply_connection(integration, external_user_id, token)
            self.session.add(integration)
            try:
                await self.session.commit()
            except IntegrityError:
                # A concurrent callback inserted the row first; overwrite it instead
                await self.session.rollback()
                integration = await self._get_for_user(user_id, provider)
                if integration is None:
                    raise
                self._apply_connection(integration, external_user_id, token)
                await self.session.commit()
        else:
            self._apply_connection(integration, external_user_id, token)
            await self.session.commit()

        logger.info(f"Created/updated {provider.value} integration {integration.id} for user {user_id}")
        return integration

    def _apply_connection(
        self, integration: Integration, external_user_id: str, token: TokenResponse
    ) -> None:
        integration.external_user_id = external_user_id
        integration.access_token = token.access_token
        integration.refresh_token = token.refresh_token
        integration.token_expires_at = token.expires_at
        integration.is_active = True
        integration.connected_at = utcnow()
        integration.extra_metadata = dict(
            integration.extra_metadata or {},
            token_type=token.token_type,
            scopes=token.scopes,
        )

    async def _get_for_user(self, user_id: UUID, provider: Provider) -> Optional[Integration]:
        stmt = select(Integration).where(
            Integration.user_id == user_id,
            Integration.provider == provider.value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_for_user(self, user_id: UUID) -> List[Integration]:
        stmt = (
            select(Integration)
            .where(Integration.user_id == user_id)
            .order_by(Integration.provider)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_integration(self, integration_id: UUID) -> Optional[Integration]:
        return await self.session.get(Integration, integration_id)

    async def get_sync_history(self, integration_id: UUID, limit: int = 10) -> List[SyncLog]:
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        stmt = (
            select(SyncLog)
            .where(SyncLog.integration_id == integration_id)
            .order_by(SyncLog.started_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_external_user(
        self, provider: "Provider | str", external_user_id: str
    ) -> List[Integration]:
        """Active integrations bound to a provider-side account."""
        provider = Provider.parse(provider)
        stmt = select(Integration).where(
            Integration.provider == provider.value,
            Integration.external_user_id == external_user_id,
            Integration.is_active.is_(True),
        ).order_by(Integration.connected_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    async def revoke(self, integration_id: UUID) -> bool:
        integration = await self.session.get(Integration, integration_id)
        if integration is None:
            return False

        try:
            revoked = await self.oauth.revoke_token(integration.provider_type, integration.access_token)
            if not revoked:
                logger.info(f"Provider did not confirm token revocation for integration {integration_id}")
        except Exception as e:
            logger.warning(f"Failed to revoke token with provider for integration {integration_id}: {e}")

        # The local flag decides whether future syncs run
        integration.is_active = False
        await self.session.commit()

        logger.info(f"Revoked integration {integration_id}")
        return True

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def trigger_sync(self, integration_id: UUID, trigger: str = "manual") -> SyncLog:
        """Run one sync and return its terminal SyncLog.

        Raises IntegrationNotFoundOrInactive before any log is written, and
        SyncAlreadyInProgress when another run holds the integration's lease.
        Every other failure is recorded on the returned log.
        """
        integration = await self.session.get(Integration, integration_id)
        if integration is None or not integration.is_active:
            raise IntegrationNotFoundOrInactive(f"Integration {integration_id} not found or inactive")

        sync_log = SyncLog(
            integration_id=integration.id,
            status=SyncStatus.IN_PROGRESS.value,
            started_at=utcnow(),
            sync_cursor=integration.sync_cursor,
            extra_metadata={"trigger": trigger},
        )
        self.session.add(sync_log)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise SyncAlreadyInProgress(f"A sync is already running for integration {integration_id}")

        log_id = sync_log.id
        timeout = self.settings.sync_timeout_seconds
        error: Optional[str] = None
        batch: Optional[ProviderSyncBatch] = None
        imported = skipped = 0

        try:
            batch = await asyncio.wait_for(self._fetch_batch(integration), timeout=timeout)
            imported, skipped = await import_records(self.session, integration, batch.records)
        except asyncio.TimeoutError:
            error = f"Sync timed out after {timeout} seconds"
        except Exception as e:
            error = str(e) or e.__class__.__name__

        if error is None and batch is not None:
            sync_log.mark_completed(
                processed=len(batch.records),
                imported=imported,
                skipped=skipped,
                cursor=batch.cursor,
            )
            integration.last_sync_at = sync_log.completed_at
            integration.sync_cursor = batch.cursor
            logger.info(
                f"Sync completed for integration {integration_id}: "
                f"{len(batch.records)} processed, {imported} imported, {skipped} skipped"
            )
        else:
            sync_log.mark_failed(error or "Sync failed")
            logger.error(f"Sync failed for integration {integration_id}: {error}")

        try:
            await self.session.commit()
        except StaleDataError:
            # The stale-sync sweep closed this log while the run was in flight
            await self.session.rollback()
            logger.warning(
                f"Sync log {log_id} for integration {integration_id} was closed elsewhere; "
                f"discarding this run's result"
            )
            sync_log = await self.session.get(SyncLog, log_id, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error(f"Could not persist sync result for integration {integration_id}: {e}")
            await self.session.rollback()
            sync_log = await self.session.get(SyncLog, log_id, populate_existing=True)
            if not sync_log.sync_status.is_terminal:
                sync_log.mark_failed(f"Could not persist sync result: {e.__class__.__name__}")
                await self.session.commit()

        return sync_log

    async def _fetch_batch(self, integration: Integration) -> ProviderSyncBatch:
        """Network half of a sync: token refresh and provider dispatch."""
        service = self.providers.get(integration.provider)

        expires_at = as_utc(integration.token_expires_at)
        if expires_at is not None and expires_at < utcnow() + TOKEN_REFRESH_WINDOW:
            await self._refresh_integration_token(integration)

        return await service.sync(integration.access_token, integration.sync_cursor)

    async def _refresh_integration_token(self, integration: Integration) -> None:
        if not integration.refresh_token:
            logger.warning(f"Token for integration {integration.id} is expiring but no refresh token is stored")
            return

        logger.info(f"Refreshing access token for integration {integration.id}")
        token = await self.oauth.refresh_access_token(integration.provider_type, integration.refresh_token)
        integration.access_token = token.access_token
        # Rotation is optional; keep the old refresh token when none is returned
        integration.refresh_token = token.refresh_token or integration.refresh_token
        integration.token_expires_at = token.expires_at

    async def trigger_sync_for_external_user(
        self, provider: "Provider | str", external_user_id: str, trigger: str = "webhook"
    ) -> List[SyncLog]:
        """Sync every active integration bound to a provider-side account."""
        integrations = await self.find_by_external_user(provider, external_user_id)
        if not integrations:
            logger.warning(f"No active {provider} integration for external user {external_user_id}")
            return []

        # A lease conflict rolls the session back, so keep plain ids
        integration_ids = [integration.id for integration in integrations]
        logs: List[SyncLog] = []
        rolled_back = False
        for integration_id in integration_ids:
            try:
                logs.append(await self.trigger_sync(integration_id, trigger=trigger))
            except SyncAlreadyInProgress:
                rolled_back = True
                logger.info(f"Sync already running for integration {integration_id}, skipping")

        # Logs collected before the rollback are expired
        if rolled_back:
            for sync_log in logs:
                await self.session.refresh(sync_log)
        return logs

    async def fail_abandoned_syncs(self, older_than: dt.timedelta) -> int:
        """Fail in-progress logs started before now - older_than. Returns the count."""
        cutoff = utcnow() - older_than
        stmt = select(SyncLog.id).where(
            SyncLog.status == SyncStatus.IN_PROGRESS.value,
            SyncLog.started_at < cutoff,
        )
        result = await self.session.execute(stmt)
        stale_ids = list(result.scalars().all())

        failed = 0
        for log_id in stale_ids:
            sync_log = await self.session.get(SyncLog, log_id, populate_existing=True)
            if sync_log is None or sync_log.sync_status.is_terminal:
                continue
            sync_log.mark_failed(
                f"Sync abandoned: still in progress after {int(older_than.total_seconds())} seconds"
            )
            try:
                await self.session.commit()
            except StaleDataError:
                # The run finished between the select and this write
                await self.session.rollback()
                logger.info(f"Sync log {log_id} finished before it could be failed")
                continue
            failed += 1

        if failed:
            logger.warning(f"Marked {failed} abandoned sync(s) as failed")
        return failed


# Factory function for dependency injection
def create_integration_service(session: AsyncSession) -> IntegrationService:
    return IntegrationService(session)
