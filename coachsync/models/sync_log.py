from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text

from coachsync.db import Base, utcnow
from coachsync.exceptions import InvalidSyncTransition
from coachsync.models.enums import SyncStatus


class SyncLog(Base):
    """Audit record for a single sync attempt against one integration."""

    __tablename__ = "integration_sync_logs"
    __table_args__ = (
        # Per-integration sync lease: one in-flight run at a time.
        Index(
            "uq_sync_logs_one_in_progress",
            "integration_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
        Index("ix_sync_logs_integration_started", "integration_id", "started_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    integration_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
    )

    status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value)

    # Timing
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Change tracking
    records_processed = Column(Integer, nullable=False, default=0)
    records_imported = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)
    sync_cursor = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    # Optimistic lock: a write from an outdated copy raises StaleDataError
    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def sync_status(self) -> SyncStatus:
        return SyncStatus(self.status)

    def _ensure_open(self) -> None:
        if self.sync_status.is_terminal:
            raise InvalidSyncTransition(
                f"Sync log {self.id} is already {self.status} and cannot transition again"
            )

    def mark_completed(
        self,
        processed: int,
        imported: int,
        skipped: int,
        cursor: Optional[str],
    ) -> None:
        self._ensure_open()
        self.status = SyncStatus.COMPLETED.value
        self.completed_at = utcnow()
        self.records_processed = processed
        self.records_imported = imported
        self.records_skipped = skipped
        self.sync_cursor = cursor

    def mark_failed(self, error_message: str) -> None:
        self._ensure_open()
        self.status = SyncStatus.FAILED.value
        self.completed_at = utcnow()
        self.error_message = error_message
