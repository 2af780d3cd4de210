from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from coachsync.db import Base


class ImportedRecord(Base):
    """A provider object (activity, diary entry) attached to a user's training log."""

    __tablename__ = "imported_records"
    __table_args__ = (
        UniqueConstraint(
            "integration_id", "record_type", "external_id", name="uq_imported_records_external"
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    integration_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    record_type = Column(String(32), nullable=False)  # 'activity', 'diary_entry'
    external_id = Column(String(255), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=True)

    # Raw provider payload for downstream mapping
    payload = Column(JSON, nullable=False, default=dict)

    imported_at = Column(DateTime(timezone=True), server_default=func.now())
