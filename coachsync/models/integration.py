from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from coachsync.db import Base
from coachsync.models.enums import Provider


class Integration(Base):
    """One user's OAuth binding to one provider account.

    Rows are upserted by (user_id, provider) and deactivated rather than
    deleted on revoke so the sync history stays attached.
    """

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_integrations_user_provider"),
        Index("ix_integrations_provider_external_user", "provider", "external_user_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    provider = Column(String(32), nullable=False)  # 'strava', 'myfitnesspal'
    external_user_id = Column(String(100), nullable=False)

    # OAuth tokens (encrypted at rest in production)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    connected_at = Column(DateTime(timezone=True), nullable=False)

    # Sync tracking
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_cursor = Column(Text, nullable=True)

    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def provider_type(self) -> Provider:
        return Provider.parse(self.provider)

    def __repr__(self) -> str:
        return f"<Integration {self.id} {self.provider} user={self.user_id} active={self.is_active}>"
