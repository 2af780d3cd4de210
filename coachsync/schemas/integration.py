from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from coachsync.models.enums import Provider, SyncStatus


class AuthorizeIntegrationRequest(BaseModel):
    type: Provider
    redirect_url: Optional[str] = None


class AuthorizeIntegrationResponse(BaseModel):
    authorization_url: str


class OAuthCallbackRequest(BaseModel):
    type: Provider
    authorization_code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


class Integration(BaseModel):
    """Public view of an integration; tokens are never exposed."""

    id: UUID
    user_id: UUID
    provider: Provider
    external_user_id: str
    is_active: bool
    connected_at: datetime
    last_sync_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra_metadata")

    class Config:
        from_attributes = True
        populate_by_name = True


class SyncLog(BaseModel):
    id: UUID
    integration_id: UUID
    status: SyncStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_imported: int = 0
    records_skipped: int = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class ProviderType(BaseModel):
    value: str
    name: str
