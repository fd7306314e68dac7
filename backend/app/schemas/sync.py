from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import SyncStatus, SyncType


class SyncResultRead(BaseModel):
    sync_log_id: int
    sync_type: SyncType
    status: SyncStatus
    items_synced: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
    duration_ms: int
    swept_sync_ids: list[int] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SyncLogRead(BaseModel):
    id: int
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    completed_at: datetime | None
    items_synced: int
    duration_ms: int | None
    errors: list[dict[str, Any]] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SyncStatusRead(BaseModel):
    running: dict[str, bool]
    last_successful: SyncLogRead | None
