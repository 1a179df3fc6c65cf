from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncResponse(BaseModel):
    status: SyncStatus
    message: str
    details: dict | None = None


class WindowSyncRequest(BaseModel):
    reason: str = "MANUAL_TRIGGER"


class CleanResyncRequest(BaseModel):
    date: str = Field(..., description="YYYYMMDD or YYYY-MM-DD")
    confirm: bool = False
    dry_run: bool = False


class SyncStateResponse(BaseModel):
    date: str
    date_display: str
    reason: str
    ok: bool
    total_matches: int = 0
    synced: int = 0
    errors: int = 0
    success_rate: int | None = None
    rejected_reasons: dict[str, int] = {}
    attempts: int = 0
    error: str | None = None
    ts: float


class DiagnosticResponse(BaseModel):
    external_id: str
    date: str | None = None
    db: dict[str, Any] | None = None
    provider: dict[str, dict[str, Any]]
    authoritative_view: str | None = None
    mismatch: dict[str, bool]
    root_cause: str
    root_cause_detail: str | None = None
    events: dict[str, list[dict[str, Any]]] = {}
