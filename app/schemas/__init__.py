from app.schemas.sync import (
    CleanResyncRequest,
    DiagnosticResponse,
    SyncResponse,
    SyncStateResponse,
    SyncStatus,
    WindowSyncRequest,
)

__all__ = [
    "CleanResyncRequest",
    "DiagnosticResponse",
    "SyncResponse",
    "SyncStateResponse",
    "SyncStatus",
    "WindowSyncRequest",
]
