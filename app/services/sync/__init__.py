"""
Sync services module.

This module keeps the local match catalog in line with the TheSports
bulletin.

Services:
- DiaryFetcher: Paginated full-day bulletin
- EntityResolver: Teams and competitions referenced by matches
- MatchWriter / BatchSyncEngine: Idempotent match upserts
- DiarySyncOrchestrator: Per-date and 3-day window syncs
- SyncScheduler: In-process cadence tickers
- ReconciliationDiagnostic: Read-only drift diagnosis for one match
"""
from app.services.sync.base import BaseSyncService
from app.services.sync.batch_sync import BatchSyncEngine, SyncReport
from app.services.sync.diary_fetcher import DiaryFetcher, DiaryResult
from app.services.sync.entity_resolver import EntityResolver, ResolverState
from app.services.sync.extras import ExtraBundle
from app.services.sync.match_writer import ColumnSupportCache, MatchWriter
from app.services.sync.normalizer import CanonicalMatch, normalize_match
from app.services.sync.orchestrator import (
    DiarySyncOrchestrator,
    SyncReason,
    get_orchestrator,
)
from app.services.sync.reconciliation import ReconciliationDiagnostic, RootCause
from app.services.sync.scheduler import SyncScheduler, build_cadences
from app.services.sync.state_store import SyncState

__all__ = [
    # Base
    "BaseSyncService",
    # Pipeline
    "DiaryFetcher",
    "DiaryResult",
    "ExtraBundle",
    "CanonicalMatch",
    "normalize_match",
    "EntityResolver",
    "ResolverState",
    "ColumnSupportCache",
    "MatchWriter",
    "BatchSyncEngine",
    "SyncReport",
    # Orchestration
    "DiarySyncOrchestrator",
    "SyncReason",
    "SyncState",
    "get_orchestrator",
    "SyncScheduler",
    "build_cadences",
    # Diagnostics
    "ReconciliationDiagnostic",
    "RootCause",
]
