from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db
from app.schemas.sync import (
    CleanResyncRequest,
    DiagnosticResponse,
    SyncResponse,
    SyncStateResponse,
    SyncStatus,
    WindowSyncRequest,
)
from app.services.sync.orchestrator import (
    ConfirmationRequired,
    DiarySyncOrchestrator,
    SyncReason,
    get_orchestrator,
)
from app.services.sync.reconciliation import ReconciliationDiagnostic
from app.services.thesports_client import TheSportsClient, get_thesports_client
from app.utils.date_helpers import to_provider_date

router = APIRouter(prefix="/sync", tags=["sync"])


def _parse_date(value: str) -> str:
    try:
        return to_provider_date(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _parse_reason(value: str) -> SyncReason:
    try:
        return SyncReason(value.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown sync reason: {value}")


@router.post("/diary", response_model=SyncResponse)
async def sync_diary(
    date: str = Query(..., description="YYYYMMDD or YYYY-MM-DD"),
    reason: str = Query(default=SyncReason.MANUAL_TRIGGER.value),
    orchestrator: DiarySyncOrchestrator = Depends(get_orchestrator),
):
    """Sync one bulletin date from TheSports."""
    date_str = _parse_date(date)
    sync_reason = _parse_reason(reason)

    try:
        state = await orchestrator.sync_date(date_str, sync_reason)
    except Exception as e:
        return SyncResponse(
            status=SyncStatus.FAILED,
            message=f"Diary synchronization failed: {str(e)}",
            details=None,
        )

    if not state.ok:
        return SyncResponse(
            status=SyncStatus.FAILED,
            message=f"Diary synchronization failed for {state.date_display}: {state.error}",
            details=state.to_dict(),
        )
    return SyncResponse(
        status=SyncStatus.PARTIAL if state.errors else SyncStatus.SUCCESS,
        message=(
            f"Diary synchronization completed: {state.synced}/{state.total_matches} "
            f"matches synced for {state.date_display}"
        ),
        details=state.to_dict(),
    )


@router.post("/window", response_model=SyncResponse)
async def sync_window(
    request: WindowSyncRequest | None = None,
    orchestrator: DiarySyncOrchestrator = Depends(get_orchestrator),
):
    """Sync yesterday, today and tomorrow (TSI)."""
    sync_reason = _parse_reason(request.reason if request else SyncReason.MANUAL_TRIGGER.value)

    try:
        states = await orchestrator.sync_window(sync_reason)
    except Exception as e:
        return SyncResponse(
            status=SyncStatus.FAILED,
            message=f"Window synchronization failed: {str(e)}",
            details=None,
        )

    ok = sum(1 for state in states if state.ok)
    if ok == len(states):
        status = SyncStatus.SUCCESS
    elif ok:
        status = SyncStatus.PARTIAL
    else:
        status = SyncStatus.FAILED
    return SyncResponse(
        status=status,
        message=f"Window synchronization completed: {ok}/{len(states)} dates ok",
        details={"dates": [state.to_dict() for state in states]},
    )


@router.post("/clean-resync", response_model=SyncResponse)
async def clean_resync(
    request: CleanResyncRequest,
    orchestrator: DiarySyncOrchestrator = Depends(get_orchestrator),
):
    """Delete one day's matches and resync it. Requires ``confirm`` unless dry run."""
    date_str = _parse_date(request.date)

    try:
        result = await orchestrator.clean_resync(
            date_str, confirm=request.confirm, dry_run=request.dry_run
        )
    except ConfirmationRequired as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        return SyncResponse(
            status=SyncStatus.FAILED,
            message=f"Clean resync failed: {str(e)}",
            details=None,
        )

    if result["dry_run"]:
        return SyncResponse(
            status=SyncStatus.SUCCESS,
            message=f"Dry run: {result['would_delete']} matches would be deleted",
            details=result,
        )

    state = result["state"]
    if not state["ok"]:
        return SyncResponse(
            status=SyncStatus.FAILED,
            message=(
                f"Clean resync failed: {result['deleted']} matches deleted but resync "
                f"of {state['date_display']} failed: {state['error']}"
            ),
            details=result,
        )
    return SyncResponse(
        status=SyncStatus.PARTIAL if state["errors"] else SyncStatus.SUCCESS,
        message=(
            f"Clean resync completed: {result['deleted']} matches deleted, "
            f"{state['synced']}/{state['total_matches']} resynced"
        ),
        details=result,
    )


@router.get("/state/{date}", response_model=SyncStateResponse)
async def get_sync_state(
    date: str,
    orchestrator: DiarySyncOrchestrator = Depends(get_orchestrator),
):
    """Last recorded sync state for a date (kept for 48 hours)."""
    state = await orchestrator.get_state(_parse_date(date))
    if state is None:
        raise HTTPException(status_code=404, detail="Sync state not found")
    return state.to_dict()


@router.get("/provider-health")
async def provider_health(client: TheSportsClient = Depends(get_thesports_client)):
    """TheSports client snapshot: circuit, rate limiter, request metrics."""
    return client.health()


@router.get("/diagnose/{external_id}", response_model=DiagnosticResponse)
async def diagnose_match(
    external_id: str,
    date: str | None = Query(default=None, description="Bulletin date, derived from kickoff if omitted"),
    db: AsyncSession = Depends(get_db),
    client: TheSportsClient = Depends(get_thesports_client),
):
    """Read-only comparison of the stored match against the provider views."""
    date_str = _parse_date(date) if date else None
    diagnostic = ReconciliationDiagnostic(db, client)
    report = await diagnostic.diagnose(external_id, date_str)
    return report.to_dict()
