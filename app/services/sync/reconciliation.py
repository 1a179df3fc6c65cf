"""
Read-only drift diagnostic for a single match.

Compares the stored row against three provider views (live detail, recent
list, day bulletin), picks the most live-oriented view that knows the
match, flags field mismatches and classifies a root cause from recent
operational events.
"""
import asyncio
import enum
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.config import get_settings
from app.models import Match, Team
from app.services.sync.base import BaseSyncService, clean_id, to_int
from app.services.sync.diary_fetcher import DiaryFetcher
from app.services.thesports_client import (
    ProviderError,
    TheSportsClient,
    raise_for_provider_error,
)
from app.utils.date_helpers import day_bounds, provider_date_for_epoch, to_provider_date
from app.utils.match_status import coerce_status, minute_text

logger = logging.getLogger(__name__)
settings = get_settings()

RECENT_LIST_PATH = "/match/recent/list"
DETAIL_LIVE_PATH = "/match/detail_live"

# Highest priority first
VIEW_PRIORITY = ("detail_live", "recent_list", "diary")


class RootCause(str, enum.Enum):
    IN_SYNC = "IN_SYNC"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    RECONCILE_ZERO_ROWS = "RECONCILE_ZERO_ROWS"
    RECONCILE_SUCCESS_BUT_STALE = "RECONCILE_SUCCESS_BUT_STALE"
    NO_RECONCILE_ATTEMPT = "NO_RECONCILE_ATTEMPT"
    NO_LIVE_SIGNAL = "NO_LIVE_SIGNAL"
    NOT_IN_STORE = "NOT_IN_STORE"


class EventKind(str, enum.Enum):
    WATCHDOG_RECONCILE = "watchdog_reconcile"
    DATAUPDATE_RECONCILE = "dataupdate_reconcile"
    LIVE_SIGNAL = "live_signal"


# ==================== States ====================

@dataclass
class ViewState:
    found: bool = False
    status_id: int | None = None
    minute: int | None = None
    minute_text: str | None = None
    home_score: int | None = None
    away_score: int | None = None
    update_time: int | None = None
    error: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ViewState":
        """
        Build from a provider match object.

        Scores come from flat ``home_score``, the packed ``home_scores``
        array, or the live-detail ``score`` tuple
        ``[id, status, home_scores, away_scores, ...]``.
        """
        status_id = coerce_status(record.get("status_id"))
        if status_id is None:
            status_id = coerce_status(record.get("status"))
        home = to_int(record.get("home_score"))
        away = to_int(record.get("away_score"))

        if home is None and isinstance(record.get("home_scores"), list) and record["home_scores"]:
            home = to_int(record["home_scores"][0])
        if away is None and isinstance(record.get("away_scores"), list) and record["away_scores"]:
            away = to_int(record["away_scores"][0])

        score = record.get("score")
        if isinstance(score, list) and len(score) >= 4:
            if status_id is None:
                status_id = coerce_status(score[1])
            if home is None and isinstance(score[2], list) and score[2]:
                home = to_int(score[2][0])
            if away is None and isinstance(score[3], list) and score[3]:
                away = to_int(score[3][0])

        minute = to_int(record.get("minute"))
        return cls(
            found=True,
            status_id=status_id,
            minute=minute,
            minute_text=minute_text(minute, status_id),
            home_score=home,
            away_score=away,
            update_time=to_int(record.get("provider_update_time") or record.get("update_time")),
        )


@dataclass
class StoreState:
    external_id: str
    match_time: int | None
    status_id: int | None
    minute: int | None
    home_score: int | None
    away_score: int | None
    provider_update_time: int | None
    updated_at: str | None

    @property
    def minute_text(self) -> str:
        return minute_text(self.minute, self.status_id)


@dataclass
class OperationalEvent:
    kind: EventKind
    event: str
    timestamp: str | None = None
    match_id: str | None = None
    result: str | None = None
    reason: str | None = None
    row_count: int | None = None


@dataclass
class Mismatch:
    status: bool = False
    minute: bool = False
    score: bool = False
    # Provider knows the match, the store has no row
    missing_row: bool = False

    @property
    def overall(self) -> bool:
        return self.status or self.minute or self.score or self.missing_row


@dataclass
class DiagnosticReport:
    external_id: str
    date: str | None
    store: StoreState | None
    views: dict[str, ViewState]
    authoritative_view: str | None
    mismatch: Mismatch
    root_cause: RootCause
    root_cause_detail: str | None = None
    events: list[OperationalEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "date": self.date,
            "db": asdict(self.store) if self.store else None,
            "provider": {name: asdict(view) for name, view in self.views.items()},
            "authoritative_view": self.authoritative_view,
            "mismatch": {**asdict(self.mismatch), "overall": self.mismatch.overall},
            "root_cause": self.root_cause.value,
            "root_cause_detail": self.root_cause_detail,
            "events": {
                kind.value: [
                    asdict(event) for event in self.events if event.kind == kind
                ]
                for kind in EventKind
            },
        }


# ==================== Event history ====================

def classify_log_entry(entry: dict[str, Any]) -> OperationalEvent | None:
    """Map a structured log entry onto a reconcile or live-signal event."""
    name = str(entry.get("event") or entry.get("message") or "")
    if "watchdog.reconcile" in name:
        kind = EventKind.WATCHDOG_RECONCILE
    elif "dataupdate.reconcile" in name:
        kind = EventKind.DATAUPDATE_RECONCILE
    elif "websocket" in name or "mqtt" in name:
        kind = EventKind.LIVE_SIGNAL
    else:
        return None

    row_count = entry.get("row_count")
    if row_count is None:
        row_count = entry.get("rowCount")
    return OperationalEvent(
        kind=kind,
        event=name,
        timestamp=entry.get("timestamp") or entry.get("ts"),
        match_id=clean_id(entry.get("match_id") or entry.get("matchId")),
        result=entry.get("result"),
        reason=entry.get("reason"),
        row_count=to_int(row_count),
    )


class EventHistory:
    """Source of recent operational events for a match, oldest first."""

    async def events_for(self, external_id: str) -> list[OperationalEvent]:
        raise NotImplementedError


class StaticEventHistory(EventHistory):
    def __init__(self, entries: list[dict[str, Any]] | None = None):
        self.entries = entries or []

    async def events_for(self, external_id: str) -> list[OperationalEvent]:
        events = []
        for entry in self.entries:
            if external_id not in json.dumps(entry, default=str):
                continue
            event = classify_log_entry(entry)
            if event is not None:
                events.append(event)
        return events


class JsonLogEventHistory(EventHistory):
    """Tails a JSON-lines log file (one structured entry per line)."""

    def __init__(self, path: str | Path | None = None, tail_lines: int | None = None):
        self.path = Path(path or settings.event_log_path)
        self.tail_lines = tail_lines or settings.event_log_tail_lines

    def _read_tail(self) -> list[str]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8", errors="replace") as handle:
            return list(deque(handle, maxlen=self.tail_lines))

    async def events_for(self, external_id: str) -> list[OperationalEvent]:
        try:
            lines = await asyncio.to_thread(self._read_tail)
        except OSError as e:
            logger.error(f"Could not read event log {self.path}: {e}")
            return []

        events = []
        for line in lines:
            if external_id not in line:
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                continue
            if not isinstance(entry, dict):
                continue
            event = classify_log_entry(entry)
            if event is not None:
                events.append(event)
        return events


# ==================== Pure analysis ====================

def pick_authoritative(views: dict[str, ViewState]) -> tuple[str, ViewState] | None:
    """live detail > recent list > bulletin; first view that found the match."""
    for name in VIEW_PRIORITY:
        view = views.get(name)
        if view is not None and view.found:
            return name, view
    return None


def compute_mismatch(store: StoreState | None, view: ViewState | None) -> Mismatch:
    if view is None or not view.found:
        return Mismatch()
    if store is None:
        return Mismatch(missing_row=True)
    return Mismatch(
        status=view.status_id != store.status_id,
        minute=view.minute != store.minute,
        score=view.home_score != store.home_score or view.away_score != store.away_score,
    )


def classify_root_cause(
    authoritative: tuple[str, ViewState] | None,
    mismatch: Mismatch,
    events: list[OperationalEvent],
) -> tuple[RootCause, str | None]:
    """
    Closed-set root cause for a diagnosed match.

    Order: provider has no record, store has no row, no drift, last
    reconcile (watchdog before data-update) wrote zero rows or wrote rows
    yet the row is still stale, no live signal seen, otherwise no
    reconcile attempt observed.

    Returns:
        Tuple of (root cause, detail such as the reconcile skip reason)
    """
    if authoritative is None:
        return RootCause.PROVIDER_NOT_FOUND, None
    if mismatch.missing_row:
        return RootCause.NOT_IN_STORE, authoritative[0]
    if not mismatch.overall:
        return RootCause.IN_SYNC, None

    for kind in (EventKind.WATCHDOG_RECONCILE, EventKind.DATAUPDATE_RECONCILE):
        reconciles = [event for event in events if event.kind == kind]
        if not reconciles:
            continue
        last = reconciles[-1]
        if last.row_count == 0:
            return RootCause.RECONCILE_ZERO_ROWS, f"{kind.value}: {last.reason or 'unknown'}"
        return RootCause.RECONCILE_SUCCESS_BUT_STALE, kind.value

    if not any(event.kind == EventKind.LIVE_SIGNAL for event in events):
        return RootCause.NO_LIVE_SIGNAL, None
    return RootCause.NO_RECONCILE_ATTEMPT, None


def _find_record(results: Any, external_id: str) -> dict[str, Any] | None:
    if not isinstance(results, list):
        return None
    for record in results:
        if not isinstance(record, dict):
            continue
        record_id = clean_id(record.get("id") or record.get("external_id") or record.get("match_id"))
        if record_id == external_id:
            return record
    return None


# ==================== Service ====================

class ReconciliationDiagnostic(BaseSyncService):
    """Never writes; only reads the store and the provider."""

    def __init__(
        self,
        db: AsyncSession,
        client: TheSportsClient | None = None,
        event_history: EventHistory | None = None,
        fetcher: DiaryFetcher | None = None,
    ):
        super().__init__(db, client)
        self.event_history = event_history or JsonLogEventHistory()
        self.fetcher = fetcher or DiaryFetcher(self.client)

    async def load_store_state(self, external_id: str) -> StoreState | None:
        result = await self.db.execute(
            select(
                Match.external_id,
                Match.match_time,
                Match.status_id,
                Match.minute,
                Match.home_score_regular,
                Match.away_score_regular,
                Match.home_scores,
                Match.away_scores,
                Match.external_updated_at,
                Match.updated_at,
            ).where(Match.external_id == external_id)
        )
        row = result.one_or_none()
        if row is None:
            return None

        home = row.home_score_regular
        if home is None and row.home_scores:
            home = to_int(row.home_scores[0])
        away = row.away_score_regular
        if away is None and row.away_scores:
            away = to_int(row.away_scores[0])

        updated_at = row.updated_at
        return StoreState(
            external_id=row.external_id,
            match_time=row.match_time,
            status_id=row.status_id,
            minute=row.minute,
            home_score=home,
            away_score=away,
            provider_update_time=row.external_updated_at,
            updated_at=updated_at.isoformat() if isinstance(updated_at, datetime) else updated_at,
        )

    async def find_match_by_team(self, team_name: str, day: str) -> str | None:
        """First match of the reference-local day where either side's name matches."""
        start, end = day_bounds(day)
        home = aliased(Team)
        away = aliased(Team)
        pattern = f"%{team_name}%"
        result = await self.db.execute(
            select(Match.external_id, home.name, away.name)
            .outerjoin(home, home.external_id == Match.home_team_id)
            .outerjoin(away, away.external_id == Match.away_team_id)
            .where(
                Match.match_time >= start,
                Match.match_time <= end,
                or_(home.name.ilike(pattern), away.name.ilike(pattern)),
            )
            .order_by(Match.match_time)
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        logger.info(f"Found match: {row[1]} vs {row[2]} ({row[0]})")
        return row[0]

    async def _diary_view(self, external_id: str, day: str) -> ViewState:
        try:
            diary = await self.fetcher.fetch(day)
        except ProviderError as e:
            return ViewState(error=str(e))
        record = _find_record(diary.results, external_id)
        return ViewState.from_record(record) if record else ViewState()

    async def _recent_list_view(self, external_id: str) -> ViewState:
        try:
            response = await self.client.get(
                RECENT_LIST_PATH, {"page": 1, "limit": settings.recent_list_limit}
            )
            raise_for_provider_error(response, RECENT_LIST_PATH)
        except ProviderError as e:
            return ViewState(error=str(e))
        record = _find_record(response.get("results"), external_id)
        return ViewState.from_record(record) if record else ViewState()

    async def _detail_live_view(self, external_id: str) -> ViewState:
        try:
            response = await self.client.get(DETAIL_LIVE_PATH, {"match_id": external_id})
            raise_for_provider_error(response, DETAIL_LIVE_PATH)
        except ProviderError as e:
            return ViewState(error=str(e))
        record = _find_record(response.get("results"), external_id)
        return ViewState.from_record(record) if record else ViewState(error="NOT_FOUND")

    async def fetch_views(self, external_id: str, day: str | None) -> dict[str, ViewState]:
        diary = (
            self._diary_view(external_id, day)
            if day else asyncio.sleep(0, result=ViewState(error="no date"))
        )
        diary_view, recent_view, live_view = await asyncio.gather(
            diary,
            self._recent_list_view(external_id),
            self._detail_live_view(external_id),
        )
        return {"detail_live": live_view, "recent_list": recent_view, "diary": diary_view}

    async def diagnose(self, external_id: str, day: str | None = None) -> DiagnosticReport:
        """
        Diagnose drift for one match.

        Args:
            external_id: Provider match id
            day: Bulletin date; derived from the stored kickoff when omitted
        """
        store = await self.load_store_state(external_id)
        if day is None and store is not None and store.match_time:
            day = provider_date_for_epoch(store.match_time)
        elif day is not None:
            day = to_provider_date(day)

        views = await self.fetch_views(external_id, day)
        authoritative = pick_authoritative(views)
        mismatch = compute_mismatch(store, authoritative[1] if authoritative else None)
        events = await self.event_history.events_for(external_id)
        root_cause, detail = classify_root_cause(authoritative, mismatch, events)

        if store is None:
            logger.warning(f"Match {external_id} not found in store")
        logger.info(
            f"Diagnosis {external_id}: root_cause={root_cause.value} "
            f"mismatch(status={mismatch.status}, minute={mismatch.minute}, score={mismatch.score})"
        )
        return DiagnosticReport(
            external_id=external_id,
            date=day,
            store=store,
            views=views,
            authoritative_view=authoritative[0] if authoritative else None,
            mismatch=mismatch,
            root_cause=root_cause,
            root_cause_detail=detail,
            events=events,
        )
