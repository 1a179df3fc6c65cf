"""
Diary sync orchestrator.

Owns per-date sync: fetch the day's bulletin with bounded retries, seed
reference rows from ``results_extra``, write matches in fixed-size batches
and record a sync state. Holds the process-lifetime caches (resolver memo,
column detection) shared by every run.
"""
import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.database import AsyncSessionLocal
from app.models import Match
from app.services.sync.batch_sync import BatchSyncEngine, SyncReport
from app.services.sync.diary_fetcher import DiaryFetcher, DiaryResult
from app.services.sync.entity_resolver import EntityResolver, ResolverState
from app.services.sync.match_writer import ColumnSupportCache
from app.services.sync.state_store import (
    InMemorySyncStateStore,
    RedisSyncStateStore,
    SyncState,
    SyncStateStore,
)
from app.services.thesports_client import (
    ProviderError,
    TheSportsClient,
    get_thesports_client,
)
from app.utils.date_helpers import (
    day_bounds,
    format_display_date,
    is_in_repair_window,
    to_provider_date,
    window_dates,
)

logger = logging.getLogger(__name__)
settings = get_settings()


class SyncReason(str, enum.Enum):
    STARTUP = "STARTUP"
    FULL_DAILY = "FULL_DAILY"
    LIVE_CATCHUP = "LIVE_CATCHUP"
    REPAIR_WINDOW = "REPAIR_WINDOW"
    INTRADAY_4H = "INTRADAY_4H"
    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    CLEAN_RESYNC = "CLEAN_RESYNC"


class ConfirmationRequired(ValueError):
    """Destructive operation attempted without explicit confirmation."""


class DiarySyncOrchestrator:
    """
    Runs bulletin syncs for single dates and the 3-day window.

    Concurrent calls for the same (date, reason) share one run; different
    reasons for the same date may run side by side since every write is an
    idempotent upsert.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | Callable[[], AsyncSession] | None = None,
        client: TheSportsClient | None = None,
        state_store: SyncStateStore | None = None,
        resolver_state: ResolverState | None = None,
        column_cache: ColumnSupportCache | None = None,
        fetcher: DiaryFetcher | None = None,
        max_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
        batch_size: int | None = None,
        inter_batch_delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] | None = None,
    ):
        """
        Args:
            session_factory: Creates one session per date run
            client: Optional TheSports client (uses singleton if not provided)
            state_store: Where per-date sync states go (in-memory if omitted)
            resolver_state: Shared resolver memo
            column_cache: Shared optional-column detection
            fetcher: Diary fetcher (built from ``client`` if omitted)
            sleep: Awaitable sleep, replaced in tests
            clock: Epoch-seconds source for status/time correction
        """
        self.session_factory = session_factory or AsyncSessionLocal
        self.client = client or get_thesports_client()
        self.state_store = state_store or InMemorySyncStateStore()
        self.resolver_state = resolver_state or ResolverState()
        self.column_cache = column_cache or ColumnSupportCache()
        self.fetcher = fetcher or DiaryFetcher(self.client)
        self.max_attempts = max_attempts or settings.sync_max_attempts
        self.retry_backoff_seconds = (
            settings.sync_retry_backoff_seconds
            if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self.batch_size = batch_size or settings.sync_batch_size
        self.inter_batch_delay_seconds = (
            settings.sync_inter_batch_delay_seconds
            if inter_batch_delay_seconds is None else inter_batch_delay_seconds
        )
        self._sleep = sleep
        self._clock = clock
        self._in_flight: dict[tuple[str, str], asyncio.Task] = {}

    # ==================== Public entry points ====================

    async def sync_date(self, day: date | str, reason: SyncReason | str) -> SyncState:
        """
        Sync one bulletin date; never raises for provider or store failures.

        A second call for the same (date, reason) while the first is still
        running awaits the first run instead of starting another.
        """
        date_str = to_provider_date(day)
        reason = SyncReason(reason)
        key = (date_str, reason.value)

        task = self._in_flight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._run_sync_date(date_str, reason))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.info(f"Sync {date_str} ({reason.value}) already running, joining it")
        return await asyncio.shield(task)

    async def sync_window(
        self, reason: SyncReason | str, now: datetime | None = None
    ) -> list[SyncState]:
        """Sync yesterday, today and tomorrow (reference day) in order."""
        reason = SyncReason(reason)
        states = []
        for date_str, label in window_dates(now):
            logger.info(f"[{reason.value}] Syncing {label} ({format_display_date(date_str)})")
            states.append(await self.sync_date(date_str, reason))
        ok = sum(1 for state in states if state.ok)
        logger.info(f"[{reason.value}] Window sync finished: {ok}/{len(states)} dates ok")
        return states

    async def sync_today(
        self, reason: SyncReason | str = SyncReason.LIVE_CATCHUP, now: datetime | None = None
    ) -> SyncState:
        today = next(d for d, label in window_dates(now) if label == "TODAY")
        return await self.sync_date(today, reason)

    async def run_repair_tick(self, now: datetime | None = None) -> SyncState | None:
        """Repair pass for today, only inside the post-midnight repair window."""
        if not is_in_repair_window(now):
            logger.debug("Outside repair window, skipping repair sync")
            return None
        return await self.sync_today(SyncReason.REPAIR_WINDOW, now)

    async def get_state(self, day: date | str) -> SyncState | None:
        return await self.state_store.get(to_provider_date(day))

    def is_running(self, day: date | str, reason: SyncReason | str) -> bool:
        task = self._in_flight.get((to_provider_date(day), SyncReason(reason).value))
        return task is not None and not task.done()

    async def clean_resync(
        self, day: date | str, confirm: bool = False, dry_run: bool = False
    ) -> dict[str, Any]:
        """
        Delete all matches of a reference-local day, then resync it.

        Args:
            day: Date to rebuild
            confirm: Must be True unless ``dry_run``
            dry_run: Only count the rows that would be deleted

        Raises:
            ConfirmationRequired: Deletion requested without confirmation
        """
        date_str = to_provider_date(day)
        start, end = day_bounds(date_str)
        in_day = (Match.match_time >= start) & (Match.match_time <= end)

        async with self.session_factory() as db:
            count = (
                await db.execute(select(func.count()).select_from(Match).where(in_day))
            ).scalar_one()

            if dry_run:
                logger.info(f"[DRY RUN] Would delete {count} matches for {date_str}")
                return {"date": date_str, "dry_run": True, "would_delete": count}

            if not confirm:
                raise ConfirmationRequired(
                    f"Refusing to delete {count} matches for {date_str} without confirmation"
                )

            await db.execute(delete(Match).where(in_day))
            await db.commit()
            logger.warning(f"Deleted {count} matches for {date_str} ({start}..{end})")

        state = await self.sync_date(date_str, SyncReason.CLEAN_RESYNC)
        return {"date": date_str, "dry_run": False, "deleted": count, "state": state.to_dict()}

    # ==================== Internals ====================

    def _release(self, key: tuple[str, str], task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _fetch_with_retry(
        self, date_str: str
    ) -> tuple[DiaryResult | None, str | None, int]:
        """
        Fetch the bulletin, retrying with linear backoff (2s, 4s, ...).

        Returns:
            Tuple of (result or None, last error, attempts used)
        """
        last_error: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.fetcher.fetch(date_str), None, attempt
            except ProviderError as e:
                last_error = str(e)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed for {date_str}: {last_error}"
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_backoff_seconds * attempt)
        return None, last_error, self.max_attempts

    async def _run_sync_date(self, date_str: str, reason: SyncReason) -> SyncState:
        date_display = format_display_date(date_str)
        logger.info(f"[{reason.value}] Diary sync for {date_display} started")

        result, fetch_error, attempts = await self._fetch_with_retry(date_str)
        if result is None:
            logger.error(
                f"[{reason.value}] API failed for {date_display} after "
                f"{self.max_attempts} attempts: {fetch_error}"
            )
            return await self._save(SyncState(
                date=date_str,
                date_display=date_display,
                reason=reason.value,
                ok=False,
                attempts=attempts,
                error=fetch_error,
            ))

        if result.total == 0:
            logger.warning(f"[{reason.value}] No matches for {date_display}. This might be normal.")
            return await self._save(SyncState(
                date=date_str,
                date_display=date_display,
                reason=reason.value,
                ok=True,
                attempts=attempts,
            ))

        if result.total < settings.diary_expected_min_matches:
            logger.warning(
                f"[{reason.value}] Only {result.total} matches for {date_display}. "
                f"Expected {settings.diary_expected_min_matches}+ for a full day."
            )

        try:
            report = await self._write_batches(result)
        except Exception as e:
            logger.exception(f"[{reason.value}] Sync for {date_display} failed: {e}")
            return await self._save(SyncState(
                date=date_str,
                date_display=date_display,
                reason=reason.value,
                ok=False,
                total_matches=result.total,
                attempts=attempts,
                error=str(e),
            ))

        success_rate = round(report.synced / result.total * 100)
        state = SyncState(
            date=date_str,
            date_display=date_display,
            reason=reason.value,
            ok=True,
            total_matches=result.total,
            synced=report.synced,
            errors=report.errors,
            success_rate=success_rate,
            rejected_reasons=dict(report.rejected_reasons),
            attempts=attempts,
        )
        logger.info(
            f"[{reason.value}] {date_display}: {report.synced}/{result.total} synced, "
            f"{report.errors} errors ({success_rate}%)"
        )
        return await self._save(state)

    async def _write_batches(self, result: DiaryResult) -> SyncReport:
        bundle = result.bundle
        report = SyncReport()

        async with self.session_factory() as db:
            resolver = EntityResolver(
                db,
                self.client,
                state=self.resolver_state,
                session_factory=self.session_factory,
            )
            # Seed reference rows once per day before the per-match path
            if not bundle.is_empty:
                await resolver.enrich_from_bundle(bundle)
                await db.commit()

            engine = BatchSyncEngine(
                db,
                self.client,
                resolver_state=self.resolver_state,
                column_cache=self.column_cache,
                session_factory=self.session_factory,
                clock=self._clock,
            )
            total_batches = (result.total + self.batch_size - 1) // self.batch_size
            for batch_index in range(total_batches):
                start = batch_index * self.batch_size
                batch = result.results[start:start + self.batch_size]
                logger.info(
                    f"Processing batch {batch_index + 1}/{total_batches} "
                    f"(matches {start + 1}-{start + len(batch)})"
                )
                report.merge(await engine.sync_matches(batch, bundle))
                if batch_index + 1 < total_batches and self.inter_batch_delay_seconds > 0:
                    await self._sleep(self.inter_batch_delay_seconds)

            await resolver.drain()
            await engine.resolver.drain()
        return report

    async def _save(self, state: SyncState) -> SyncState:
        try:
            await self.state_store.save(state)
        except Exception as e:
            # State is observability only; a cache outage must not fail the sync
            logger.warning(f"Could not store sync state for {state.date}: {e}")
        return state


# Singleton instance
_orchestrator: DiarySyncOrchestrator | None = None


def get_orchestrator() -> DiarySyncOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DiarySyncOrchestrator(state_store=RedisSyncStateStore())
    return _orchestrator
