"""
Sync cadences and the in-process ticker scheduler.

The cadence table is the single description of when syncs run. It drives
both the asyncio ``SyncScheduler`` (``sync_scheduler_backend="inprocess"``)
and the Celery beat schedule in ``app.tasks``.
"""
import asyncio
import logging
from contextlib import suppress
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from app.config import Settings, get_settings
from app.services.sync.orchestrator import DiarySyncOrchestrator, SyncReason
from app.utils.date_helpers import is_in_repair_window, reference_now
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

WINDOW = "window"  # yesterday, today, tomorrow
TODAY = "today"


@dataclass(frozen=True)
class Cadence:
    name: str
    reason: SyncReason
    scope: str
    # Exactly one trigger kind is set
    interval_seconds: float | None = None
    daily_times: tuple[tuple[int, int], ...] = ()  # reference-local (hour, minute)
    startup_delay_seconds: float | None = None
    # Ticks outside the guard are skipped
    guard: Callable[[datetime], bool] | None = None

    @property
    def is_startup(self) -> bool:
        return self.startup_delay_seconds is not None


def build_cadences(config: Settings | None = None) -> list[Cadence]:
    config = config or settings
    return [
        Cadence(
            name="startup",
            reason=SyncReason.STARTUP,
            scope=WINDOW,
            startup_delay_seconds=config.startup_sync_delay_seconds,
        ),
        Cadence(
            name="full-daily",
            reason=SyncReason.FULL_DAILY,
            scope=WINDOW,
            daily_times=((config.full_sync_hour, config.full_sync_minute),),
        ),
        Cadence(
            name="live-catchup",
            reason=SyncReason.LIVE_CATCHUP,
            scope=TODAY,
            interval_seconds=config.live_catchup_interval_seconds,
        ),
        Cadence(
            name="repair-window",
            reason=SyncReason.REPAIR_WINDOW,
            scope=TODAY,
            interval_seconds=config.repair_interval_seconds,
            guard=is_in_repair_window,
        ),
        Cadence(
            name="intraday",
            reason=SyncReason.INTRADAY_4H,
            scope=WINDOW,
            daily_times=tuple((hour, config.intraday_minute) for hour in config.intraday_hours),
        ),
    ]


def seconds_until_next_daily(
    daily_times: tuple[tuple[int, int], ...], now: datetime
) -> float:
    """Seconds from ``now`` to the next reference-local (hour, minute) slot."""
    local = reference_now(now)
    candidates = []
    for hour, minute in daily_times:
        slot = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if slot <= local:
            slot += timedelta(days=1)
        candidates.append(slot)
    return (min(candidates) - local).total_seconds()


class Ticker:
    """
    One background timer running a cadence's action.

    ``start``/``stop`` manage the loop; ``trigger_now`` runs the action once
    in the caller's task, which is how tests fire a tick synchronously.
    """

    def __init__(
        self,
        cadence: Cadence,
        action: Callable[[], Awaitable[Any]],
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cadence = cadence
        self.action = action
        self._now = now
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.runs = 0
        self.skipped = 0
        self.last_run_at: datetime | None = None
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"ticker:{self.cadence.name}")
        logger.info(f"Ticker {self.cadence.name} started")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info(f"Ticker {self.cadence.name} stopped")

    def next_delay(self) -> float:
        cadence = self.cadence
        if cadence.is_startup:
            return cadence.startup_delay_seconds
        if cadence.interval_seconds is not None:
            return cadence.interval_seconds
        return seconds_until_next_daily(cadence.daily_times, self._now())

    async def trigger_now(self, force: bool = False) -> Any:
        """
        Run the action once, honoring the guard unless ``force``.

        Errors are logged and recorded, never raised.
        """
        if not force and self.cadence.guard and not self.cadence.guard(self._now()):
            self.skipped += 1
            logger.debug(f"Ticker {self.cadence.name}: outside guard window, skipped")
            return None

        self.last_run_at = self._now()
        self.runs += 1
        try:
            result = await self.action()
        except Exception as e:
            self.last_error = str(e)
            logger.exception(f"Ticker {self.cadence.name} run failed: {e}")
            return None
        self.last_error = None
        return result

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.next_delay())
            await self.trigger_now()
            if self.cadence.is_startup:
                return


class SyncScheduler:
    """Set of tickers, one per cadence, sharing one orchestrator."""

    def __init__(
        self,
        orchestrator: DiarySyncOrchestrator,
        cadences: list[Cadence] | None = None,
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.tickers: dict[str, Ticker] = {}
        for cadence in cadences if cadences is not None else build_cadences():
            self.tickers[cadence.name] = Ticker(
                cadence, self._action_for(cadence), now=now, sleep=sleep
            )

    def _action_for(self, cadence: Cadence) -> Callable[[], Awaitable[Any]]:
        if cadence.scope == WINDOW:
            return lambda: self.orchestrator.sync_window(cadence.reason)
        return lambda: self.orchestrator.sync_today(cadence.reason)

    def start(self) -> None:
        for ticker in self.tickers.values():
            ticker.start()

    async def stop(self) -> None:
        for ticker in self.tickers.values():
            await ticker.stop()

    async def trigger_now(self, name: str, force: bool = False) -> Any:
        """
        Fire one cadence immediately.

        Raises:
            KeyError: Unknown cadence name
        """
        return await self.tickers[name].trigger_now(force=force)

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "running": ticker.running,
                "runs": ticker.runs,
                "skipped": ticker.skipped,
                "last_run_at": ticker.last_run_at.isoformat() if ticker.last_run_at else None,
                "last_error": ticker.last_error,
            }
            for name, ticker in self.tickers.items()
        }
