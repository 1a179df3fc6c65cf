from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.schedules import crontab

from app.services.sync.orchestrator import SyncReason
from app.services.sync.scheduler import WINDOW, Cadence, build_cadences
from app.services.sync.state_store import SyncState
from app.tasks import build_beat_schedule
from app.tasks import sync_tasks
from app.utils.async_celery import cleanup_event_loop


@pytest.fixture
def shared_loop():
    yield
    cleanup_event_loop()


class TestBeatSchedule:
    def test_entries_for_default_cadences(self):
        schedule = build_beat_schedule(build_cadences())

        assert "startup" not in schedule
        assert set(schedule) == {"full-daily", "live-catchup", "repair-window", "intraday"}

        full = schedule["full-daily"]
        assert full["task"] == "app.tasks.sync_tasks.sync_window"
        assert full["kwargs"] == {"reason": "FULL_DAILY"}
        assert isinstance(full["schedule"], crontab)
        assert full["schedule"].hour == {0}
        assert full["schedule"].minute == {5}

        live = schedule["live-catchup"]
        assert live["task"] == "app.tasks.sync_tasks.sync_today"
        assert live["schedule"] == 300.0

        repair = schedule["repair-window"]
        assert repair["task"] == "app.tasks.sync_tasks.repair_tick"
        assert repair["kwargs"] == {}

        assert schedule["intraday"]["schedule"].hour == {4, 8, 12, 16, 20}

    def test_daily_times_split_by_minute(self):
        cadence = Cadence(
            name="custom",
            reason=SyncReason.INTRADAY_4H,
            scope=WINDOW,
            daily_times=((1, 0), (2, 30), (3, 0)),
        )

        schedule = build_beat_schedule([cadence])

        assert set(schedule) == {"custom-00", "custom-30"}
        assert schedule["custom-00"]["schedule"].hour == {1, 3}
        assert schedule["custom-30"]["schedule"].hour == {2}


class TestSyncTasks:
    def test_sync_today_runs_on_shared_loop(self, shared_loop):
        orchestrator = MagicMock()
        orchestrator.sync_today = AsyncMock(return_value=SyncState(date="20251224", date_display="2025-12-24", reason="LIVE_CATCHUP", ok=True))

        with patch("app.tasks.sync_tasks.get_orchestrator", return_value=orchestrator):
            result = sync_tasks.sync_today("LIVE_CATCHUP")

        orchestrator.sync_today.assert_awaited_once_with("LIVE_CATCHUP")
        assert result["date"] == "20251224"

    def test_repair_tick_outside_window(self, shared_loop):
        orchestrator = MagicMock()
        orchestrator.run_repair_tick = AsyncMock(return_value=None)

        with patch("app.tasks.sync_tasks.get_orchestrator", return_value=orchestrator):
            result = sync_tasks.repair_tick()

        assert result == {"skipped": True, "reason": "outside repair window"}
