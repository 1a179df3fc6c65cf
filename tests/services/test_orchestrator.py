import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from app.models import Competition, Match, Team
from app.services.sync.diary_fetcher import DiaryFetcher, DiaryResult
from app.services.sync.orchestrator import (
    ConfirmationRequired,
    DiarySyncOrchestrator,
    SyncReason,
)
from app.services.sync.state_store import InMemorySyncStateStore
from app.services.thesports_client import ProviderError
from tests.conftest import DAY_END, DAY_START, NOW_EPOCH, make_raw_match, make_results_extra


def orchestrator_for(session_factory, provider, fetcher=None, sleep=None, **kwargs):
    return DiarySyncOrchestrator(
        session_factory=session_factory,
        client=provider,
        state_store=InMemorySyncStateStore(),
        fetcher=fetcher,
        sleep=sleep or AsyncMock(),
        clock=lambda: NOW_EPOCH,
        inter_batch_delay_seconds=0,
        **kwargs,
    )


def stub_fetcher(*outcomes) -> MagicMock:
    fetcher = MagicMock(spec=DiaryFetcher)
    fetcher.fetch = AsyncMock(side_effect=list(outcomes))
    return fetcher


def diary(date_str: str, results: list, extra: dict | None = None) -> DiaryResult:
    return DiaryResult(date=date_str, results=results, results_extra=extra, pages_fetched=1)


@pytest.mark.asyncio
class TestSyncDate:
    async def test_end_to_end_bulletin(self, test_session, session_factory, mock_provider):
        """Two matches for 20251224 with teams and competition only in results_extra."""
        mock_provider.get.return_value = {
            "code": 0,
            "results": [
                make_raw_match("m-1", home_team_id="t-a", away_team_id="t-b"),
                make_raw_match("m-2", home_team_id="t-c", away_team_id="t-d",
                               match_time=NOW_EPOCH - 5400, status_id=8,
                               home_scores=[1, 0, 0, 0, 0, 2, 4], away_scores=[1, 1, 0, 0, 0, 2, 3]),
            ],
            "results_extra": make_results_extra("t-a", "t-b", "t-c", "t-d"),
        }
        orchestrator = orchestrator_for(session_factory, mock_provider)

        state = await orchestrator.sync_date("20251224", SyncReason.MANUAL_TRIGGER)

        assert state.ok is True
        assert state.total_matches == 2
        assert state.synced == 2
        assert state.errors == 0
        assert state.success_rate == 100
        assert state.date_display == "2025-12-24"

        assert (await test_session.execute(select(func.count()).select_from(Match))).scalar_one() == 2
        assert (await test_session.execute(select(func.count()).select_from(Team))).scalar_one() == 4
        assert (await test_session.execute(select(func.count()).select_from(Competition))).scalar_one() == 1

        rows = await test_session.execute(
            select(Match.external_id, Competition.name)
            .join(Competition, Competition.external_id == Match.competition_id)
        )
        assert dict(rows.all()) == {"m-1": "Super Lig", "m-2": "Super Lig"}

        finished = (
            await test_session.execute(select(Match).where(Match.external_id == "m-2"))
        ).scalar_one()
        assert finished.home_score_display == 6
        assert finished.away_score_display == 5

        assert await orchestrator.get_state("2025-12-24") == state
        params = mock_provider.get.await_args.args[1]
        assert params["date"] == "20251224"

    async def test_retries_then_succeeds(self, session_factory, mock_provider):
        sleep = AsyncMock()
        fetcher = stub_fetcher(
            ProviderError("timeout"),
            ProviderError("Too many requests"),
            diary("20251224", [make_raw_match("m1")], make_results_extra("team-gs", "team-fb")),
        )
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher, sleep)

        state = await orchestrator.sync_date("20251224", SyncReason.LIVE_CATCHUP)

        assert state.ok is True
        assert state.attempts == 3
        assert state.synced == 1
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    async def test_exhausted_retries_record_failure(self, session_factory, mock_provider, caplog):
        fetcher = stub_fetcher(*(ProviderError(f"boom {i}") for i in range(3)))
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher)

        state = await orchestrator.sync_date("20251224", SyncReason.FULL_DAILY)

        assert state.ok is False
        assert state.error == "boom 2"
        assert state.attempts == 3
        assert "Attempt 3/3 failed" in caplog.text
        assert (await orchestrator.get_state("20251224")).ok is False

    async def test_empty_day_is_success(self, session_factory, mock_provider, caplog):
        orchestrator = orchestrator_for(
            session_factory, mock_provider, stub_fetcher(diary("20251224", []))
        )

        state = await orchestrator.sync_date("20251224", SyncReason.MANUAL_TRIGGER)

        assert state.ok is True
        assert state.total_matches == 0
        assert state.error is None
        assert "This might be normal" in caplog.text

    async def test_partial_day_reports_reasons(self, session_factory, mock_provider, caplog):
        records = [make_raw_match(f"m{i}") for i in range(4)]
        records[1]["id"] = ""
        orchestrator = orchestrator_for(
            session_factory,
            mock_provider,
            stub_fetcher(diary("20251224", records, make_results_extra("team-gs", "team-fb"))),
            batch_size=3,
        )

        state = await orchestrator.sync_date("20251224", SyncReason.MANUAL_TRIGGER)

        assert state.ok is True
        assert state.synced == 3
        assert state.errors == 1
        assert state.success_rate == 75
        assert state.rejected_reasons == {"VALIDATION_REJECTION": 1}
        assert "Expected 50+" in caplog.text
        assert "Processing batch 2/2" in caplog.text

    async def test_same_date_and_reason_share_one_run(self, session_factory, mock_provider):
        release = asyncio.Event()

        async def slow_fetch(date_str):
            await release.wait()
            return diary(date_str, [])

        fetcher = MagicMock(spec=DiaryFetcher)
        fetcher.fetch = AsyncMock(side_effect=slow_fetch)
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher)

        first = asyncio.create_task(orchestrator.sync_date("20251224", SyncReason.LIVE_CATCHUP))
        second = asyncio.create_task(orchestrator.sync_date("2025-12-24", SyncReason.LIVE_CATCHUP))
        other = asyncio.create_task(orchestrator.sync_date("20251224", SyncReason.FULL_DAILY))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert orchestrator.is_running("20251224", SyncReason.LIVE_CATCHUP)

        release.set()
        results = await asyncio.gather(first, second, other)

        assert results[0] is results[1]
        assert results[2] is not results[0]
        assert fetcher.fetch.await_count == 2
        assert not orchestrator.is_running("20251224", SyncReason.LIVE_CATCHUP)

    async def test_store_outage_does_not_fail_sync(self, session_factory, mock_provider):
        orchestrator = orchestrator_for(
            session_factory, mock_provider, stub_fetcher(diary("20251224", []))
        )
        orchestrator.state_store.save = AsyncMock(side_effect=ConnectionError("redis down"))

        state = await orchestrator.sync_date("20251224", SyncReason.MANUAL_TRIGGER)
        assert state.ok is True


@pytest.mark.asyncio
class TestWindowAndRepair:
    async def test_window_syncs_three_dates_in_order(self, session_factory, mock_provider):
        fetcher = stub_fetcher(
            diary("20251223", []),
            ProviderError("down"),
            ProviderError("down"),
            ProviderError("down"),
            diary("20251225", []),
        )
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher)

        states = await orchestrator.sync_window(
            SyncReason.FULL_DAILY, now=datetime(2025, 12, 24, 10, 0, tzinfo=timezone.utc)
        )

        assert [s.date for s in states] == ["20251223", "20251224", "20251225"]
        # A failed date does not abort its siblings
        assert [s.ok for s in states] == [True, False, True]
        assert all(s.reason == "FULL_DAILY" for s in states)

    async def test_repair_tick_outside_window(self, session_factory, mock_provider):
        fetcher = stub_fetcher()
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher)

        # 13:00 TSI
        result = await orchestrator.run_repair_tick(datetime(2025, 12, 24, 10, 0, tzinfo=timezone.utc))

        assert result is None
        fetcher.fetch.assert_not_awaited()

    async def test_repair_tick_inside_window(self, session_factory, mock_provider):
        fetcher = stub_fetcher(diary("20251224", []))
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher)

        # 02:00 TSI on the 24th
        state = await orchestrator.run_repair_tick(datetime(2025, 12, 23, 23, 0, tzinfo=timezone.utc))

        assert state.reason == "REPAIR_WINDOW"
        assert state.date == "20251224"


@pytest.mark.asyncio
class TestCleanResync:
    @pytest.fixture
    async def day_matches(self, test_session):
        test_session.add_all([
            Match(external_id="in-start", match_time=DAY_START, status_id=1),
            Match(external_id="in-end", match_time=DAY_END, status_id=8),
            Match(external_id="next-day", match_time=DAY_END + 1, status_id=1),
        ])
        await test_session.commit()

    async def ids(self, session) -> set[str]:
        return set((await session.execute(select(Match.external_id))).scalars())

    async def test_dry_run_counts_only(self, test_session, session_factory, mock_provider, day_matches):
        orchestrator = orchestrator_for(session_factory, mock_provider, stub_fetcher())

        result = await orchestrator.clean_resync("20251224", dry_run=True)

        assert result == {"date": "20251224", "dry_run": True, "would_delete": 2}
        assert await self.ids(test_session) == {"in-start", "in-end", "next-day"}

    async def test_requires_confirmation(self, test_session, session_factory, mock_provider, day_matches):
        orchestrator = orchestrator_for(session_factory, mock_provider, stub_fetcher())

        with pytest.raises(ConfirmationRequired):
            await orchestrator.clean_resync("20251224")
        assert len(await self.ids(test_session)) == 3

    async def test_deletes_day_and_resyncs(self, test_session, session_factory, mock_provider, day_matches):
        fetcher = stub_fetcher(
            diary("20251224", [make_raw_match("fresh")], make_results_extra("team-gs", "team-fb"))
        )
        orchestrator = orchestrator_for(session_factory, mock_provider, fetcher)

        result = await orchestrator.clean_resync("2025-12-24", confirm=True)

        assert result["deleted"] == 2
        assert result["state"]["reason"] == "CLEAN_RESYNC"
        assert result["state"]["synced"] == 1
        assert await self.ids(test_session) == {"next-day", "fresh"}
