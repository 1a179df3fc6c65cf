import pytest
from sqlalchemy import func, select

from app.models import Match
from app.services.sync.match_writer import (
    BASE_COLUMNS,
    SCORE_COLUMNS,
    ColumnSupport,
    ColumnSupportCache,
    MatchWriter,
    SyncErrorKind,
    build_row,
    classify_error,
)
from app.services.sync.normalizer import normalize_match
from tests.conftest import NOW_EPOCH, make_raw_match


def canonical(external_id: str = "m1", **overrides):
    return normalize_match(make_raw_match(external_id, **overrides), now=NOW_EPOCH)


@pytest.mark.asyncio
class TestMatchWriter:
    async def test_upsert_is_idempotent(self, test_session):
        writer = MatchWriter(test_session)
        match = canonical(home_scores=[2, 1, 0, 3, 5, None, None])

        await writer.upsert(match)
        await test_session.commit()
        await writer.upsert(match)
        await test_session.commit()

        count = (await test_session.execute(select(func.count()).select_from(Match))).scalar_one()
        assert count == 1
        row = (await test_session.execute(select(Match))).scalar_one()
        assert row.home_scores == [2, 1, 0, 3, 5, None, None]
        assert row.home_score_regular == 2
        assert row.home_score_display == 2
        assert row.away_score_display == 0

    async def test_last_write_wins(self, test_session):
        writer = MatchWriter(test_session)
        await writer.upsert(canonical(status_id=1, note="first"))
        await test_session.commit()

        await writer.upsert(
            canonical(status_id=2, note=None, match_time=NOW_EPOCH - 600, home_scores=[1, 0])
        )
        await test_session.commit()

        test_session.expire_all()
        row = (await test_session.execute(select(Match))).scalar_one()
        assert row.status_id == 2
        assert row.note is None
        assert row.home_score_regular == 1

    async def test_minute_is_left_to_live_pipelines(self, test_session, sample_match):
        writer = MatchWriter(test_session)
        await writer.upsert(canonical("match-derby", status_id=4, match_time=NOW_EPOCH - 3600))
        await test_session.commit()

        minute = (
            await test_session.execute(select(Match.minute).where(Match.external_id == "match-derby"))
        ).scalar_one()
        assert minute == 57


@pytest.mark.asyncio
class TestColumnSupport:
    async def test_detects_full_schema_once(self, test_session):
        cache = ColumnSupportCache()

        support = await cache.get(test_session)
        assert support.has_score_columns
        assert support.has_incidents
        assert support.has_statistics
        assert await cache.get(test_session) is support

        cache.reset()
        assert cache.detected is None

    async def test_partial_score_columns_count_as_missing(self):
        support = ColumnSupport(frozenset(BASE_COLUMNS) | {SCORE_COLUMNS[0]})
        assert not support.has_score_columns

    async def test_row_omits_missing_optional_columns(self):
        support = ColumnSupport(frozenset(BASE_COLUMNS) | {"home_scores", "away_scores"})
        row = build_row(canonical(incidents=[{"type": 1}]), support)

        assert not set(SCORE_COLUMNS) & set(row)
        assert "incidents" not in row
        assert "statistics" not in row
        assert row["external_id"] == "m1"

    async def test_unserializable_payload_is_dropped(self):
        support = ColumnSupport(frozenset(BASE_COLUMNS) | {"incidents", "statistics"})
        match = canonical(statistics=[{"value": object()}])

        row = build_row(match, support)
        assert row["statistics"] is None


class TestClassifyError:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("REJECTED: missing match_time", SyncErrorKind.VALIDATION_REJECTION),
            ('null value in column "name" violates not-null constraint', SyncErrorKind.NULL_CONSTRAINT_VIOLATION),
            ("NOT NULL constraint failed: ts_teams.name", SyncErrorKind.NULL_CONSTRAINT_VIOLATION),
            ("insert violates foreign key constraint", SyncErrorKind.FOREIGN_KEY_VIOLATION),
            ("duplicate key value violates unique constraint", SyncErrorKind.DUPLICATE_KEY),
            ("UNIQUE constraint failed: ts_matches.external_id", SyncErrorKind.DUPLICATE_KEY),
            ("connection reset", SyncErrorKind.UNKNOWN_ERROR),
        ],
    )
    def test_buckets(self, message, expected):
        assert classify_error(Exception(message)) == expected
