"""
Idempotent match row writer.

One ``INSERT ... ON CONFLICT (external_id) DO UPDATE`` per canonical match.
Optional columns (score breakdown, incidents, statistics) are written only
when the live schema has them; support is detected once per process.
"""
import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, inspect
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Match
from app.services.sync.base import dialect_insert
from app.services.sync.normalizer import CanonicalMatch

logger = logging.getLogger(__name__)

SCORE_COLUMNS = (
    "home_score_regular",
    "home_score_overtime",
    "home_score_penalties",
    "home_score_display",
    "away_score_regular",
    "away_score_overtime",
    "away_score_penalties",
    "away_score_display",
)

BASE_COLUMNS = (
    "external_id",
    "season_id",
    "competition_id",
    "home_team_id",
    "away_team_id",
    "status_id",
    "match_time",
    "venue_id",
    "referee_id",
    "neutral",
    "note",
    "home_position",
    "away_position",
    "coverage_mlive",
    "coverage_lineup",
    "stage_id",
    "group_num",
    "round_num",
    "related_id",
    "agg_score",
    "environment_weather",
    "environment_pressure",
    "environment_temperature",
    "environment_wind",
    "environment_humidity",
    "tbd",
    "has_ot",
    "ended",
    "team_reverse",
    "external_updated_at",
)


class SyncErrorKind(str, enum.Enum):
    VALIDATION_REJECTION = "VALIDATION_REJECTION"
    NULL_CONSTRAINT_VIOLATION = "NULL_CONSTRAINT_VIOLATION"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    DUPLICATE_KEY = "DUPLICATE_KEY"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


def classify_error(error: BaseException | str) -> SyncErrorKind:
    """Map a write failure to its reporting bucket (PostgreSQL and SQLite wording)."""
    message = str(error).lower()
    if "rejected:" in message:
        return SyncErrorKind.VALIDATION_REJECTION
    if "null value in column" in message or "not null constraint" in message:
        return SyncErrorKind.NULL_CONSTRAINT_VIOLATION
    if "foreign key constraint" in message:
        return SyncErrorKind.FOREIGN_KEY_VIOLATION
    if "duplicate key" in message or "unique constraint" in message:
        return SyncErrorKind.DUPLICATE_KEY
    return SyncErrorKind.UNKNOWN_ERROR


@dataclass(frozen=True)
class ColumnSupport:
    columns: frozenset[str]

    @property
    def has_score_columns(self) -> bool:
        # All eight or none; a partial breakdown is never written
        return all(column in self.columns for column in SCORE_COLUMNS)

    @property
    def has_incidents(self) -> bool:
        return "incidents" in self.columns

    @property
    def has_statistics(self) -> bool:
        return "statistics" in self.columns


class ColumnSupportCache:
    """Detects optional ``ts_matches`` columns once and remembers the answer."""

    def __init__(self):
        self._support: ColumnSupport | None = None
        self._lock = asyncio.Lock()

    @property
    def detected(self) -> ColumnSupport | None:
        return self._support

    async def get(self, db: AsyncSession) -> ColumnSupport:
        if self._support is not None:
            return self._support
        async with self._lock:
            if self._support is None:
                columns = await db.run_sync(
                    lambda session: [
                        column["name"]
                        for column in inspect(session.connection()).get_columns(
                            Match.__tablename__
                        )
                    ]
                )
                self._support = ColumnSupport(frozenset(columns))
                logger.info(
                    f"ts_matches optional columns: scores={self._support.has_score_columns} "
                    f"incidents={self._support.has_incidents} "
                    f"statistics={self._support.has_statistics}"
                )
        return self._support

    def reset(self) -> None:
        self._support = None


def _json_or_none(value: Any, label: str, external_id: str) -> Any:
    """Keep a structured payload only if it serializes cleanly."""
    if value is None:
        return None
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"Match {external_id}: {label} not serializable, storing NULL: {e}")
        return None
    return value


def build_row(match: CanonicalMatch, support: ColumnSupport) -> dict[str, Any]:
    """Column values for one match, shaped to the detected schema."""
    row = {column: getattr(match, column) for column in BASE_COLUMNS}
    row["status_id"] = int(match.status_id)

    home_raw = list(match.home_score.raw) if match.home_score.raw is not None else None
    away_raw = list(match.away_score.raw) if match.away_score.raw is not None else None
    row["home_scores"] = _json_or_none(home_raw, "home_scores", match.external_id)
    row["away_scores"] = _json_or_none(away_raw, "away_scores", match.external_id)

    if support.has_score_columns:
        row.update(
            home_score_regular=match.home_score.regular,
            home_score_overtime=match.home_score.overtime,
            home_score_penalties=match.home_score.penalties,
            home_score_display=match.home_score.display,
            away_score_regular=match.away_score.regular,
            away_score_overtime=match.away_score.overtime,
            away_score_penalties=match.away_score.penalties,
            away_score_display=match.away_score.display,
        )
    if support.has_incidents:
        row["incidents"] = _json_or_none(match.incidents, "incidents", match.external_id)
    if support.has_statistics:
        row["statistics"] = _json_or_none(match.statistics, "statistics", match.external_id)
    return row


class MatchWriter:
    """Writes canonical matches to ``ts_matches`` (last write wins)."""

    def __init__(self, db: AsyncSession, column_cache: ColumnSupportCache | None = None):
        self.db = db
        self.column_cache = column_cache or ColumnSupportCache()

    async def upsert(self, match: CanonicalMatch) -> None:
        """
        Insert or overwrite the match row keyed on ``external_id``.

        Every mutable column takes the incoming value; there is no merge.
        """
        support = await self.column_cache.get(self.db)
        row = build_row(match, support)

        table = Match.__table__
        stmt = dialect_insert(self.db, table).values(**row)
        set_ = {
            column: stmt.excluded[column]
            for column in row
            if column != "external_id"
        }
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=["external_id"], set_=set_)
        await self.db.execute(stmt)
