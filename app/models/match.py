from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sql_types import EPOCH_SQL_TYPE, ROW_ID_SQL_TYPE
from app.utils.timestamps import utcnow


class Match(Base):
    """
    Local mirror of one provider fixture.

    Team/competition references hold provider external ids and carry no
    foreign-key constraint, so a match row can be written before its
    reference rows exist.
    """

    __tablename__ = "ts_matches"
    __table_args__ = (
        Index("ix_ts_matches_match_time", "match_time"),
        Index("ix_ts_matches_status_match_time", "status_id", "match_time"),
    )

    id: Mapped[int] = mapped_column(ROW_ID_SQL_TYPE, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    season_id: Mapped[str | None] = mapped_column(String(64))
    competition_id: Mapped[str | None] = mapped_column(String(64), index=True)
    home_team_id: Mapped[str | None] = mapped_column(String(64), index=True)
    away_team_id: Mapped[str | None] = mapped_column(String(64), index=True)
    status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    match_time: Mapped[int] = mapped_column(EPOCH_SQL_TYPE, nullable=False)
    minute: Mapped[int | None] = mapped_column(Integer)  # written by live pipelines only

    venue_id: Mapped[str | None] = mapped_column(String(64))
    referee_id: Mapped[str | None] = mapped_column(String(64))
    stage_id: Mapped[str | None] = mapped_column(String(64))
    round_num: Mapped[int | None] = mapped_column(Integer)
    group_num: Mapped[int | None] = mapped_column(Integer)
    neutral: Mapped[bool | None] = mapped_column(Boolean)
    note: Mapped[str | None] = mapped_column(Text)
    home_position: Mapped[str | None] = mapped_column(String(32))
    away_position: Mapped[str | None] = mapped_column(String(32))
    coverage_mlive: Mapped[bool | None] = mapped_column(Boolean)
    coverage_lineup: Mapped[bool | None] = mapped_column(Boolean)
    related_id: Mapped[str | None] = mapped_column(String(64))
    agg_score: Mapped[str | None] = mapped_column(String(32))

    # Weather
    environment_weather: Mapped[int | None] = mapped_column(Integer)
    environment_pressure: Mapped[str | None] = mapped_column(String(32))
    environment_temperature: Mapped[str | None] = mapped_column(String(32))
    environment_wind: Mapped[str | None] = mapped_column(String(32))
    environment_humidity: Mapped[str | None] = mapped_column(String(32))

    tbd: Mapped[bool | None] = mapped_column(Boolean)
    has_ot: Mapped[bool | None] = mapped_column(Boolean)
    ended: Mapped[bool | None] = mapped_column(Boolean)
    team_reverse: Mapped[bool | None] = mapped_column(Boolean)
    external_updated_at: Mapped[int | None] = mapped_column(EPOCH_SQL_TYPE)

    # Packed provider score arrays:
    # [regular, half_time, red, yellow, corners, overtime, penalties]
    home_scores: Mapped[list[Any] | None] = mapped_column(JSONB)
    away_scores: Mapped[list[Any] | None] = mapped_column(JSONB)

    # Optional columns; older schemas may lack them (see MatchWriter)
    home_score_regular: Mapped[int | None] = mapped_column(Integer)
    home_score_overtime: Mapped[int | None] = mapped_column(Integer)
    home_score_penalties: Mapped[int | None] = mapped_column(Integer)
    home_score_display: Mapped[int | None] = mapped_column(Integer)
    away_score_regular: Mapped[int | None] = mapped_column(Integer)
    away_score_overtime: Mapped[int | None] = mapped_column(Integer)
    away_score_penalties: Mapped[int | None] = mapped_column(Integer)
    away_score_display: Mapped[int | None] = mapped_column(Integer)
    incidents: Mapped[Any | None] = mapped_column(JSONB)
    statistics: Mapped[Any | None] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
