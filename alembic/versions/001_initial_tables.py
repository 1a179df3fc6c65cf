"""Initial tables

Revision ID: 001
Revises:
Create Date: 2025-12-24

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _reference_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('short_name', sa.String(length=100), nullable=True),
        sa.Column('logo_url', sa.String(length=500), nullable=True),
        sa.Column('country_id', sa.String(length=64), nullable=True),
    ]


def upgrade() -> None:
    # Teams
    op.create_table(
        'ts_teams',
        *_reference_columns(),
        sa.Column('competition_id', sa.String(length=64), nullable=True),
        sa.Column('uid', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_ts_teams_external_id', 'ts_teams', ['external_id'], unique=True)
    op.create_index('ix_ts_teams_uid', 'ts_teams', ['uid'])

    # Competitions
    op.create_table(
        'ts_competitions',
        *_reference_columns(),
        sa.Column('category_id', sa.String(length=64), nullable=True),
        sa.Column('type', sa.Integer(), nullable=True),
        sa.Column('uid', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_ts_competitions_external_id', 'ts_competitions', ['external_id'], unique=True)
    op.create_index('ix_ts_competitions_uid', 'ts_competitions', ['uid'])

    # Matches (team/competition ids are provider ids, no foreign keys)
    op.create_table(
        'ts_matches',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('season_id', sa.String(length=64), nullable=True),
        sa.Column('competition_id', sa.String(length=64), nullable=True),
        sa.Column('home_team_id', sa.String(length=64), nullable=True),
        sa.Column('away_team_id', sa.String(length=64), nullable=True),
        sa.Column('status_id', sa.Integer(), server_default='1', nullable=False),
        sa.Column('match_time', sa.BigInteger(), nullable=False),
        sa.Column('minute', sa.Integer(), nullable=True),
        sa.Column('venue_id', sa.String(length=64), nullable=True),
        sa.Column('referee_id', sa.String(length=64), nullable=True),
        sa.Column('stage_id', sa.String(length=64), nullable=True),
        sa.Column('round_num', sa.Integer(), nullable=True),
        sa.Column('group_num', sa.Integer(), nullable=True),
        sa.Column('neutral', sa.Boolean(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('home_position', sa.String(length=32), nullable=True),
        sa.Column('away_position', sa.String(length=32), nullable=True),
        sa.Column('coverage_mlive', sa.Boolean(), nullable=True),
        sa.Column('coverage_lineup', sa.Boolean(), nullable=True),
        sa.Column('related_id', sa.String(length=64), nullable=True),
        sa.Column('agg_score', sa.String(length=32), nullable=True),
        sa.Column('environment_weather', sa.Integer(), nullable=True),
        sa.Column('environment_pressure', sa.String(length=32), nullable=True),
        sa.Column('environment_temperature', sa.String(length=32), nullable=True),
        sa.Column('environment_wind', sa.String(length=32), nullable=True),
        sa.Column('environment_humidity', sa.String(length=32), nullable=True),
        sa.Column('tbd', sa.Boolean(), nullable=True),
        sa.Column('has_ot', sa.Boolean(), nullable=True),
        sa.Column('ended', sa.Boolean(), nullable=True),
        sa.Column('team_reverse', sa.Boolean(), nullable=True),
        sa.Column('external_updated_at', sa.BigInteger(), nullable=True),
        sa.Column('home_scores', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('away_scores', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('home_score_regular', sa.Integer(), nullable=True),
        sa.Column('home_score_overtime', sa.Integer(), nullable=True),
        sa.Column('home_score_penalties', sa.Integer(), nullable=True),
        sa.Column('home_score_display', sa.Integer(), nullable=True),
        sa.Column('away_score_regular', sa.Integer(), nullable=True),
        sa.Column('away_score_overtime', sa.Integer(), nullable=True),
        sa.Column('away_score_penalties', sa.Integer(), nullable=True),
        sa.Column('away_score_display', sa.Integer(), nullable=True),
        sa.Column('incidents', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('statistics', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id')
    )
    op.create_index('ix_ts_matches_match_time', 'ts_matches', ['match_time'])
    op.create_index('ix_ts_matches_status_match_time', 'ts_matches', ['status_id', 'match_time'])
    op.create_index('ix_ts_matches_competition_id', 'ts_matches', ['competition_id'])
    op.create_index('ix_ts_matches_home_team_id', 'ts_matches', ['home_team_id'])
    op.create_index('ix_ts_matches_away_team_id', 'ts_matches', ['away_team_id'])


def downgrade() -> None:
    op.drop_table('ts_matches')
    op.drop_table('ts_competitions')
    op.drop_table('ts_teams')
