import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database import Base
from app.api.deps import get_db  # Import from where routes actually use it
from app.models import Competition, Match, Team
from app.services.thesports_client import TheSportsClient


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2025-12-24 10:00:00 UTC (13:00 TSI)
NOW_EPOCH = 1766570400
# 20251224 in TSI: 2025-12-23 21:00:00 UTC .. 2025-12-24 20:59:59 UTC
DAY_START = 1766523600
DAY_END = 1766609999


# Make PostgreSQL types work with SQLite
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# Note: Using pytest-asyncio's built-in event_loop fixture (asyncio_mode = auto)


@pytest.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> async_sessionmaker:
    """Session factory bound to the test engine (orchestrator, refills)."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def client(test_session) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database dependency."""

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def mock_provider() -> MagicMock:
    """TheSports client whose ``get`` returns an empty result set by default."""
    provider = MagicMock(spec=TheSportsClient)
    provider.get = AsyncMock(return_value={"code": 0, "results": []})
    return provider


# --- Raw provider payloads ---

def make_raw_match(external_id: str, **overrides) -> dict:
    """Bulletin match record as returned by /match/diary."""
    raw = {
        "id": external_id,
        "season_id": "season-2025",
        "competition_id": "comp-super-lig",
        "home_team_id": "team-gs",
        "away_team_id": "team-fb",
        "status_id": 1,
        "match_time": NOW_EPOCH + 7200,
        "home_scores": [0, 0, 0, 0, 0, 0, 0],
        "away_scores": [0, 0, 0, 0, 0, 0, 0],
        "venue_id": "venue-1",
        "referee_id": "0",
        "neutral": 0,
        "round": {"stage_id": "stage-1", "round_num": 17, "group_num": 0},
        "coverage": {"mlive": 1, "lineup": 0},
        "updated_at": NOW_EPOCH - 60,
    }
    raw.update(overrides)
    return raw


def make_results_extra(*team_ids: str, competitions: dict | None = None) -> dict:
    """results_extra with teams as an array and competitions keyed by id."""
    return {
        "team": [
            {"id": team_id, "name": f"Team {team_id}", "logo": f"https://img/{team_id}.png"}
            for team_id in team_ids
        ],
        "competition": competitions if competitions is not None else {
            "comp-super-lig": {"id": "comp-super-lig", "name": "Super Lig", "type": 1},
        },
    }


@pytest.fixture
async def sample_teams(test_session) -> list[Team]:
    """Create sample teams."""
    teams = [
        Team(external_id="team-gs", name="Galatasaray"),
        Team(external_id="team-fb", name="Fenerbahce"),
        Team(external_id="team-bjk", name="Besiktas"),
    ]
    test_session.add_all(teams)
    await test_session.commit()
    return teams


@pytest.fixture
async def sample_competition(test_session) -> Competition:
    """Create a sample competition."""
    competition = Competition(external_id="comp-super-lig", name="Super Lig", type=1)
    test_session.add(competition)
    await test_session.commit()
    return competition


@pytest.fixture
async def sample_match(test_session, sample_teams, sample_competition) -> Match:
    """A live match stored at 1-1 in the second half."""
    match = Match(
        external_id="match-derby",
        competition_id="comp-super-lig",
        home_team_id="team-gs",
        away_team_id="team-fb",
        status_id=4,
        match_time=NOW_EPOCH - 3600,
        minute=57,
        home_score_regular=1,
        away_score_regular=1,
        home_scores=[1, 1, 0, 2, 3, 0, 0],
        away_scores=[1, 0, 0, 1, 4, 0, 0],
        external_updated_at=NOW_EPOCH - 300,
    )
    test_session.add(match)
    await test_session.commit()
    return match
