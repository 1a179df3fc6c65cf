"""
Seed-on-the-fly resolution of team and competition references.

Before a match row is written, every referenced team/competition id is
ensured in the store: memo -> store lookup -> ``results_extra`` stub ->
provider API search. An id that cannot be resolved anywhere is left
dangling on the match row; ``ts_matches`` carries no foreign keys.
"""
import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal
from app.models import Competition, Team
from app.services.sync.base import BaseSyncService, clean_id, dialect_insert
from app.services.sync.extras import EntityStub, ExtraBundle
from app.services.sync.normalizer import CanonicalMatch
from app.services.thesports_client import (
    ProviderError,
    TheSportsClient,
    raise_for_provider_error,
)

logger = logging.getLogger(__name__)

UNKNOWN_TEAM = "Unknown Team"
UNKNOWN_COMPETITION = "Unknown Competition"

TEAM_LIST_PATH = "/team/additional/list"
COMPETITION_LIST_PATH = "/competition/additional/list"
API_SEARCH_PAGE_LIMIT = 100
API_SEARCH_MAX_PAGES = 10

# API misses are not searched again for this long
MISS_RETRY_SECONDS = 3600

BULK_CHUNK_SIZE = 500


class ResolutionSource:
    MEMO = "memo"
    STORE = "store"
    BUNDLE = "bundle"
    API = "api"
    UNRESOLVED = "unresolved"


class ConcurrentIdSet:
    """Set of ids with locked insert/remove, shared by concurrent sync tasks."""

    def __init__(self, ids=None):
        self._ids: set[str] = set(ids or ())
        self._lock = threading.Lock()

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, external_id: str) -> bool:
        """Returns True when the id was newly added."""
        with self._lock:
            if external_id in self._ids:
                return False
            self._ids.add(external_id)
            return True

    def discard(self, external_id: str) -> None:
        with self._lock:
            self._ids.discard(external_id)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()


class MissRegistry:
    """Ids the provider API could not find, with the time of the last miss."""

    def __init__(self, retry_seconds: float = MISS_RETRY_SECONDS, clock=time.monotonic):
        self.retry_seconds = retry_seconds
        self._clock = clock
        self._misses: dict[str, float] = {}
        self._lock = threading.Lock()

    def record(self, external_id: str) -> None:
        with self._lock:
            self._misses[external_id] = self._clock()

    def forget(self, external_id: str) -> None:
        with self._lock:
            self._misses.pop(external_id, None)

    def is_recent(self, external_id: str) -> bool:
        missed_at = self._misses.get(external_id)
        return missed_at is not None and self._clock() - missed_at < self.retry_seconds


@dataclass
class ResolverState:
    """
    Process-lifetime resolver memo.

    Owned by the orchestrator and shared by every resolver it creates, so
    an id confirmed present is never looked up again.
    """
    ensured_teams: ConcurrentIdSet = field(default_factory=ConcurrentIdSet)
    ensured_competitions: ConcurrentIdSet = field(default_factory=ConcurrentIdSet)
    team_misses: MissRegistry = field(default_factory=MissRegistry)
    competition_misses: MissRegistry = field(default_factory=MissRegistry)


@dataclass(frozen=True)
class _EntityKind:
    label: str
    model: Any
    placeholder: str
    list_path: str
    columns: tuple[str, ...]


TEAM_KIND = _EntityKind(
    label="team",
    model=Team,
    placeholder=UNKNOWN_TEAM,
    list_path=TEAM_LIST_PATH,
    columns=("short_name", "logo_url", "country_id", "competition_id", "uid"),
)

COMPETITION_KIND = _EntityKind(
    label="competition",
    model=Competition,
    placeholder=UNKNOWN_COMPETITION,
    list_path=COMPETITION_LIST_PATH,
    columns=("short_name", "logo_url", "country_id", "category_id", "type", "uid"),
)


def _stub_values(kind: _EntityKind, stub: EntityStub) -> dict[str, Any]:
    values = {"external_id": stub.external_id, "name": stub.name or kind.placeholder}
    for column in kind.columns:
        values[column] = getattr(stub, column)
    return values


class EntityResolver(BaseSyncService):
    """Guarantees team/competition rows exist before a match write."""

    def __init__(
        self,
        db: AsyncSession,
        client: TheSportsClient | None = None,
        state: ResolverState | None = None,
        session_factory: async_sessionmaker | Callable[[], AsyncSession] | None = None,
    ):
        """
        Args:
            db: SQLAlchemy async session used for the synchronous path
            client: Optional TheSports client (uses singleton if not provided)
            state: Shared memo; a fresh one is created when omitted
            session_factory: Sessions for background refills (own session per task)
        """
        super().__init__(db, client)
        self.state = state or ResolverState()
        self.session_factory = session_factory or AsyncSessionLocal
        self._refills: dict[tuple[str, str], asyncio.Task] = {}

    # ==================== Match-level API ====================

    async def ensure_references(
        self, match: CanonicalMatch, bundle: ExtraBundle | None = None
    ) -> dict[str, str]:
        """
        Ensure every team/competition the match references exists.

        Never raises for a missing entity; provider failures during the
        API fallback are logged and treated as unresolved.

        Returns:
            Mapping of "team:<id>" / "competition:<id>" to resolution source
        """
        bundle = bundle or ExtraBundle()
        sources: dict[str, str] = {}

        for team_id in match.referenced_team_ids:
            sources[f"team:{team_id}"] = await self.ensure_team(team_id, bundle)

        if match.competition_id:
            sources[f"competition:{match.competition_id}"] = await self.ensure_competition(
                match.competition_id, bundle
            )

        return sources

    async def ensure_team(self, external_id: Any, bundle: ExtraBundle | None = None) -> str:
        return await self._ensure(
            TEAM_KIND,
            external_id,
            (bundle or ExtraBundle()).team,
            self.state.ensured_teams,
            self.state.team_misses,
        )

    async def ensure_competition(
        self, external_id: Any, bundle: ExtraBundle | None = None
    ) -> str:
        return await self._ensure(
            COMPETITION_KIND,
            external_id,
            (bundle or ExtraBundle()).competition,
            self.state.ensured_competitions,
            self.state.competition_misses,
        )

    async def _ensure(
        self,
        kind: _EntityKind,
        raw_id: Any,
        bundle_lookup: Callable[[str], EntityStub | None],
        ensured: ConcurrentIdSet,
        misses: MissRegistry,
    ) -> str:
        external_id = clean_id(raw_id)
        if not external_id:
            return ResolutionSource.UNRESOLVED

        if external_id in ensured:
            return ResolutionSource.MEMO

        if await self._exists(kind, external_id):
            ensured.add(external_id)
            return ResolutionSource.STORE

        stub = bundle_lookup(external_id)
        if stub is not None:
            await self._upsert(self.db, kind, [stub])
            ensured.add(external_id)
            misses.forget(external_id)
            if not stub.name:
                self.schedule_refill(kind.label, external_id)
            return ResolutionSource.BUNDLE

        if not misses.is_recent(external_id):
            stub = await self._fetch_from_api(kind, external_id)
            if stub is not None:
                await self._upsert(self.db, kind, [stub])
                ensured.add(external_id)
                misses.forget(external_id)
                return ResolutionSource.API
            misses.record(external_id)

        logger.warning(
            f"Could not resolve {kind.label} {external_id} (store, results_extra, API); "
            f"match will reference it without a {kind.label} row"
        )
        return ResolutionSource.UNRESOLVED

    # ==================== Bundle enrichment ====================

    async def enrich_from_bundle(self, bundle: ExtraBundle) -> dict[str, int]:
        """
        Bulk-upsert every stub in the bundle.

        Runs before a batch so the per-match path mostly hits the memo.
        """
        teams = list(bundle.teams.values())
        competitions = list(bundle.competitions.values())

        if teams:
            await self._upsert(self.db, TEAM_KIND, teams)
            for stub in teams:
                self.state.ensured_teams.add(stub.external_id)
                if not stub.name:
                    self.schedule_refill(TEAM_KIND.label, stub.external_id)
        if competitions:
            await self._upsert(self.db, COMPETITION_KIND, competitions)
            for stub in competitions:
                self.state.ensured_competitions.add(stub.external_id)
                if not stub.name:
                    self.schedule_refill(COMPETITION_KIND.label, stub.external_id)

        if teams or competitions:
            logger.info(
                f"Enriched {len(teams)} teams (format: {bundle.team_shape}) and "
                f"{len(competitions)} competitions (format: {bundle.competition_shape}) "
                f"from results_extra"
            )
        return {"teams": len(teams), "competitions": len(competitions)}

    # ==================== Background refill ====================

    def schedule_refill(self, kind_label: str, external_id: str) -> asyncio.Task:
        """
        Refresh a placeholder row from the provider in the background.

        The returned task resolves to True when the row was updated. Repeated
        calls for the same id while a refill is pending return the same task.
        """
        key = (kind_label, external_id)
        pending = self._refills.get(key)
        if pending is not None and not pending.done():
            return pending

        kind = TEAM_KIND if kind_label == TEAM_KIND.label else COMPETITION_KIND
        task = asyncio.create_task(self._refill(kind, external_id))
        self._refills[key] = task
        return task

    async def _refill(self, kind: _EntityKind, external_id: str) -> bool:
        stub = await self._fetch_from_api(kind, external_id)
        if stub is None or not stub.name:
            return False
        async with self.session_factory() as session:
            await self._upsert(session, kind, [stub])
            await session.commit()
        logger.info(f"Refilled {kind.label} {external_id} from API: {stub.name}")
        return True

    async def drain(self) -> dict[tuple[str, str], bool]:
        """Await all scheduled refills and return their outcomes."""
        tasks = dict(self._refills)
        self._refills.clear()
        outcomes: dict[tuple[str, str], bool] = {}
        for key, task in tasks.items():
            try:
                outcomes[key] = await task
            except Exception as e:
                logger.error(f"Refill of {key[0]} {key[1]} failed: {e}")
                outcomes[key] = False
        return outcomes

    @property
    def pending_refills(self) -> int:
        return sum(1 for task in self._refills.values() if not task.done())

    # ==================== Store access ====================

    async def _exists(self, kind: _EntityKind, external_id: str) -> bool:
        result = await self.db.execute(
            select(kind.model.id).where(kind.model.external_id == external_id)
        )
        return result.scalar_one_or_none() is not None

    async def _upsert(
        self, db: AsyncSession, kind: _EntityKind, stubs: list[EntityStub]
    ) -> None:
        """
        Insert-or-update reference rows.

        A placeholder name never overwrites a real one, and missing optional
        attributes keep their stored values.
        """
        table = kind.model.__table__
        for start in range(0, len(stubs), BULK_CHUNK_SIZE):
            chunk = stubs[start:start + BULK_CHUNK_SIZE]
            # Postgres rejects duplicate keys inside one INSERT ... ON CONFLICT
            unique = {stub.external_id: _stub_values(kind, stub) for stub in chunk}
            stmt = dialect_insert(db, table).values(list(unique.values()))
            set_ = {
                "name": func.coalesce(
                    func.nullif(stmt.excluded.name, kind.placeholder), table.c.name
                ),
                "updated_at": func.now(),
            }
            for column in kind.columns:
                set_[column] = func.coalesce(stmt.excluded[column], table.c[column])
            stmt = stmt.on_conflict_do_update(index_elements=["external_id"], set_=set_)
            await db.execute(stmt)

    # ==================== Provider fallback ====================

    async def _fetch_from_api(self, kind: _EntityKind, external_id: str) -> EntityStub | None:
        """
        Search the provider's paged entity list for one id.

        Returns None when not found within the page budget or on provider errors.
        """
        try:
            for page in range(1, API_SEARCH_MAX_PAGES + 1):
                response = await self.client.get(
                    kind.list_path, {"page": page, "limit": API_SEARCH_PAGE_LIMIT}
                )
                raise_for_provider_error(response, kind.list_path)
                results = response.get("results") or []
                if not results:
                    break
                for item in results:
                    if isinstance(item, dict) and clean_id(item.get("id")) == external_id:
                        return EntityStub.from_raw(external_id, item)
        except ProviderError as e:
            logger.debug(f"{kind.label} API fetch failed for {external_id}: {e}")
            return None

        logger.debug(
            f"{kind.label} {external_id} not found in first {API_SEARCH_MAX_PAGES} pages "
            f"of {kind.list_path}"
        )
        return None
