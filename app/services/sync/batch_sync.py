"""
Batch sync engine: normalize -> resolve references -> upsert, per record.

Records are committed one at a time so a failing record rolls back only
its own work and never stops the rest of the batch.
"""
import logging
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.sync.base import BaseSyncService
from app.services.sync.entity_resolver import EntityResolver, ResolverState
from app.services.sync.extras import ExtraBundle
from app.services.sync.match_writer import (
    ColumnSupportCache,
    MatchWriter,
    SyncErrorKind,
    classify_error,
)
from app.services.sync.normalizer import (
    CanonicalMatch,
    MatchRejected,
    normalize_or_raise,
)
from app.services.thesports_client import TheSportsClient

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 50
TOP_REASONS = 3


@dataclass
class SyncReport:
    synced: int = 0
    errors: int = 0
    rejected_reasons: Counter = field(default_factory=Counter)
    failed_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.synced + self.errors

    def record_failure(self, kind: SyncErrorKind, external_id: str | None) -> None:
        self.errors += 1
        self.rejected_reasons[kind.value] += 1
        if external_id:
            self.failed_ids.append(external_id)

    def merge(self, other: "SyncReport") -> "SyncReport":
        self.synced += other.synced
        self.errors += other.errors
        self.rejected_reasons.update(other.rejected_reasons)
        self.failed_ids.extend(other.failed_ids)
        return self

    def top_reasons(self, limit: int = TOP_REASONS) -> list[tuple[str, int]]:
        return self.rejected_reasons.most_common(limit)

    def as_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "errors": self.errors,
            "rejected_reasons": dict(self.rejected_reasons),
        }


def _raw_id(raw: Any) -> str | None:
    if isinstance(raw, dict):
        value = raw.get("id") or raw.get("external_id") or raw.get("match_id")
        return str(value) if value else None
    return None


class BatchSyncEngine(BaseSyncService):
    """Drives normalizer, resolver and writer over a list of raw records."""

    def __init__(
        self,
        db: AsyncSession,
        client: TheSportsClient | None = None,
        resolver_state: ResolverState | None = None,
        column_cache: ColumnSupportCache | None = None,
        session_factory: async_sessionmaker | Callable[[], AsyncSession] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """
        Args:
            db: SQLAlchemy async session
            client: Optional TheSports client (uses singleton if not provided)
            resolver_state: Shared resolver memo (orchestrator-owned)
            column_cache: Shared optional-column detection cache
            session_factory: Sessions for background reference refills
            clock: Epoch-seconds source for status/time correction
        """
        super().__init__(db, client)
        self.resolver = EntityResolver(
            db, self.client, state=resolver_state, session_factory=session_factory
        )
        self.writer = MatchWriter(db, column_cache)
        self.clock = clock

    async def sync_match(
        self, raw: dict[str, Any], bundle: ExtraBundle | None = None
    ) -> CanonicalMatch:
        """
        Sync one raw record without committing.

        Raises:
            MatchRejected: Missing external_id or match_time
            SQLAlchemyError: Store-level failure
        """
        now = self.clock() if self.clock else None
        match = normalize_or_raise(raw, bundle, now)
        await self.resolver.ensure_references(match, bundle)
        await self.writer.upsert(match)
        return match

    async def sync_matches(
        self,
        raw_records: Iterable[dict[str, Any]],
        results_extra: ExtraBundle | dict | None = None,
    ) -> SyncReport:
        """
        Sync a list of raw records sharing one ``results_extra`` bundle.

        Each record is committed on its own; failures are classified and
        counted, never raised.

        Returns:
            SyncReport with synced/error counts and rejection reasons
        """
        bundle = ExtraBundle.parse(results_extra)
        records = list(raw_records)
        report = SyncReport()

        for index, raw in enumerate(records, start=1):
            external_id = _raw_id(raw)
            try:
                match = await self.sync_match(raw, bundle)
                await self.db.commit()
                report.synced += 1
            except MatchRejected as e:
                await self.db.rollback()
                logger.warning(f"Match {external_id or '<no id>'}: {e}")
                report.record_failure(SyncErrorKind.VALIDATION_REJECTION, external_id)
            except Exception as e:
                await self.db.rollback()
                self._forget_unconfirmed(raw)
                kind = classify_error(e)
                logger.error(f"Failed to sync match {external_id}: [{kind.value}] {e}")
                report.record_failure(kind, external_id)
            else:
                logger.debug(f"Match {match.external_id} synced successfully")

            if index % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    f"Progress: {index}/{len(records)} processed "
                    f"({report.synced} synced, {report.errors} errors)"
                )

        if report.errors:
            reasons = ", ".join(f"{reason}={count}" for reason, count in report.top_reasons())
            logger.warning(
                f"Match sync finished with {report.errors} errors out of {len(records)}. "
                f"Top reasons: {reasons}"
            )
        else:
            logger.info(f"Match sync finished: {report.synced}/{len(records)} synced")
        return report

    def _forget_unconfirmed(self, raw: Any) -> None:
        """
        Drop memo entries the rolled-back record may have added.

        Bundle/API seeds made inside the failed transaction did not persist.
        """
        if not isinstance(raw, dict):
            return
        state = self.resolver.state
        for key in ("home_team_id", "away_team_id"):
            value = raw.get(key)
            if value:
                state.ensured_teams.discard(str(value))
        value = raw.get("competition_id")
        if value:
            state.ensured_competitions.discard(str(value))

