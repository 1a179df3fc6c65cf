"""
Per-date sync state, kept briefly for observability.

Not part of the relational model: states live in Redis with a TTL (or in
memory for tests and single-process runs) and are safe to lose.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from redis.asyncio import Redis

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class SyncState:
    date: str
    date_display: str
    reason: str
    ok: bool
    total_matches: int = 0
    synced: int = 0
    errors: int = 0
    success_rate: int | None = None
    rejected_reasons: dict[str, int] = field(default_factory=dict)
    attempts: int = 0
    error: str | None = None
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncState:
        known = {key: data[key] for key in cls.__dataclass_fields__ if key in data}
        return cls(**known)


class SyncStateStore:
    """Interface: ``save`` overwrites the state for a date, ``get`` reads it back."""

    async def save(self, state: SyncState) -> None:
        raise NotImplementedError

    async def get(self, date_str: str) -> SyncState | None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemorySyncStateStore(SyncStateStore):
    def __init__(self, ttl_seconds: int | None = None, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds or settings.sync_state_ttl_seconds
        self._clock = clock
        self._states: dict[str, tuple[float, SyncState]] = {}

    async def save(self, state: SyncState) -> None:
        now = self._clock()
        # Prune on write too: expired dates may never be read again
        expired = [date for date, (expires_at, _) in self._states.items() if now >= expires_at]
        for date in expired:
            del self._states[date]
        self._states[state.date] = (now + self.ttl_seconds, state)

    async def get(self, date_str: str) -> SyncState | None:
        entry = self._states.get(date_str)
        if entry is None:
            return None
        expires_at, state = entry
        if self._clock() >= expires_at:
            del self._states[date_str]
            return None
        return state


class RedisSyncStateStore(SyncStateStore):
    def __init__(
        self,
        redis: Redis | None = None,
        key_prefix: str | None = None,
        ttl_seconds: int | None = None,
    ):
        self._redis = redis
        self.key_prefix = key_prefix or settings.sync_state_key_prefix
        self.ttl_seconds = ttl_seconds or settings.sync_state_ttl_seconds

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = Redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    def _key(self, date_str: str) -> str:
        return f"{self.key_prefix}:{date_str}"

    async def save(self, state: SyncState) -> None:
        data = json.dumps(state.to_dict(), ensure_ascii=False, separators=(",", ":"))
        await self._get_redis().set(self._key(state.date), data, ex=self.ttl_seconds)

    async def get(self, date_str: str) -> SyncState | None:
        raw = await self._get_redis().get(self._key(date_str))
        if not raw:
            return None
        try:
            return SyncState.from_dict(json.loads(raw))
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable sync state for {date_str}: {e}")
            return None

    async def close(self) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.close()
        finally:
            self._redis = None
