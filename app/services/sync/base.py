"""
Base class and utilities for sync services.

Contains shared value coercion helpers for raw provider payloads and the
base class holding the session and provider client.
"""
import logging
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.thesports_client import TheSportsClient, get_thesports_client
from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


# ==================== Value Coercion ====================

def clean_id(value: Any) -> str | None:
    """
    Provider id as a string, or None for missing/placeholder ids.

    The provider uses "" and "0" for "no entity".
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == "0":
        return None
    return text


def to_int(value: Any) -> int | None:
    """Parse int from int/str/float or return None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def to_bool(value: Any) -> bool | None:
    """Provider flags arrive as 0/1, "0"/"1" or booleans."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    number = to_int(value)
    if number is None:
        return None
    return number != 0


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def dialect_insert(db: AsyncSession, table):
    """
    INSERT supporting ``on_conflict_do_update`` for the session's dialect.

    PostgreSQL in production, SQLite in tests; both expose the same
    ``excluded`` / ``index_elements`` API.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


# ==================== Base Sync Service ====================

class BaseSyncService:
    """
    Base class for sync services.

    Provides common functionality:
    - Database session access
    - TheSports API client access
    """

    def __init__(self, db: AsyncSession, client: TheSportsClient | None = None):
        """
        Initialize the sync service.

        Args:
            db: SQLAlchemy async session
            client: Optional TheSports client (uses singleton if not provided)
        """
        self.db = db
        self.client = client or get_thesports_client()
