"""Provider match status codes and presentation helpers."""

import enum


class MatchStatus(enum.IntEnum):
    """TheSports match state codes."""
    ABNORMAL = 0
    NOT_STARTED = 1
    FIRST_HALF = 2
    HALF_TIME = 3
    SECOND_HALF = 4
    OVERTIME = 5
    OVERTIME_DEPRECATED = 6
    PENALTY_SHOOTOUT = 7
    END = 8
    DELAY = 9  # postponed
    INTERRUPT = 10
    CUT_IN_HALF = 11  # abandoned
    CANCEL = 12
    TBD = 13


# States that cannot be true for a kickoff still in the future
FUTURE_IMPOSSIBLE_STATUSES = frozenset({
    MatchStatus.END,
    MatchStatus.CANCEL,
    MatchStatus.INTERRUPT,
})

LIVE_STATUSES = frozenset({
    MatchStatus.FIRST_HALF,
    MatchStatus.HALF_TIME,
    MatchStatus.SECOND_HALF,
    MatchStatus.OVERTIME,
    MatchStatus.OVERTIME_DEPRECATED,
    MatchStatus.PENALTY_SHOOTOUT,
})

FULL_TIME_STATUSES = frozenset({
    MatchStatus.END,
    MatchStatus.DELAY,
    MatchStatus.INTERRUPT,
    MatchStatus.CANCEL,
})


def coerce_status(value) -> int | None:
    """Provider status as int, or None for missing/garbled values."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def minute_text(minute: int | None, status_id: int | None) -> str:
    """Short minute label for diagnostics ("—", "HT", "FT" or "57'")."""
    if minute is None:
        return "—"
    if status_id == MatchStatus.NOT_STARTED:
        return "—"
    if status_id == MatchStatus.HALF_TIME:
        return "HT"
    if status_id in FULL_TIME_STATUSES:
        return "FT"
    if minute < 0:
        return "—"
    return f"{minute}'"
