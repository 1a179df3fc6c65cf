"""
Raw provider match record -> canonical match record.

Pure functions, no I/O. Provider list responses spell the same fields in
several ways and pack scores into positional arrays; everything below
collapses those shapes into ``CanonicalMatch`` or returns a ``Rejection``.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from app.services.sync.base import clean_id, to_bool, to_int, to_text
from app.services.sync.extras import ExtraBundle
from app.utils.match_status import FUTURE_IMPOSSIBLE_STATUSES, MatchStatus, coerce_status
from app.utils.timestamps import now_epoch

logger = logging.getLogger(__name__)

# Still "not started" this long after kickoff is worth a warning
KICKOFF_GRACE_SECONDS = 5 * 60

# Positions inside the packed score array
SCORE_REGULAR = 0
SCORE_HALF_TIME = 1
SCORE_RED_CARDS = 2
SCORE_YELLOW_CARDS = 3
SCORE_CORNERS = 4
SCORE_OVERTIME = 5
SCORE_PENALTIES = 6


# ==================== Canonical Types ====================

def compute_display_score(
    regular: int | None, overtime: int | None, penalties: int | None
) -> int:
    """
    Score shown to end users.

    overtime + penalties when the match went to overtime, else
    regular + penalties. Missing components count as 0.
    """
    regular = regular or 0
    overtime = overtime or 0
    penalties = penalties or 0
    if overtime > 0:
        return overtime + penalties
    return regular + penalties


@dataclass(frozen=True)
class ScoreBreakdown:
    regular: int | None = None
    half_time: int | None = None
    red_cards: int | None = None
    yellow_cards: int | None = None
    corners: int | None = None
    overtime: int | None = None
    penalties: int | None = None
    raw: tuple | None = None

    @classmethod
    def from_array(cls, values: Any, fallback_regular: Any = None) -> "ScoreBreakdown":
        """
        Decode a 7-slot score array.

        Short or missing arrays yield None for the absent slots. When there
        is no array at all, ``fallback_regular`` (a flat ``home_score``
        style field) fills the regular slot.
        """
        if not isinstance(values, (list, tuple)):
            return cls(regular=to_int(fallback_regular))

        def slot(index: int) -> int | None:
            if index >= len(values):
                return None
            return to_int(values[index])

        return cls(
            regular=slot(SCORE_REGULAR),
            half_time=slot(SCORE_HALF_TIME),
            red_cards=slot(SCORE_RED_CARDS),
            yellow_cards=slot(SCORE_YELLOW_CARDS),
            corners=slot(SCORE_CORNERS),
            overtime=slot(SCORE_OVERTIME),
            penalties=slot(SCORE_PENALTIES),
            raw=tuple(values),
        )

    @property
    def display(self) -> int:
        return compute_display_score(self.regular, self.overtime, self.penalties)


@dataclass(frozen=True)
class Rejection:
    """Structured validation failure; the record never reaches the store."""
    reason: str
    external_id: str | None = None

    @property
    def message(self) -> str:
        return f"REJECTED: {self.reason}"


class MatchRejected(Exception):
    def __init__(self, rejection: Rejection):
        super().__init__(rejection.message)
        self.rejection = rejection


@dataclass
class CanonicalMatch:
    external_id: str
    match_time: int
    status_id: int = MatchStatus.NOT_STARTED
    season_id: str | None = None
    competition_id: str | None = None
    home_team_id: str | None = None
    away_team_id: str | None = None
    home_score: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    away_score: ScoreBreakdown = field(default_factory=ScoreBreakdown)

    # Display names resolved from the bundle or inline fields
    home_team_name: str | None = None
    away_team_name: str | None = None
    competition_name: str | None = None
    competition_logo_url: str | None = None

    venue_id: str | None = None
    referee_id: str | None = None
    stage_id: str | None = None
    round_num: int | None = None
    group_num: int | None = None
    neutral: bool | None = None
    note: str | None = None
    home_position: str | None = None
    away_position: str | None = None
    coverage_mlive: bool | None = None
    coverage_lineup: bool | None = None
    related_id: str | None = None
    agg_score: str | None = None
    environment_weather: int | None = None
    environment_pressure: str | None = None
    environment_temperature: str | None = None
    environment_wind: str | None = None
    environment_humidity: str | None = None
    tbd: bool | None = None
    has_ot: bool | None = None
    ended: bool | None = None
    team_reverse: bool | None = None
    external_updated_at: int | None = None

    incidents: Any = None
    statistics: Any = None

    status_corrected: bool = False

    @property
    def referenced_team_ids(self) -> list[str]:
        return [t for t in (self.home_team_id, self.away_team_id) if t]


# ==================== Name Probing ====================

def _nested_name(raw: dict, key: str) -> str | None:
    value = raw.get(key)
    if isinstance(value, dict):
        return to_text(value.get("name"))
    return None


def _flat_or_list(raw: dict, key: str) -> str | None:
    """``home`` may be a plain string or a [name, alt_name, ...] list."""
    value = raw.get(key)
    if isinstance(value, str):
        return to_text(value)
    if isinstance(value, (list, tuple)):
        for candidate in value[:2]:
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


def _field(key: str) -> Callable[[dict], str | None]:
    def getter(raw: dict) -> str | None:
        value = raw.get(key)
        return to_text(value) if isinstance(value, str) else None
    return getter


def _listish(key: str) -> Callable[[dict], str | None]:
    return lambda raw: _flat_or_list(raw, key)


def _nested(key: str) -> Callable[[dict], str | None]:
    return lambda raw: _nested_name(raw, key)


# Priority order matters: first hit wins
HOME_NAME_GETTERS = (
    _field("home_name"),
    _field("host_name"),
    _field("home_team_name"),
    _listish("home"),
    _nested("home"),
    _nested("home_team"),
    _listish("home_team"),
    _nested("localTeam"),
    _field("localTeam"),
)

AWAY_NAME_GETTERS = (
    _field("away_name"),
    _field("visitor_name"),
    _field("away_team_name"),
    _listish("away"),
    _nested("away"),
    _nested("away_team"),
    _listish("away_team"),
    _nested("visitorTeam"),
    _field("visitorTeam"),
)


def pick_team_name(raw: dict, getters, bundle_name: str | None = None) -> str | None:
    """Bundle name first, then inline spellings in order; None if nothing matches."""
    if bundle_name:
        return bundle_name
    for getter in getters:
        name = getter(raw)
        if name:
            return name
    return None


# ==================== Field Helpers ====================

def _sub(raw: dict, container: str, key: str, flat_key: str | None = None) -> Any:
    """Read ``raw[container][key]`` falling back to a flattened ``flat_key``."""
    nested = raw.get(container)
    if isinstance(nested, dict) and key in nested:
        return nested.get(key)
    return raw.get(flat_key or f"{container}_{key}")


def _structured(value: Any, label: str, external_id: str) -> Any:
    """Incidents/statistics sometimes arrive JSON-encoded as strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            logger.debug(f"Match {external_id}: unparseable {label} string dropped")
            return None
    return value


def _raw_external_id(raw: dict) -> str | None:
    for key in ("id", "external_id", "match_id"):
        external_id = clean_id(raw.get(key))
        if external_id:
            return external_id
    return None


# ==================== Normalization ====================

def correct_status_for_time(
    status_id: int, match_time: int, now: int, external_id: str = ""
) -> tuple[int, bool]:
    """
    Reconcile status against kickoff time.

    A kickoff strictly in the future cannot carry ended/cancelled/interrupted;
    the provider emits that when it mis-applies its timezone. Such records
    are reset to not-started.

    Returns:
        Tuple of (status_id, corrected)
    """
    if match_time > now and status_id in FUTURE_IMPOSSIBLE_STATUSES:
        logger.warning(
            f"Match {external_id}: status {status_id} with future kickoff "
            f"{match_time} (now {now}), corrected to NOT_STARTED"
        )
        return int(MatchStatus.NOT_STARTED), True

    if status_id == MatchStatus.NOT_STARTED and now - match_time > KICKOFF_GRACE_SECONDS:
        logger.warning(
            f"Match {external_id}: still NOT_STARTED {(now - match_time) // 60} min after kickoff"
        )
    return status_id, False


def normalize_match(
    raw: dict[str, Any],
    bundle: ExtraBundle | None = None,
    now: int | None = None,
) -> CanonicalMatch | Rejection:
    """
    Normalize one raw provider match record.

    Args:
        raw: Provider match object (diary, recent list, or already-flattened)
        bundle: Parsed ``results_extra`` of the same response
        now: Current epoch seconds (injectable for tests)

    Returns:
        CanonicalMatch, or Rejection when external id or kickoff is missing
    """
    if not isinstance(raw, dict):
        return Rejection("record is not an object")

    external_id = _raw_external_id(raw)
    if not external_id:
        return Rejection("missing external_id")

    match_time = to_int(raw.get("match_time"))
    if not match_time:
        return Rejection("missing match_time", external_id=external_id)

    if now is None:
        now = now_epoch()
    bundle = bundle or ExtraBundle()

    status_id = coerce_status(raw.get("status_id"))
    if status_id is None:
        status_id = coerce_status(raw.get("status"))
    if status_id is None:
        status_id = int(MatchStatus.NOT_STARTED)
    status_id, corrected = correct_status_for_time(status_id, match_time, now, external_id)

    ended = to_bool(raw.get("ended"))
    if corrected:
        ended = False

    home_team_id = clean_id(raw.get("home_team_id"))
    away_team_id = clean_id(raw.get("away_team_id"))
    competition_id = clean_id(raw.get("competition_id"))

    home_stub = bundle.team(home_team_id)
    away_stub = bundle.team(away_team_id)
    competition_stub = bundle.competition(competition_id)

    return CanonicalMatch(
        external_id=external_id,
        match_time=match_time,
        status_id=status_id,
        season_id=clean_id(raw.get("season_id")),
        competition_id=competition_id,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        home_score=ScoreBreakdown.from_array(raw.get("home_scores"), raw.get("home_score")),
        away_score=ScoreBreakdown.from_array(raw.get("away_scores"), raw.get("away_score")),
        home_team_name=pick_team_name(raw, HOME_NAME_GETTERS, home_stub.name if home_stub else None),
        away_team_name=pick_team_name(raw, AWAY_NAME_GETTERS, away_stub.name if away_stub else None),
        competition_name=competition_stub.name if competition_stub else None,
        competition_logo_url=competition_stub.logo_url if competition_stub else None,
        venue_id=clean_id(raw.get("venue_id")),
        referee_id=clean_id(raw.get("referee_id")),
        stage_id=clean_id(_sub(raw, "round", "stage_id", "stage_id")),
        round_num=to_int(_sub(raw, "round", "round_num", "round_num")),
        group_num=to_int(_sub(raw, "round", "group_num", "group_num")),
        neutral=to_bool(raw.get("neutral")),
        note=to_text(raw.get("note")),
        home_position=to_text(raw.get("home_position")),
        away_position=to_text(raw.get("away_position")),
        coverage_mlive=to_bool(_sub(raw, "coverage", "mlive")),
        coverage_lineup=to_bool(_sub(raw, "coverage", "lineup")),
        related_id=clean_id(raw.get("related_id")),
        agg_score=to_text(raw.get("agg_score")),
        environment_weather=to_int(_sub(raw, "environment", "weather")),
        environment_pressure=to_text(_sub(raw, "environment", "pressure")),
        environment_temperature=to_text(_sub(raw, "environment", "temperature")),
        environment_wind=to_text(_sub(raw, "environment", "wind")),
        environment_humidity=to_text(_sub(raw, "environment", "humidity")),
        tbd=to_bool(raw.get("tbd")),
        has_ot=to_bool(raw.get("has_ot")),
        ended=ended,
        team_reverse=to_bool(raw.get("team_reverse")),
        external_updated_at=to_int(raw.get("updated_at") or raw.get("external_updated_at")),
        incidents=_structured(raw.get("incidents"), "incidents", external_id),
        statistics=_structured(raw.get("statistics"), "statistics", external_id),
        status_corrected=corrected,
    )


def normalize_or_raise(
    raw: dict[str, Any], bundle: ExtraBundle | None = None, now: int | None = None
) -> CanonicalMatch:
    result = normalize_match(raw, bundle, now)
    if isinstance(result, Rejection):
        raise MatchRejected(result)
    return result
