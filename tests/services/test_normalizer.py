import pytest

from app.services.sync.extras import ExtraBundle
from app.services.sync.normalizer import (
    CanonicalMatch,
    MatchRejected,
    Rejection,
    ScoreBreakdown,
    compute_display_score,
    normalize_match,
    normalize_or_raise,
    pick_team_name,
    HOME_NAME_GETTERS,
    AWAY_NAME_GETTERS,
)
from app.utils.match_status import MatchStatus
from tests.conftest import NOW_EPOCH, make_raw_match, make_results_extra


class TestStatusTimeCorrection:
    def test_future_kickoff_with_ended_status_is_reset(self):
        raw = make_raw_match("m1", status_id=8, match_time=NOW_EPOCH + 3600, ended=1)
        match = normalize_match(raw, now=NOW_EPOCH)

        assert match.status_id == MatchStatus.NOT_STARTED
        assert match.status_corrected is True
        assert match.ended is False

    @pytest.mark.parametrize("status_id", [10, 12])
    def test_future_kickoff_with_interrupted_or_cancelled_is_reset(self, status_id):
        raw = make_raw_match("m1", status_id=status_id, match_time=NOW_EPOCH + 60)
        assert normalize_match(raw, now=NOW_EPOCH).status_id == MatchStatus.NOT_STARTED

    def test_past_kickoff_with_ended_status_is_unchanged(self):
        raw = make_raw_match("m1", status_id=8, match_time=NOW_EPOCH - 3600)
        match = normalize_match(raw, now=NOW_EPOCH)

        assert match.status_id == MatchStatus.END
        assert match.status_corrected is False

    def test_future_kickoff_with_postponed_is_kept(self):
        raw = make_raw_match("m1", status_id=9, match_time=NOW_EPOCH + 3600)
        assert normalize_match(raw, now=NOW_EPOCH).status_id == MatchStatus.DELAY

    def test_late_not_started_only_warns(self, caplog):
        raw = make_raw_match("m1", status_id=1, match_time=NOW_EPOCH - 1800)
        match = normalize_match(raw, now=NOW_EPOCH)

        assert match.status_id == MatchStatus.NOT_STARTED
        assert match.status_corrected is False
        assert "still NOT_STARTED" in caplog.text

    def test_missing_status_defaults_to_not_started(self):
        raw = make_raw_match("m1")
        del raw["status_id"]
        assert normalize_match(raw, now=NOW_EPOCH).status_id == MatchStatus.NOT_STARTED

    def test_status_alias(self):
        raw = make_raw_match("m1", match_time=NOW_EPOCH - 600)
        del raw["status_id"]
        raw["status"] = "2"
        assert normalize_match(raw, now=NOW_EPOCH).status_id == MatchStatus.FIRST_HALF


class TestScoreDecoding:
    def test_full_array(self):
        score = ScoreBreakdown.from_array([2, 1, 0, 3, 5, None, None])

        assert score.regular == 2
        assert score.half_time == 1
        assert score.red_cards == 0
        assert score.yellow_cards == 3
        assert score.corners == 5
        assert score.overtime is None
        assert score.penalties is None
        assert score.display == 2

    def test_short_array_leaves_missing_slots_empty(self):
        score = ScoreBreakdown.from_array([1, 0])
        assert score.regular == 1
        assert score.half_time == 0
        assert score.corners is None
        assert score.raw == (1, 0)

    def test_flat_score_fallback(self):
        score = ScoreBreakdown.from_array(None, "3")
        assert score.regular == 3
        assert score.raw is None

    @pytest.mark.parametrize(
        "regular, overtime, penalties, expected",
        [
            (1, 2, 1, 3),
            (1, 0, 0, 1),
            (1, None, 4, 5),
            (None, None, None, 0),
        ],
    )
    def test_display_rule(self, regular, overtime, penalties, expected):
        assert compute_display_score(regular, overtime, penalties) == expected


class TestValidation:
    def test_missing_external_id_is_rejected(self):
        raw = make_raw_match("m1")
        raw["id"] = ""
        result = normalize_match(raw, now=NOW_EPOCH)

        assert isinstance(result, Rejection)
        assert result.reason == "missing external_id"
        assert result.message == "REJECTED: missing external_id"

    def test_missing_match_time_is_rejected(self):
        raw = make_raw_match("m1", match_time=None)
        result = normalize_match(raw, now=NOW_EPOCH)

        assert isinstance(result, Rejection)
        assert result.external_id == "m1"

    def test_normalize_or_raise(self):
        with pytest.raises(MatchRejected) as exc_info:
            normalize_or_raise({"id": "m1"}, now=NOW_EPOCH)
        assert "missing match_time" in str(exc_info.value)

    def test_non_dict_record(self):
        assert isinstance(normalize_match(["m1"], now=NOW_EPOCH), Rejection)


class TestFieldMapping:
    def test_ids_and_nested_fields(self):
        match = normalize_match(make_raw_match("m1"), now=NOW_EPOCH)

        assert isinstance(match, CanonicalMatch)
        assert match.external_id == "m1"
        assert match.referee_id is None  # "0" means none
        assert match.stage_id == "stage-1"
        assert match.round_num == 17
        assert match.coverage_mlive is True
        assert match.coverage_lineup is False
        assert match.neutral is False
        assert match.external_updated_at == NOW_EPOCH - 60

    def test_flat_round_and_environment(self):
        raw = make_raw_match(
            "m1",
            round=None,
            round_num="5",
            environment={"weather": "2", "temperature": "12°C", "wind": "3m/s"},
        )
        match = normalize_match(raw, now=NOW_EPOCH)

        assert match.round_num == 5
        assert match.environment_weather == 2
        assert match.environment_temperature == "12°C"
        assert match.environment_humidity is None

    def test_json_encoded_incidents(self):
        raw = make_raw_match("m1", incidents='[{"type": 1, "time": 12}]', statistics="{broken")
        match = normalize_match(raw, now=NOW_EPOCH)

        assert match.incidents == [{"type": 1, "time": 12}]
        assert match.statistics is None

    def test_names_from_bundle(self):
        bundle = ExtraBundle.parse(make_results_extra("team-gs", "team-fb"))
        match = normalize_match(make_raw_match("m1"), bundle, now=NOW_EPOCH)

        assert match.home_team_name == "Team team-gs"
        assert match.away_team_name == "Team team-fb"
        assert match.competition_name == "Super Lig"


class TestNameProbing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ({"home_name": "A"}, "A"),
            ({"host_name": "B"}, "B"),
            ({"home": ["", "C alt"]}, "C alt"),
            ({"home": {"name": "D"}}, "D"),
            ({"home_team": {"name": "E"}}, "E"),
            ({"localTeam": {"name": "F"}}, "F"),
            ({"home": 123}, None),
            ({}, None),
        ],
    )
    def test_home_spellings(self, raw, expected):
        assert pick_team_name(raw, HOME_NAME_GETTERS) == expected

    def test_first_spelling_wins(self):
        raw = {"away_name": "First", "away": {"name": "Second"}}
        assert pick_team_name(raw, AWAY_NAME_GETTERS) == "First"

    def test_bundle_name_wins(self):
        assert pick_team_name({"home_name": "Inline"}, HOME_NAME_GETTERS, "Bundle") == "Bundle"
