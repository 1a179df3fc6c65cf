"""
Parsing of the ``results_extra`` side-channel bundle.

List responses carry brief team/competition stubs for every entity they
reference, either as an array of objects or as an object keyed by id.
Both shapes collapse into the same ``ExtraBundle``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from app.services.sync.base import clean_id, to_int, to_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityStub:
    """Brief team/competition record taken from the bundle."""
    external_id: str
    name: str | None = None
    short_name: str | None = None
    logo_url: str | None = None
    country_id: str | None = None
    category_id: str | None = None
    competition_id: str | None = None
    type: int | None = None
    uid: str | None = None

    @classmethod
    def from_raw(cls, external_id: str, raw: dict[str, Any]) -> "EntityStub":
        return cls(
            external_id=external_id,
            name=to_text(raw.get("name")) or to_text(raw.get("name_en")) or to_text(raw.get("name_cn")),
            short_name=to_text(raw.get("short_name")),
            logo_url=to_text(raw.get("logo_url")) or to_text(raw.get("logo")),
            country_id=clean_id(raw.get("country_id")),
            category_id=clean_id(raw.get("category_id")),
            competition_id=clean_id(raw.get("competition_id")),
            type=to_int(raw.get("type")),
            uid=clean_id(raw.get("uid")),
        )


def _parse_section(section: Any) -> tuple[dict[str, EntityStub], str]:
    """
    Parse one bundle section.

    Returns:
        Tuple of (stubs by external id, shape label "ARRAY"/"OBJECT"/"NONE")
    """
    stubs: dict[str, EntityStub] = {}

    if isinstance(section, list):
        for item in section:
            if not isinstance(item, dict):
                continue
            external_id = clean_id(item.get("id"))
            if external_id:
                stubs[external_id] = EntityStub.from_raw(external_id, item)
        return stubs, "ARRAY"

    if isinstance(section, dict):
        for key, item in section.items():
            if not isinstance(item, dict):
                continue
            external_id = clean_id(item.get("id")) or clean_id(key)
            if external_id:
                stubs[external_id] = EntityStub.from_raw(external_id, item)
        return stubs, "OBJECT"

    return stubs, "NONE"


@dataclass
class ExtraBundle:
    teams: dict[str, EntityStub] = field(default_factory=dict)
    competitions: dict[str, EntityStub] = field(default_factory=dict)
    team_shape: str = "NONE"
    competition_shape: str = "NONE"

    @classmethod
    def parse(cls, raw: Any) -> "ExtraBundle":
        """Accept a raw ``results_extra`` value of any shape; never raises."""
        if isinstance(raw, ExtraBundle):
            return raw
        if not isinstance(raw, dict):
            return cls()

        teams, team_shape = _parse_section(raw.get("team"))
        competitions, competition_shape = _parse_section(raw.get("competition"))
        return cls(
            teams=teams,
            competitions=competitions,
            team_shape=team_shape,
            competition_shape=competition_shape,
        )

    def team(self, external_id: str | None) -> EntityStub | None:
        if not external_id:
            return None
        return self.teams.get(external_id)

    def competition(self, external_id: str | None) -> EntityStub | None:
        if not external_id:
            return None
        return self.competitions.get(external_id)

    @property
    def is_empty(self) -> bool:
        return not self.teams and not self.competitions
