from app.models.team import Team
from app.models.competition import Competition
from app.models.match import Match

__all__ = [
    "Team",
    "Competition",
    "Match",
]
