"""Read-only standings preview of a group, with the tentative ladder move."""

from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from escalera.db.models import Group
from escalera.rounds.ladder import target_index
from escalera.scoring.engine import ScoreRecalculationEngine
from escalera.statuses import MOVEMENT_DOWN, MOVEMENT_SAME, MOVEMENT_UP


@dataclass
class StandingRow:
    player_id: int
    position: int
    points: float
    streak: int
    sets_played: int
    sets_won: int
    games_won: int
    games_lost: int
    used_comodin: bool
    movement: str
    target_level: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def group_standings(session: Session, engine: ScoreRecalculationEngine, group_id: int) -> list[StandingRow]:
    """
    Current standings of a group as if the round closed now.

    Nothing is written; positions come from a fresh computation over the
    confirmed sets.
    """
    result = engine.compute(session, group_id)
    group = session.get(Group, group_id)
    levels = list(
        session.execute(
            select(Group.level).where(Group.round_id == group.round_id).order_by(Group.level)
        ).scalars()
    )
    index = levels.index(group.level)

    rows = []
    for score in sorted(result.scores, key=lambda s: s.position):
        target = target_index(index, score.position, len(levels))
        if target < index:
            movement = MOVEMENT_UP
        elif target > index:
            movement = MOVEMENT_DOWN
        else:
            movement = MOVEMENT_SAME
        rows.append(
            StandingRow(
                player_id=score.player_id,
                position=score.position,
                points=score.points,
                streak=score.streak,
                sets_played=score.sets_played,
                sets_won=score.sets_won,
                games_won=score.games_won,
                games_lost=score.games_lost,
                used_comodin=score.used_comodin,
                movement=movement,
                target_level=levels[target],
            )
        )
    return rows
