"""
Group points recalculation.

The engine is the only writer of GroupPlayer.points, streak and position.
It is called whenever the set of confirmed results of a group changes
(confirmation, admin edit, clear, comodín changes) and before a round
closes.

Algorithm for one group:
1. Load the confirmed sets, the group players (with substitutes) and the
   streak of each player
2. Mean-comodín players without substitute keep their fixed credit;
   everyone else sums set points over every confirmed set played by them
   or by their substitute, plus the streak bonus when not on comodín
3. Order players by points desc, streak desc (player id as last resort)
   and write points, streak and position of all four in one flush

Recalculation is idempotent: the result only depends on the confirmed
sets, the comodín fields and the closed-round history.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from escalera.config import Settings
from escalera.db.models import Group, GroupPlayer, Match
from escalera.db.session import transaction
from escalera.errors import LadderError, NotFound, PointsCalculationFailed
from escalera.scoring.rules import set_points, set_winner
from escalera.scoring.streaks import StreakCalculator, streak_bonus
from escalera.scoring.substitutes import physical_player_id, recipient_for

logger = logging.getLogger(__name__)


@dataclass
class PlayerScore:
    """Computed standing of one group player."""
    group_player_id: int
    player_id: int
    points: float
    streak: int
    position: int = 0
    sets_played: int = 0
    sets_won: int = 0
    games_won: int = 0
    games_lost: int = 0
    streak_bonus: int = 0
    used_comodin: bool = False

    @property
    def games_diff(self) -> int:
        return self.games_won - self.games_lost


@dataclass
class RecalculationResult:
    """Outcome of recalculating one group."""
    group_id: int
    confirmed_sets: int
    scores: list[PlayerScore] = field(default_factory=list)

    def points_by_player(self) -> dict[int, float]:
        return {s.player_id: s.points for s in self.scores}

    def summary(self) -> str:
        ranking = ", ".join(
            f"{s.position}. player {s.player_id} ({s.points:g} pts, streak {s.streak})"
            for s in sorted(self.scores, key=lambda s: s.position)
        )
        return f"Group {self.group_id} [{self.confirmed_sets} confirmed sets]: {ranking}"


def match_points(match: Match, physical_id: int) -> tuple[int, bool, int, int]:
    """
    Points earned by a physical player in a confirmed set.

    Returns:
        (points, won_set, games_won, games_lost)
    """
    team = match.team_of(physical_id)
    if team is None:
        return 0, False, 0, 0
    won = set_winner(match.team1_games, match.team2_games) == team
    games_won = match.team1_games if team == 1 else match.team2_games
    games_lost = match.team2_games if team == 1 else match.team1_games
    return set_points(games_won, won), won, games_won, games_lost


def rank_scores(scores: list[PlayerScore]) -> list[PlayerScore]:
    """Assign positions 1..n by points desc, streak desc, player id."""
    ordered = sorted(scores, key=lambda s: (-s.points, -s.streak, s.player_id))
    for position, score in enumerate(ordered, start=1):
        score.position = position
    return ordered


def compute_group_scores(
    players: list[GroupPlayer],
    confirmed: list[Match],
    streaks: dict[int, int],
    points_per_set: int = 2,
    include_bonuses: bool = True,
) -> list[PlayerScore]:
    """
    Pure points computation for a group.

    Args:
        players: GroupPlayer rows of the group
        confirmed: Confirmed sets of the group
        streaks: player_id -> streak for the round
        points_per_set: Streak bonus per set played
        include_bonuses: False computes raw set points only (no streak
            bonus, no comodín credit)
    """
    scores = []
    for gp in players:
        streak = 0 if gp.used_comodin else streaks.get(gp.player_id, 0)
        score = PlayerScore(
            group_player_id=gp.id,
            player_id=gp.player_id,
            points=0.0,
            streak=streak if include_bonuses else 0,
            used_comodin=gp.used_comodin,
        )

        for match in confirmed:
            recipient = recipient_for(match, gp)
            if recipient is None:
                continue
            points, won, games_won, games_lost = match_points(match, recipient)
            score.sets_won += int(won)
            score.games_won += games_won
            score.games_lost += games_lost
            score.points += points

        physical = physical_player_id(gp)
        score.sets_played = sum(1 for m in confirmed if physical in m.participant_ids)

        if include_bonuses:
            if gp.used_comodin and gp.substitute_player_id is None:
                # Mean comodín: fixed credit replaces live points
                credit = gp.comodin_points if gp.comodin_points is not None else gp.points
                score.points = float(credit or 0.0)
            elif score.streak >= 1:
                score.streak_bonus = streak_bonus(score.streak, score.sets_played, points_per_set)
                score.points += score.streak_bonus

        scores.append(score)
    return rank_scores(scores)


class ScoreRecalculationEngine:
    """Recomputes and persists the standings of a group."""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        streaks: Optional[StreakCalculator] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.streaks = streaks or StreakCalculator()

    def load_group(self, session: Session, group_id: int, for_update: bool = False) -> Group:
        stmt = select(Group).where(Group.id == group_id)
        if for_update:
            stmt = stmt.with_for_update()
        group = session.execute(stmt).scalar_one_or_none()
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    def confirmed_matches(self, session: Session, group_id: int) -> list[Match]:
        return list(
            session.execute(
                select(Match)
                .where(Match.group_id == group_id, Match.is_confirmed.is_(True))
                .order_by(Match.set_number)
            ).scalars()
        )

    def group_players(self, session: Session, group_id: int) -> list[GroupPlayer]:
        return list(
            session.execute(
                select(GroupPlayer).where(GroupPlayer.group_id == group_id).order_by(GroupPlayer.id)
            ).scalars()
        )

    def compute(self, session: Session, group_id: int, include_bonuses: bool = True) -> RecalculationResult:
        """Compute a group's standings without writing them."""
        session.flush()
        group = self.load_group(session, group_id)
        players = self.group_players(session, group_id)
        if not players:
            raise PointsCalculationFailed(
                f"Group {group_id} has no players", context={"group_id": group_id}
            )
        confirmed = self.confirmed_matches(session, group_id)
        streaks = self.streaks.group_streaks(session, group) if include_bonuses else {}
        scores = compute_group_scores(
            players,
            confirmed,
            streaks,
            points_per_set=self.settings.streak_points_per_set,
            include_bonuses=include_bonuses,
        )
        return RecalculationResult(group_id=group_id, confirmed_sets=len(confirmed), scores=scores)

    def recalculate(self, session: Session, group_id: int, include_bonuses: bool = True) -> RecalculationResult:
        """
        Recalculate and persist a group's points inside the caller's transaction.

        Args:
            session: Session of the enclosing transaction
            group_id: Group to recalculate
            include_bonuses: False strips streak and comodín credit (round reopen)

        Raises:
            NotFound: Unknown group
            PointsCalculationFailed: The group has no players
        """
        session.flush()
        # Serializes concurrent recalculations of the same group (no-op on SQLite)
        self.load_group(session, group_id, for_update=True)
        result = self.compute(session, group_id, include_bonuses=include_bonuses)

        by_id = {gp.id: gp for gp in self.group_players(session, group_id)}
        # No unique constraint on (group_id, position): one flush writes the batch
        for score in result.scores:
            gp = by_id[score.group_player_id]
            gp.points = score.points
            gp.streak = score.streak
            gp.position = score.position
        session.flush()

        logger.info("Recalculated %s", result.summary())
        return result

    def recalculate_group(self, group_id: int) -> RecalculationResult:
        """Recalculate a group in its own bounded transaction."""
        try:
            with transaction(
                self.session_factory,
                timeout_seconds=self.settings.recalculation_timeout_seconds,
            ) as session:
                return self.recalculate(session, group_id)
        except LadderError:
            raise
        except Exception as e:
            logger.error("Recalculation of group %s failed: %s", group_id, e)
            raise PointsCalculationFailed(
                f"Recalculation of group {group_id} failed: {e}",
                context={"group_id": group_id},
            ) from e
