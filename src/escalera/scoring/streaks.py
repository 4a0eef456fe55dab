"""
Consecutive-participation streaks.

A player's streak for a round is derived from the closed rounds of the
same tournament that come right before it: walking back from round N-1,
every round the player actually played (no comodín) extends the run, and
the first gap or comodín round ends it.

    streak = max(0, consecutive_rounds - 1)

so the bonus starts once a player has played the two previous rounds in a
row. A player using a comodín in the round being scored gets no streak.
"""

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from escalera.db.models import Group, GroupPlayer, Round

logger = logging.getLogger(__name__)


def consecutive_rounds(history: dict[int, bool], round_number: int) -> int:
    """
    Count the run of played rounds ending at round_number - 1.

    Args:
        history: Closed round number -> whether the player used a comodín there
        round_number: Round being scored

    Returns:
        Number of consecutive, comodín-free rounds immediately before it
    """
    count = 0
    expected = round_number - 1
    while expected in history and not history[expected]:
        count += 1
        expected -= 1
    return count


def streak_length(history: dict[int, bool], round_number: int, used_comodin: bool = False) -> int:
    """Streak credited in round_number for the given closed-round history."""
    if used_comodin:
        return 0
    return max(0, consecutive_rounds(history, round_number) - 1)


def streak_bonus(streak: int, sets_played: int, points_per_set: int = 2) -> int:
    """Bonus points for a streak: points_per_set for every set played."""
    if streak < 1:
        return 0
    return streak * sets_played * points_per_set


class StreakCalculator:
    """Loads round history from the database and derives group streaks."""

    def player_history(
        self, session: Session, tournament_id: int, player_ids: Iterable[int], before_round: int
    ) -> dict[int, dict[int, bool]]:
        """
        Closed-round participation of each player before a given round.

        Returns:
            player_id -> {round_number: used_comodin}
        """
        player_ids = list(player_ids)
        history: dict[int, dict[int, bool]] = {pid: {} for pid in player_ids}
        if not player_ids:
            return history

        rows = session.execute(
            select(GroupPlayer.player_id, Round.number, GroupPlayer.used_comodin)
            .join(Group, GroupPlayer.group_id == Group.id)
            .join(Round, Group.round_id == Round.id)
            .where(
                Round.tournament_id == tournament_id,
                Round.is_closed.is_(True),
                Round.number < before_round,
                GroupPlayer.player_id.in_(player_ids),
            )
        ).all()

        for player_id, number, used_comodin in rows:
            # One group per player per round; a comodín anywhere marks the round
            history[player_id][number] = history[player_id].get(number, False) or bool(used_comodin)
        return history

    def group_streaks(self, session: Session, group: Group) -> dict[int, int]:
        """
        Streak of every player in a group for the group's round.

        Returns:
            player_id -> streak (non-negative)
        """
        round_ = group.round
        history = self.player_history(
            session,
            round_.tournament_id,
            [gp.player_id for gp in group.players],
            round_.number,
        )
        streaks = {
            gp.player_id: streak_length(history[gp.player_id], round_.number, gp.used_comodin)
            for gp in group.players
        }
        logger.debug("Streaks for group %s (round %s): %s", group.id, round_.number, streaks)
        return streaks
