"""
Tournament rankings, rebuilt from closed rounds.

Two orderings are published per round number:
- Official: average points per round played (comodín rounds don't count
  as played), then rounds played, sets won, games won
- Ironman: cumulative total points, then sets won, games won

Rankings are a projection: rebuilding them never reads previous rankings
except to label movement against the previous round.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from escalera.db.models import Group, GroupPlayer, Match, Ranking, Round
from escalera.scoring.engine import match_points
from escalera.scoring.substitutes import recipient_for
from escalera.statuses import MOVEMENT_DOWN, MOVEMENT_NEW, MOVEMENT_SAME, MOVEMENT_UP

logger = logging.getLogger(__name__)


@dataclass
class PlayerTotals:
    player_id: int
    total_points: float = 0.0
    rounds_played: int = 0
    sets_won: int = 0
    games_won: int = 0

    @property
    def average_points(self) -> float:
        if self.rounds_played == 0:
            return 0.0
        return round(self.total_points / self.rounds_played, 2)


def movement_label(previous_position, position: int) -> str:
    if previous_position is None:
        return MOVEMENT_NEW
    if position < previous_position:
        return MOVEMENT_UP
    if position > previous_position:
        return MOVEMENT_DOWN
    return MOVEMENT_SAME


def official_order(totals: list[PlayerTotals]) -> list[PlayerTotals]:
    return sorted(
        totals,
        key=lambda t: (-t.average_points, -t.rounds_played, -t.sets_won, -t.games_won, t.player_id),
    )


def ironman_order(totals: list[PlayerTotals]) -> list[PlayerTotals]:
    return sorted(totals, key=lambda t: (-t.total_points, -t.sets_won, -t.games_won, t.player_id))


def collect_totals(session: Session, tournament_id: int, up_to_round: int) -> list[PlayerTotals]:
    """Aggregate every closed round of the tournament up to a round number."""
    session.flush()
    rows = session.execute(
        select(GroupPlayer, Round.number)
        .join(Group, GroupPlayer.group_id == Group.id)
        .join(Round, Group.round_id == Round.id)
        .where(
            Round.tournament_id == tournament_id,
            Round.is_closed.is_(True),
            Round.number <= up_to_round,
        )
    ).all()

    totals: dict[int, PlayerTotals] = {}
    players_by_group: dict[int, list[GroupPlayer]] = defaultdict(list)
    for gp, _number in rows:
        entry = totals.setdefault(gp.player_id, PlayerTotals(gp.player_id))
        entry.total_points += float(gp.points or 0.0)
        if not gp.used_comodin:
            entry.rounds_played += 1
        players_by_group[gp.group_id].append(gp)

    if players_by_group:
        matches = session.execute(
            select(Match).where(
                Match.group_id.in_(list(players_by_group)),
                Match.is_confirmed.is_(True),
            )
        ).scalars()
        for match in matches:
            for gp in players_by_group[match.group_id]:
                recipient = recipient_for(match, gp)
                if recipient is None:
                    continue
                _points, won, games_won, _lost = match_points(match, recipient)
                totals[gp.player_id].sets_won += int(won)
                totals[gp.player_id].games_won += games_won

    return list(totals.values())


def update_rankings(session: Session, tournament_id: int, round_number: int) -> list[Ranking]:
    """
    Rebuild the ranking snapshot of a round number.

    Returns:
        The new Ranking rows, in official order
    """
    totals = collect_totals(session, tournament_id, round_number)

    previous = dict(
        session.execute(
            select(Ranking.player_id, Ranking.position).where(
                Ranking.tournament_id == tournament_id,
                Ranking.round_number == round_number - 1,
            )
        ).all()
    )
    session.execute(
        delete(Ranking).where(
            Ranking.tournament_id == tournament_id,
            Ranking.round_number == round_number,
        )
    )

    ironman = {t.player_id: i for i, t in enumerate(ironman_order(totals), start=1)}
    rankings = []
    for position, entry in enumerate(official_order(totals), start=1):
        ranking = Ranking(
            tournament_id=tournament_id,
            player_id=entry.player_id,
            round_number=round_number,
            total_points=round(entry.total_points, 2),
            rounds_played=entry.rounds_played,
            average_points=entry.average_points,
            sets_won=entry.sets_won,
            games_won=entry.games_won,
            position=position,
            ironman_position=ironman[entry.player_id],
            movement=movement_label(previous.get(entry.player_id), position),
        )
        session.add(ranking)
        rankings.append(ranking)
    session.flush()

    logger.info(
        "Rankings for tournament %s round %s rebuilt: %d players",
        tournament_id,
        round_number,
        len(rankings),
    )
    return rankings


def delete_rankings(session: Session, tournament_id: int, round_number: int) -> int:
    result = session.execute(
        delete(Ranking).where(
            Ranking.tournament_id == tournament_id,
            Ranking.round_number == round_number,
        )
    )
    return result.rowcount or 0
