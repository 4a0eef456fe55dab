"""
Group and set generation for a round.

Every group of four plays three sets with a fixed partner rotation over
the group positions, so each player partners each other player once:

    set 1: P1 + P4 vs P2 + P3
    set 2: P1 + P3 vs P2 + P4
    set 3: P1 + P2 vs P3 + P4
"""

import logging
from datetime import date, timedelta
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from escalera.db.models import GROUP_SIZE, Group, GroupPlayer, Match, Round, Tournament, TournamentPlayer
from escalera.errors import InsufficientPlayers

logger = logging.getLogger(__name__)

# (team1, team2) as group positions, per set number
ROTATION: tuple[tuple[tuple[int, int], tuple[int, int]], ...] = (
    ((1, 4), (2, 3)),
    ((1, 3), (2, 4)),
    ((1, 2), (3, 4)),
)


def rotation_pairs(player_ids: Sequence[int]) -> list[tuple[tuple[int, int], tuple[int, int]]]:
    """
    Teams of each set for players listed by group position.

    Args:
        player_ids: Player ids of positions 1..4, in order
    """
    if len(player_ids) != GROUP_SIZE or len(set(player_ids)) != GROUP_SIZE:
        raise InsufficientPlayers(f"A group needs {GROUP_SIZE} distinct players, got {list(player_ids)}")
    by_position = {position: pid for position, pid in enumerate(player_ids, start=1)}
    return [
        (
            (by_position[t1[0]], by_position[t1[1]]),
            (by_position[t2[0]], by_position[t2[1]]),
        )
        for t1, t2 in ROTATION
    ]


def build_group_matches(group: Group) -> list[Match]:
    """Create the three sets of a group from its players' positions."""
    ordered = sorted(group.players, key=lambda gp: gp.position)
    matches = []
    for set_number, (team1, team2) in enumerate(rotation_pairs([gp.player_id for gp in ordered]), start=1):
        match = Match(
            set_number=set_number,
            team1_player1_id=team1[0],
            team1_player2_id=team1[1],
            team2_player1_id=team2[0],
            team2_player2_id=team2[1],
        )
        group.matches.append(match)
        matches.append(match)
    return matches


def create_group(session: Session, round_: Round, number: int, player_ids: Sequence[int]) -> Group:
    """Create a group with players in the given position order and its sets."""
    if len(player_ids) != GROUP_SIZE:
        raise InsufficientPlayers(
            f"Group {number} of round {round_.number} has {len(player_ids)} players"
        )
    group = Group(round=round_, number=number, level=number)
    for position, player_id in enumerate(player_ids, start=1):
        group.players.append(GroupPlayer(player_id=player_id, position=position, points=0.0, streak=0))
    build_group_matches(group)
    session.add(group)
    return group


def create_round_groups(session: Session, round_: Round, ordered_player_ids: Sequence[int]) -> list[Group]:
    """
    Split an ordered player list into groups of four (best players first).

    Raises:
        InsufficientPlayers: The count is zero or not a multiple of four
    """
    ids = list(ordered_player_ids)
    if not ids or len(ids) % GROUP_SIZE != 0:
        raise InsufficientPlayers(
            f"{len(ids)} players can't form groups of {GROUP_SIZE}",
            context={"players": len(ids)},
        )
    if len(set(ids)) != len(ids):
        raise InsufficientPlayers("A player can only be in one group per round")

    groups = [
        create_group(session, round_, index // GROUP_SIZE + 1, ids[index:index + GROUP_SIZE])
        for index in range(0, len(ids), GROUP_SIZE)
    ]
    session.flush()
    logger.info("Created %d groups for round %s", len(groups), round_.number)
    return groups


def refund_comodines(session: Session, round_: Round, group_ids: Sequence[int]) -> int:
    """Give back the comodines used in the given groups. Returns players refunded."""
    player_ids = list(
        session.execute(
            select(GroupPlayer.player_id).where(
                GroupPlayer.group_id.in_(group_ids),
                GroupPlayer.used_comodin.is_(True),
            )
        ).scalars()
    )
    if not player_ids:
        return 0

    registrations = session.execute(
        select(TournamentPlayer).where(
            TournamentPlayer.tournament_id == round_.tournament_id,
            TournamentPlayer.player_id.in_(player_ids),
        )
    ).scalars()
    for registration in registrations:
        registration.comodines_used = max(0, (registration.comodines_used or 0) - 1)
    logger.warning(
        "Round %s discarded with comodines in use: refunded players %s",
        round_.number,
        sorted(player_ids),
    )
    return len(player_ids)


def clear_round_groups(session: Session, round_: Round) -> int:
    """
    Delete every group, group player and set of a round. Returns groups deleted.

    Comodines used in the discarded groups are given back to their players.
    """
    group_ids = list(session.execute(select(Group.id).where(Group.round_id == round_.id)).scalars())
    if not group_ids:
        return 0
    refund_comodines(session, round_, group_ids)
    session.execute(delete(Match).where(Match.group_id.in_(group_ids)))
    session.execute(delete(GroupPlayer).where(GroupPlayer.group_id.in_(group_ids)))
    session.execute(delete(Group).where(Group.id.in_(group_ids)))
    session.expire(round_, ["groups"])
    return len(group_ids)


def round_duration(tournament: Tournament, default_days: int) -> int:
    return tournament.round_duration_days or default_days


def create_round(
    session: Session,
    tournament: Tournament,
    number: int,
    start_date: date,
    duration_days: int,
    ordered_player_ids: Optional[Sequence[int]] = None,
) -> Round:
    """Create a round (and its groups when players are given)."""
    round_ = Round(
        tournament=tournament,
        number=number,
        start_date=start_date,
        end_date=start_date + timedelta(days=duration_days),
        is_closed=False,
    )
    session.add(round_)
    session.flush()
    if ordered_player_ids is not None:
        create_round_groups(session, round_, ordered_player_ids)
    return round_
