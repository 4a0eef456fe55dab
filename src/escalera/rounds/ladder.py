"""
Ladder movements between rounds.

Groups are ordered top to bottom (index 0 is the top group). After a round
closes, each player moves according to their final position in the group:

    1st: up 2 groups    2nd: up 1 group
    3rd: down 1 group   4th: down 2 groups

Moves saturate at the ends of the ladder (a 1st place in the second group
goes up one, a 3rd place in the bottom group stays) and never wrap.

Destination groups can receive more or fewer than four movers, so the
next round's groups are built by ordering every player by destination
(then points) and cutting the list in chunks of four. Inside a chunk,
positions 1..4 follow the points of the round that just closed.

Everything here is pure: no database access.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from escalera.db.models import GROUP_SIZE
from escalera.errors import InsufficientPlayers
from escalera.statuses import MOVEMENT_DOWN, MOVEMENT_SAME, MOVEMENT_UP

# Group change by finishing position (negative = towards the top)
POSITION_MOVES = {1: -2, 2: -1, 3: 1, 4: 2}


@dataclass(frozen=True)
class Standing:
    """Final standing of a player in a closed group."""
    player_id: int
    points: float
    streak: int = 0
    games_diff: int = 0


@dataclass
class Movement:
    """
    Where a player goes for the next round.

    target_index is the group the finishing position asks for;
    placed_index is set by redistribute() once the player has a group.
    """
    player_id: int
    source_index: int
    position: int
    target_index: int
    points: float
    streak: int = 0
    games_diff: int = 0
    placed_index: Optional[int] = None

    @property
    def destination_index(self) -> int:
        return self.target_index if self.placed_index is None else self.placed_index

    @property
    def groups_moved(self) -> int:
        """Signed group change; negative means promotion."""
        return self.destination_index - self.source_index

    @property
    def direction(self) -> str:
        if self.destination_index < self.source_index:
            return MOVEMENT_UP
        if self.destination_index > self.source_index:
            return MOVEMENT_DOWN
        return MOVEMENT_SAME


def target_index(source_index: int, position: int, group_count: int) -> int:
    """
    Destination group index for a finishing position, saturated at both ends.

    Args:
        source_index: Index of the player's group (0 = top)
        position: Final position in the group (1-4)
        group_count: Number of groups in the ladder
    """
    if position not in POSITION_MOVES:
        raise ValueError(f"Position must be 1-{GROUP_SIZE}, got {position}")
    if not 0 <= source_index < group_count:
        raise ValueError(f"Group index {source_index} outside ladder of {group_count}")
    return min(group_count - 1, max(0, source_index + POSITION_MOVES[position]))


def order_group(standings: Iterable[Standing]) -> list[Standing]:
    """Final order of a group: points, streak, games difference, player id."""
    return sorted(standings, key=lambda s: (-s.points, -s.streak, -s.games_diff, s.player_id))


def calculate_movements(groups: list[list[Standing]]) -> list[Movement]:
    """
    Movements of every player of a closed round.

    Args:
        groups: Standings per group, top group first; each group is
            re-ordered with order_group before positions are taken
    """
    group_count = len(groups)
    movements = []
    for index, standings in enumerate(groups):
        for position, standing in enumerate(order_group(standings), start=1):
            movements.append(
                Movement(
                    player_id=standing.player_id,
                    source_index=index,
                    position=position,
                    target_index=target_index(index, position, group_count),
                    points=standing.points,
                    streak=standing.streak,
                    games_diff=standing.games_diff,
                )
            )
    return movements


def redistribute(movements: list[Movement]) -> list[list[Movement]]:
    """
    Build the next round's groups from movements.

    Each mover's placed_index is set to the group it lands in, which
    differs from target_index when more than four players ask for the
    same group.

    Returns:
        Groups top to bottom, each with exactly four movers ordered by the
        position they take (points desc)

    Raises:
        InsufficientPlayers: The player count is not a multiple of four
    """
    if len(movements) % GROUP_SIZE != 0:
        raise InsufficientPlayers(
            f"{len(movements)} players can't form groups of {GROUP_SIZE}",
            context={"players": len(movements)},
        )

    ordered = sorted(
        movements,
        key=lambda m: (m.target_index, -m.points, -m.streak, -m.games_diff, m.source_index, m.player_id),
    )
    groups = []
    for start in range(0, len(ordered), GROUP_SIZE):
        chunk = ordered[start:start + GROUP_SIZE]
        for movement in chunk:
            movement.placed_index = len(groups)
        chunk.sort(key=lambda m: (-m.points, -m.streak, -m.games_diff, m.player_id))
        groups.append(chunk)
    return groups


def summarize(movements: list[Movement]) -> dict[str, int]:
    """Count of movers per direction, for logs."""
    counts = {MOVEMENT_UP: 0, MOVEMENT_DOWN: 0, MOVEMENT_SAME: 0}
    for movement in movements:
        counts[movement.direction] += 1
    return counts
