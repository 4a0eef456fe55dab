"""Unit tests for ladder movements and next-round redistribution."""

import pytest

from escalera.errors import InsufficientPlayers
from escalera.rounds.ladder import (
    Standing,
    calculate_movements,
    order_group,
    redistribute,
    summarize,
    target_index,
)
from escalera.statuses import MOVEMENT_DOWN, MOVEMENT_SAME, MOVEMENT_UP


def _group(*players):
    return [Standing(player_id=pid, points=pts, streak=streak) for pid, pts, streak in players]


class TestTargetIndex:

    def test_middle_group_moves(self):
        assert target_index(2, 1, 5) == 0
        assert target_index(2, 2, 5) == 1
        assert target_index(2, 3, 5) == 3
        assert target_index(2, 4, 5) == 4

    def test_saturates_at_top(self):
        assert target_index(0, 1, 4) == 0
        assert target_index(1, 1, 4) == 0
        assert target_index(0, 2, 4) == 0

    def test_saturates_at_bottom(self):
        assert target_index(3, 3, 4) == 3
        assert target_index(2, 4, 4) == 3

    def test_single_group_never_moves(self):
        assert [target_index(0, p, 1) for p in (1, 2, 3, 4)] == [0, 0, 0, 0]

    def test_rejects_bad_position(self):
        with pytest.raises(ValueError):
            target_index(0, 5, 3)


class TestCalculateMovements:

    def test_second_group_of_four(self):
        """A(8, streak 2), B(6), C(6, streak 1), D(4) in group index 1 of 4."""
        a, b, c, d = 1, 2, 3, 4
        groups = [
            _group((10, 9, 0), (11, 8, 0), (12, 7, 0), (13, 6, 0)),
            _group((a, 8, 2), (b, 6, 0), (c, 6, 1), (d, 4, 0)),
            _group((20, 9, 0), (21, 8, 0), (22, 7, 0), (23, 6, 0)),
            _group((30, 9, 0), (31, 8, 0), (32, 7, 0), (33, 6, 0)),
        ]
        moves = {m.player_id: m for m in calculate_movements(groups)}

        # A would go up 2 but saturates at the top group
        assert moves[a].target_index == 0
        # C wins the tie with B on streak
        assert moves[c].position == 2
        assert moves[c].target_index == 0
        assert moves[b].position == 3
        assert moves[b].target_index == 2
        assert moves[d].target_index == 3
        assert moves[d].direction == MOVEMENT_DOWN
        assert moves[a].groups_moved == -1

    def test_bottom_saturation_with_three_groups(self):
        groups = [
            _group((1, 9, 0), (2, 8, 0), (3, 7, 0), (4, 6, 0)),
            _group((5, 9, 0), (6, 8, 0), (7, 7, 0), (8, 6, 0)),
            _group((9, 9, 0), (10, 8, 0), (11, 7, 0), (12, 6, 0)),
        ]
        moves = {m.player_id: m for m in calculate_movements(groups)}

        assert moves[8].target_index == 2
        assert moves[11].direction == MOVEMENT_SAME
        assert moves[9].direction == MOVEMENT_UP
        assert summarize(list(moves.values())) == {"up": 4, "down": 4, "same": 4}

    def test_order_group_tie_breaks(self):
        ordered = order_group([
            Standing(4, 6.0, 0, 1),
            Standing(2, 6.0, 0, 3),
            Standing(3, 6.0, 1, -5),
            Standing(1, 6.0, 0, 3),
        ])
        assert [s.player_id for s in ordered] == [3, 1, 2, 4]


class TestRedistribute:

    def test_two_groups(self):
        groups = [
            _group((1, 15, 0), (2, 9, 0), (3, 8, 0), (4, 7, 0)),
            _group((5, 14, 0), (6, 10, 0), (7, 5, 0), (8, 4, 0)),
        ]
        next_groups = redistribute(calculate_movements(groups))

        assert [[m.player_id for m in g] for g in next_groups] == [[1, 5, 6, 2], [3, 4, 7, 8]]

    def test_uneven_destinations_are_rebalanced(self):
        """Three groups: the top destination receives five movers, only four fit."""
        groups = [
            _group((1, 20, 0), (2, 18, 0), (3, 10, 0), (4, 9, 0)),
            _group((5, 19, 0), (6, 17, 0), (7, 8, 0), (8, 7, 0)),
            _group((9, 16, 0), (10, 15, 0), (11, 6, 0), (12, 5, 0)),
        ]
        movements = calculate_movements(groups)
        assert sum(1 for m in movements if m.target_index == 0) == 5

        next_groups = redistribute(movements)
        assert [len(g) for g in next_groups] == [4, 4, 4]
        assert [m.player_id for m in next_groups[0]] == [1, 5, 2, 6]
        # Fifth player for the top group spills into the next chunk first
        assert next_groups[1][0].player_id == 9
        assert sorted(m.player_id for g in next_groups for m in g) == list(range(1, 13))

    def test_movement_reports_the_group_actually_joined(self):
        groups = [
            _group((1, 20, 0), (2, 12, 0), (3, 10, 0), (4, 9, 0)),
            _group((5, 19, 0), (6, 17, 0), (7, 8, 0), (8, 7, 0)),
            _group((9, 16, 0), (10, 15, 0), (11, 6, 0), (12, 5, 0)),
        ]
        movements = {m.player_id: m for m in calculate_movements(groups)}
        redistribute(list(movements.values()))

        # Player 2 asked to stay on top but has the fewest points of the five
        assert movements[2].target_index == 0
        assert movements[2].destination_index == 1
        assert movements[2].direction == MOVEMENT_DOWN
        assert movements[9].destination_index == 0
        assert movements[9].groups_moved == -2
        assert movements[1].direction == MOVEMENT_SAME

    def test_rejects_incomplete_groups(self):
        movements = calculate_movements([_group((1, 5, 0), (2, 4, 0), (3, 3, 0))])
        with pytest.raises(InsufficientPlayers):
            redistribute(movements)
