"""
Unit tests for group points recalculation.

Pure computation is tested with transient model objects; the engine
itself is tested against the seeded ladder.
"""

import pytest

from escalera.db import GroupPlayer, Match
from escalera.errors import NotFound
from escalera.scoring.engine import compute_group_scores, rank_scores, PlayerScore
from escalera.scoring.substitutes import physical_player_id, recipient_for
from escalera.statuses import COMODIN_MEAN


def _gp(gp_id, player_id, **kwargs):
    values = dict(
        used_comodin=False,
        comodin_mode=None,
        comodin_points=None,
        substitute_player_id=None,
        points=0.0,
        streak=0,
        position=gp_id,
    )
    values.update(kwargs)
    return GroupPlayer(id=gp_id, group_id=1, player_id=player_id, **values)


def _set(number, team1, team2, games):
    return Match(
        id=number,
        group_id=1,
        set_number=number,
        team1_player1_id=team1[0],
        team1_player2_id=team1[1],
        team2_player1_id=team2[0],
        team2_player2_id=team2[1],
        team1_games=games[0],
        team2_games=games[1],
        is_confirmed=True,
    )


# Rotation of players 1-4 (positions 1-4)
SETS = [
    _set(1, (1, 4), (2, 3), (4, 2)),
    _set(2, (1, 3), (2, 4), (2, 4)),
    _set(3, (1, 2), (3, 4), (5, 4)),
]


class TestSubstitutes:

    def test_owner_credited_for_own_sets(self):
        owner = _gp(1, 1)
        assert recipient_for(SETS[0], owner) == 1

    def test_substitute_sets_credited_to_owner(self):
        owner = _gp(1, 9, used_comodin=True, substitute_player_id=1)
        assert recipient_for(SETS[0], owner) == 1
        assert physical_player_id(owner) == 1

    def test_no_credit_when_neither_played(self):
        owner = _gp(1, 9, substitute_player_id=8)
        assert recipient_for(SETS[0], owner) is None
        assert physical_player_id(_gp(2, 9)) == 9


class TestComputeGroupScores:

    def test_points_are_games_plus_set_bonus(self):
        players = [_gp(i, i) for i in range(1, 5)]
        scores = {s.player_id: s for s in compute_group_scores(players, SETS, {})}

        # P1: 4+1, 2, 5+1    P2: 2, 4+1, 5+1    P3: 2, 2, 4    P4: 4+1, 4+1, 4
        assert scores[1].points == 13
        assert scores[2].points == 13
        assert scores[3].points == 8
        assert scores[4].points == 14
        assert scores[1].sets_won == 2
        assert scores[4].games_diff == 12 - 9

    def test_positions_follow_points_then_streak(self):
        players = [_gp(i, i) for i in range(1, 5)]
        # Equal on points; streak decides, bonus is zero without sets played
        scores = compute_group_scores(players, [], {3: 2, 4: 1})
        assert [s.player_id for s in scores] == [3, 4, 1, 2]
        assert [s.position for s in scores] == [1, 2, 3, 4]

    def test_streak_bonus_added_per_set_played(self):
        players = [_gp(i, i) for i in range(1, 5)]
        scores = {s.player_id: s for s in compute_group_scores(players, SETS, {4: 1}, points_per_set=2)}

        assert scores[4].streak_bonus == 6
        assert scores[4].points == 14 + 6

    def test_raw_points_without_bonuses(self):
        players = [_gp(1, 1, used_comodin=True, comodin_mode=COMODIN_MEAN, comodin_points=7.5)]
        players += [_gp(i, i) for i in range(2, 5)]
        scores = {
            s.player_id: s
            for s in compute_group_scores(players, SETS, {2: 1}, include_bonuses=False)
        }

        assert scores[1].points == 13
        assert scores[2].points == 13
        assert scores[2].streak == 0

    def test_mean_comodin_gets_fixed_credit_and_no_streak(self):
        players = [_gp(1, 1, used_comodin=True, comodin_mode=COMODIN_MEAN, comodin_points=7.5)]
        players += [_gp(i, i) for i in range(2, 5)]
        scores = {s.player_id: s for s in compute_group_scores(players, SETS, {1: 3})}

        assert scores[1].points == 7.5
        assert scores[1].streak == 0
        assert scores[1].position == 4

    def test_substitute_points_credited_to_owner(self):
        # Player 9 owns position 1 of the group; player 1 plays for them
        players = [_gp(1, 9, used_comodin=True, substitute_player_id=1)]
        players += [_gp(i, i) for i in range(2, 5)]
        scores = {s.player_id: s for s in compute_group_scores(players, SETS, {9: 2})}

        assert scores[9].points == 13
        assert scores[9].sets_played == 3
        assert scores[9].streak == 0
        assert 1 not in scores

    def test_rank_scores_uses_player_id_last(self):
        scores = [PlayerScore(i, pid, 5.0, 0) for i, pid in enumerate([7, 3, 5])]
        assert [s.player_id for s in rank_scores(scores)] == [3, 5, 7]


class TestScoreRecalculationEngine:

    def test_confirm_recalculates_group(self, ladder):
        group_id = ladder.group_ids()[0]
        ladder.schedule(group_id)
        first = ladder.matches(group_id)[0]
        ladder.play_set(first, 4, 2)

        standings = ladder.standings(group_id)
        # Set 1 is P1+P4 vs P2+P3
        assert standings[1].points == 5
        assert standings[4].points == 5
        assert standings[2].points == 2
        assert standings[3].points == 2
        assert [standings[pid].position for pid in (1, 4, 2, 3)] == [1, 2, 3, 4]

    def test_tiebreak_set_credits_5_4(self, ladder):
        group_id = ladder.group_ids()[0]
        ladder.schedule(group_id)
        first = ladder.matches(group_id)[0]
        ladder.service.report_result(first.id, 4, 4, "7-5", ladder.player(1))
        ladder.service.confirm_result(first.id, ladder.player(2))

        standings = ladder.standings(group_id)
        assert standings[1].points == 6
        assert standings[2].points == 4

    def test_recalculation_is_idempotent(self, ladder):
        group_id = ladder.group_ids()[0]
        ladder.play_group(group_id)

        first = ladder.service.recalculate_group(group_id)
        second = ladder.service.recalculate_group(group_id)

        assert first.points_by_player() == second.points_by_player()
        assert first.points_by_player() == {1: 15, 2: 9, 3: 9, 4: 9}
        assert first.confirmed_sets == 3
        assert "Group" in first.summary()

    def test_unknown_group(self, ladder):
        with pytest.raises(NotFound):
            ladder.service.recalculate_group(999)
