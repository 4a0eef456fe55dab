"""
Unit tests for the set result state machine.

Group 1 of the seeded ladder holds players 1-4; its first set is
P1+P4 vs P2+P3.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from escalera.concurrency import match_resource, round_resource
from escalera.db import Match, next_version, transaction
from escalera.errors import (
    AlreadyConfirmed,
    AlreadyReported,
    CannotConfirmOwn,
    ConcurrentModification,
    ConfirmationSameTeam,
    InvalidScore,
    LockUnavailable,
    NoPermission,
    NoResultToConfirm,
    PointsCalculationFailed,
    RoundClosed,
    ScheduleNotConfirmed,
)
from escalera.statuses import CONFIRMED, NOT_REPORTED, REPORTED, can_transition


class PgError(Exception):
    """Driver error carrying a PostgreSQL SQLSTATE, as psycopg2 raises them."""

    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.fixture
def first_set(ladder):
    """First set of group 1, with the party already scheduled."""
    group_id = ladder.group_ids()[0]
    ladder.schedule(group_id)
    return ladder.matches(group_id)[0]


class TestReport:

    def test_report_moves_to_reported(self, ladder, first_set):
        view = ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))

        assert view.status == REPORTED
        assert view.reported_by_id == 1
        assert not view.is_confirmed
        assert view.updated_at > first_set.updated_at

    def test_report_requires_participant(self, ladder, first_set):
        with pytest.raises(NoPermission):
            ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(5))

    def test_report_requires_scheduled_party(self, ladder):
        match = ladder.matches(ladder.group_ids()[0])[0]
        with pytest.raises(ScheduleNotConfirmed):
            ladder.service.report_result(match.id, 4, 1, None, ladder.player(1))

    def test_report_validates_score_first(self, ladder, first_set):
        with pytest.raises(InvalidScore):
            ladder.service.report_result(first_set.id, 4, 3, None, ladder.player(1))
        assert ladder.match(first_set.id).status == NOT_REPORTED

    def test_second_report_rejected(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        with pytest.raises(AlreadyReported):
            ladder.service.report_result(first_set.id, 1, 4, None, ladder.player(2))

    def test_report_in_closed_round(self, ladder):
        for group_id in ladder.group_ids():
            ladder.service.skip_group(group_id, ladder.admin, reason="lluvia")
        ladder.close(1)

        match = ladder.matches(ladder.group_ids(1)[0])[0]
        with pytest.raises(RoundClosed):
            ladder.service.report_result(match.id, 4, 1, None, ladder.player(1))


class TestConfirm:

    def test_confirm_by_opponent(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        view = ladder.service.confirm_result(first_set.id, ladder.player(3))

        assert view.status == CONFIRMED
        assert view.is_confirmed
        assert view.confirmed_by_id == 3
        assert ladder.standings(first_set.group_id)[1].points == 5

    def test_partner_cannot_confirm(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        with pytest.raises(ConfirmationSameTeam):
            ladder.service.confirm_result(first_set.id, ladder.player(4))

    def test_reporter_cannot_confirm(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        with pytest.raises(CannotConfirmOwn):
            ladder.service.confirm_result(first_set.id, ladder.player(1))

    def test_nothing_to_confirm(self, ladder, first_set):
        with pytest.raises(NoResultToConfirm):
            ladder.service.confirm_result(first_set.id, ladder.player(2))

    def test_second_confirmation_rejected(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        ladder.service.confirm_result(first_set.id, ladder.player(2))
        with pytest.raises(AlreadyConfirmed):
            ladder.service.confirm_result(first_set.id, ladder.player(3))

    def test_failed_recalculation_rejects_confirmation(self, ladder, first_set, monkeypatch):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))

        def broken(session, group_id, include_bonuses=True):
            raise RuntimeError("database went away")

        monkeypatch.setattr(ladder.service.engine, "recalculate", broken)
        with pytest.raises(PointsCalculationFailed):
            ladder.service.confirm_result(first_set.id, ladder.player(2))

        match = ladder.match(first_set.id)
        assert match.status == REPORTED
        assert not match.is_confirmed
        assert match.confirmed_by_id is None

    def test_deadlock_during_recalculation_is_retryable(self, ladder, first_set, monkeypatch):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))

        def deadlocked(session, group_id, include_bonuses=True):
            raise OperationalError("UPDATE group_players", {}, PgError("deadlock detected", "40P01"))

        monkeypatch.setattr(ladder.service.engine, "recalculate", deadlocked)
        with pytest.raises(ConcurrentModification) as exc_info:
            ladder.service.confirm_result(first_set.id, ladder.player(2))

        assert exc_info.value.context["sqlstate"] == "40P01"
        assert ladder.match(first_set.id).status == REPORTED

    def test_admin_edit_serialization_failure_is_retryable(self, ladder, first_set, monkeypatch):
        def conflict(session, group_id, include_bonuses=True):
            raise OperationalError("COMMIT", {}, PgError("could not serialize access", "40001"))

        monkeypatch.setattr(ladder.service.engine, "recalculate", conflict)
        with pytest.raises(ConcurrentModification):
            ladder.service.admin_set_result(first_set.id, 4, 1, None, ladder.admin)
        assert ladder.match(first_set.id).team1_games is None


class TestDispute:

    def test_dispute_resets_report(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        view = ladder.service.dispute_result(first_set.id, ladder.player(2), reason="fue 4-2")

        assert view.status == NOT_REPORTED
        assert view.team1_games is None
        assert view.reported_by_id is None

    def test_confirmed_set_cannot_be_disputed(self, ladder, first_set):
        ladder.play_set(first_set, 4, 1)
        with pytest.raises(AlreadyConfirmed):
            ladder.service.dispute_result(first_set.id, ladder.player(3))


class TestAdminOverrides:

    def test_admin_edit_confirms_from_any_state(self, ladder):
        match = ladder.matches(ladder.group_ids()[0])[0]
        view = ladder.service.admin_set_result(match.id, 2, 4, None, ladder.admin)

        assert view.status == CONFIRMED
        assert view.reported_by_id == ladder.admin.actor_id
        assert view.confirmed_by_id == ladder.admin.actor_id
        assert ladder.standings(match.group_id)[2].points == 5

    def test_admin_edit_keeps_original_reporter(self, ladder, first_set):
        ladder.play_set(first_set, 4, 1)
        view = ladder.service.admin_set_result(first_set.id, 4, 4, "9-7", ladder.admin)

        assert (view.team1_games, view.team2_games) == (5, 4)
        assert view.reported_by_id == 1
        assert view.confirmed_by_id == 2
        assert ladder.match(first_set.id).admin_edited_by_id == ladder.admin.actor_id

    def test_admin_only(self, ladder, first_set):
        with pytest.raises(NoPermission):
            ladder.service.admin_set_result(first_set.id, 4, 0, None, ladder.player(1))
        with pytest.raises(NoPermission):
            ladder.service.clear_result(first_set.id, ladder.player(1))

    def test_clear_removes_points(self, ladder, first_set):
        ladder.play_set(first_set, 4, 1)
        view = ladder.service.clear_result(first_set.id, ladder.admin)

        assert view.status == NOT_REPORTED
        assert not view.is_confirmed
        assert all(gp.points == 0 for gp in ladder.standings(first_set.group_id).values())


class TestConcurrency:

    def test_stale_expected_version(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        with pytest.raises(ConcurrentModification):
            ladder.service.confirm_result(
                first_set.id,
                ladder.player(2),
                expected_updated_at=first_set.updated_at - timedelta(seconds=1),
            )

    def test_write_between_read_and_commit_aborts(self, ladder, first_set, monkeypatch):
        """Another writer bumps the set after the read phase: the write phase aborts."""
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        machine = ladder.service.matches
        read_phase = machine._snapshot

        def racing_snapshot(match_id, check):
            observed = read_phase(match_id, check)
            with transaction(ladder.session_factory) as session:
                match = session.get(Match, match_id)
                match.updated_at = next_version(match.updated_at)
            return observed

        monkeypatch.setattr(machine, "_snapshot", racing_snapshot)
        with pytest.raises(ConcurrentModification):
            ladder.service.confirm_result(first_set.id, ladder.player(2))
        assert ladder.match(first_set.id).status == REPORTED

    def test_concurrent_confirmations_only_one_wins(self, ladder, first_set):
        ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        observed = ladder.match(first_set.id).updated_at

        ladder.service.confirm_result(first_set.id, ladder.player(2), expected_updated_at=observed)
        with pytest.raises((AlreadyConfirmed, ConcurrentModification)):
            ladder.service.confirm_result(first_set.id, ladder.player(3), expected_updated_at=observed)

    def test_locked_set_rejected(self, ladder, first_set):
        with ladder.service.locks.hold(match_resource(first_set.id), "test"):
            with pytest.raises(LockUnavailable):
                ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))

    def test_round_being_closed_rejects_writes(self, ladder, first_set):
        with ladder.service.locks.hold(round_resource(ladder.round_id()), "close_round"):
            with pytest.raises(LockUnavailable):
                ladder.service.report_result(first_set.id, 4, 1, None, ladder.player(1))
        assert ladder.match(first_set.id).status == NOT_REPORTED


class TestPlayerTransitions:

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (NOT_REPORTED, REPORTED, True),
            (REPORTED, CONFIRMED, True),
            (REPORTED, NOT_REPORTED, True),
            (NOT_REPORTED, CONFIRMED, False),
            (CONFIRMED, REPORTED, False),
            (CONFIRMED, NOT_REPORTED, False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_dispute_without_report(self, ladder, first_set):
        with pytest.raises(NoResultToConfirm):
            ladder.service.dispute_result(first_set.id, ladder.player(2))
