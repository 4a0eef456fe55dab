"""Unit tests for party scheduling (PENDING -> DATE_PROPOSED -> SCHEDULED)."""

from datetime import datetime

import pytest

from escalera.errors import InvalidScheduleAction, NoPermission
from escalera.statuses import PARTY_DATE_PROPOSED, PARTY_PENDING, PARTY_SCHEDULED

WHEN = datetime(2026, 1, 12, 20, 0)


@pytest.fixture
def group_id(ladder):
    return ladder.group_ids()[0]


def test_new_party_is_pending(ladder, group_id):
    party = ladder.service.party(group_id)

    assert party.status == PARTY_PENDING
    assert party.proposed_date is None
    assert party.pending_players == [1, 2, 3, 4]


def test_proposal_needs_everyone_to_accept(ladder, group_id):
    party = ladder.service.propose_party_date(group_id, WHEN, ladder.player(1))
    assert party.status == PARTY_DATE_PROPOSED
    assert party.accepted_by == [1]

    ladder.service.respond_party_date(group_id, ladder.player(2), accept=True)
    party = ladder.service.respond_party_date(group_id, ladder.player(3), accept=True)
    assert party.status == PARTY_DATE_PROPOSED
    assert party.pending_players == [4]

    party = ladder.service.respond_party_date(group_id, ladder.player(4), accept=True)
    assert party.status == PARTY_SCHEDULED
    assert party.accepted_date == WHEN

    # Every set of the group mirrors the party state
    assert {m.schedule_status for m in ladder.matches(group_id)} == {PARTY_SCHEDULED}


def test_rejection_resets_party(ladder, group_id):
    ladder.service.propose_party_date(group_id, WHEN, ladder.player(1))
    party = ladder.service.respond_party_date(group_id, ladder.player(3), accept=False)

    assert party.status == PARTY_PENDING
    assert party.proposed_date is None
    assert party.accepted_by == []


def test_respond_without_proposal(ladder, group_id):
    with pytest.raises(InvalidScheduleAction):
        ladder.service.respond_party_date(group_id, ladder.player(2), accept=True)


def test_outsider_cannot_propose(ladder, group_id):
    with pytest.raises(NoPermission):
        ladder.service.propose_party_date(group_id, WHEN, ladder.player(5))


def test_admin_schedules_directly(ladder, group_id):
    party = ladder.service.propose_party_date(group_id, WHEN, ladder.admin)

    assert party.status == PARTY_SCHEDULED
    assert party.accepted_date == WHEN
    assert party.pending_players == []


def test_date_locked_once_results_exist(ladder, group_id):
    ladder.schedule(group_id)
    first = ladder.matches(group_id)[0]
    ladder.service.report_result(first.id, 4, 0, None, ladder.player(1))

    with pytest.raises(InvalidScheduleAction):
        ladder.service.propose_party_date(group_id, WHEN, ladder.player(2))
