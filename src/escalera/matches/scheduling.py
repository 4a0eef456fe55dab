"""
Party scheduling: agreeing on when a group plays its three sets.

The three sets of a group are played together (a "party") and share one
scheduling state, mirrored on every Match row of the group:

    PENDING -> DATE_PROPOSED -> SCHEDULED

- A participant proposes a date; the proposer counts as accepted
- Each other participant accepts; once all four did, the party is SCHEDULED
- Any participant rejecting sends the party back to PENDING
- An admin proposing a date schedules it directly

Results can only be reported for a SCHEDULED party with an accepted date.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from escalera.db.models import Group, Match, next_version
from escalera.db.session import transaction
from escalera.errors import InvalidScheduleAction, NoPermission, NotFound, RoundClosed
from escalera.identity import Identity
from escalera.statuses import NOT_REPORTED, PARTY_DATE_PROPOSED, PARTY_PENDING, PARTY_SCHEDULED

logger = logging.getLogger(__name__)


@dataclass
class PartyView:
    """Scheduling state of a group's party."""
    group_id: int
    status: str
    proposed_date: Optional[datetime] = None
    proposed_by_id: Optional[int] = None
    accepted_date: Optional[datetime] = None
    accepted_by: list[int] = field(default_factory=list)
    participants: list[int] = field(default_factory=list)

    @property
    def pending_players(self) -> list[int]:
        return [p for p in self.participants if p not in self.accepted_by]

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "status": self.status,
            "proposed_date": self.proposed_date.isoformat() if self.proposed_date else None,
            "proposed_by_id": self.proposed_by_id,
            "accepted_date": self.accepted_date.isoformat() if self.accepted_date else None,
            "accepted_by": list(self.accepted_by),
            "pending_players": self.pending_players,
        }


class PartyScheduler:
    """Moves a group's party through its scheduling states."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _load(self, session: Session, group_id: int) -> tuple[Group, list[Match]]:
        group = session.execute(select(Group).where(Group.id == group_id)).scalar_one_or_none()
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        matches = list(
            session.execute(
                select(Match).where(Match.group_id == group_id).order_by(Match.set_number).with_for_update()
            ).scalars()
        )
        if not matches:
            raise InvalidScheduleAction(
                f"Group {group_id} has no sets", user_message="No hay sets en este grupo"
            )
        if group.round.is_closed:
            raise RoundClosed(f"Round {group.round_id} is closed")
        return group, matches

    @staticmethod
    def _participants(matches: list[Match]) -> list[int]:
        players: set[int] = set()
        for match in matches:
            players.update(match.participant_ids)
        return sorted(players)

    @staticmethod
    def _require_no_results(matches: list[Match]) -> None:
        if any(m.status != NOT_REPORTED for m in matches):
            raise InvalidScheduleAction(
                f"Group {matches[0].group_id} already has results",
                user_message="No se puede cambiar la fecha: ya hay resultados",
            )

    @staticmethod
    def _apply(matches: list[Match], **values: Any) -> None:
        for match in matches:
            for key, value in values.items():
                setattr(match, key, list(value) if isinstance(value, list) else value)
            match.updated_at = next_version(match.updated_at)

    def _view(self, group_id: int, matches: list[Match]) -> PartyView:
        head = matches[0]
        return PartyView(
            group_id=group_id,
            status=head.schedule_status,
            proposed_date=head.proposed_date,
            proposed_by_id=head.proposed_by_id,
            accepted_date=head.accepted_date,
            accepted_by=list(head.accepted_by or []),
            participants=self._participants(matches),
        )

    def propose(self, group_id: int, when: datetime, identity: Identity) -> PartyView:
        """
        Propose a date for the party.

        Raises:
            NoPermission: The actor neither plays in the group nor is an admin
            InvalidScheduleAction: Results were already reported
        """
        with transaction(self.session_factory) as session:
            group, matches = self._load(session, group_id)
            participants = self._participants(matches)
            self._require_no_results(matches)

            if identity.is_admin and identity.player_id not in participants:
                self._apply(
                    matches,
                    schedule_status=PARTY_SCHEDULED,
                    proposed_date=when,
                    proposed_by_id=identity.actor_id,
                    accepted_date=when,
                    accepted_by=participants,
                )
                logger.info("Admin %s scheduled group %s for %s", identity.user_id, group_id, when)
            else:
                if identity.player_id not in participants:
                    raise NoPermission(
                        f"Player {identity.player_id} is not in group {group_id}",
                        user_message="No participas en este partido",
                    )
                self._apply(
                    matches,
                    schedule_status=PARTY_DATE_PROPOSED,
                    proposed_date=when,
                    proposed_by_id=identity.player_id,
                    accepted_date=None,
                    accepted_by=[identity.player_id],
                )
                logger.info("Player %s proposed %s for group %s", identity.player_id, when, group_id)
            session.flush()
            return self._view(group_id, matches)

    def respond(self, group_id: int, identity: Identity, accept: bool) -> PartyView:
        """
        Accept or reject the proposed date.

        Raises:
            NoPermission: The actor does not play in the group
            InvalidScheduleAction: Nothing to respond to
        """
        with transaction(self.session_factory) as session:
            group, matches = self._load(session, group_id)
            participants = self._participants(matches)
            if identity.player_id not in participants:
                raise NoPermission(
                    f"Player {identity.player_id} is not in group {group_id}",
                    user_message="No participas en este partido",
                )
            head = matches[0]
            if head.proposed_date is None:
                raise InvalidScheduleAction(f"Group {group_id} has no proposed date")
            self._require_no_results(matches)

            if not accept:
                self._apply(
                    matches,
                    schedule_status=PARTY_PENDING,
                    proposed_date=None,
                    proposed_by_id=None,
                    accepted_date=None,
                    accepted_by=[],
                )
                logger.info("Player %s rejected the date of group %s", identity.player_id, group_id)
            else:
                accepted = sorted(set(head.accepted_by or []) | {identity.player_id})
                if all(p in accepted for p in participants):
                    self._apply(
                        matches,
                        schedule_status=PARTY_SCHEDULED,
                        accepted_date=head.proposed_date,
                        accepted_by=accepted,
                    )
                    logger.info("Group %s scheduled for %s", group_id, head.proposed_date)
                else:
                    self._apply(matches, schedule_status=PARTY_DATE_PROPOSED, accepted_by=accepted)
            session.flush()
            return self._view(group_id, matches)

    def get(self, group_id: int) -> PartyView:
        session = self.session_factory()
        try:
            matches = list(
                session.execute(
                    select(Match).where(Match.group_id == group_id).order_by(Match.set_number)
                ).scalars()
            )
            if not matches:
                raise NotFound(f"Group {group_id} has no sets")
            return self._view(group_id, matches)
        finally:
            session.close()
