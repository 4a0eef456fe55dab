"""
Result lifecycle of a single set.

States:
    NOT_REPORTED -> REPORTED -> CONFIRMED

- report: a participant enters the score (party must be scheduled)
- confirm: a player of the opposite team accepts it; points are
  recalculated in the same transaction
- dispute: a participant rejects an unconfirmed report (back to NOT_REPORTED)
- admin_edit: an admin sets a confirmed score from any state
- clear: an admin wipes the result (back to NOT_REPORTED)

Every operation runs in two phases. The read phase validates the request
and records the row's updated_at; the write phase re-reads the row inside
the transaction, aborts with ConcurrentModification if updated_at moved,
validates again and applies the change. No retry is attempted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from escalera.concurrency.locks import LockManager, match_resource, round_resource
from escalera.config import Settings
from escalera.db.models import Group, Match, Round, next_version
from escalera.db.session import transaction
from escalera.errors import (
    AlreadyConfirmed,
    AlreadyReported,
    CannotConfirmOwn,
    ConcurrentModification,
    ConfirmationSameTeam,
    LadderError,
    LockUnavailable,
    NoPermission,
    NoResultToConfirm,
    NotFound,
    PointsCalculationFailed,
    RoundClosed,
    ScheduleNotConfirmed,
)
from escalera.identity import Identity
from escalera.scoring.engine import ScoreRecalculationEngine
from escalera.scoring.rules import SetScore, validate_set_score
from escalera.statuses import CONFIRMED, NOT_REPORTED, PARTY_SCHEDULED, REPORTED, can_transition

logger = logging.getLogger(__name__)

Check = Callable[[Match, Round], None]
Change = Callable[[Match], None]


@dataclass
class MatchView:
    """Projection of a set returned to callers."""
    id: int
    group_id: int
    set_number: int
    team1: tuple[int, int]
    team2: tuple[int, int]
    team1_games: Optional[int]
    team2_games: Optional[int]
    tiebreak_score: Optional[str]
    status: str
    is_confirmed: bool
    reported_by_id: Optional[int]
    confirmed_by_id: Optional[int]
    schedule_status: str
    updated_at: datetime

    @classmethod
    def from_match(cls, match: Match) -> "MatchView":
        return cls(
            id=match.id,
            group_id=match.group_id,
            set_number=match.set_number,
            team1=match.team1,
            team2=match.team2,
            team1_games=match.team1_games,
            team2_games=match.team2_games,
            tiebreak_score=match.tiebreak_score,
            status=match.status,
            is_confirmed=match.is_confirmed,
            reported_by_id=match.reported_by_id,
            confirmed_by_id=match.confirmed_by_id,
            schedule_status=match.schedule_status,
            updated_at=match.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "group_id": self.group_id,
            "set_number": self.set_number,
            "team1": list(self.team1),
            "team2": list(self.team2),
            "team1_games": self.team1_games,
            "team2_games": self.team2_games,
            "tiebreak_score": self.tiebreak_score,
            "status": self.status,
            "is_confirmed": self.is_confirmed,
            "reported_by_id": self.reported_by_id,
            "confirmed_by_id": self.confirmed_by_id,
            "schedule_status": self.schedule_status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# =============================================================================
# Checks shared by the read and write phases
# =============================================================================

def require_participant(match: Match, identity: Identity) -> None:
    if identity.player_id is None or identity.player_id not in match.participant_ids:
        raise NoPermission(
            f"Player {identity.player_id} does not play set {match.id}",
            user_message="No participas en este partido",
        )


def require_admin(identity: Identity) -> None:
    if not identity.is_admin:
        raise NoPermission(f"User {identity.user_id} is not an admin")


def require_open_round(round_: Round) -> None:
    if round_.is_closed:
        raise RoundClosed(f"Round {round_.id} is closed")


def require_scheduled(match: Match) -> None:
    if match.schedule_status != PARTY_SCHEDULED or match.accepted_date is None:
        raise ScheduleNotConfirmed(
            f"Set {match.id} party is {match.schedule_status}",
            context={"match_id": match.id, "schedule_status": match.schedule_status},
        )


class MatchResultStateMachine:
    """Applies result transitions to sets, one transaction per operation."""

    def __init__(
        self,
        session_factory: sessionmaker,
        engine: ScoreRecalculationEngine,
        locks: LockManager,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.locks = locks
        self.settings = settings

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def report(
        self,
        match_id: int,
        team1_games: int,
        team2_games: int,
        tiebreak: Optional[str],
        identity: Identity,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        """
        Report the score of a set.

        Raises:
            NoPermission, RoundClosed, ScheduleNotConfirmed, AlreadyReported,
            InvalidScore, InvalidTiebreak, ConcurrentModification
        """
        score = validate_set_score(team1_games, team2_games, tiebreak)

        def check(match: Match, round_: Round) -> None:
            require_participant(match, identity)
            require_open_round(round_)
            require_scheduled(match)
            already = match.reported_by_id is not None or match.is_confirmed
            if already or not can_transition(match.status, REPORTED):
                raise AlreadyReported(f"Set {match.id} already has a result ({match.status})")

        def apply(match: Match) -> None:
            self._set_score(match, score)
            match.reported_by_id = identity.actor_id
            match.status = REPORTED

        return self._execute("report", match_id, identity, check, apply, expected_updated_at)

    def confirm(
        self,
        match_id: int,
        identity: Identity,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        """
        Confirm the reported score of a set and recalculate the group.

        The confirmer must play in the opposite team of the reporter. The
        confirmation is rejected if the recalculation fails.
        """
        def check(match: Match, round_: Round) -> None:
            require_participant(match, identity)
            require_open_round(round_)
            if match.reported_by_id is None or match.team1_games is None:
                raise NoResultToConfirm(f"Set {match.id} has no reported result")
            if match.reported_by_id == identity.actor_id:
                raise CannotConfirmOwn(f"Player {identity.actor_id} reported set {match.id}")
            already = match.is_confirmed or match.confirmed_by_id is not None
            if already or not can_transition(match.status, CONFIRMED):
                raise AlreadyConfirmed(f"Set {match.id} is already confirmed")
            if match.team_of(identity.player_id) == match.team_of(match.reported_by_id):
                raise ConfirmationSameTeam(
                    f"Player {identity.player_id} is in the reporter's team for set {match.id}"
                )

        def apply(match: Match) -> None:
            match.confirmed_by_id = identity.actor_id
            match.is_confirmed = True
            match.status = CONFIRMED

        return self._execute(
            "confirm", match_id, identity, check, apply, expected_updated_at, recalculate=True
        )

    def dispute(
        self,
        match_id: int,
        identity: Identity,
        reason: Optional[str] = None,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        """Reject an unconfirmed report; the set goes back to NOT_REPORTED."""
        def check(match: Match, round_: Round) -> None:
            require_participant(match, identity)
            require_open_round(round_)
            if match.is_confirmed:
                raise AlreadyConfirmed(
                    f"Set {match.id} is confirmed and can't be disputed",
                    user_message="No se puede reportar error en un resultado confirmado",
                )
            if not can_transition(match.status, NOT_REPORTED):
                raise NoResultToConfirm(f"Set {match.id} has no reported result to dispute")

        def apply(match: Match) -> None:
            self._reset_result(match)

        view = self._execute("dispute", match_id, identity, check, apply, expected_updated_at)
        logger.info("Set %s disputed by player %s: %s", match_id, identity.player_id, reason or "-")
        return view

    def admin_edit(
        self,
        match_id: int,
        team1_games: int,
        team2_games: int,
        tiebreak: Optional[str],
        identity: Identity,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        """
        Set a confirmed result as an admin, from any state.

        The score shape is still validated and closed rounds are still
        read-only. The admin is recorded as reporter/confirmer when absent.
        """
        require_admin(identity)
        score = validate_set_score(team1_games, team2_games, tiebreak)

        def check(match: Match, round_: Round) -> None:
            require_open_round(round_)

        def apply(match: Match) -> None:
            self._set_score(match, score)
            match.is_confirmed = True
            match.status = CONFIRMED
            if match.reported_by_id is None:
                match.reported_by_id = identity.actor_id
            if match.confirmed_by_id is None:
                match.confirmed_by_id = identity.actor_id
            match.admin_edited_by_id = identity.actor_id

        return self._execute(
            "admin_edit", match_id, identity, check, apply, expected_updated_at, recalculate=True
        )

    def clear(
        self,
        match_id: int,
        identity: Identity,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        """Wipe the result of a set (admin only) and recalculate the group."""
        require_admin(identity)

        def check(match: Match, round_: Round) -> None:
            require_open_round(round_)

        def apply(match: Match) -> None:
            self._reset_result(match)
            match.admin_edited_by_id = identity.actor_id

        return self._execute(
            "clear", match_id, identity, check, apply, expected_updated_at, recalculate=True
        )

    # -------------------------------------------------------------------------
    # Two-phase execution
    # -------------------------------------------------------------------------

    def _load(self, session: Session, match_id: int, for_update: bool = False) -> tuple[Match, Round]:
        stmt = select(Match).where(Match.id == match_id)
        if for_update:
            stmt = stmt.with_for_update()
        match = session.execute(stmt).scalar_one_or_none()
        if match is None:
            raise NotFound(f"Set {match_id} not found", user_message="Partido no encontrado")
        round_ = session.execute(
            select(Round).join(Group, Group.round_id == Round.id).where(Group.id == match.group_id)
        ).scalar_one()
        return match, round_

    def _snapshot(self, match_id: int, check: Check) -> tuple[int, datetime]:
        """
        Read phase: validate against committed state.

        Returns:
            (round_id, updated_at) observed for the set
        """
        session = self.session_factory()
        try:
            match, round_ = self._load(session, match_id)
            check(match, round_)
            return round_.id, match.updated_at
        finally:
            session.close()

    def _execute(
        self,
        action: str,
        match_id: int,
        identity: Identity,
        check: Check,
        apply: Change,
        expected_updated_at: Optional[datetime] = None,
        recalculate: bool = False,
    ) -> MatchView:
        with self.locks.hold(match_resource(match_id), action):
            round_id, observed = self._snapshot(match_id, check)
            if expected_updated_at is not None and expected_updated_at != observed:
                raise ConcurrentModification(
                    f"Set {match_id} changed since it was read",
                    context={"match_id": match_id},
                )
            if self.locks.is_locked(round_resource(round_id)):
                raise LockUnavailable(
                    f"Round {round_id} is being closed or reopened",
                    user_message="La ronda se está procesando. Inténtalo en unos segundos",
                )

            try:
                with transaction(
                    self.session_factory,
                    timeout_seconds=self.settings.recalculation_timeout_seconds,
                ) as session:
                    match, round_ = self._load(session, match_id, for_update=True)
                    if match.updated_at != observed:
                        raise ConcurrentModification(
                            f"Set {match_id} was modified by another request",
                            context={"match_id": match_id, "action": action},
                        )
                    check(match, round_)
                    apply(match)
                    match.updated_at = next_version(match.updated_at)
                    session.flush()
                    if recalculate:
                        self.engine.recalculate(session, match.group_id)
                    view = MatchView.from_match(match)
            except LadderError:
                raise
            except Exception as e:
                logger.error("%s of set %s failed: %s", action, match_id, e)
                if recalculate:
                    raise PointsCalculationFailed(
                        f"{action} of set {match_id} rolled back: {e}",
                        context={"match_id": match_id},
                    ) from e
                raise

        logger.info(
            "Set %s %s by user %s (player %s): %s",
            match_id,
            action,
            identity.user_id,
            identity.player_id,
            view.status,
        )
        return view

    @staticmethod
    def _set_score(match: Match, score: SetScore) -> None:
        match.team1_games = score.team1_games
        match.team2_games = score.team2_games
        match.tiebreak_score = score.tiebreak

    @staticmethod
    def _reset_result(match: Match) -> None:
        match.team1_games = None
        match.team2_games = None
        match.tiebreak_score = None
        match.is_confirmed = False
        match.reported_by_id = None
        match.confirmed_by_id = None
        match.status = NOT_REPORTED
