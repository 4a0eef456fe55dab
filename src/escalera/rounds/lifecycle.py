"""
Round closing and reopening.

Closing a round runs under the round's named lock in three phases:

1. Validation + recalculation: every group holds four players and three
   sets, every set is confirmed unless the group was skipped, and every
   group is recalculated so standings reflect the final results
2. Integrity snapshot: hash of standings and results. The time budget
   runs from the moment the lock is acquired
3. Closure (one serializable transaction): groups marked PLAYED, streak
   history written, round closed, ladder movements applied to the next
   round, rankings rebuilt; the snapshot is re-validated before commit

Reopening reverses the closure side effects in one transaction: streak
history and the round's rankings are deleted, groups go back to PENDING
and points are recomputed from confirmed sets without streak or comodín
credit. Closing again recomputes them with bonuses, so the same confirmed
results always produce the same closure.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from escalera.concurrency.integrity import IntegrityGuard
from escalera.concurrency.locks import LockManager, round_resource
from escalera.config import Settings
from escalera.db.models import (
    GROUP_SIZE,
    SETS_PER_GROUP,
    Group,
    GroupPlayer,
    Match,
    Round,
    StreakHistory,
)
from escalera.db.session import transaction
from escalera.errors import (
    ConcurrentModification,
    InsufficientPlayers,
    LadderError,
    MatchesIncomplete,
    NoPermission,
    NotFound,
    RoundAlreadyClosed,
    RoundClosed,
)
from escalera.identity import Identity
from escalera.rounds.groups import clear_round_groups, create_group, round_duration
from escalera.rounds.ladder import Movement, Standing, calculate_movements, redistribute, summarize
from escalera.rounds.rankings import delete_rankings, update_rankings
from escalera.scoring.engine import ScoreRecalculationEngine
from escalera.statuses import GROUP_PENDING, GROUP_PLAYED, GROUP_SKIPPED

logger = logging.getLogger(__name__)

STREAK_TYPE = "CONTINUITY_BONUS"


@dataclass
class RoundCloseResult:
    """Outcome of closing a round."""
    round_id: int
    round_number: int
    tournament_id: int
    integrity_hash: str
    movements: list[Movement] = field(default_factory=list)
    next_round_id: Optional[int] = None
    next_round_number: Optional[int] = None
    streak_records: int = 0
    rankings_updated: int = 0

    @property
    def next_round_generated(self) -> bool:
        return self.next_round_id is not None

    def summary(self) -> str:
        counts = summarize(self.movements)
        lines = [
            f"Round {self.round_number} closed (tournament {self.tournament_id})",
            f"  Movements: {counts['up']} up, {counts['down']} down, {counts['same']} same",
            f"  Streak records: {self.streak_records}",
            f"  Rankings updated: {self.rankings_updated}",
        ]
        if self.next_round_generated:
            lines.append(f"  Next round: {self.next_round_number} (id {self.next_round_id})")
        else:
            lines.append("  Last round of the tournament")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_id": self.round_id,
            "round_number": self.round_number,
            "tournament_id": self.tournament_id,
            "next_round_id": self.next_round_id,
            "next_round_number": self.next_round_number,
            "next_round_generated": self.next_round_generated,
            "streak_records": self.streak_records,
            "rankings_updated": self.rankings_updated,
            "movements": [
                {
                    "player_id": m.player_id,
                    "from_group": m.source_index + 1,
                    "position": m.position,
                    "to_group": m.destination_index + 1,
                    "movement": m.direction,
                    "points": m.points,
                }
                for m in self.movements
            ],
        }


@dataclass
class RoundReopenResult:
    """Outcome of reopening a round."""
    round_id: int
    round_number: int
    already_open: bool = False
    streak_records_deleted: int = 0
    rankings_deleted: int = 0
    groups_reset: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_id": self.round_id,
            "round_number": self.round_number,
            "already_open": self.already_open,
            "streak_records_deleted": self.streak_records_deleted,
            "rankings_deleted": self.rankings_deleted,
            "groups_reset": self.groups_reset,
        }


class RoundLifecycleController:
    """Closes, reopens and skips within rounds."""

    def __init__(
        self,
        session_factory: sessionmaker,
        engine: ScoreRecalculationEngine,
        locks: LockManager,
        settings: Settings,
        integrity: Optional[IntegrityGuard] = None,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.locks = locks
        self.settings = settings
        self.integrity = integrity or IntegrityGuard(max_seconds=settings.round_close_max_seconds)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_admin(identity: Identity) -> None:
        if not identity.is_admin:
            raise NoPermission(f"User {identity.user_id} is not an admin")

    @staticmethod
    def _load_round(session: Session, round_id: int, for_update: bool = False) -> Round:
        stmt = select(Round).where(Round.id == round_id)
        if for_update:
            stmt = stmt.with_for_update()
        round_ = session.execute(stmt).scalar_one_or_none()
        if round_ is None:
            raise NotFound(f"Round {round_id} not found", user_message="Ronda no encontrada")
        return round_

    @staticmethod
    def _groups(session: Session, round_id: int) -> list[Group]:
        return list(
            session.execute(
                select(Group).where(Group.round_id == round_id).order_by(Group.level, Group.number)
            ).scalars()
        )

    def _validate_groups(self, session: Session, round_: Round) -> list[Group]:
        """
        Check the round can close.

        Raises:
            InsufficientPlayers: No groups, or a group without exactly 4 players
            MatchesIncomplete: Missing sets, or unconfirmed sets in a played group
        """
        groups = self._groups(session, round_.id)
        if not groups:
            raise InsufficientPlayers(f"Round {round_.id} has no groups")

        incomplete = []
        for group in groups:
            players = session.execute(
                select(GroupPlayer.id).where(GroupPlayer.group_id == group.id)
            ).all()
            if len(players) != GROUP_SIZE:
                raise InsufficientPlayers(
                    f"Group {group.number} of round {round_.number} has {len(players)} players",
                    context={"group_id": group.id, "players": len(players)},
                )
            matches = session.execute(
                select(Match.is_confirmed).where(Match.group_id == group.id)
            ).scalars().all()
            if len(matches) != SETS_PER_GROUP:
                raise MatchesIncomplete(
                    f"Group {group.number} of round {round_.number} has {len(matches)} sets",
                    context={"group_id": group.id},
                )
            if group.status != GROUP_SKIPPED and not all(matches):
                incomplete.append(group.number)

        if incomplete and self.settings.require_all_matches_confirmed:
            raise MatchesIncomplete(
                f"Round {round_.number} has unconfirmed sets in groups {incomplete}",
                context={"round_id": round_.id, "groups": incomplete},
            )
        return groups

    # -------------------------------------------------------------------------
    # Close
    # -------------------------------------------------------------------------

    def close_round(self, round_id: int, identity: Identity) -> RoundCloseResult:
        """
        Close a round and generate the next one.

        Raises:
            NoPermission: Not an admin
            LockUnavailable: The round is already being processed
            RoundAlreadyClosed: The round (or the round after it) is closed
            InsufficientPlayers, MatchesIncomplete: The round can't close yet
            ConcurrentModification: The round changed while closing, or the
                closure ran past its time budget
        """
        self._require_admin(identity)
        with self.locks.hold(round_resource(round_id), "close_round"):
            started = self.integrity.start()

            # Phase 1: validate and bring standings up to date
            with transaction(
                self.session_factory,
                timeout_seconds=self.settings.round_close_timeout_seconds,
            ) as session:
                round_ = self._load_round(session, round_id)
                if round_.is_closed:
                    raise RoundAlreadyClosed(f"Round {round_id} is already closed")
                for group in self._validate_groups(session, round_):
                    self.engine.recalculate(session, group.id)

            # Phase 2: snapshot of what the closure is based on
            session = self.session_factory()
            try:
                snapshot = self.integrity.snapshot(session, round_id, started_at=started)
            finally:
                session.close()

            # Phase 3: the closure itself
            try:
                with transaction(
                    self.session_factory,
                    isolation_level=self.settings.round_close_isolation_level,
                    timeout_seconds=self.settings.round_close_timeout_seconds,
                ) as session:
                    result = self._close(session, round_id, snapshot.digest)
                    self.integrity.verify(session, snapshot)
            except LadderError:
                raise
            except Exception as e:
                logger.error("Closing round %s failed: %s", round_id, e)
                raise

        logger.info(result.summary())
        return result

    def _close(self, session: Session, round_id: int, digest: str) -> RoundCloseResult:
        round_ = self._load_round(session, round_id, for_update=True)
        if round_.is_closed:
            raise ConcurrentModification(f"Round {round_id} was closed by another request")
        groups = self._validate_groups(session, round_)
        tournament = round_.tournament

        result = RoundCloseResult(
            round_id=round_.id,
            round_number=round_.number,
            tournament_id=tournament.id,
            integrity_hash=digest,
        )

        # Standings and streak history, computed before the round counts as closed
        standings: list[list[Standing]] = []
        skipped: set[int] = set()
        for index, group in enumerate(groups):
            computed = self.engine.compute(session, group.id)
            standings.append([
                Standing(s.player_id, s.points, s.streak, s.games_diff) for s in computed.scores
            ])
            if group.status == GROUP_SKIPPED:
                skipped.add(index)
                continue
            group.status = GROUP_PLAYED
            for score in computed.scores:
                if score.streak >= 1 and not score.used_comodin:
                    session.add(
                        StreakHistory(
                            player_id=score.player_id,
                            round_id=round_.id,
                            group_id=group.id,
                            streak_type=STREAK_TYPE,
                            streak_count=score.streak,
                            bonus_points=float(score.streak_bonus),
                        )
                    )
                    result.streak_records += 1

        round_.is_closed = True
        session.flush()

        movements = calculate_movements(standings)
        for movement in movements:
            # Players of a skipped group keep their group
            if movement.source_index in skipped:
                movement.target_index = movement.source_index
        result.movements = movements

        if round_.number < tournament.total_rounds:
            next_round = self._prepare_next_round(session, round_)
            for number, chunk in enumerate(redistribute(movements), start=1):
                create_group(session, next_round, number, [m.player_id for m in chunk])
            session.flush()
            result.next_round_id = next_round.id
            result.next_round_number = next_round.number

        result.rankings_updated = len(update_rankings(session, tournament.id, round_.number))
        return result

    def _prepare_next_round(self, session: Session, round_: Round) -> Round:
        """Create the next round, or empty an open one left from an earlier closure."""
        tournament = round_.tournament
        number = round_.number + 1
        start = round_.end_date
        end = start + timedelta(days=round_duration(tournament, self.settings.default_round_duration_days))

        existing = session.execute(
            select(Round).where(Round.tournament_id == tournament.id, Round.number == number)
        ).scalar_one_or_none()
        if existing is not None:
            if existing.is_closed:
                raise RoundAlreadyClosed(
                    f"Round {number} of tournament {tournament.id} is already closed",
                    user_message="La ronda siguiente ya está cerrada",
                )
            removed = clear_round_groups(session, existing)
            logger.warning(
                "Round %s already existed: discarded %d groups before rebuilding it",
                number,
                removed,
            )
            existing.start_date = start
            existing.end_date = end
            return existing

        next_round = Round(
            tournament_id=tournament.id,
            number=number,
            start_date=start,
            end_date=end,
            is_closed=False,
        )
        session.add(next_round)
        session.flush()
        return next_round

    # -------------------------------------------------------------------------
    # Reopen
    # -------------------------------------------------------------------------

    def reopen_round(self, round_id: int, identity: Identity) -> RoundReopenResult:
        """
        Reopen a closed round, undoing its closure side effects.

        No-op when the round is already open.
        """
        self._require_admin(identity)
        with self.locks.hold(round_resource(round_id), "reopen_round"):
            with transaction(
                self.session_factory,
                isolation_level=self.settings.round_close_isolation_level,
                timeout_seconds=self.settings.round_close_timeout_seconds,
            ) as session:
                round_ = self._load_round(session, round_id, for_update=True)
                result = RoundReopenResult(round_id=round_.id, round_number=round_.number)
                if not round_.is_closed:
                    result.already_open = True
                    logger.info("Round %s is already open", round_id)
                    return result

                later_closed = session.execute(
                    select(Round.id).where(
                        Round.tournament_id == round_.tournament_id,
                        Round.number > round_.number,
                        Round.is_closed.is_(True),
                    )
                ).first()
                if later_closed is not None:
                    raise RoundAlreadyClosed(
                        f"A round after round {round_.number} is closed",
                        user_message="No se puede reabrir: una ronda posterior ya está cerrada",
                    )

                deleted = session.execute(delete(StreakHistory).where(StreakHistory.round_id == round_.id))
                result.streak_records_deleted = deleted.rowcount or 0
                result.rankings_deleted = delete_rankings(session, round_.tournament_id, round_.number)

                for group in self._groups(session, round_.id):
                    group.status = GROUP_PENDING
                    group.skipped_reason = None
                    self.engine.recalculate(session, group.id, include_bonuses=False)
                    result.groups_reset += 1

                round_.is_closed = False

        logger.info(
            "Round %s reopened: %d streak records and %d rankings deleted, %d groups reset",
            result.round_number,
            result.streak_records_deleted,
            result.rankings_deleted,
            result.groups_reset,
        )
        return result

    # -------------------------------------------------------------------------
    # Skip
    # -------------------------------------------------------------------------

    def skip_group(self, group_id: int, identity: Identity, reason: Optional[str] = None) -> Group:
        """Mark a group SKIPPED so its round can close without its sets."""
        self._require_admin(identity)
        with transaction(self.session_factory) as session:
            group = session.get(Group, group_id)
            if group is None:
                raise NotFound(f"Group {group_id} not found")
            if group.round.is_closed:
                raise RoundClosed(f"Round {group.round_id} is closed")
            group.status = GROUP_SKIPPED
            group.skipped_reason = reason or "Omitido por administración"

        logger.info("Group %s skipped by user %s: %s", group_id, identity.user_id, group.skipped_reason)
        return group
