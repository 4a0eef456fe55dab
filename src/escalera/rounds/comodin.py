"""
Comodín (wildcard) handling.

A player may skip active participation in one round per tournament:

- mean mode: the player is credited a fixed amount instead of live points.
  From round 3 on it is the average of their previous closed rounds played
  without comodín; in rounds 1-2 it is the average of the other group
  members' current points. Rounded to one decimal.
- substitute mode: a player from a lower group of the same round plays the
  three sets instead; the points earned are credited to the absent player.

Either way the player earns no streak bonus that round. Comodín fields are
written here; points are always recomputed by the recalculation engine.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from escalera.config import Settings
from escalera.db.models import Group, GroupPlayer, Match, Round, TournamentPlayer, next_version
from escalera.db.session import transaction
from escalera.errors import ComodinNotAllowed, NoPermission, NotFound
from escalera.identity import Identity
from escalera.scoring.engine import ScoreRecalculationEngine
from escalera.statuses import COMODIN_MEAN, COMODIN_SUBSTITUTE, NOT_REPORTED

logger = logging.getLogger(__name__)

PLAYER_COLUMNS = ("team1_player1_id", "team1_player2_id", "team2_player1_id", "team2_player2_id")


def round1(value: float) -> float:
    """Round half up to one decimal."""
    return math.floor(value * 10 + 0.5) / 10


@dataclass
class ComodinResult:
    round_id: int
    player_id: int
    mode: Optional[str]
    points: Optional[float] = None
    substitute_player_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "round_id": self.round_id,
            "player_id": self.player_id,
            "mode": self.mode,
            "points": self.points,
            "substitute_player_id": self.substitute_player_id,
        }


class ComodinService:
    """Applies and revokes comodines, recalculating the affected group."""

    def __init__(self, session_factory: sessionmaker, engine: ScoreRecalculationEngine, settings: Settings):
        self.session_factory = session_factory
        self.engine = engine
        self.settings = settings

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @staticmethod
    def _target_player(identity: Identity, player_id: Optional[int]) -> int:
        if player_id is not None and player_id != identity.player_id:
            if not identity.is_admin:
                raise NoPermission("Only admins can manage another player's comodín")
            return player_id
        if identity.player_id is None:
            raise NoPermission(f"User {identity.user_id} is not linked to a player")
        return identity.player_id

    @staticmethod
    def _open_round(session: Session, round_id: int) -> Round:
        round_ = session.get(Round, round_id)
        if round_ is None:
            raise NotFound(f"Round {round_id} not found")
        if round_.is_closed:
            raise ComodinNotAllowed(
                f"Round {round_id} is closed",
                user_message="No se puede usar comodín en una ronda cerrada",
            )
        return round_

    @staticmethod
    def _group_player(session: Session, round_id: int, player_id: int) -> GroupPlayer:
        gp = session.execute(
            select(GroupPlayer)
            .join(Group, GroupPlayer.group_id == Group.id)
            .where(Group.round_id == round_id, GroupPlayer.player_id == player_id)
            .with_for_update()
        ).scalar_one_or_none()
        if gp is None:
            raise ComodinNotAllowed(
                f"Player {player_id} has no group in round {round_id}",
                user_message="No estás asignado a un grupo en esta ronda",
            )
        return gp

    @staticmethod
    def _registration(session: Session, tournament_id: int, player_id: int) -> TournamentPlayer:
        tp = session.execute(
            select(TournamentPlayer)
            .where(TournamentPlayer.tournament_id == tournament_id, TournamentPlayer.player_id == player_id)
            .with_for_update()
        ).scalar_one_or_none()
        if tp is None:
            raise ComodinNotAllowed(
                f"Player {player_id} is not registered in tournament {tournament_id}",
                user_message="No estás inscrito en este torneo",
            )
        return tp

    def _check_available(self, round_: Round, gp: GroupPlayer, tp: TournamentPlayer) -> None:
        if gp.used_comodin:
            raise ComodinNotAllowed(
                f"Player {gp.player_id} already used a comodín in round {round_.id}",
                user_message="Ya has usado comodín en esta ronda",
            )
        if (tp.comodines_used or 0) >= round_.tournament.max_comodines:
            raise ComodinNotAllowed(
                f"Player {gp.player_id} has no comodines left",
                user_message="Ya has usado tu comodín en este torneo",
            )

    @staticmethod
    def _group_matches(session: Session, group_id: int) -> list[Match]:
        return list(
            session.execute(
                select(Match).where(Match.group_id == group_id).order_by(Match.set_number).with_for_update()
            ).scalars()
        )

    @staticmethod
    def _require_unplayed(matches: list[Match]) -> None:
        if any(m.status != NOT_REPORTED for m in matches):
            raise ComodinNotAllowed(
                f"Group {matches[0].group_id} already has results",
                user_message="No se puede cambiar el comodín: el grupo ya tiene resultados",
            )

    @staticmethod
    def _swap_player(matches: list[Match], old_id: int, new_id: int) -> None:
        for match in matches:
            for column in PLAYER_COLUMNS:
                if getattr(match, column) == old_id:
                    setattr(match, column, new_id)
            match.updated_at = next_version(match.updated_at)

    # -------------------------------------------------------------------------
    # Credit
    # -------------------------------------------------------------------------

    def mean_credit(self, session: Session, round_: Round, gp: GroupPlayer) -> float:
        """Fixed credit of a mean comodín for a group player."""
        if round_.number <= 2:
            others = session.execute(
                select(GroupPlayer.points).where(
                    GroupPlayer.group_id == gp.group_id,
                    GroupPlayer.player_id != gp.player_id,
                )
            ).scalars().all()
            if not others:
                return 0.0
            return round1(sum(others) / len(others))

        avg = session.execute(
            select(func.avg(GroupPlayer.points))
            .join(Group, GroupPlayer.group_id == Group.id)
            .join(Round, Group.round_id == Round.id)
            .where(
                GroupPlayer.player_id == gp.player_id,
                GroupPlayer.used_comodin.is_(False),
                Round.tournament_id == round_.tournament_id,
                Round.number < round_.number,
                Round.is_closed.is_(True),
            )
        ).scalar()
        return round1(float(avg)) if avg is not None else 0.0

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def apply_mean(
        self,
        round_id: int,
        identity: Identity,
        player_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ComodinResult:
        """
        Use a mean comodín in a round.

        Raises:
            ComodinNotAllowed: Closed round, no group, or no comodín left
        """
        target = self._target_player(identity, player_id)
        with transaction(self.session_factory) as session:
            round_ = self._open_round(session, round_id)
            gp = self._group_player(session, round_id, target)
            tp = self._registration(session, round_.tournament_id, target)
            self._check_available(round_, gp, tp)

            credit = self.mean_credit(session, round_, gp)
            gp.used_comodin = True
            gp.comodin_mode = COMODIN_MEAN
            gp.comodin_points = credit
            gp.comodin_reason = reason
            tp.comodines_used = (tp.comodines_used or 0) + 1
            self.engine.recalculate(session, gp.group_id)

        logger.info("Mean comodín for player %s in round %s: %.1f points", target, round_id, credit)
        return ComodinResult(round_id, target, COMODIN_MEAN, points=credit)

    def apply_substitute(
        self,
        round_id: int,
        identity: Identity,
        substitute_player_id: int,
        player_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ComodinResult:
        """
        Use a substitute comodín: ``substitute_player_id`` plays the group's sets.

        The substitute must play this round in a lower group and can't
        already be substituting someone else. The group must have no results.
        """
        target = self._target_player(identity, player_id)
        if substitute_player_id == target:
            raise ComodinNotAllowed(
                f"Player {target} can't substitute themselves",
                user_message="No puedes ser tu propio suplente",
            )

        with transaction(self.session_factory) as session:
            round_ = self._open_round(session, round_id)
            gp = self._group_player(session, round_id, target)
            tp = self._registration(session, round_.tournament_id, target)
            self._check_available(round_, gp, tp)
            self._registration(session, round_.tournament_id, substitute_player_id)

            sub_gp = self._group_player(session, round_id, substitute_player_id)
            if sub_gp.group.level <= gp.group.level:
                raise ComodinNotAllowed(
                    f"Substitute {substitute_player_id} is not in a lower group",
                    user_message="El suplente debe provenir de un grupo inferior",
                )
            already = session.execute(
                select(GroupPlayer.id)
                .join(Group, GroupPlayer.group_id == Group.id)
                .where(Group.round_id == round_id, GroupPlayer.substitute_player_id == substitute_player_id)
            ).first()
            if already is not None:
                raise ComodinNotAllowed(
                    f"Player {substitute_player_id} already substitutes in round {round_id}",
                    user_message="Este jugador ya actúa como suplente en esta ronda",
                )

            matches = self._group_matches(session, gp.group_id)
            self._require_unplayed(matches)
            self._swap_player(matches, target, substitute_player_id)

            gp.used_comodin = True
            gp.comodin_mode = COMODIN_SUBSTITUTE
            gp.comodin_points = None
            gp.comodin_reason = reason
            gp.substitute_player_id = substitute_player_id
            tp.comodines_used = (tp.comodines_used or 0) + 1
            self.engine.recalculate(session, gp.group_id)

        logger.info(
            "Substitute comodín for player %s in round %s: player %s plays instead",
            target,
            round_id,
            substitute_player_id,
        )
        return ComodinResult(round_id, target, COMODIN_SUBSTITUTE, substitute_player_id=substitute_player_id)

    def revoke(self, round_id: int, identity: Identity, player_id: Optional[int] = None) -> ComodinResult:
        """Undo a comodín; a substitute comodín can only be revoked before any result."""
        target = self._target_player(identity, player_id)
        with transaction(self.session_factory) as session:
            round_ = self._open_round(session, round_id)
            gp = self._group_player(session, round_id, target)
            if not gp.used_comodin:
                raise ComodinNotAllowed(
                    f"Player {target} has no comodín in round {round_id}",
                    user_message="No se encontró comodín activo para revocar",
                )
            tp = self._registration(session, round_.tournament_id, target)

            if gp.substitute_player_id is not None:
                matches = self._group_matches(session, gp.group_id)
                self._require_unplayed(matches)
                self._swap_player(matches, gp.substitute_player_id, target)

            gp.used_comodin = False
            gp.comodin_mode = None
            gp.comodin_points = None
            gp.comodin_reason = None
            gp.substitute_player_id = None
            tp.comodines_used = max(0, (tp.comodines_used or 0) - 1)
            self.engine.recalculate(session, gp.group_id)

        logger.info("Comodín of player %s in round %s revoked by user %s", target, round_id, identity.user_id)
        return ComodinResult(round_id, target, None)
