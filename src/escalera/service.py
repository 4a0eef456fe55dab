"""
Ladder service: the operations offered to the web layer.

Builds every component once around one session factory and one lock
manager, and exposes the ladder operations as plain method calls. The web
app and the maintenance scripts both go through this class.

Usage:
    from escalera.service import LadderService

    service = LadderService.from_settings()
    service.report_result(match_id, 4, 2, None, identity)
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from escalera.concurrency.integrity import IntegrityGuard
from escalera.concurrency.locks import LockManager, build_lock_manager
from escalera.config import Settings, get_settings
from escalera.db.session import get_engine, make_session_factory
from escalera.identity import Identity
from escalera.matches.scheduling import PartyScheduler, PartyView
from escalera.matches.state_machine import MatchResultStateMachine, MatchView
from escalera.rounds.comodin import ComodinResult, ComodinService
from escalera.rounds.lifecycle import RoundCloseResult, RoundLifecycleController, RoundReopenResult
from escalera.rounds.standings import StandingRow, group_standings
from escalera.scoring.engine import RecalculationResult, ScoreRecalculationEngine

logger = logging.getLogger(__name__)


class LadderService:
    """Facade over results, scheduling, comodines and the round lifecycle."""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        locks: Optional[LockManager] = None,
        integrity: Optional[IntegrityGuard] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.locks = locks or build_lock_manager(self.settings, session_factory.kw.get("bind"))
        self.engine = ScoreRecalculationEngine(session_factory, self.settings)
        self.matches = MatchResultStateMachine(session_factory, self.engine, self.locks, self.settings)
        self.scheduler = PartyScheduler(session_factory)
        self.comodines = ComodinService(session_factory, self.engine, self.settings)
        self.rounds = RoundLifecycleController(
            session_factory, self.engine, self.locks, self.settings, integrity=integrity
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> "LadderService":
        """Service bound to the configured database."""
        settings = settings or get_settings()
        engine = engine or get_engine(settings)
        return cls(make_session_factory(engine), settings=settings)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def report_result(
        self,
        match_id: int,
        team1_games: int,
        team2_games: int,
        tiebreak: Optional[str],
        identity: Identity,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        return self.matches.report(
            match_id, team1_games, team2_games, tiebreak, identity, expected_updated_at
        )

    def confirm_result(
        self, match_id: int, identity: Identity, expected_updated_at: Optional[datetime] = None
    ) -> MatchView:
        return self.matches.confirm(match_id, identity, expected_updated_at)

    def dispute_result(
        self, match_id: int, identity: Identity, reason: Optional[str] = None
    ) -> MatchView:
        return self.matches.dispute(match_id, identity, reason)

    def admin_set_result(
        self,
        match_id: int,
        team1_games: int,
        team2_games: int,
        tiebreak: Optional[str],
        identity: Identity,
        expected_updated_at: Optional[datetime] = None,
    ) -> MatchView:
        return self.matches.admin_edit(
            match_id, team1_games, team2_games, tiebreak, identity, expected_updated_at
        )

    def clear_result(self, match_id: int, identity: Identity) -> MatchView:
        return self.matches.clear(match_id, identity)

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    def close_round(self, round_id: int, identity: Identity) -> RoundCloseResult:
        return self.rounds.close_round(round_id, identity)

    def reopen_round(self, round_id: int, identity: Identity) -> RoundReopenResult:
        return self.rounds.reopen_round(round_id, identity)

    def skip_group(self, group_id: int, identity: Identity, reason: Optional[str] = None):
        return self.rounds.skip_group(group_id, identity, reason)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def propose_party_date(self, group_id: int, when: datetime, identity: Identity) -> PartyView:
        return self.scheduler.propose(group_id, when, identity)

    def respond_party_date(self, group_id: int, identity: Identity, accept: bool) -> PartyView:
        return self.scheduler.respond(group_id, identity, accept)

    def party(self, group_id: int) -> PartyView:
        return self.scheduler.get(group_id)

    # -------------------------------------------------------------------------
    # Comodines
    # -------------------------------------------------------------------------

    def apply_mean_comodin(
        self, round_id: int, identity: Identity, player_id: Optional[int] = None, reason: Optional[str] = None
    ) -> ComodinResult:
        return self.comodines.apply_mean(round_id, identity, player_id=player_id, reason=reason)

    def apply_substitute_comodin(
        self,
        round_id: int,
        identity: Identity,
        substitute_player_id: int,
        player_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ComodinResult:
        return self.comodines.apply_substitute(
            round_id, identity, substitute_player_id, player_id=player_id, reason=reason
        )

    def revoke_comodin(self, round_id: int, identity: Identity, player_id: Optional[int] = None) -> ComodinResult:
        return self.comodines.revoke(round_id, identity, player_id=player_id)

    # -------------------------------------------------------------------------
    # Points
    # -------------------------------------------------------------------------

    def recalculate_group(self, group_id: int) -> RecalculationResult:
        return self.engine.recalculate_group(group_id)

    def group_standings(self, group_id: int) -> list[StandingRow]:
        session = self.session_factory()
        try:
            return group_standings(session, self.engine, group_id)
        finally:
            session.close()
