"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.

Database tests run against SQLite in-memory. A StaticPool keeps the single
in-memory connection alive across the many short sessions the services open.
"""

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.pool import StaticPool

from escalera.concurrency import InMemoryLockBackend, LockManager
from escalera.config import Settings
from escalera.db import (
    Base,
    Group,
    GroupPlayer,
    Match,
    Player,
    Round,
    Tournament,
    TournamentPlayer,
    make_session_factory,
    transaction,
)
from escalera.identity import Identity
from escalera.rounds import create_round
from escalera.service import LadderService

ROUND_START = date(2026, 1, 5)
PARTY_DATE = datetime(2026, 1, 10, 18, 30)

# Team 1 wins every set 4-2: P1 15 pts, P2/P3/P4 9 pts each
DEFAULT_SCORES = ((4, 2), (4, 2), (4, 2))


@pytest.fixture
def test_engine():
    """
    Create a test database engine with all tables.

    Uses SQLite in-memory for fast tests that don't need
    PostgreSQL-specific features (advisory locks, SERIALIZABLE).
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return make_session_factory(test_engine)


@pytest.fixture
def test_settings():
    """Settings that ignore any local .env file."""
    return Settings(_env_file=None, database_url="sqlite://", lock_backend="memory")


@pytest.fixture
def lock_manager(test_settings):
    return LockManager(InMemoryLockBackend(timeout_seconds=test_settings.lock_timeout_seconds))


@pytest.fixture
def service(session_factory, test_settings, lock_manager):
    return LadderService(session_factory, settings=test_settings, locks=lock_manager)


class Ladder:
    """A seeded tournament plus shortcuts to drive it through the service."""

    admin = Identity(user_id=1000, is_admin=True)

    def __init__(self, service: LadderService, tournament_id: int, player_ids: list[int]):
        self.service = service
        self.session_factory = service.session_factory
        self.tournament_id = tournament_id
        self.player_ids = player_ids

    @staticmethod
    def player(player_id: int) -> Identity:
        return Identity(user_id=player_id, player_id=player_id)

    def _read(self, query):
        session = self.session_factory()
        try:
            return query(session)
        finally:
            session.close()

    # Lookups -----------------------------------------------------------------

    def round(self, number: int = 1) -> Round:
        return self._read(
            lambda s: s.execute(
                select(Round).where(Round.tournament_id == self.tournament_id, Round.number == number)
            ).scalar_one()
        )

    def round_id(self, number: int = 1) -> int:
        return self.round(number).id

    def has_round(self, number: int) -> bool:
        return self._read(
            lambda s: s.execute(
                select(Round.id).where(Round.tournament_id == self.tournament_id, Round.number == number)
            ).first()
        ) is not None

    def group_ids(self, number: int = 1) -> list[int]:
        round_id = self.round_id(number)
        return self._read(
            lambda s: list(
                s.execute(select(Group.id).where(Group.round_id == round_id).order_by(Group.level)).scalars()
            )
        )

    def group(self, group_id: int) -> Group:
        return self._read(lambda s: s.get(Group, group_id))

    def matches(self, group_id: int) -> list[Match]:
        return self._read(
            lambda s: list(
                s.execute(select(Match).where(Match.group_id == group_id).order_by(Match.set_number)).scalars()
            )
        )

    def match(self, match_id: int) -> Match:
        return self._read(lambda s: s.get(Match, match_id))

    def standings(self, group_id: int) -> dict[int, GroupPlayer]:
        """player_id -> GroupPlayer of a group."""
        rows = self._read(
            lambda s: list(s.execute(select(GroupPlayer).where(GroupPlayer.group_id == group_id)).scalars())
        )
        return {gp.player_id: gp for gp in rows}

    def lineup(self, group_id: int) -> list[int]:
        """Player ids of a group by position."""
        return [pid for pid, _gp in sorted(self.standings(group_id).items(), key=lambda item: item[1].position)]

    # Actions -----------------------------------------------------------------

    def schedule(self, group_id: int):
        return self.service.propose_party_date(group_id, PARTY_DATE, self.admin)

    def play_set(self, match: Match, team1_games: int, team2_games: int, tiebreak=None):
        """Report as team 1, confirm as team 2."""
        self.service.report_result(
            match.id, team1_games, team2_games, tiebreak, self.player(match.team1_player1_id)
        )
        return self.service.confirm_result(match.id, self.player(match.team2_player1_id))

    def play_group(self, group_id: int, scores=DEFAULT_SCORES) -> None:
        self.schedule(group_id)
        for match, (team1_games, team2_games) in zip(self.matches(group_id), scores):
            self.play_set(match, team1_games, team2_games)

    def play_round(self, number: int = 1, scores=DEFAULT_SCORES) -> None:
        for group_id in self.group_ids(number):
            self.play_group(group_id, scores)

    def close(self, number: int = 1):
        return self.service.close_round(self.round_id(number), self.admin)


@pytest.fixture
def make_ladder(service):
    """
    Factory for a tournament whose round 1 is seeded in player id order.

    With 8 players: group 1 holds players 1-4, group 2 holds players 5-8.
    """
    def _make(player_count: int = 8, total_rounds: int = 3, max_comodines: int = 1) -> Ladder:
        with transaction(service.session_factory) as session:
            tournament = Tournament(
                title="Escalera de prueba",
                total_rounds=total_rounds,
                round_duration_days=14,
                max_comodines=max_comodines,
            )
            players = [Player(name=f"Jugador {i}") for i in range(1, player_count + 1)]
            session.add(tournament)
            session.add_all(players)
            session.flush()
            for player in players:
                session.add(TournamentPlayer(tournament_id=tournament.id, player_id=player.id))
            player_ids = [p.id for p in players]
            create_round(session, tournament, 1, ROUND_START, 14, player_ids)
            tournament_id = tournament.id
        return Ladder(service, tournament_id, player_ids)

    return _make


@pytest.fixture
def ladder(make_ladder):
    """Eight players, two groups, three rounds."""
    return make_ladder()
