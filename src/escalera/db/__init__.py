"""
Database module for Escalera.

Provides SQLAlchemy ORM models, session management and the transaction helper.

Usage:
    from escalera.db import get_session, Round, Group

    with get_session() as session:
        rounds = session.query(Round).all()
"""

from escalera.db.models import (
    GROUP_SIZE,
    SETS_PER_GROUP,
    Base,
    Group,
    GroupPlayer,
    Match,
    Player,
    Ranking,
    Round,
    StreakHistory,
    Tournament,
    TournamentPlayer,
    next_version,
    utcnow,
)
from escalera.db.session import (
    get_engine,
    get_session,
    get_session_factory,
    make_session_factory,
    transaction,
)

__all__ = [
    # Base
    "Base",
    "GROUP_SIZE",
    "SETS_PER_GROUP",
    "next_version",
    "utcnow",
    # Models
    "Tournament",
    "Player",
    "TournamentPlayer",
    "Round",
    "Group",
    "GroupPlayer",
    "Match",
    "StreakHistory",
    "Ranking",
    # Session
    "get_engine",
    "get_session",
    "get_session_factory",
    "make_session_factory",
    "transaction",
]
