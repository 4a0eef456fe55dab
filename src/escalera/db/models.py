"""
SQLAlchemy ORM models for Escalera.

This module defines all database tables and their relationships.
The schema is designed around rounds of four-player groups: every group
plays three sets per round with a fixed partner rotation, and the final
points of each group decide who moves up or down the ladder.

Key design decisions:
- Group membership is immutable within a round (exactly 4 players)
- GroupPlayer.points/streak/position are written only by the
  recalculation engine
- Match confirmation fields are written only by the result state machine
- Positions are NOT unique-constrained per group; they are written in one
  batch keyed by GroupPlayer.id and checked when a round closes
- Rankings are a rebuildable projection, never a source of truth

Tables:
- tournaments: Tournament settings (rounds, round length, comodines)
- players: Player records
- tournament_players: Registrations plus comodin usage counters
- rounds: Time windows of a tournament
- groups: Four-player groups of a round
- group_players: Per-round standings of each player
- matches: The three sets of each group (result + party scheduling)
- streak_history: Streak bonus awarded per player when a round closes
- rankings: Per-round ranking snapshots (official + ironman)
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from escalera.statuses import GROUP_PENDING, NOT_REPORTED, PARTY_PENDING

# Every group has exactly this many players and plays SETS_PER_GROUP sets.
GROUP_SIZE = 4
SETS_PER_GROUP = 3


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_version(previous: Optional[datetime]) -> datetime:
    """New updated_at value, strictly later than the previous one."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Tournament and Player Models
# =============================================================================

class Tournament(Base):
    """
    Tournament master data.

    total_rounds bounds round generation: closing the last round does not
    create a new one. round_duration_days sets the window of each new round.
    """
    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    total_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    round_duration_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # How many comodines a player may use over the whole tournament
    max_comodines: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    rounds: Mapped[list["Round"]] = relationship(
        back_populates="tournament", cascade="all, delete-orphan", order_by="Round.number"
    )

    def __repr__(self) -> str:
        return f"<Tournament(id={self.id}, title='{self.title}')>"


class Player(Base):
    """A ladder player."""
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, name='{self.name}')>"


class TournamentPlayer(Base):
    """Registration of a player in a tournament."""
    __tablename__ = "tournament_players"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )
    comodines_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="uq_tournament_player"),
    )


# =============================================================================
# Round / Group Models
# =============================================================================

class Round(Base):
    """
    A fixed time window in which every group plays its three sets.

    Lifecycle: created when the previous round closes (or by an admin for
    round 1). is_closed flips back to False only through the reopen
    procedure, which first reverses all closure side effects.
    """
    __tablename__ = "rounds"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    tournament: Mapped["Tournament"] = relationship(back_populates="rounds")
    groups: Mapped[list["Group"]] = relationship(
        back_populates="round", cascade="all, delete-orphan", order_by="Group.level"
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "number", name="uq_round_tournament_number"),
    )

    def __repr__(self) -> str:
        return f"<Round(id={self.id}, number={self.number}, closed={self.is_closed})>"


class Group(Base):
    """
    Four players competing within a round.

    level orders the ladder: level 1 is the top group.
    status: 'PENDING' until the round closes, then 'PLAYED'; 'SKIPPED' lets
    a round close although this group's sets were never played.
    """
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    round_id: Mapped[int] = mapped_column(
        ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=GROUP_PENDING)
    skipped_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    round: Mapped["Round"] = relationship(back_populates="groups")
    players: Mapped[list["GroupPlayer"]] = relationship(
        back_populates="group", cascade="all, delete-orphan", order_by="GroupPlayer.position"
    )
    matches: Mapped[list["Match"]] = relationship(
        back_populates="group", cascade="all, delete-orphan", order_by="Match.set_number"
    )

    __table_args__ = (
        UniqueConstraint("round_id", "number", name="uq_group_round_number"),
    )

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, number={self.number}, level={self.level})>"


class GroupPlayer(Base):
    """
    A player's standing inside one group of one round.

    points, streak and position are owned by the recalculation engine.

    Comodin fields:
    - used_comodin: the player skipped active participation this round
    - comodin_mode: 'mean' (average-based credit) or 'substitute'
    - comodin_points: the fixed credit of a 'mean' comodin
    - substitute_player_id: who plays in their place ('substitute' mode);
      the points earned are credited to this GroupPlayer
    """
    __tablename__ = "group_players"

    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    used_comodin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    comodin_mode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    comodin_points: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    comodin_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    substitute_player_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("players.id"), nullable=True
    )

    group: Mapped["Group"] = relationship(back_populates="players")

    __table_args__ = (
        UniqueConstraint("group_id", "player_id", name="uq_group_player"),
        Index("idx_group_players_player", "player_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GroupPlayer(player_id={self.player_id}, position={self.position}, "
            f"points={self.points})>"
        )


# =============================================================================
# Match Model
# =============================================================================

class Match(Base):
    """
    One set of a group. Three per group, created together with the group.

    Team pairing follows a fixed rotation over the group positions:
    - set 1: P1+P4 vs P2+P3
    - set 2: P1+P3 vs P2+P4
    - set 3: P1+P2 vs P3+P4

    Result lifecycle (status): NOT_REPORTED -> REPORTED -> CONFIRMED.
    A 4-4 set decided by tie-break is stored as 5-4 with tiebreak_score
    holding the tie-break points ("team1-team2").

    Party scheduling fields are kept in sync across the three sets of a
    group: a result can only be reported once schedule_status is
    'SCHEDULED' with an accepted_date.
    """
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    set_number: Mapped[int] = mapped_column(Integer, nullable=False)

    team1_player1_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    team1_player2_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    team2_player1_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    team2_player2_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)

    # Result
    team1_games: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    team2_games: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tiebreak_score: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reported_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confirmed_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    admin_edited_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=NOT_REPORTED)

    # Party scheduling
    schedule_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PARTY_PENDING
    )
    proposed_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    proposed_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    accepted_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    accepted_by: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    # Optimistic concurrency token: every write path bumps it explicitly
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    group: Mapped["Group"] = relationship(back_populates="matches")

    __table_args__ = (
        UniqueConstraint("group_id", "set_number", name="uq_match_group_set"),
        Index("idx_matches_group_confirmed", "group_id", "is_confirmed"),
    )

    @property
    def team1(self) -> tuple[int, int]:
        return (self.team1_player1_id, self.team1_player2_id)

    @property
    def team2(self) -> tuple[int, int]:
        return (self.team2_player1_id, self.team2_player2_id)

    @property
    def participant_ids(self) -> tuple[int, int, int, int]:
        return self.team1 + self.team2

    def team_of(self, player_id: Optional[int]) -> Optional[int]:
        """Return 1 or 2 for the player's team in this set, None if absent."""
        if player_id is None:
            return None
        if player_id in self.team1:
            return 1
        if player_id in self.team2:
            return 2
        return None

    def __repr__(self) -> str:
        return (
            f"<Match(id={self.id}, set={self.set_number}, "
            f"{self.team1_games}-{self.team2_games}, status={self.status})>"
        )


# =============================================================================
# Derived Records
# =============================================================================

class StreakHistory(Base):
    """
    Streak bonus awarded to a player when a round closed.

    Deleted wholesale when the round is reopened.
    """
    __tablename__ = "streak_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    round_id: Mapped[int] = mapped_column(
        ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False
    )
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    streak_type: Mapped[str] = mapped_column(String(30), nullable=False, default="CONTINUITY_BONUS")
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_points: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_streak_history_round", "round_id"),
    )


class Ranking(Base):
    """
    Per-round ranking snapshot.

    position is the official ranking (average points per round played);
    ironman_position ranks cumulative total points.
    movement compares position with the previous round's snapshot.
    """
    __tablename__ = "rankings"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)

    total_points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rounds_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sets_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    games_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    ironman_position: Mapped[int] = mapped_column(Integer, nullable=False)
    movement: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "tournament_id", "player_id", "round_number", name="uq_ranking_player_round"
        ),
    )
