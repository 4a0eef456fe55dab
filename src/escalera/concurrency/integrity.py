"""Optimistic integrity checks for long-running round operations.

A round closure takes a snapshot hash of everything that feeds ladder
movements (standings and confirmed results) before doing its work and
checks it again right before committing. Any change in between, or a
closure that ran past its time budget, aborts with ConcurrentModification.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from escalera.db.models import Group, GroupPlayer, Match
from escalera.errors import ConcurrentModification

logger = logging.getLogger(__name__)


def round_integrity_hash(session: Session, round_id: int) -> str:
    """
    SHA-256 over the standings and results of a round.

    Covers (group, player, points, streak) of every group player and
    (match, confirmed, games, tie-break) of every set, in a stable order.
    """
    session.flush()
    players = session.execute(
        select(GroupPlayer.group_id, GroupPlayer.player_id, GroupPlayer.points, GroupPlayer.streak)
        .join(Group, GroupPlayer.group_id == Group.id)
        .where(Group.round_id == round_id)
    ).all()
    matches = session.execute(
        select(
            Match.id,
            Match.is_confirmed,
            Match.team1_games,
            Match.team2_games,
            Match.tiebreak_score,
        )
        .join(Group, Match.group_id == Group.id)
        .where(Group.round_id == round_id)
    ).all()

    digest = hashlib.sha256()
    for group_id, player_id, points, streak in sorted(players, key=lambda r: (r[0], r[1])):
        digest.update(f"p|{group_id}|{player_id}|{float(points or 0):.4f}|{streak or 0}\n".encode())
    for match_id, confirmed, g1, g2, tiebreak in sorted(matches, key=lambda r: r[0]):
        digest.update(f"m|{match_id}|{int(bool(confirmed))}|{g1}|{g2}|{tiebreak or ''}\n".encode())
    return digest.hexdigest()


@dataclass
class IntegritySnapshot:
    """Hash of a round taken at a point in time."""
    round_id: int
    digest: str
    taken_at: float


class IntegrityGuard:
    """Takes and re-validates round snapshots within a time budget."""

    def __init__(self, max_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.max_seconds = max_seconds
        self._clock = clock

    def start(self) -> float:
        """Mark the start of an operation; pass the result to snapshot()."""
        return self._clock()

    def snapshot(self, session: Session, round_id: int, started_at: Optional[float] = None) -> IntegritySnapshot:
        """Hash the round now. The time budget runs from ``started_at`` when given."""
        taken_at = self._clock() if started_at is None else started_at
        return IntegritySnapshot(round_id, round_integrity_hash(session, round_id), taken_at)

    def verify(self, session: Session, snapshot: IntegritySnapshot) -> None:
        """
        Raise ConcurrentModification if the round changed or the budget ran out.
        """
        elapsed = self._clock() - snapshot.taken_at
        if elapsed > self.max_seconds:
            logger.warning(
                "Round %s operation exceeded its budget (%.1fs > %.1fs)",
                snapshot.round_id,
                elapsed,
                self.max_seconds,
            )
            raise ConcurrentModification(
                f"Round {snapshot.round_id} operation took {elapsed:.1f}s",
                user_message="La operación tardó demasiado. Inténtalo de nuevo",
                context={"round_id": snapshot.round_id, "elapsed": elapsed},
            )

        current = round_integrity_hash(session, snapshot.round_id)
        if current != snapshot.digest:
            logger.warning("Round %s changed during the operation", snapshot.round_id)
            raise ConcurrentModification(
                f"Round {snapshot.round_id} was modified during the operation",
                context={"round_id": snapshot.round_id},
            )
