"""Shared status definitions for sets, parties and groups.

This module is the single source of truth for the status strings stored in
the database and reused by the state machine, the scheduler and the round
lifecycle.
"""

from __future__ import annotations

# Result state of a single set (Match row).
NOT_REPORTED = "NOT_REPORTED"
REPORTED = "REPORTED"
CONFIRMED = "CONFIRMED"

# Scheduling state of a party (the three sets a group plays together).
PARTY_PENDING = "PENDING"
PARTY_DATE_PROPOSED = "DATE_PROPOSED"
PARTY_SCHEDULED = "SCHEDULED"

# Group state within a round.
GROUP_PENDING = "PENDING"
GROUP_PLAYED = "PLAYED"
GROUP_SKIPPED = "SKIPPED"

# Comodin modes stored on GroupPlayer.comodin_mode.
COMODIN_MEAN = "mean"
COMODIN_SUBSTITUTE = "substitute"

# Ranking movement labels.
MOVEMENT_UP = "up"
MOVEMENT_DOWN = "down"
MOVEMENT_SAME = "same"
MOVEMENT_NEW = "new"

# Allowed result transitions for non-admin actors. Admin edits may jump to
# CONFIRMED from anywhere and admin clears return to NOT_REPORTED.
PLAYER_TRANSITIONS: dict[str, tuple[str, ...]] = {
    NOT_REPORTED: (REPORTED,),
    REPORTED: (CONFIRMED, NOT_REPORTED),
    CONFIRMED: (),
}


def can_transition(current: str, target: str) -> bool:
    """Return True when a player action may move a set from current to target."""
    return target in PLAYER_TRANSITIONS.get(current, ())
