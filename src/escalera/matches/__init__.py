"""Set results and party scheduling."""

from escalera.matches.scheduling import PartyScheduler, PartyView
from escalera.matches.state_machine import MatchResultStateMachine, MatchView

__all__ = [
    "MatchResultStateMachine",
    "MatchView",
    "PartyScheduler",
    "PartyView",
]
