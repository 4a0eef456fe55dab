"""
Round management.

- ladder: movements between groups and next-round redistribution
- groups: group and set generation
- lifecycle: closing, reopening and skipping
- rankings: official and ironman ranking snapshots
- comodin: wildcard application
- standings: read-only group preview
"""

from escalera.rounds.comodin import ComodinResult, ComodinService
from escalera.rounds.groups import build_group_matches, create_round, create_round_groups
from escalera.rounds.ladder import Movement, Standing, calculate_movements, redistribute, target_index
from escalera.rounds.lifecycle import RoundCloseResult, RoundLifecycleController, RoundReopenResult
from escalera.rounds.rankings import update_rankings
from escalera.rounds.standings import StandingRow, group_standings

__all__ = [
    "ComodinResult",
    "ComodinService",
    "build_group_matches",
    "create_round",
    "create_round_groups",
    "Movement",
    "Standing",
    "calculate_movements",
    "redistribute",
    "target_index",
    "RoundCloseResult",
    "RoundLifecycleController",
    "RoundReopenResult",
    "update_rankings",
    "StandingRow",
    "group_standings",
]
