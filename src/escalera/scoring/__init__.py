"""
Scoring for ladder groups.

- rules: set score validation and per-set points
- streaks: consecutive-rounds streak and its bonus
- substitutes: credit attribution for substitute players
- engine: transactional recalculation of group standings
"""

from escalera.scoring.engine import (
    PlayerScore,
    RecalculationResult,
    ScoreRecalculationEngine,
    compute_group_scores,
)
from escalera.scoring.rules import SetScore, set_points, set_winner, validate_set_score
from escalera.scoring.streaks import StreakCalculator, streak_bonus, streak_length
from escalera.scoring.substitutes import recipient_for

__all__ = [
    "PlayerScore",
    "RecalculationResult",
    "ScoreRecalculationEngine",
    "compute_group_scores",
    "SetScore",
    "set_points",
    "set_winner",
    "validate_set_score",
    "StreakCalculator",
    "streak_bonus",
    "streak_length",
    "recipient_for",
]
