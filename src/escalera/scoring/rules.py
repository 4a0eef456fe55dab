"""
Set score rules for ladder padel sets.

A ladder set is a short set played to 4 games:
- Simple: "4-0", "4-2" (winner reaches 4 with a 2-game lead)
- Extended: "5-3", "6-4", ... (past 4 games the lead must be exactly 2)
- Tie-break: "4-4" forces a tie-break "X-Y" (first to 7, win by 2);
  the set is then recorded as 5-4 for the tie-break winner

Tie-break strings are always written from team 1's point of view:
"7-5" means team 1 won the tie-break 7 points to 5.

This module only validates and normalizes; it never touches the database.
"""

import re
from dataclasses import dataclass
from typing import Optional

from escalera.errors import InvalidScore, InvalidTiebreak

MIN_GAMES = 0
MAX_GAMES = 10
GAMES_TO_WIN = 4
TIEBREAK_MIN_POINTS = 7
TIEBREAK_MARGIN = 2

TIEBREAK_PATTERN = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


@dataclass(frozen=True)
class SetScore:
    """
    A validated, normalized set result.

    Attributes:
        team1_games: Games credited to team 1 (5 for a won 4-4 tie-break)
        team2_games: Games credited to team 2
        tiebreak: Normalized tie-break string ("7-5"), None if no tie-break
    """
    team1_games: int
    team2_games: int
    tiebreak: Optional[str] = None

    @property
    def winner(self) -> int:
        """Winning team, 1 or 2."""
        return 1 if self.team1_games > self.team2_games else 2

    @property
    def is_tiebreak(self) -> bool:
        return self.tiebreak is not None

    def games_for(self, team: int) -> int:
        return self.team1_games if team == 1 else self.team2_games

    def __str__(self) -> str:
        if self.tiebreak:
            return f"{self.team1_games}-{self.team2_games} ({self.tiebreak})"
        return f"{self.team1_games}-{self.team2_games}"


def parse_tiebreak(tiebreak: str) -> tuple[int, int]:
    """
    Parse and validate a tie-break string.

    Args:
        tiebreak: String like "7-5" or "10-8"

    Returns:
        Tuple of (team1_points, team2_points)

    Raises:
        InvalidTiebreak: If the format is wrong, the lead is under 2
            or nobody reached 7 points
    """
    match = TIEBREAK_PATTERN.match(tiebreak or "")
    if not match:
        raise InvalidTiebreak(f"Unparseable tie-break {tiebreak!r}")

    a, b = int(match.group(1)), int(match.group(2))
    if abs(a - b) < TIEBREAK_MARGIN:
        raise InvalidTiebreak(f"Tie-break {a}-{b} needs a 2 point lead")
    if max(a, b) < TIEBREAK_MIN_POINTS:
        raise InvalidTiebreak(f"Tie-break {a}-{b} must reach {TIEBREAK_MIN_POINTS}")
    return a, b


def validate_set_score(
    team1_games: int,
    team2_games: int,
    tiebreak: Optional[str] = None,
) -> SetScore:
    """
    Validate a set result and return its normalized form.

    Rules:
    - Both game counts in [0, 10] and the winner reaches at least 4
    - 4-4 requires a tie-break; stored as 5-4 for the tie-break winner
    - 5-4 requires a tie-break won by the side with 5 games
    - Max of 4 games: lead of at least 2, no tie-break
    - Max of 5 or more otherwise: lead of exactly 2, no tie-break
    - Equal games are never a finished set (except 4-4 with tie-break)

    Raises:
        InvalidScore: The game counts can't describe a finished set
        InvalidTiebreak: Tie-break missing, malformed or not allowed
    """
    if isinstance(team1_games, bool) or isinstance(team2_games, bool):
        raise InvalidScore("Game counts must be integers")
    try:
        a, b = int(team1_games), int(team2_games)
    except (TypeError, ValueError):
        raise InvalidScore(f"Game counts must be integers, got {team1_games!r}-{team2_games!r}")
    if a != team1_games or b != team2_games:
        raise InvalidScore(f"Game counts must be integers, got {team1_games!r}-{team2_games!r}")

    if not (MIN_GAMES <= a <= MAX_GAMES and MIN_GAMES <= b <= MAX_GAMES):
        raise InvalidScore(f"Games must be between {MIN_GAMES} and {MAX_GAMES}: {a}-{b}")

    high, low = max(a, b), min(a, b)
    if high < GAMES_TO_WIN:
        raise InvalidScore(f"Winner must reach {GAMES_TO_WIN} games: {a}-{b}")

    tiebreak = tiebreak.strip() if isinstance(tiebreak, str) else tiebreak
    tiebreak = tiebreak or None

    # 4-4: decided by tie-break, recorded as 5-4
    if a == GAMES_TO_WIN and b == GAMES_TO_WIN:
        if tiebreak is None:
            raise InvalidTiebreak("A 4-4 set must be decided by a tie-break")
        tb1, tb2 = parse_tiebreak(tiebreak)
        normalized = f"{tb1}-{tb2}"
        if tb1 > tb2:
            return SetScore(GAMES_TO_WIN + 1, GAMES_TO_WIN, normalized)
        return SetScore(GAMES_TO_WIN, GAMES_TO_WIN + 1, normalized)

    if a == b:
        raise InvalidScore(f"A set can't end level: {a}-{b}")

    # 5-4: already-normalized tie-break set
    if high == GAMES_TO_WIN + 1 and low == GAMES_TO_WIN:
        if tiebreak is None:
            raise InvalidTiebreak("A 5-4 set needs the tie-break score")
        tb1, tb2 = parse_tiebreak(tiebreak)
        if (tb1 > tb2) != (a > b):
            raise InvalidTiebreak(
                f"Tie-break {tb1}-{tb2} was won by the team that lost the set {a}-{b}"
            )
        return SetScore(a, b, f"{tb1}-{tb2}")

    if tiebreak is not None:
        raise InvalidTiebreak(f"No tie-break is played in a {a}-{b} set")

    if high == GAMES_TO_WIN:
        if high - low < 2:
            raise InvalidScore(f"A set to {GAMES_TO_WIN} needs a 2 game lead: {a}-{b}")
        return SetScore(a, b)

    if high - low != 2:
        raise InvalidScore(f"Past {GAMES_TO_WIN} games the lead must be exactly 2: {a}-{b}")
    return SetScore(a, b)


def set_winner(team1_games: int, team2_games: int) -> Optional[int]:
    """Winning team of a stored result, None while the set has no winner."""
    if team1_games is None or team2_games is None or team1_games == team2_games:
        return None
    return 1 if team1_games > team2_games else 2


def set_points(games_won: int, won_set: bool) -> int:
    """
    Points a player earns from one set.

    One point per game won by their team plus one bonus point when the
    team won the set. A 4-4 tie-break set counts as 5-4.
    """
    return int(games_won) + (1 if won_set else 0)
