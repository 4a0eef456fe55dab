#!/usr/bin/env python3
"""
Check the consistency of a round's groups and standings.

Checks, per group:
- exactly four players whose positions are 1, 2, 3 and 4
- exactly three sets
- stored points/positions equal a fresh computation over confirmed sets
  (open rounds only; a reopened round keeps raw points until it closes)

Usage:
    python scripts/verify_round_integrity.py --round-id 7
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy import select

from escalera.concurrency import round_integrity_hash
from escalera.config import settings
from escalera.db import GROUP_SIZE, SETS_PER_GROUP, Group, GroupPlayer, Match, Round, get_session
from escalera.scoring import ScoreRecalculationEngine

logger = logging.getLogger("verify_round_integrity")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Verify group structure and standings of a round.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--round-id", type=int, required=True, help="Round to verify.")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = ScoreRecalculationEngine(session_factory=None, settings=settings)
    problems: list[str] = []

    with get_session() as session:
        round_ = session.get(Round, args.round_id)
        if round_ is None:
            print(f"ERROR: round {args.round_id} not found")
            return 1

        groups = session.execute(
            select(Group).where(Group.round_id == round_.id).order_by(Group.level)
        ).scalars().all()
        for group in groups:
            players = session.execute(
                select(GroupPlayer).where(GroupPlayer.group_id == group.id)
            ).scalars().all()
            sets = session.execute(select(Match.id).where(Match.group_id == group.id)).all()

            if len(players) != GROUP_SIZE:
                problems.append(f"group {group.number}: {len(players)} players")
            positions = sorted(gp.position for gp in players)
            if positions != list(range(1, len(players) + 1)):
                problems.append(f"group {group.number}: positions {positions}")
            if len(sets) != SETS_PER_GROUP:
                problems.append(f"group {group.number}: {len(sets)} sets")

            if not round_.is_closed and players:
                stored = {gp.player_id: (gp.points, gp.position) for gp in players}
                fresh = {
                    s.player_id: (s.points, s.position)
                    for s in engine.compute(session, group.id).scores
                }
                if stored != fresh:
                    problems.append(f"group {group.number}: stored {stored} != computed {fresh}")

        digest = round_integrity_hash(session, round_.id)
        session.rollback()

    print(f"Round {round_.number} (id {round_.id}, closed={round_.is_closed})")
    print(f"Groups:          {len(groups)}")
    print(f"Integrity hash:  {digest}")
    if problems:
        print("-" * 60)
        for problem in problems:
            print(f"PROBLEM  {problem}")
        return 1
    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
