#!/usr/bin/env python3
"""
Recalculate group standings from confirmed results.

Recalculate one group:
    python scripts/recalculate_group_points.py --group-id 42

Recalculate every group of an open round:
    python scripts/recalculate_group_points.py --round-id 7

Dry run (print the new standings without writing anything):
    python scripts/recalculate_group_points.py --round-id 7 --dry-run
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from time import perf_counter

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy import select

from escalera.config import settings
from escalera.db import Group, Round, get_session
from escalera.errors import LadderError
from escalera.scoring import ScoreRecalculationEngine

logger = logging.getLogger("recalculate_group_points")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recalculate group points, streaks and positions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--group-id", type=int, help="Group to recalculate.")
    target.add_argument("--round-id", type=int, help="Recalculate every group of this round.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute standings but do not write to the database.",
    )
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = ScoreRecalculationEngine(session_factory=None, settings=settings)
    t_start = perf_counter()

    try:
        with get_session() as session:
            if args.group_id is not None:
                group_ids = [args.group_id]
            else:
                round_ = session.get(Round, args.round_id)
                if round_ is None:
                    print(f"ERROR: round {args.round_id} not found")
                    return 1
                if round_.is_closed:
                    print(f"ERROR: round {round_.number} is closed; reopen it first")
                    return 1
                group_ids = list(
                    session.execute(
                        select(Group.id).where(Group.round_id == round_.id).order_by(Group.level)
                    ).scalars()
                )

            for group_id in group_ids:
                if args.dry_run:
                    result = engine.compute(session, group_id)
                else:
                    result = engine.recalculate(session, group_id)
                print(result.summary())

            if args.dry_run:
                session.rollback()
                print("(dry run - nothing written)")
    except LadderError as exc:
        print(f"ERROR: {exc.code}: {exc.detail}")
        return 1

    print("-" * 60)
    print(f"Groups:   {len(group_ids)}")
    print(f"Elapsed:  {perf_counter() - t_start:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
