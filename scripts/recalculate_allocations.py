#!/usr/bin/env python3
"""
Recalculate Incentive Allocations

Recomputes incentive allocations for stored contributions against the stored
policy versions. Runs as a dry run unless --write is given.

Usage:
    python scripts/recalculate_allocations.py [--status=approved] [--limit=N]
        [--date-field=approved_at] [--as-of=YYYY-MM-DD] [--write] [--export=FILE]
"""

import argparse
import logging
import os
import sys
from datetime import date

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("research_incentives.recalculate")

from research_incentives.allocation_export import generate_allocation_workbook
from research_incentives.contribution_records import load_contributions, save_allocations
from research_incentives.errors import IncentiveError
from research_incentives.incentive_engine import calculate_incentive
from research_incentives.incentive_types import CalculationStatus
from research_incentives.policy_store import load_policies
from research_incentives.settings import get_currency_unit, get_points_unit
from research_incentives.supabase_client import get_supabase


def recalculate(supabase, policies, records, as_of=None, write=False):
    """
    Recalculate each (contribution, reference_date) pair.

    Returns:
        (calculations, counts). Contributions whose author set or stored
        policies are rejected by the engine are counted and skipped.
    """
    calculations = []
    counts = {"computed": 0, "follow_up": 0, "rejected": 0, "skipped": 0, "written": 0}

    for contribution, reference_date in records:
        reference_date = reference_date or as_of
        if reference_date is None:
            logger.warning(f"Contribution {contribution.contribution_id}: no reference date, skipped")
            counts["skipped"] += 1
            continue

        try:
            calculation = calculate_incentive(
                contribution,
                policies,
                reference_date,
                currency_unit=get_currency_unit(),
                points_unit=get_points_unit(),
            )
        except IncentiveError as e:
            logger.error(f"Contribution {contribution.contribution_id}: {e.code}: {e.message}")
            counts["rejected"] += 1
            continue

        calculations.append(calculation)
        if calculation.status == CalculationStatus.COMPUTED:
            counts["computed"] += 1
        else:
            counts["follow_up"] += 1

        if write:
            counts["written"] += save_allocations(supabase, calculation)

    return calculations, counts


def main(argv=None):
    """Main entry point for the recalculation run."""
    parser = argparse.ArgumentParser(description="Recalculate research incentive allocations")
    parser.add_argument(
        "--status",
        type=str,
        default="approved",
        help="Contribution status to recalculate (default: approved)"
    )
    parser.add_argument(
        "--limit", "-n",
        type=int,
        default=None,
        help="Maximum number of contributions to process"
    )
    parser.add_argument(
        "--date-field",
        type=str,
        default=os.environ.get("INCENTIVE_REFERENCE_DATE_FIELD", "approved_at"),
        help="Contribution column used as the policy reference date (default: approved_at)"
    )
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Reference date for contributions that carry none (default: skip them)"
    )
    parser.add_argument(
        "--write",
        action="store_true",
        help="Persist recalculated allocations (default: dry run)"
    )
    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Write the reconciliation workbook to this path"
    )

    args = parser.parse_args(argv)

    supabase = get_supabase()
    if supabase is None:
        logger.error("Supabase is not configured; set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        sys.exit(1)

    policies = load_policies(supabase)
    records = load_contributions(supabase, status=args.status, limit=args.limit, date_field=args.date_field)
    logger.info(f"Loaded {len(policies)} policy versions and {len(records)} contributions")

    calculations, counts = recalculate(supabase, policies, records, as_of=args.as_of, write=args.write)

    if args.export:
        with open(args.export, "wb") as f:
            f.write(generate_allocation_workbook(calculations))
        logger.info(f"Workbook written to {args.export}")

    mode = "write" if args.write else "dry run"
    logger.info(
        f"Done ({mode}): {counts['computed']} computed, {counts['follow_up']} need follow-up, "
        f"{counts['rejected']} rejected, {counts['skipped']} skipped, {counts['written']} allocation rows written"
    )

    if counts["rejected"]:
        sys.exit(2)


if __name__ == "__main__":
    main()
