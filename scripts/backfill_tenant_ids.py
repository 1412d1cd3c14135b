#!/usr/bin/env python3
"""Attribute every tenant-scoped row to a tenant, or quarantine it (idempotent).

Runs the same reconciliation pass as POST /api/v1/super/debug/tenantid/backfill,
without HTTP. Apply mode is refused unless BACKFILL_TENANT_IDS_ALLOWED=true.

Usage:
    python scripts/backfill_tenant_ids.py            # dry run
    BACKFILL_TENANT_IDS_ALLOWED=true python scripts/backfill_tenant_ids.py --apply
"""

import argparse
import sys

sys.path.insert(0, ".")

from flask import current_app

from tenantguard import create_app
from tenantguard.core.exceptions import ForbiddenError
from tenantguard.services.reconciliation_service import APPLY, SCAN, run_reconciliation
from tenantguard.services.safety_gate import CLI_BACKFILL_APPLY_GATE, GateContext, flags_from_config


def backfill_tenant_ids(*, apply: bool = False) -> dict:
    """Run one pass inside the active app context and print the per-type table."""
    if apply:
        CLI_BACKFILL_APPLY_GATE.check(GateContext(flags=flags_from_config(current_app.config)))

    report = run_reconciliation(APPLY if apply else SCAN)

    print(f"[INFO] mode={report['mode']} quarantine_tenant_id={report['quarantine_tenant_id']}")
    print(f"{'type':<8} {'missing':>8} {'inferred':>9} {'quarantined':>12} {'writes':>7} {'skipped':>8} {'errors':>7}")
    for key in report["order"]:
        row = report["per_type"][key]
        print(
            f"{key:<8} {row['total_missing']:>8} {row['inferred_count']:>9} "
            f"{row['quarantined_count']:>12} {row['writes']:>7} {row['skipped']:>8} {row['errors']:>7}"
        )
        if row["sample_ambiguous_ids"]:
            print(f"         ambiguous ids: {row['sample_ambiguous_ids']}")

    totals = report["totals"]
    print(
        "[SUMMARY] "
        f"mode={report['mode']} "
        f"missing={totals['total_missing']} "
        f"inferred={totals['inferred_count']} "
        f"quarantined={totals['quarantined_count']} "
        f"writes={totals['writes']} "
        f"errors={totals['errors']}"
    )
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Backfill missing tenant ids; unresolvable rows go to the quarantine tenant."
    )
    parser.add_argument("--apply", action="store_true", help="Persist changes (default is a dry run)")
    args = parser.parse_args(argv)

    if not args.apply:
        print("[INFO] No --apply given; running a dry run")

    app = create_app()
    with app.app_context():
        try:
            result = backfill_tenant_ids(apply=args.apply)
        except ForbiddenError as exc:
            print(f"[ERROR] {exc}")
            return 2

    if args.apply and result["totals"]["errors"] > 0:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
