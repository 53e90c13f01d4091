#!/usr/bin/env python3
"""Recompute section counters, spot status and hour balances from reservations/subscriptions.
Reports drift; pass --fix to write the corrections.
Run from backend: poetry run python scripts/reconcile_counters.py [--fix]
"""
import argparse
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from tappark.db.session import SessionLocal
from tappark.services.reconcile_service import reconcile_all


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--fix", action="store_true", help="write corrected values")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    db = SessionLocal()
    try:
        report = reconcile_all(db, fix=args.fix)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()

    if report.clean:
        print("No drift: counters and balances match their source rows.")
        return
    for d in report.drifts:
        print(f"{d.entity:8} {d.entity_id:>6}  {d.field:18} stored={d.stored!r} expected={d.expected!r}")
    print(f"\n{len(report.drifts)} drifted value(s){' fixed' if args.fix else '; re-run with --fix to correct'}.")


if __name__ == "__main__":
    main()
