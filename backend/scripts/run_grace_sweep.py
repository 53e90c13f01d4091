#!/usr/bin/env python3
"""Run one grace-period sweep now (same code path as the scheduler tick) and print the result.
Run from backend: poetry run python scripts/run_grace_sweep.py
"""
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from tappark.scheduler.grace_period_job import get_grace_job_heartbeat, get_sweeper


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    result = get_sweeper().run_sweep()
    print(
        f"found={result.found} expired={result.expired} failed={result.failed} raced={result.raced} "
        f"ids={result.expired_ids}"
    )
    print("heartbeat:", get_grace_job_heartbeat())
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
