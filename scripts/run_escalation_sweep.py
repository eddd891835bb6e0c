"""
Run one escalation sweep. Meant to be triggered by cron or a scheduler.

Usage:
  python scripts/run_escalation_sweep.py                    # configured threshold
  python scripts/run_escalation_sweep.py --threshold-hours 48
  python scripts/run_escalation_sweep.py --dry-run          # only count stalled requests

Exit code is 1 when any request failed to escalate.
"""
import argparse
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.escalation_service import stalled_count, sweep_once
from app.utils.datetime_utils import now_utc


def main() -> int:
    parser = argparse.ArgumentParser(description="Escalate absence requests stalled beyond the threshold")
    parser.add_argument("--threshold-hours", type=int, default=settings.ESCALATION_THRESHOLD_HOURS)
    parser.add_argument("--reason", default=settings.ESCALATION_REASON)
    parser.add_argument("--dry-run", action="store_true", help="Report how many requests would be escalated")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL for this run")
    args = parser.parse_args()

    if args.threshold_hours <= 0:
        parser.error("--threshold-hours must be positive")

    setup_logging(args.log_level)
    threshold = timedelta(hours=args.threshold_hours)
    now = now_utc()

    db = SessionLocal()
    try:
        if args.dry_run:
            print(f"Stalled requests: {stalled_count(db, now, threshold)}")
            return 0

        report = sweep_once(db, now, threshold, args.reason)
        print(f"Escalated: {len(report.escalated)}, skipped: {len(report.skipped)}, failed: {len(report.failures)}")
        for failure in report.failures:
            print(f"  request {failure.request_id}: {failure.error_type}: {failure.message}")
        return 1 if report.failures else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
