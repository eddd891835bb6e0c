"""
Hand pending outbox events to the collaborator feed.

Prints each undispatched event as one JSON line on stdout (notifications,
payroll incidences, shift exceptions) and marks the batch dispatched.

Usage:
  python scripts/dispatch_outbox.py               # up to 100 events
  python scripts/dispatch_outbox.py --limit 500
  python scripts/dispatch_outbox.py --peek        # print without marking
"""
import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.outbox_service import list_undispatched, mark_dispatched
from app.utils.datetime_utils import iso_8601_utc


def main() -> int:
    parser = argparse.ArgumentParser(description="Dispatch pending outbox events as JSON lines")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--peek", action="store_true", help="Print events but leave them pending")
    args = parser.parse_args()

    setup_logging()
    db = SessionLocal()
    try:
        events = list_undispatched(db, limit=args.limit)
        for event in events:
            print(json.dumps({
                "id": event.id,
                "event_type": event.event_type,
                "request_id": event.request_id,
                "created_at": iso_8601_utc(event.created_at),
                "payload": event.payload,
            }))
        if not args.peek:
            marked = mark_dispatched(db, [event.id for event in events])
            print(f"Dispatched {marked} event(s)", file=sys.stderr)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
