"""Retry pending external calendar writes from the sync outbox.

Usage:
    python -m booking_engine.run_calendar_sync [--tenant TENANT_ID] [--limit N]
"""
import argparse
import sys

from booking_engine.core.logging_config import configure_logging
from booking_engine.database import SessionLocal
from booking_engine.external_calendar.google import get_calendar_gateway
from booking_engine.external_calendar.sync import process_pending_tasks


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--tenant', help='Only process tasks of this tenant.')
    parser.add_argument('--limit', type=int, default=50, help='Maximum tasks to attempt.')
    args = parser.parse_args(argv)

    configure_logging()
    db = SessionLocal()
    try:
        report = process_pending_tasks(db, get_calendar_gateway(), tenant_id=args.tenant, limit=args.limit)
    finally:
        db.close()

    print(f"done={len(report.done)} retrying={len(report.retrying)} failed={len(report.failed)}")
    if report.failed:
        print("Gave up on tasks:", report.failed, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
