#!/usr/bin/env python3
"""
Send appointment reminders and retry unsent booking confirmations.

Meant to run from cron, e.g. reminders daily at 08:00 and confirmations
every 30 minutes:

    python scripts/send_reminders.py reminders
    python scripts/send_reminders.py reminders --date 2026-03-02
    python scripts/send_reminders.py confirmations
"""

import argparse
import asyncio
import sys
from datetime import date

import dotenv

from clinic_backend.config import get_settings
from clinic_backend.database import AsyncSessionLocal, engine
from clinic_backend.dependencies import get_store, get_workflow_service
from clinic_backend.middleware.logging import configure_logging
from clinic_backend.services.notification_service import build_notifier

dotenv.load_dotenv()


async def run(job: str, for_date: date | None = None) -> int:
    """Run one email job and report the ids that failed."""
    settings = get_settings()
    store = get_store(AsyncSessionLocal, settings)
    service = get_workflow_service(store, build_notifier(settings), settings)

    try:
        if job == "reminders":
            result = await service.send_reminders(for_date=for_date)
        else:
            result = await service.resend_confirmations()
    finally:
        await engine.dispose()

    print(f"✓ {job}: {len(result.sent_ids)} sent, {len(result.failed_ids)} failed")
    for warning in result.warnings:
        print(f"  ✗ {warning}", file=sys.stderr)
    return 1 if result.failed_ids else 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Send scheduled appointment emails")
    parser.add_argument("job", choices=["reminders", "confirmations"])
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Appointment date to remind about (default tomorrow)",
    )
    args = parser.parse_args()

    configure_logging()
    return asyncio.run(run(args.job, args.date))


if __name__ == "__main__":
    sys.exit(main())
