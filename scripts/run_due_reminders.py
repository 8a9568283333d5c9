#!/usr/bin/env python3
"""
Cron Runner Script for Due-Date Reminders

Queues one reminder per Masters record whose next calibration date, and per
Infusion Pump record whose return date, is exactly REMINDER_LOOKAHEAD_DAYS
(default 15) days away. The mail worker delivers them.

CRON CONFIGURATION:
-------------------
# Run every day at 09:00 Asia/Bangkok (02:00 UTC)
0 2 * * * /usr/bin/python3 /path/to/project/scripts/run_due_reminders.py >> /path/to/project/logs/cron.log 2>&1

REQUIRED ENVIRONMENT VARIABLES:
- DATABASE_URL
- ADMIN_EMAIL
- REMINDER_LOOKAHEAD_DAYS (optional, default: 15)
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from notifier.db import init_db, session_scope
from notifier.due_reminders import run_due_date_reminders


def main():
    try:
        init_db()
        with session_scope() as db:
            summary = run_due_date_reminders(db)

        print(
            f"REMINDERS: queued {summary['masters']} calibration and "
            f"{summary['infusion_pumps']} return reminder(s), {summary['failed']} failed"
        )
        sys.exit(1 if summary["failed"] else 0)

    except Exception as e:
        print(f"REMINDERS: unexpected error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
