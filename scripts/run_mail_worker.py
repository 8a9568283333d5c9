#!/usr/bin/env python3
"""
Cron Runner Script for the Mail Dispatch Worker

Drains the mail queue once, or keeps polling on a fixed interval with --interval.

CRON CONFIGURATION:
-------------------
# Run every minute
* * * * * /usr/bin/python3 /path/to/project/scripts/run_mail_worker.py >> /path/to/project/logs/cron.log 2>&1

Overlapping runs are safe: a run that cannot take the worker lease exits
without touching the queue.

REQUIRED ENVIRONMENT VARIABLES:
- DATABASE_URL
- SMTP_SERVER
- SMTP_USER
- SMTP_PASSWORD
- SMTP_PORT (optional, default: 587)

LOGGING:
--------
- Cron output: logs/cron.log (stdout/stderr from this script)
- Application logs: logs/notifier.log (from notifier modules)
"""

import argparse
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from notifier.db import get_session_factory, init_db, session_scope
from notifier.mail_worker import run_mail_worker, run_mail_worker_forever


def main():
    parser = argparse.ArgumentParser(description="Deliver queued notification emails")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Keep polling every INTERVAL seconds instead of running once",
    )
    args = parser.parse_args()

    try:
        init_db()

        if args.interval is not None:
            print(f"MAIL WORKER: polling every {args.interval} seconds")
            run_mail_worker_forever(get_session_factory(), interval_seconds=args.interval)
            sys.exit(0)

        with session_scope() as db:
            summary = run_mail_worker(db)

        if summary["skipped"]:
            print("MAIL WORKER: another runner holds the lease, skipped")
        else:
            print(
                f"MAIL WORKER: {summary['sent']} sent, {summary['failed']} failed, "
                f"{summary['dropped']} dropped"
            )
        sys.exit(0)

    except KeyboardInterrupt:
        print("MAIL WORKER: stopped")
        sys.exit(0)
    except Exception as e:
        print(f"MAIL WORKER: unexpected error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
