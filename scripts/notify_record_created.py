#!/usr/bin/env python3
"""
Fire the record-created notification for an existing record.

Used by whatever writes the record (the loan form backend, a manual fix-up)
once the insert has committed:

    python scripts/notify_record_created.py Masters 7f3a9c0e2b
    python scripts/notify_record_created.py "Infusion Pump" 1d22e0
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from notifier.db import init_db, session_scope
from notifier.event_sources import handle_record_created


def main():
    if len(sys.argv) != 3:
        print("Usage: notify_record_created.py <collection> <doc_id>")
        sys.exit(2)

    collection, doc_id = sys.argv[1], sys.argv[2]
    try:
        init_db()
        with session_scope() as db:
            job_id = handle_record_created(db, collection, doc_id)

        if job_id is None:
            print(f"NOTIFY: no notification queued for {collection}/{doc_id}")
            sys.exit(1)
        print(f"NOTIFY: queued mail job {job_id}")
        sys.exit(0)

    except Exception as e:
        print(f"NOTIFY: unexpected error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
