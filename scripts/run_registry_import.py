#!/usr/bin/env python3
"""
Runner Script for the Device Registry Import

Fetches the newest workbook under IMPORT_S3_PREFIX and upserts the device
registry from it. Pass a local path to skip S3:

    python scripts/run_registry_import.py data/master_devices.xlsx

REQUIRED ENVIRONMENT VARIABLES (S3 mode):
- AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY (or another boto3 credential source)
- AWS_REGION (default: us-east-1)
- IMPORT_S3_BUCKET
- IMPORT_S3_PREFIX (optional, default: imports/)
- DATABASE_URL
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from notifier.db import init_db, session_scope
from notifier.registry_importer import fetch_latest_import_file, import_registry_file


def main():
    local_file = sys.argv[1] if len(sys.argv) > 1 else None

    try:
        success, file_path, _, error = fetch_latest_import_file(use_local_file=local_file)
        if not success:
            print(f"IMPORT: failed to fetch workbook: {error}")
            sys.exit(1)

        init_db()
        with session_scope() as db:
            summary = import_registry_file(db, file_path)

        print(
            f"IMPORT: {summary['imported']} imported of {summary['total_rows']} rows, "
            f"{summary['missing_code']} without equipment code"
        )
        sys.exit(0)

    except Exception as e:
        print(f"IMPORT: unexpected error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
