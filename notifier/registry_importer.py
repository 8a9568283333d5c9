"""
Device Registry Importer Module

This module keeps the device registry in sync with the Excel export:
1. Fetch the newest workbook under the imports/ prefix from S3 (read-only)
2. Read the MASTER sheet (or the first sheet) with pandas
3. Find the header row by looking for an equipment-code column
4. Upsert one registry entry per row that has an equipment code

CRITICAL SAFETY:
- S3 access is read-only: list_objects_v2 and download_file only
- Registry upserts only set the columns present in the row; nothing is deleted
"""

import os
import re
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import boto3
import pandas as pd
from sqlalchemy.orm import Session

from notifier.config import HEADER_SCAN_ROWS, IMPORT_S3_PREFIX, IMPORTS_DIR, REGISTRY_SHEET_NAME
from notifier.logger import get_logger
from notifier.repositories import DeviceRegistryRepository
from notifier.timeutil import LOCAL_TZ

logger = get_logger(__name__)

CODE_HEADER_RE = re.compile(r"^(equipment\s*code|eq\s*code|eqcode|code|รหัสอุปกรณ์|รหัส)$", re.IGNORECASE)

# Normalized header names (lower case, no spaces/underscores), in priority order
CODE_HEADERS = ("equipmentcode", "eqcode", "code", "รหัสอุปกรณ์", "รหัส")
PERFORM_HEADERS = ("performdate", "latestcal", "วันที่สอบเทียบล่าสุด")
DUE_HEADERS = ("duedate", "nextcal", "วันที่สอบเทียบครั้งถัดไป")
TEAM_HEADERS = ("team", "group", "ทีม")
LOCATION_HEADERS = ("location", "สถานที่ใช้งาน", "สถานที่")
NOTIFY_HEADERS = ("notifyemails", "notifyemail")
EQUIPMENT_HEADERS = ("equipment", "name", "type", "model")
BRAND_HEADERS = ("brand", "manufacturer")
SERIAL_HEADERS = ("serial", "sn")

# Excel serial day 0 (the 1900 leap-year bug is folded in)
EXCEL_EPOCH = datetime(1899, 12, 30)

_MONTHS = {"jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
           "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12}

_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})$")
_NAMED_MONTH_RE = re.compile(r"^(\d{1,2})[/\-\s]([A-Za-z]{3,})[/\-\s](\d{2,4})$")

_SAMPLE_MISSING_LIMIT = 10


# ============================================================================
# S3 fetch
# ============================================================================

def _get_s3_client():
    """
    Initialize boto3 S3 client.

    Explicit AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY are used when set,
    otherwise boto3's default credential chain applies.
    """
    aws_access_key = os.getenv('AWS_ACCESS_KEY_ID')
    aws_secret_key = os.getenv('AWS_SECRET_ACCESS_KEY')
    aws_region = os.getenv('AWS_REGION', 'us-east-1')

    if aws_access_key and aws_secret_key:
        return boto3.client(
            's3',
            aws_access_key_id=aws_access_key,
            aws_secret_access_key=aws_secret_key,
            region_name=aws_region
        )
    return boto3.client('s3', region_name=aws_region)


def fetch_latest_import_file(
    use_local_file: Optional[str] = None
) -> Tuple[bool, Optional[str], Optional[datetime], Optional[str]]:
    """
    Fetch the newest registry workbook from S3 or use a local file override.

    Args:
        use_local_file: Optional local file path; S3 is skipped entirely when given

    Returns:
        Tuple of (success, local_file_path, last_modified, error_message)

    Environment Variables Required (if use_local_file is None):
        IMPORT_S3_BUCKET: S3 bucket name
        IMPORT_S3_PREFIX: Key prefix (default: imports/)
    """
    try:
        if use_local_file:
            if not os.path.isfile(use_local_file):
                error_msg = f"Local file not found: {use_local_file}"
                logger.error(error_msg)
                return False, None, None, error_msg
            logger.info(f"Using local registry workbook: {use_local_file}")
            return True, use_local_file, None, None

        bucket_name = os.getenv('IMPORT_S3_BUCKET')
        if not bucket_name:
            error_msg = "IMPORT_S3_BUCKET environment variable is not set"
            logger.error(error_msg)
            return False, None, None, error_msg

        s3_client = _get_s3_client()
        paginator = s3_client.get_paginator('list_objects_v2')

        workbooks = []
        for page in paginator.paginate(Bucket=bucket_name, Prefix=IMPORT_S3_PREFIX):
            for obj in page.get('Contents', []):
                key = obj.get('Key', '')
                key_lower = key.lower()
                if not key_lower.endswith(('.xlsx', '.xls')):
                    continue
                if obj.get('Size', 0) == 0:
                    logger.debug(f"Skipping zero-byte file: {key}")
                    continue
                if any(pattern in key_lower for pattern in ['~$', '.tmp', '._']):
                    logger.debug(f"Skipping temp/hidden file: {key}")
                    continue
                workbooks.append(obj)

        if not workbooks:
            error_msg = f"No Excel files found in s3://{bucket_name}/{IMPORT_S3_PREFIX}"
            logger.error(error_msg)
            return False, None, None, error_msg

        latest = max(workbooks, key=lambda obj: obj['LastModified'])
        latest_key = latest['Key']
        logger.info(f"Latest registry workbook: {latest_key} (modified {latest['LastModified']})")

        input_dir = Path(IMPORTS_DIR)
        input_dir.mkdir(parents=True, exist_ok=True)
        local_file_path = input_dir / os.path.basename(latest_key)

        s3_client.download_file(Bucket=bucket_name, Key=latest_key, Filename=str(local_file_path))
        logger.info(f"File downloaded successfully: {local_file_path}")
        return True, str(local_file_path), latest['LastModified'], None

    except Exception as e:
        error_msg = f"Failed to fetch registry workbook from S3: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return False, None, None, error_msg


# ============================================================================
# Sheet parsing
# ============================================================================

def normalize_header(value: Any) -> str:
    return re.sub(r"[\s_]", "", str(value if value is not None else "")).lower()


def _first_value(row: Mapping[str, Any], headers: Sequence[str]) -> Any:
    for header in headers:
        value = row.get(header)
        if value is not None and str(value).strip() != "":
            return value
    return None


def parse_excel_date(value: Any) -> Optional[date]:
    """
    Parse an Excel cell into a date.

    Handles datetime cells, Excel serial numbers, DD/MM/YY(YY), DD-Mon-YY(YY),
    and anything else pandas can parse (day first).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, pd.Timestamp)):
        return None if pd.isna(value) else value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if pd.isna(value):
            return None
        return (EXCEL_EPOCH + timedelta(days=float(value))).date()

    text = str(value).strip()
    if not text:
        return None

    match = _NUMERIC_DATE_RE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        try:
            return date(year, month, day)
        except ValueError:
            return None

    match = _NAMED_MONTH_RE.match(text)
    if match:
        month = _MONTHS.get(match.group(2)[:3].lower())
        if month is not None:
            year = int(match.group(3))
            if year < 100:
                year += 2000
            try:
                return date(year, month, int(match.group(1)))
            except ValueError:
                return None

    parsed = pd.to_datetime(text, errors="coerce", dayfirst=True)
    if pd.isna(parsed):
        return None
    return parsed.date()


def read_registry_sheet(file_path: str) -> pd.DataFrame:
    """
    Read the registry sheet into a DataFrame keyed by the detected header row.

    The 1-based header row number is kept in ``df.attrs['header_row']``.

    Raises:
        ValueError: If the workbook cannot be opened
    """
    try:
        xls = pd.ExcelFile(file_path)
    except Exception as e:
        raise ValueError(f"Failed to open Excel file: {str(e)}")

    sheet_name = REGISTRY_SHEET_NAME if REGISTRY_SHEET_NAME in xls.sheet_names else xls.sheet_names[0]
    raw = pd.read_excel(xls, sheet_name=sheet_name, header=None, dtype=object)
    raw = raw.astype(object).where(raw.notna(), "")

    header_idx = 0
    for idx in range(min(HEADER_SCAN_ROWS, len(raw))):
        cells = [str(cell).strip() for cell in raw.iloc[idx].tolist()]
        if any(CODE_HEADER_RE.match(cell) for cell in cells):
            header_idx = idx
            break

    headers = [
        str(cell).strip() or f"COL_{position}"
        for position, cell in enumerate(raw.iloc[header_idx].tolist())
    ] if len(raw) else []

    body = raw.iloc[header_idx + 1:].copy()
    body.columns = headers
    blank = body.apply(lambda row: all(str(cell).strip() == "" for cell in row), axis=1)
    if len(body):
        body = body[~blank]

    body.attrs["header_row"] = header_idx + 1
    body.attrs["sheet_name"] = sheet_name
    logger.info(f"Registry sheet '{sheet_name}': header row {header_idx + 1}, {len(body)} data row(s)")
    return body


# ============================================================================
# Import
# ============================================================================

def _local_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=LOCAL_TZ)


def import_registry_file(
    db: Session,
    file_path: str,
    source_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Upsert device registry entries from a workbook and commit.

    Args:
        db: Database session
        file_path: Local path of the workbook
        source_path: Original location recorded on each entry (default: file_path)

    Returns:
        Dictionary with 'total_rows', 'imported', 'missing_code' and
        'sample_missing' (first rows without an equipment code)
    """
    df = read_registry_sheet(file_path)
    source_path = source_path or file_path
    registry = DeviceRegistryRepository(db)

    summary: Dict[str, Any] = {"total_rows": len(df), "imported": 0, "missing_code": 0, "sample_missing": []}

    for index, row in df.iterrows():
        values = {normalize_header(header): cell for header, cell in row.items()}

        code = str(_first_value(values, CODE_HEADERS) or "").strip()
        if not code:
            summary["missing_code"] += 1
            if len(summary["sample_missing"]) < _SAMPLE_MISSING_LIMIT:
                peek = str({key: cell for key, cell in row.items() if str(cell).strip()})[:120]
                summary["sample_missing"].append({"row": int(index) + 1, "peek": peek})
            continue

        fields: Dict[str, Any] = {
            "active": True,
            "source_excel_path": source_path,
            "source_excel_name": os.path.basename(source_path),
        }

        perform = parse_excel_date(_first_value(values, PERFORM_HEADERS))
        if perform:
            fields["perform_date"] = _local_midnight(perform)
        due = parse_excel_date(_first_value(values, DUE_HEADERS))
        if due:
            fields["due_date"] = _local_midnight(due)

        for column, headers in (
            ("team", TEAM_HEADERS),
            ("location", LOCATION_HEADERS),
            ("notify_emails", NOTIFY_HEADERS),
            ("equipment", EQUIPMENT_HEADERS),
            ("brand", BRAND_HEADERS),
            ("serial", SERIAL_HEADERS),
        ):
            value = _first_value(values, headers)
            if value is not None:
                fields[column] = str(value).strip()

        registry.upsert(code, **fields)
        summary["imported"] += 1

    db.commit()

    logger.info(
        f"Registry import summary: totalRows={summary['total_rows']}, "
        f"imported={summary['imported']}, missingCode={summary['missing_code']}"
    )
    if summary["sample_missing"]:
        logger.warning(f"Rows without Equipment Code (first {_SAMPLE_MISSING_LIMIT}): {summary['sample_missing']}")
    return summary
