"""
Mail job id generator.

Ids read like ``19-Oct-2026-14.05-Lab 2-EQ-001-3FA29C01B7``: local time to the
minute (no colons), location, upper-cased equipment code and a random hex
suffix. The suffix is the only collision defense; the store is never queried.
"""

import re
import secrets
import unicodedata
from datetime import datetime
from typing import Any, Mapping, Optional

from notifier.config import JOB_ID_RANDOM_BYTES
from notifier.timeutil import local_now, to_datetime

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_WHITESPACE = re.compile(r"\s+")
_PATH_UNSAFE = re.compile(r"[/#?\[\]\\]+")


def clean_token(value: Any, keep_spaces: bool = True) -> str:
    text = unicodedata.normalize("NFKC", "" if value is None else str(value))
    text = _WHITESPACE.sub(" " if keep_spaces else "", text)
    return _PATH_UNSAFE.sub("-", text).strip()


def make_job_id(meta: Optional[Mapping[str, Any]] = None, now: Optional[datetime] = None) -> str:
    meta = meta or {}
    moment = to_datetime(now) if now is not None else local_now()
    date_part = (
        f"{moment.day:02d}-{_MONTHS[moment.month - 1]}-{moment.year}"
        f"-{moment.hour:02d}.{moment.minute:02d}"
    )

    place = clean_token(meta.get("location") or meta.get("Location") or "UNKNOWN") or "UNKNOWN"
    code = meta.get("equipmentCode") or meta.get("EquipmentCode") or "NO-CODE"
    code = clean_token(str(code).upper(), keep_spaces=False) or "NO-CODE"

    suffix = secrets.token_hex(JOB_ID_RANDOM_BYTES).upper()
    return f"{date_part}-{place}-{code}-{suffix}"
