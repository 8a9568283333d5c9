"""
Record Field Lookup Module

Inventory records come from several collections and several generations of
spreadsheets, so one semantic field can live under different keys
(e.g. ``dueDate``, ``DueDate`` or ``next_cal``). Every lookup goes through an
ordered list of candidate keys and takes the first present, non-blank value.
"""

import re
from typing import Any, Iterable, List, Mapping, Optional

EQUIPMENT_CODE_KEYS = (
    "equipmentCode",
    "EquipmentCode",
    "Equipment Code",
    "equipment_code",
    "EQCode",
    "eq_code",
    "Code",
    "code",
)
SERIAL_KEYS = ("serial", "Serial", "SerialNo", "SN", "sn", "Serial No")
LATEST_CAL_KEYS = ("performDate", "PerformDate", "latest_cal", "LatestCal")
NEXT_CAL_KEYS = ("dueDate", "DueDate", "next_cal", "NextCal")
WITHDRAW_DATE_KEYS = ("withdraw_date", "issued_date", "issuedAt", "createdAt", "created_at")
RECIPIENT_EMAIL_KEYS = ("BorrowerEmail", "borrowerEmail", "borrower_email")
NOTIFY_EMAIL_KEYS = ("notifyEmails", "NotifyEmails", "notify_emails")
TEAM_KEYS = ("Team", "team")
LOCATION_KEYS = ("Location", "location")

# Keys holding points in time; normalized once when a record is loaded
DATE_KEYS = (
    LATEST_CAL_KEYS
    + NEXT_CAL_KEYS
    + WITHDRAW_DATE_KEYS
    + ("borrow_date", "return_date", "timestamp")
)

_ADDRESS_SEPARATORS = re.compile(r"[;,]")


def is_blank(value: Any) -> bool:
    """True for None and for values whose string form is empty or whitespace."""
    return value is None or str(value).strip() == ""


def value_of(record: Optional[Mapping[str, Any]], *keys: str) -> Any:
    """
    Return the first present, non-blank value among *keys*.

    Args:
        record: Record mapping (may be None)
        *keys: Candidate keys in priority order

    Returns:
        The raw value, or None when no candidate holds a value
    """
    if not record:
        return None
    for key in keys:
        value = record.get(key)
        if not is_blank(value):
            return value
    return None


def split_addresses(value: Any) -> List[str]:
    """
    Turn a notify-list value into a list of trimmed addresses.

    Accepts a list/tuple of addresses or a single string separated by ``,`` or ``;``.
    """
    if isinstance(value, (list, tuple, set)):
        items: Iterable[Any] = value
    elif is_blank(value):
        return []
    else:
        items = _ADDRESS_SEPARATORS.split(str(value))
    return [str(item).strip() for item in items if not is_blank(item)]
