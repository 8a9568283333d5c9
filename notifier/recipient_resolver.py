"""
Recipient Resolver Module

This module derives the recipients of a record notification:
- To: the record's explicit recipient address, or the audit address
- Bcc: every notify-list address on the record plus the audit address, minus To

Deduplication is case-insensitive; the first spelling seen is kept.
Addresses are not validated here - a bad address fails at delivery time and
is retried like any other delivery failure.

No PII logging: addresses are only ever logged as counts.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from notifier.config import ADMIN_EMAIL
from notifier.fields import (
    NOTIFY_EMAIL_KEYS,
    RECIPIENT_EMAIL_KEYS,
    is_blank,
    split_addresses,
    value_of,
)
from notifier.logger import get_logger

logger = get_logger(__name__)


def build_recipients(
    record: Optional[Mapping[str, Any]],
    admin_email: Optional[str] = None
) -> Dict[str, Union[str, List[str]]]:
    """
    Build the To address and Bcc list for a record notification.

    Args:
        record: Record mapping (loosely typed)
        admin_email: Audit address (default: ADMIN_EMAIL from config)

    Returns:
        Dictionary with keys 'to' (str) and 'bcc' (list of str, never contains 'to')
    """
    if admin_email is None:
        admin_email = ADMIN_EMAIL
    admin_email = str(admin_email or "").strip()
    record = record or {}

    explicit = value_of(record, *RECIPIENT_EMAIL_KEYS)
    to = str(explicit).strip() if explicit is not None else admin_email

    if not to:
        logger.warning("Record has no recipient address and ADMIN_EMAIL is empty")

    candidates: List[str] = []
    for key in NOTIFY_EMAIL_KEYS:
        candidates.extend(split_addresses(record.get(key)))
    # Audit copy, always
    candidates.append(admin_email)

    seen = {to.lower()}
    bcc: List[str] = []
    for address in candidates:
        if is_blank(address):
            continue
        folded = address.lower()
        if folded in seen:
            continue
        seen.add(folded)
        bcc.append(address)

    logger.debug(f"Resolved recipients: to=1, bcc={len(bcc)}")
    return {"to": to, "bcc": bcc}
