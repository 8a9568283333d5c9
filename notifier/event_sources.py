"""
Record-Created Event Sources

One handler per record collection, called when a record is created:
- Masters: enrich from the device registry, then notify
- Infusion Pump: notify with the equipment code hidden and Model preferred over Type
- Cleaning Supplies: notify with the equipment code hidden

Each handler builds the recipients and the HTML body and enqueues one mail job.
Registry enrichment is best-effort: a failure is logged and the notification
goes out with the record's own fields.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from notifier.config import (
    CLEANING_SUPPLIES_COLLECTION,
    CLEANING_SUPPLIES_CREATED_SUBJECT,
    INFUSION_PUMP_COLLECTION,
    INFUSION_PUMP_CREATED_SUBJECT,
    MASTER_CREATED_SUBJECT,
    MASTERS_COLLECTION,
)
from notifier.email_body_generator import generate_record_email_body
from notifier.fields import (
    EQUIPMENT_CODE_KEYS,
    LATEST_CAL_KEYS,
    LOCATION_KEYS,
    NEXT_CAL_KEYS,
    NOTIFY_EMAIL_KEYS,
    TEAM_KEYS,
    value_of,
)
from notifier.logger import get_logger
from notifier.mail_queue import enqueue_mail
from notifier.recipient_resolver import build_recipients
from notifier.repositories import DeviceRegistryRepository, RecordRepository
from notifier.timeutil import to_datetime

logger = get_logger(__name__)


def master_meta(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Observability context for a Masters notification."""
    return {
        "equipmentCode": value_of(record, *EQUIPMENT_CODE_KEYS) or "-",
        "location": value_of(record, *LOCATION_KEYS) or "",
        "performDate": value_of(record, *LATEST_CAL_KEYS),
        "dueDate": value_of(record, *NEXT_CAL_KEYS),
    }


def infusion_pump_meta(record: Mapping[str, Any], include_dates: bool = True) -> Dict[str, Any]:
    meta: Dict[str, Any] = {
        "equipmentCode": "-",
        "location": value_of(record, *LOCATION_KEYS) or "",
    }
    if include_dates:
        meta["performDate"] = value_of(record, "borrow_date")
        meta["dueDate"] = value_of(record, "return_date")
    return meta


def registry_enrichment(record: Mapping[str, Any], entry: Any) -> Dict[str, Any]:
    """
    Fields a registry entry can contribute to a record.

    Only semantics the record lacks are filled in; the record's own values win.
    """
    enrich: Dict[str, Any] = {}
    if entry is None:
        return enrich

    perform_date = to_datetime(entry.perform_date)
    due_date = to_datetime(entry.due_date)

    if perform_date is not None and value_of(record, *LATEST_CAL_KEYS) is None:
        enrich["performDate"] = perform_date
    if due_date is not None and value_of(record, *NEXT_CAL_KEYS) is None:
        enrich["dueDate"] = due_date
    if entry.team and value_of(record, *TEAM_KEYS) is None:
        enrich["Team"] = entry.team
    if entry.equipment_code and value_of(record, *EQUIPMENT_CODE_KEYS) is None:
        enrich["EquipmentCode"] = entry.equipment_code
    if entry.location and value_of(record, *LOCATION_KEYS) is None:
        enrich["Location"] = entry.location
    if entry.notify_emails and value_of(record, *NOTIFY_EMAIL_KEYS) is None:
        enrich["notifyEmails"] = entry.notify_emails
    return enrich


def enrich_master_record(db: Session, doc_id: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge registry data into a Masters record and persist it back.

    Returns:
        The fields that were merged (empty when nothing was found or on failure)
    """
    code = value_of(record, *EQUIPMENT_CODE_KEYS)
    code = str(code).strip() if code is not None else ""
    if not code:
        return {}

    try:
        entry = DeviceRegistryRepository(db).get(code)
        enrich = registry_enrichment(record, entry)
        if enrich:
            RecordRepository(db).merge(MASTERS_COLLECTION, doc_id, enrich)
            db.commit()
            logger.info(f"Enriched {MASTERS_COLLECTION}/{doc_id} with {sorted(enrich)}")
        return enrich
    except Exception as e:
        db.rollback()
        logger.error(f"Registry enrichment failed for {MASTERS_COLLECTION}/{doc_id}: {str(e)}", exc_info=True)
        return {}


def _load(db: Session, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    record = RecordRepository(db).load(collection, doc_id)
    if record is None:
        logger.warning(f"Record {collection}/{doc_id} not found. No notification queued.")
    return record


def on_master_created(db: Session, doc_id: str, admin_email: Optional[str] = None) -> Optional[str]:
    record = _load(db, MASTERS_COLLECTION, doc_id)
    if record is None:
        return None

    record.update(enrich_master_record(db, doc_id, record))
    recipients = build_recipients(record, admin_email)

    subject = MASTER_CREATED_SUBJECT
    return enqueue_mail(
        db,
        {
            "to": recipients["to"],
            "bcc": recipients["bcc"],
            "subject": subject,
            "html": generate_record_email_body(record, subject),
        },
        master_meta(record),
    )


def on_infusion_pump_created(db: Session, doc_id: str, admin_email: Optional[str] = None) -> Optional[str]:
    record = _load(db, INFUSION_PUMP_COLLECTION, doc_id)
    if record is None:
        return None

    recipients = build_recipients(record, admin_email)
    subject = INFUSION_PUMP_CREATED_SUBJECT
    return enqueue_mail(
        db,
        {
            "to": recipients["to"],
            "bcc": recipients["bcc"],
            "subject": subject,
            "html": generate_record_email_body(record, subject, hide_equipment_code=True, prefer_model=True),
        },
        infusion_pump_meta(record),
    )


def on_cleaning_supplies_created(db: Session, doc_id: str, admin_email: Optional[str] = None) -> Optional[str]:
    record = _load(db, CLEANING_SUPPLIES_COLLECTION, doc_id)
    if record is None:
        return None

    recipients = build_recipients(record, admin_email)
    subject = CLEANING_SUPPLIES_CREATED_SUBJECT
    return enqueue_mail(
        db,
        {
            "to": recipients["to"],
            "bcc": recipients["bcc"],
            "subject": subject,
            "html": generate_record_email_body(record, subject, hide_equipment_code=True),
        },
        {
            "equipmentCode": "-",
            "location": value_of(record, *LOCATION_KEYS) or "",
        },
    )


RECORD_CREATED_HANDLERS: Dict[str, Callable[..., Optional[str]]] = {
    MASTERS_COLLECTION: on_master_created,
    INFUSION_PUMP_COLLECTION: on_infusion_pump_created,
    CLEANING_SUPPLIES_COLLECTION: on_cleaning_supplies_created,
}


def handle_record_created(
    db: Session,
    collection: str,
    doc_id: str,
    admin_email: Optional[str] = None
) -> Optional[str]:
    """
    Dispatch a record-created event to the handler of its collection.

    Returns:
        The queued job id, or None when no notification was queued
    """
    handler = RECORD_CREATED_HANDLERS.get(collection)
    if handler is None:
        logger.warning(f"No record-created handler for collection '{collection}'")
        return None
    return handler(db, doc_id, admin_email=admin_email)


def create_record(
    db: Session,
    collection: str,
    data: Mapping[str, Any],
    doc_id: Optional[str] = None,
    admin_email: Optional[str] = None
) -> Tuple[str, Optional[str]]:
    """
    Store a new record and fire its record-created handler.

    Returns:
        Tuple of (doc_id, job_id or None)
    """
    doc_id = RecordRepository(db).add(collection, data, doc_id=doc_id)
    db.commit()
    logger.info(f"Created record {collection}/{doc_id}")
    return doc_id, handle_record_created(db, collection, doc_id, admin_email=admin_email)
