"""
Due-Date Reminder Module

Daily scan that queues one reminder per record due exactly
REMINDER_LOOKAHEAD_DAYS days from today (local calendar day, 00:00:00 to
23:59:59.999999):
- Masters whose next calibration date (dueDate or next_cal) falls on that day
- Infusion Pump records whose return date falls on that day

A Masters record matched through both field names gets one reminder.
A failure on one record is logged and the scan moves on.
"""

from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from notifier.config import (
    INFUSION_PUMP_COLLECTION,
    INFUSION_PUMP_DUE_FIELD,
    INFUSION_PUMP_REMINDER_SUBJECT_TEMPLATE,
    INFUSION_PUMP_REMINDER_TITLE,
    MASTER_DUE_FIELDS,
    MASTER_REMINDER_SUBJECT_TEMPLATE,
    MASTER_REMINDER_TITLE,
    MASTERS_COLLECTION,
    REMINDER_LOOKAHEAD_DAYS,
)
from notifier.email_body_generator import generate_record_email_body
from notifier.event_sources import infusion_pump_meta, master_meta
from notifier.logger import get_logger
from notifier.mail_queue import enqueue_mail
from notifier.recipient_resolver import build_recipients
from notifier.repositories import RecordRepository
from notifier.timeutil import day_window, local_today

logger = get_logger(__name__)


def _queue_reminder(
    db: Session,
    record: Mapping[str, Any],
    subject: str,
    title: str,
    meta: Dict[str, Any],
    admin_email: Optional[str],
    today: date,
    **render_options: bool
) -> str:
    recipients = build_recipients(record, admin_email)
    return enqueue_mail(
        db,
        {
            "to": recipients["to"],
            "bcc": recipients["bcc"],
            "subject": subject,
            "html": generate_record_email_body(record, title, today=today, **render_options),
        },
        meta,
    )


def run_due_date_reminders(
    db: Session,
    now: Optional[datetime] = None,
    lookahead_days: Optional[int] = None,
    admin_email: Optional[str] = None
) -> Dict[str, int]:
    """
    Queue reminders for Masters and Infusion Pump records due in *lookahead_days* days.

    Args:
        db: Database session
        now: Reference time (default: current local time)
        lookahead_days: Days ahead to look (default: REMINDER_LOOKAHEAD_DAYS)
        admin_email: Audit address (default: ADMIN_EMAIL from config)

    Returns:
        Dictionary with counts 'masters', 'infusion_pumps' (reminders queued) and 'failed'
    """
    if lookahead_days is None:
        lookahead_days = REMINDER_LOOKAHEAD_DAYS

    start, end = day_window(lookahead_days, now)
    today = local_today(now)
    logger.info(f"Scanning for records due on {start.date().isoformat()} ({lookahead_days} days ahead)")

    summary = {"masters": 0, "infusion_pumps": 0, "failed": 0}
    records = RecordRepository(db)

    masters: Dict[str, Dict[str, Any]] = {}
    for field in MASTER_DUE_FIELDS:
        for doc_id, record in records.find_in_window(MASTERS_COLLECTION, field, start, end):
            masters[doc_id] = record

    master_subject = MASTER_REMINDER_SUBJECT_TEMPLATE.format(days=lookahead_days)
    for doc_id, record in masters.items():
        try:
            _queue_reminder(
                db, record, master_subject, MASTER_REMINDER_TITLE,
                master_meta(record), admin_email, today,
            )
            summary["masters"] += 1
        except Exception as e:
            db.rollback()
            summary["failed"] += 1
            logger.error(f"Failed to queue reminder for {MASTERS_COLLECTION}/{doc_id}: {str(e)}", exc_info=True)

    pumps = records.find_in_window(INFUSION_PUMP_COLLECTION, INFUSION_PUMP_DUE_FIELD, start, end)
    pump_subject = INFUSION_PUMP_REMINDER_SUBJECT_TEMPLATE.format(days=lookahead_days)
    for doc_id, record in pumps:
        try:
            _queue_reminder(
                db, record, pump_subject, INFUSION_PUMP_REMINDER_TITLE,
                infusion_pump_meta(record, include_dates=False), admin_email, today,
                hide_equipment_code=True, prefer_model=True,
            )
            summary["infusion_pumps"] += 1
        except Exception as e:
            db.rollback()
            summary["failed"] += 1
            logger.error(f"Failed to queue reminder for {INFUSION_PUMP_COLLECTION}/{doc_id}: {str(e)}", exc_info=True)

    logger.info(
        f"Queued {summary['masters']} calibration and {summary['infusion_pumps']} "
        f"return reminder(s); {summary['failed']} failed"
    )
    return summary
