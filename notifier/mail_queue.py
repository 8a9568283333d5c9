"""
Mail Queue Module (enqueue side)

Persists a pending mail job for the dispatch worker to deliver later.
Enqueue is a single insert: no read-before-write and no uniqueness check
beyond the random suffix of the generated id.
"""

from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from notifier.job_keys import make_job_id
from notifier.logger import get_logger
from notifier.repositories import MailJobRepository

logger = get_logger(__name__)

_EMPTY_COLLECTIONS = (list, tuple, set, frozenset, dict)


def strip_empty_fields(message: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Drop every field that is None or an empty collection.

    Sets and tuples are stored as lists.
    """
    safe: Dict[str, Any] = {}
    for key, value in (message or {}).items():
        if value is None:
            continue
        if isinstance(value, _EMPTY_COLLECTIONS) and len(value) == 0:
            continue
        if isinstance(value, (tuple, set, frozenset)):
            value = list(value)
        safe[key] = value
    return safe


def enqueue_mail(
    db: Session,
    message: Mapping[str, Any],
    meta: Optional[Mapping[str, Any]] = None
) -> str:
    """
    Persist a new mail job and commit it.

    Args:
        db: Database session
        message: Dictionary with 'to', 'bcc', 'subject', 'html'
        meta: Observability context (equipment code, location, dates)

    Returns:
        The generated job id
    """
    meta = dict(meta or {})
    safe_message = strip_empty_fields(message)

    job_id = make_job_id(meta)
    MailJobRepository(db).add(job_id, safe_message, meta)
    db.commit()

    logger.info(f"Enqueued mail job: {job_id}")
    return job_id
