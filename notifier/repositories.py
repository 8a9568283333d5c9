"""
Repositories over the notifier tables.

Repositories flush but never commit; callers own the transaction. The worker
lease is the exception: acquiring and releasing it are standalone transactions.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar
from uuid import uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notifier import models
from notifier.timeutil import normalize_record_dates, to_datetime

ModelT = TypeVar("ModelT")

SCAN_BATCH_SIZE = 500


class BaseRepository(Generic[ModelT]):
    model: type

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: Any) -> Optional[ModelT]:
        return self.db.get(self.model, key)

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.flush()


class RecordRepository(BaseRepository[models.Record]):
    model = models.Record

    def add(self, collection: str, data: Mapping[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or uuid4().hex
        self.db.add(models.Record(collection=collection, doc_id=doc_id, data=dict(data)))
        self.db.flush()
        return doc_id

    def load(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the record data with date fields normalized, or None."""
        row = self.get((collection, doc_id))
        if row is None:
            return None
        return normalize_record_dates(row.data or {})

    def merge(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        row = self.get((collection, doc_id))
        if row is None:
            raise KeyError(f"Record {collection}/{doc_id} not found")
        data = dict(row.data or {})
        data.update(fields)
        # Reassign so the JSON column is marked dirty
        row.data = data
        self.db.flush()

    def find_in_window(
        self,
        collection: str,
        field: str,
        start: datetime,
        end: datetime,
        batch_size: int = SCAN_BATCH_SIZE,
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """
        Records of *collection* whose *field* falls within [start, end].

        Rows are streamed in batches of *batch_size* and matched in Python,
        since the stored values come in several timestamp shapes.
        """
        rows = self.db.execute(
            select(models.Record)
            .where(models.Record.collection == collection)
            .execution_options(yield_per=batch_size)
        ).scalars()

        matches = []
        for row in rows:
            moment = to_datetime((row.data or {}).get(field))
            if moment is not None and start <= moment <= end:
                matches.append((row.doc_id, normalize_record_dates(row.data)))
        return matches


class DeviceRegistryRepository(BaseRepository[models.DeviceRegistryEntry]):
    model = models.DeviceRegistryEntry

    def upsert(self, equipment_code: str, **fields: Any) -> models.DeviceRegistryEntry:
        entry = self.get(equipment_code)
        if entry is None:
            entry = models.DeviceRegistryEntry(equipment_code=equipment_code)
            self.db.add(entry)
        for key, value in fields.items():
            setattr(entry, key, value)
        self.db.flush()
        return entry


class MailJobRepository(BaseRepository[models.MailJob]):
    model = models.MailJob

    def add(self, job_id: str, message: Dict[str, Any], meta: Dict[str, Any]) -> models.MailJob:
        job = models.MailJob(id=job_id, message=message, meta=meta, attempts=0)
        self.db.add(job)
        self.db.flush()
        return job

    def get_by_id(self, job_id: str) -> Optional[models.MailJob]:
        return self.db.execute(
            select(models.MailJob).where(models.MailJob.id == job_id)
        ).scalar_one_or_none()

    def has_pending(self) -> bool:
        return self.db.execute(select(models.MailJob.seq).limit(1)).first() is not None

    def list_pending(self, limit: int) -> List[models.MailJob]:
        stmt = (
            select(models.MailJob)
            .order_by(models.MailJob.created_at.asc(), models.MailJob.seq.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def record_failure(self, job: models.MailJob, error: str) -> None:
        job.attempts = (job.attempts or 0) + 1
        job.last_error = error
        job.last_tried_at = func.now()
        self.db.flush()

    def dead_letter(self, job: models.MailJob) -> None:
        self.db.add(
            models.MailJobDeadLetter(
                id=job.id,
                message=job.message,
                meta=job.meta or {},
                attempts=job.attempts,
                last_error=job.last_error,
                queued_at=job.created_at,
            )
        )
        self.db.flush()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WorkerLeaseRepository(BaseRepository[models.WorkerLease]):
    model = models.WorkerLease

    def acquire(self, name: str, holder: str, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        """Take or renew the lease *name*; False while another holder's lease is live."""
        now = now or _utc_now()
        expires_at = now + timedelta(seconds=ttl_seconds)

        result = self.db.execute(
            update(models.WorkerLease)
            .where(
                models.WorkerLease.name == name,
                or_(models.WorkerLease.expires_at < now, models.WorkerLease.holder == holder),
            )
            .values(holder=holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            self.db.commit()
            return True

        if self.get(name) is not None:
            self.db.rollback()
            return False

        try:
            self.db.add(models.WorkerLease(name=name, holder=holder, acquired_at=now, expires_at=expires_at))
            self.db.commit()
        except IntegrityError:
            # Another runner inserted the lease first
            self.db.rollback()
            return False
        return True

    def release(self, name: str, holder: str) -> None:
        self.db.execute(
            delete(models.WorkerLease)
            .where(models.WorkerLease.name == name, models.WorkerLease.holder == holder)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
