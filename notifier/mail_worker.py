"""
Mail Dispatch Worker Module (drain side)

Each run:
1. Returns without any write when the queue is empty
2. Takes the single-runner lease (a run is skipped while another runner holds it)
3. Reads up to MAIL_WORKER_BATCH_SIZE jobs, oldest first
4. Handles the jobs one by one:
   - attempts >= MAIL_JOB_MAX_ATTEMPTS -> delete without sending
   - delivered                       -> delete
   - delivery failed                 -> attempts + 1, last_error, last_tried_at
5. Stops visiting jobs once MAIL_WORKER_MAX_RUN_SECONDS has passed; jobs not
   visited stay pending untouched

Every job is committed on its own, so a failure on one job never affects the
rest of the batch. Failed jobs are retried on the next scheduled run, never
immediately.

Jobs dropped at the attempt ceiling are lost unless MAIL_DEAD_LETTER_ENABLED
is set; each drop is logged at WARNING with the job id and its last error.
"""

import os
import socket
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from notifier.config import (
    MAIL_DEAD_LETTER_ENABLED,
    MAIL_JOB_MAX_ATTEMPTS,
    MAIL_WORKER_BATCH_SIZE,
    MAIL_WORKER_INTERVAL_SECONDS,
    MAIL_WORKER_LEASE_SECONDS,
    MAIL_WORKER_MAX_RUN_SECONDS,
)
from notifier.email_sender import send_email
from notifier.logger import get_logger
from notifier.models import MailJob
from notifier.repositories import MailJobRepository, WorkerLeaseRepository

logger = get_logger(__name__)

LEASE_NAME = "mail_worker"

SendFunction = Callable[[Mapping[str, Any]], Tuple[bool, Optional[str]]]


def _lease_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


def _process_job(
    jobs: MailJobRepository,
    job: MailJob,
    send: SendFunction,
    max_attempts: int,
    dead_letter: bool
) -> str:
    """Apply the retry/removal policy to one job. Returns 'sent', 'failed' or 'dropped'."""
    attempts = job.attempts or 0

    if attempts >= max_attempts:
        if dead_letter:
            jobs.dead_letter(job)
        logger.warning(
            f"Dropping mail job {job.id} after {attempts} failed attempt(s). "
            f"Last error: {job.last_error}"
        )
        jobs.delete(job)
        return "dropped"

    try:
        success, error = send(job.message)
    except Exception as e:
        success, error = False, str(e) or e.__class__.__name__

    if success:
        jobs.delete(job)
        logger.info(f"Delivered mail job {job.id}")
        return "sent"

    jobs.record_failure(job, error or "Unknown delivery failure")
    logger.warning(f"Delivery failed for mail job {job.id} (attempt {attempts + 1}): {error}")
    return "failed"


def run_mail_worker(
    db: Session,
    send: Optional[SendFunction] = None,
    batch_size: Optional[int] = None,
    max_attempts: Optional[int] = None,
    max_run_seconds: Optional[float] = None,
    dead_letter: Optional[bool] = None,
    lease_seconds: Optional[int] = None
) -> Dict[str, Any]:
    """
    Run one drain pass over the mail queue.

    Args:
        db: Database session
        send: Delivery function returning (success, error_msg) (default: send_email)
        batch_size: Jobs read per run (default: from config)
        max_attempts: Attempt ceiling (default: from config)
        max_run_seconds: Wall-clock ceiling of the run (default: from config)
        dead_letter: Copy dropped jobs to the dead-letter table (default: from config)
        lease_seconds: Lifetime of the single-runner lease (default: from config)

    Returns:
        Dictionary with counts 'processed', 'sent', 'failed', 'dropped' and flag 'skipped'
    """
    if send is None:
        send = send_email
    if batch_size is None:
        batch_size = MAIL_WORKER_BATCH_SIZE
    if max_attempts is None:
        max_attempts = MAIL_JOB_MAX_ATTEMPTS
    if max_run_seconds is None:
        max_run_seconds = MAIL_WORKER_MAX_RUN_SECONDS
    if dead_letter is None:
        dead_letter = MAIL_DEAD_LETTER_ENABLED
    if lease_seconds is None:
        lease_seconds = MAIL_WORKER_LEASE_SECONDS

    summary: Dict[str, Any] = {"processed": 0, "sent": 0, "failed": 0, "dropped": 0, "skipped": False}

    jobs = MailJobRepository(db)
    if not jobs.has_pending():
        logger.info("Mail worker: no jobs")
        return summary

    leases = WorkerLeaseRepository(db)
    holder = _lease_holder()
    if not leases.acquire(LEASE_NAME, holder, lease_seconds):
        logger.warning("Another mail worker holds the lease. Skipping this run.")
        summary["skipped"] = True
        return summary

    try:
        batch = jobs.list_pending(batch_size)
        if not batch:
            logger.info("Mail worker: no jobs")
            return summary

        logger.info(f"Mail worker: processing {len(batch)} job(s)")
        started = time.monotonic()

        for index, job in enumerate(batch):
            if time.monotonic() - started > max_run_seconds:
                logger.warning(
                    f"Mail worker run exceeded {max_run_seconds}s. "
                    f"Leaving {len(batch) - index} job(s) for the next run."
                )
                break

            job_id = job.id
            try:
                outcome = _process_job(jobs, job, send, max_attempts, dead_letter)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(f"Unexpected error while processing mail job {job_id}: {str(e)}", exc_info=True)
                continue

            summary["processed"] += 1
            summary[outcome] += 1

        logger.info(
            f"Mail worker finished: {summary['sent']} sent, {summary['failed']} failed, "
            f"{summary['dropped']} dropped"
        )
        return summary

    finally:
        leases.release(LEASE_NAME, holder)


def run_mail_worker_forever(
    session_factory: sessionmaker,
    interval_seconds: Optional[float] = None,
    send: Optional[SendFunction] = None,
    max_runs: Optional[int] = None
) -> None:
    """
    Run the worker on a fixed interval, one fresh session per run.

    Args:
        session_factory: Session factory (see notifier.db.get_session_factory)
        interval_seconds: Delay between the start of two runs (default: from config)
        send: Delivery function (default: send_email)
        max_runs: Stop after this many runs (default: run until interrupted)
    """
    if interval_seconds is None:
        interval_seconds = MAIL_WORKER_INTERVAL_SECONDS

    runs = 0
    while max_runs is None or runs < max_runs:
        started = time.monotonic()
        try:
            with session_factory() as db:
                run_mail_worker(db, send=send)
        except Exception as e:
            logger.error(f"Mail worker run failed: {str(e)}", exc_info=True)
        runs += 1

        if max_runs is not None and runs >= max_runs:
            break
        time.sleep(max(0.0, interval_seconds - (time.monotonic() - started)))
