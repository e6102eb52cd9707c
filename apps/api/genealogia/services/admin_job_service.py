"""Admin job registry - durable tracking of long-running admin work.

Status automaton: queued -> running -> done | error. Progress is
monotonic and a finished job is frozen. Failed jobs of kinds with a
registered retry handler can be retried into a new job.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from genealogia.core.structured_logging import build_log_context
from genealogia.db.enums import AdminJobKind, AdminJobStatus
from genealogia.db.models import AdminJob

if TYPE_CHECKING:
    from genealogia.core.container import AppContainer

logger = logging.getLogger(__name__)

# Serializes progress writes so readers never observe progress going back.
_progress_lock = threading.Lock()

FINAL_STATUSES = (AdminJobStatus.DONE.value, AdminJobStatus.ERROR.value)


class AdminJobError(ValueError):
    pass


class AdminJobNotFoundError(AdminJobError):
    pass


class RetryNotAllowedError(AdminJobError):
    """Job is not in error, or its kind has no retry handler."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_job(
    db: Session,
    kind: AdminJobKind | str,
    payload: dict[str, Any] | None = None,
    created_by: int | None = None,
    payload_json: str | None = None,
) -> AdminJob:
    """Create a job already running, with its start timestamp."""
    kind_value = kind.value if isinstance(kind, AdminJobKind) else kind
    if payload_json is None and payload is not None:
        payload_json = json.dumps(payload, sort_keys=True)
    now = _now()
    job = AdminJob(
        kind=kind_value,
        status=AdminJobStatus.RUNNING.value,
        progress_done=0,
        progress_total=0,
        payload_json=payload_json,
        started_at=now,
        created_at=now,
        updated_at=now,
        created_by=created_by,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Admin job %s (%s) created", job.id, kind_value, extra=build_log_context(user_id=created_by, job_id=job.id))
    return job


def get_job(db: Session, job_id: int) -> AdminJob | None:
    return db.get(AdminJob, job_id)


def list_jobs(
    db: Session,
    kind: AdminJobKind | None = None,
    status: AdminJobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AdminJob]:
    """Most recent jobs first, optionally filtered."""
    query = select(AdminJob)
    if kind:
        query = query.where(AdminJob.kind == kind.value)
    if status:
        query = query.where(AdminJob.status == status.value)
    query = query.order_by(AdminJob.id.desc()).offset(offset).limit(limit)
    return list(db.scalars(query))


def count_jobs(
    db: Session,
    kind: AdminJobKind | None = None,
    status: AdminJobStatus | None = None,
) -> int:
    query = select(func.count(AdminJob.id))
    if kind:
        query = query.where(AdminJob.kind == kind.value)
    if status:
        query = query.where(AdminJob.status == status.value)
    return db.scalar(query) or 0


def update_progress(db: Session, job_id: int, done: int, total: int) -> None:
    """
    Record progress.

    Ignored for finished jobs; ``progress_done`` never decreases and is
    clamped to ``progress_total`` when a total is known.
    """
    total = max(total, 0)
    done = max(done, 0)
    if total > 0:
        done = min(done, total)
    with _progress_lock:
        db.execute(
            update(AdminJob)
            .where(
                AdminJob.id == job_id,
                AdminJob.status.not_in(FINAL_STATUSES),
                AdminJob.progress_done <= done,
            )
            .values(progress_done=done, progress_total=total, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        db.commit()


def finish_job(
    db: Session,
    job_id: int,
    status: AdminJobStatus,
    error: str | None = None,
    result: dict[str, Any] | None = None,
) -> AdminJob | None:
    """Freeze a job. An error message always forces status=error."""
    job = get_job(db, job_id)
    if job is None:
        return None
    with _progress_lock:
        db.refresh(job)
        if job.status in FINAL_STATUSES:
            return job
        now = _now()
        job.status = AdminJobStatus.ERROR.value if error else status.value
        job.error_text = error or None
        if result is not None:
            job.result_json = json.dumps(result, sort_keys=True)
        job.finished_at = now
        job.updated_at = now
        db.commit()
    db.refresh(job)
    logger.info("Admin job %s finished: %s", job.id, job.status, extra=build_log_context(job_id=job.id))
    return job


def load_payload(job: AdminJob) -> dict[str, Any]:
    if not job.payload_json:
        return {}
    try:
        payload = json.loads(job.payload_json)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def retry_job(
    db: Session, job_id: int, container: AppContainer, actor_id: int | None = None
) -> AdminJob:
    """
    Start a new job with the same payload as a failed one.

    Only failed jobs whose kind has a retry handler qualify. The original
    job keeps its error status.
    """
    from genealogia.jobs.registry import resolve_retry_handler

    job = get_job(db, job_id)
    if job is None:
        raise AdminJobNotFoundError(f"Job {job_id} not found")
    if job.status != AdminJobStatus.ERROR.value:
        raise RetryNotAllowedError(f"Job {job_id} is {job.status}, only failed jobs can be retried")
    try:
        handler = resolve_retry_handler(job.kind)
    except ValueError as e:
        raise RetryNotAllowedError(str(e)) from e
    return handler(db, job, container, actor_id)


# =============================================================================
# View helpers
# =============================================================================

def progress_percent(job: AdminJob) -> int:
    if job.progress_total <= 0:
        return 100 if job.status == AdminJobStatus.DONE.value else 0
    percent = int(job.progress_done * 100 / job.progress_total)
    return max(0, min(100, percent))


def progress_label(job: AdminJob) -> str:
    if job.progress_total <= 0:
        return ""
    return f"{job.progress_done} / {job.progress_total}"
