"""Admin jobs router - durable job registry and level rebuilds. Admin only."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from genealogia.core.container import AppContainer
from genealogia.core.deps import get_container, get_db, require_admin
from genealogia.db.enums import AdminJobKind, AdminJobStatus
from genealogia.db.models import AdminJob
from genealogia.jobs.handlers import nivells_rebuild
from genealogia.schemas.admin_job import (
    AdminJobListResponse,
    AdminJobRead,
    NivellsRebuildCreate,
    NivellsRebuildStarted,
    RebuildProgressRead,
)
from genealogia.services import admin_job_service
from genealogia.services.admin_job_service import (
    AdminJobError,
    AdminJobNotFoundError,
    RetryNotAllowedError,
)
from genealogia.services.progress_store import RebuildProgressJob

router = APIRouter(prefix="/admin/jobs", tags=["Admin Jobs"])


def _job_read(job: AdminJob) -> AdminJobRead:
    data = AdminJobRead.model_validate(job)
    data.progress_percent = admin_job_service.progress_percent(job)
    data.progress_label = admin_job_service.progress_label(job)
    return data


def _progress_read(progress: RebuildProgressJob) -> RebuildProgressRead:
    return RebuildProgressRead(
        id=progress.id,
        kind=progress.kind,
        nivell_id=progress.nivell_id,
        all=progress.all,
        admin_job_id=progress.admin_job_id,
        total=progress.total,
        processed=progress.processed,
        done=progress.done,
        status=progress.status,
        error=progress.error,
        logs=list(progress.logs),
        started_at=progress.started_at,
        updated_at=progress.updated_at,
        finished_at=progress.finished_at,
    )


@router.get("", response_model=AdminJobListResponse)
def list_jobs(
    kind: AdminJobKind | None = None,
    status: AdminJobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    """List durable admin jobs, newest first."""
    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    jobs = admin_job_service.list_jobs(db, kind=kind, status=status, limit=limit, offset=offset)
    return AdminJobListResponse(
        items=[_job_read(job) for job in jobs],
        total=admin_job_service.count_jobs(db, kind=kind, status=status),
        limit=limit,
        offset=offset,
    )


@router.get("/progress/{progress_id}", response_model=RebuildProgressRead)
def get_rebuild_progress(
    progress_id: str,
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(require_admin),
):
    """Poll the in-memory mirror of a rebuild, including its log lines."""
    progress = container.rebuild_jobs.snapshot(progress_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Progress not found")
    return _progress_read(progress)


@router.get("/{job_id}", response_model=AdminJobRead)
def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    job = admin_job_service.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_read(job)


@router.post("/nivells-rebuild", response_model=NivellsRebuildStarted, status_code=202)
def start_nivells_rebuild(
    data: NivellsRebuildCreate,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(require_admin),
):
    """Start a demographics/statistics rebuild for one level or all levels."""
    try:
        job, progress = nivells_rebuild.start_nivells_rebuild(
            db, container, data.kind, nivell_id=data.nivell_id, all=data.all, created_by=user_id
        )
    except AdminJobError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return NivellsRebuildStarted(job=_job_read(job), progress=_progress_read(progress))


@router.post("/{job_id}/retry", response_model=AdminJobRead, status_code=202)
def retry_job(
    job_id: int,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(require_admin),
):
    """Relaunch a failed job with its original payload."""
    try:
        job = admin_job_service.retry_job(db, job_id, container, actor_id=user_id)
    except AdminJobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except RetryNotAllowedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _job_read(job)
