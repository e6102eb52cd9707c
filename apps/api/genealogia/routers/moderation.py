"""Bulk moderation router - approve or reject many pending changes."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from genealogia.core.container import AppContainer
from genealogia.core.deps import get_container, get_current_user_id
from genealogia.jobs.handlers import bulk_moderation
from genealogia.services.wiki_service import WikiChangeError

router = APIRouter(prefix="/moderation", tags=["Moderation"])


class BulkModerationCreate(BaseModel):
    action: str
    object_type: str
    change_ids: list[int] | None = None
    note: str | None = None


class BulkModerationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    scope: str
    object_type: str
    total: int
    processed: int
    done: bool
    status: str
    error: str
    started_at: datetime
    updated_at: datetime
    finished_at: datetime | None


@router.post("/bulk", response_model=BulkModerationRead, status_code=202)
def start_bulk(
    data: BulkModerationCreate,
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    """Start a background approve/reject over the changes the caller may moderate."""
    try:
        job = bulk_moderation.start_bulk_moderation(
            container,
            data.action,
            data.object_type,
            user_id,
            change_ids=data.change_ids,
            note=data.note,
        )
    except WikiChangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return job


@router.get("/bulk/{job_id}", response_model=BulkModerationRead)
def get_bulk(
    job_id: str,
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    job = container.bulk_jobs.snapshot(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
