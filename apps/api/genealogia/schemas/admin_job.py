"""Pydantic schemas for admin jobs and rebuild progress."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from genealogia.db.enums import RebuildKind


class AdminJobRead(BaseModel):
    """Durable admin job response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: str
    status: str
    progress_done: int
    progress_total: int
    progress_percent: int = 0
    progress_label: str = ""
    payload_json: str | None
    result_json: str | None
    error_text: str | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime | None
    created_by: int | None


class AdminJobListResponse(BaseModel):
    items: list[AdminJobRead]
    total: int
    limit: int
    offset: int


class NivellsRebuildCreate(BaseModel):
    """Start a level rebuild for one level or for all of them."""
    kind: RebuildKind
    nivell_id: int | None = None
    all: bool = False


class RebuildProgressRead(BaseModel):
    """In-memory mirror of a running rebuild."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: str
    nivell_id: int | None
    all: bool
    admin_job_id: int | None
    total: int
    processed: int
    done: bool
    status: str
    error: str
    logs: list[str]
    started_at: datetime
    updated_at: datetime
    finished_at: datetime | None


class NivellsRebuildStarted(BaseModel):
    job: AdminJobRead
    progress: RebuildProgressRead
