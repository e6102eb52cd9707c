"""Pydantic schemas for wiki changes and moderation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WikiChangeCreate(BaseModel):
    """Proposed edit: snapshots of the object before and after."""
    before: Any = None
    after: Any
    source_change_id: int = 0
    arxiu_id: int | None = None


class WikiChangeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    object_type: str
    object_id: int
    change_type: str
    changed_by: int | None
    moderacio_estat: str
    metadata: str = Field(validation_alias="metadata_json")
    created_at: datetime | None
    moderated_by: int | None
    moderated_at: datetime | None
    moderated_motiu: str | None


class WikiChangeListResponse(BaseModel):
    items: list[WikiChangeRead]
    total: int
    page: int
    per_page: int


class ModerationDecision(BaseModel):
    """Optional moderator note for approve/reject."""
    note: str | None = None


class WikiRevertRequest(BaseModel):
    reason: str | None = None


class DiffField(BaseModel):
    key: str
    before: str
    after: str


class WikiChangeDiff(BaseModel):
    change: WikiChangeRead
    fields: list[DiffField]



class WikiHistoryResponse(BaseModel):
    """Multi-version view: one row per field, values tagged with versions."""
    object_type: str
    object_id: int
    versions: int
    fields: list[DiffField]
