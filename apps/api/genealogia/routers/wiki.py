"""Wiki router - propose, review and publish changes to wiki entities."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from genealogia.core.container import AppContainer
from genealogia.core.deps import get_container, get_current_user_id, get_db
from genealogia.db.models import WikiChange
from genealogia.schemas.wiki import (
    DiffField,
    ModerationDecision,
    WikiChangeCreate,
    WikiChangeDiff,
    WikiChangeListResponse,
    WikiChangeRead,
    WikiHistoryResponse,
    WikiRevertRequest,
)
from genealogia.services import wiki_service
from genealogia.services.wiki_diff import FieldChange, build_diff
from genealogia.services.wiki_service import (
    WikiChangeError,
    WikiChangeNotFoundError,
    WikiChangeStateError,
    WikiGuardrailError,
)

router = APIRouter(prefix="/wiki", tags=["Wiki"])


def _raise_for(error: WikiChangeError) -> None:
    """Translate a pending-change engine error into an HTTP error."""
    if isinstance(error, WikiChangeNotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, WikiChangeStateError):
        raise HTTPException(status_code=409, detail=str(error))
    if isinstance(error, WikiGuardrailError):
        raise HTTPException(status_code=429, detail=str(error))
    raise HTTPException(status_code=400, detail=str(error))


def _object_type(object_type: str) -> str:
    try:
        return wiki_service.resolve_object_type(object_type)
    except WikiChangeError as e:
        _raise_for(e)


def _diff_fields(changes: list[FieldChange]) -> list[DiffField]:
    return [DiffField(key=c.key, before=c.before, after=c.after) for c in changes]


def _can_moderate(
    db: Session, container: AppContainer, user_id: int, object_type: str, object_id: int
) -> bool:
    return wiki_service.can_moderate_object(
        db, container.permissions, container.targets, user_id, object_type, object_id
    )


# ============================================================================
# Object changes
# ============================================================================


@router.post("/{object_type}/{object_id}/changes", response_model=WikiChangeRead, status_code=201)
def submit_change(
    object_type: str,
    object_id: int,
    data: WikiChangeCreate,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    """
    Propose an edit.

    Moderators of the object publish directly (the change is kept as
    history); everyone else queues a pending change.
    """
    object_type = _object_type(object_type)
    if db.get(wiki_service.WIKI_MODELS[object_type], object_id) is None:
        raise HTTPException(status_code=404, detail=f"{object_type} not found")
    try:
        if _can_moderate(db, container, user_id, object_type, object_id):
            return wiki_service.record_published_change(
                db,
                object_type,
                object_id,
                data.before,
                data.after,
                changed_by=user_id,
                arxiu_id=data.arxiu_id,
                targets=container.targets,
            )
        return wiki_service.submit_change(
            db,
            object_type,
            object_id,
            data.before,
            data.after,
            changed_by=user_id,
            source_change_id=data.source_change_id,
            arxiu_id=data.arxiu_id,
        )
    except WikiChangeError as e:
        _raise_for(e)


@router.get("/{object_type}/{object_id}/changes", response_model=list[WikiChangeRead])
def list_object_changes(
    object_type: str,
    object_id: int,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    """Changes of one object; non-moderators see published ones and their own."""
    object_type = _object_type(object_type)
    changes = wiki_service.list_changes_for_object(db, object_type, object_id)
    can_moderate = _can_moderate(db, container, user_id, object_type, object_id)
    return wiki_service.filter_visible(changes, user_id, can_moderate)


@router.get("/{object_type}/{object_id}/history", response_model=WikiHistoryResponse)
def get_object_history(
    object_type: str,
    object_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Multi-version diff over the object's published changes."""
    object_type = _object_type(object_type)
    changes = wiki_service.list_changes_for_object(db, object_type, object_id)
    entries = wiki_service.history_entries(changes)
    _, rendered = wiki_service.build_history_diff(changes)
    return WikiHistoryResponse(
        object_type=object_type,
        object_id=object_id,
        versions=len(entries),
        fields=_diff_fields(rendered),
    )


# ============================================================================
# Moderation queue
# ============================================================================


@router.get("/pending", response_model=WikiChangeListResponse)
def list_pending_changes(
    object_type: str | None = None,
    page: int = 1,
    per_page: int = 50,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    """
    Pending changes the caller may moderate.

    ``total`` counts the whole queue; items are limited to the changes
    the caller has authority over.
    """
    if object_type:
        object_type = _object_type(object_type)
    page = max(1, page)
    per_page = max(1, min(per_page, 200))
    items, total = wiki_service.list_pending(db, object_type, page=page, per_page=per_page)
    visible = [
        change
        for change in items
        if _can_moderate(db, container, user_id, change.object_type, change.object_id)
    ]
    return WikiChangeListResponse(
        items=[WikiChangeRead.model_validate(change) for change in visible],
        total=total,
        page=page,
        per_page=per_page,
    )


def _change_for_moderation(
    db: Session, container: AppContainer, user_id: int, change_id: int
) -> WikiChange:
    change = wiki_service.get_change(db, change_id)
    if change is None:
        raise HTTPException(status_code=404, detail="Change not found")
    if not _can_moderate(db, container, user_id, change.object_type, change.object_id):
        raise HTTPException(status_code=403, detail="Forbidden")
    return change


@router.get("/changes/{change_id}/diff", response_model=WikiChangeDiff)
def get_change_diff(
    change_id: int,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    change = wiki_service.get_change(db, change_id)
    if change is None:
        raise HTTPException(status_code=404, detail="Change not found")
    can_moderate = _can_moderate(db, container, user_id, change.object_type, change.object_id)
    if not wiki_service.filter_visible([change], user_id, can_moderate):
        raise HTTPException(status_code=404, detail="Change not found")
    meta = wiki_service.parse_change_metadata(change.metadata_json)
    try:
        fields = build_diff(meta.before, meta.after)
    except ValueError:
        fields = []
    return WikiChangeDiff(change=WikiChangeRead.model_validate(change), fields=_diff_fields(fields))


@router.post("/changes/{change_id}/approve", response_model=WikiChangeRead)
def approve_change(
    change_id: int,
    data: ModerationDecision | None = None,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    change = _change_for_moderation(db, container, user_id, change_id)
    note = data.note if data else None
    try:
        return wiki_service.apply_change(db, change, user_id, note, targets=container.targets)
    except WikiChangeError as e:
        db.rollback()
        _raise_for(e)


@router.post("/changes/{change_id}/reject", response_model=WikiChangeRead)
def reject_change(
    change_id: int,
    data: ModerationDecision | None = None,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    change = _change_for_moderation(db, container, user_id, change_id)
    note = data.note if data else None
    try:
        return wiki_service.reject_change(db, change, user_id, note)
    except WikiChangeError as e:
        _raise_for(e)


@router.post("/changes/{change_id}/revert", response_model=WikiChangeRead, status_code=201)
def revert_change(
    change_id: int,
    data: WikiRevertRequest | None = None,
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    """
    Restore the state a published change produced.

    Requires ``wiki.revert`` on the object plus moderation authority or
    authorship of the change. Moderators publish the revert directly.
    """
    change = wiki_service.get_change(db, change_id)
    if change is None:
        raise HTTPException(status_code=404, detail="Change not found")
    if not wiki_service.can_revert_change(
        db, container.permissions, container.targets, user_id, change
    ):
        raise HTTPException(status_code=403, detail="Forbidden")
    publish = _can_moderate(db, container, user_id, change.object_type, change.object_id)
    try:
        return wiki_service.revert_change(
            db,
            change,
            user_id,
            publish=publish,
            reason=data.reason if data else None,
            targets=container.targets,
        )
    except WikiChangeError as e:
        db.rollback()
        _raise_for(e)
