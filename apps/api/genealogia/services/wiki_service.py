"""Pending-change engine for wiki-editable entities.

A wiki change stores before/after snapshots of one entity. Moderators
publish a change (its ``after`` snapshot is written to the canonical row)
or reject it (the canonical row is untouched). Resolved changes stay as
history.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy import delete, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genealogia.core.config import settings
from genealogia.core.structured_logging import build_log_context
from genealogia.core.targets import PermissionTarget
from genealogia.db.enums import ModerationStatus, WikiChangeType, WikiObjectType
from genealogia.db.models import (
    Arxiu,
    ArxiuLlibre,
    Cognom,
    EventHistoric,
    Llibre,
    Municipi,
    Persona,
    WikiChange,
)
from genealogia.services import authorization_service, closure_service
from genealogia.services.permission_service import PermissionSnapshotStore
from genealogia.services.target_service import TargetResolver
from genealogia.services.wiki_diff import (
    FieldChange,
    SnapshotDecodeError,
    VersionedFieldChange,
    VersionedSnapshot,
    build_multi_version_diff,
    decode_snapshot,
    render_multi_version_diff,
    unwrap_null_wrapper,
)

logger = logging.getLogger(__name__)


class WikiChangeError(ValueError):
    """Change cannot be submitted or applied."""


class WikiChangeNotFoundError(WikiChangeError):
    pass


class WikiChangeStateError(WikiChangeError):
    """Transition not allowed from the change's current state."""


class WikiGuardrailError(WikiChangeError):
    """Submission exceeds a size or pending-count limit."""


@dataclass
class ChangeMetadata:
    before: Any = None
    after: Any = None
    source_change_id: int = 0
    arxiu_id: int | None = None
    reason: str | None = None


# =============================================================================
# Metadata
# =============================================================================

def _positive_int(value: Any) -> int | None:
    """Positive id from an int or a string of digits."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and value > 0:
        return value
    return None


def parse_change_metadata(text: str | None) -> ChangeMetadata:
    """Read change metadata; a JSON string wrapping the object is accepted."""
    if not text or not text.strip():
        return ChangeMetadata()
    try:
        data = json.loads(text)
        if isinstance(data, str):
            data = json.loads(data) if data.strip() else None
    except json.JSONDecodeError:
        return ChangeMetadata()
    if not isinstance(data, dict):
        return ChangeMetadata()
    return ChangeMetadata(
        before=data.get("before"),
        after=data.get("after"),
        source_change_id=_positive_int(data.get("source_change_id")) or 0,
        arxiu_id=_positive_int(data.get("arxiu_id")),
        reason=data.get("reason") if isinstance(data.get("reason"), str) else None,
    )


def build_change_metadata(
    before: Any,
    after: Any,
    source_change_id: int = 0,
    arxiu_id: int | None = None,
    reason: str | None = None,
) -> str:
    """Single-encoded metadata JSON."""
    data: dict[str, Any] = {
        "before": decode_snapshot(before),
        "after": decode_snapshot(after),
    }
    if source_change_id and source_change_id > 0:
        data["source_change_id"] = source_change_id
    if arxiu_id and arxiu_id > 0:
        data["arxiu_id"] = arxiu_id
    if reason:
        data["reason"] = reason
    return json.dumps(data, ensure_ascii=False, default=str)


# =============================================================================
# Entity snapshots
# =============================================================================

PROTECTED_ATTRS = frozenset({
    "id",
    "created_by",
    "moderacio_estat",
    "moderacio_motiu",
    "moderated_by",
    "moderated_at",
})

_CAMEL_WORD = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_TAIL = re.compile(r"([a-z0-9])([A-Z])")
_CAMEL_DIGIT = re.compile(r"([A-Za-z])(\d)")


def snapshot_key_to_attr(key: str) -> str:
    """``Nom`` -> ``nom``, ``MunicipiID`` -> ``municipi_id``, ``NivellID1`` -> ``nivell_id_1``."""
    key = key.strip()
    if key == key.lower():
        return key
    key = _CAMEL_WORD.sub(r"\1_\2", key)
    key = _CAMEL_TAIL.sub(r"\1_\2", key)
    return _CAMEL_DIGIT.sub(r"\1_\2", key).lower()


def snapshot_entity(entity: Any) -> dict[str, Any]:
    """Column values of an entity as a JSON-ready dict."""
    snapshot: dict[str, Any] = {}
    for attr in inspect(type(entity)).column_attrs:
        value = getattr(entity, attr.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        snapshot[attr.key] = value
    return snapshot


def apply_snapshot_fields(entity: Any, snapshot: Mapping[str, Any]) -> list[str]:
    """
    Copy snapshot values onto matching columns.

    Identity and moderation columns are never taken from the snapshot.
    Returns the attributes written.
    """
    columns = {attr.key for attr in inspect(type(entity)).column_attrs}
    written: list[str] = []
    for key, value in snapshot.items():
        attr = snapshot_key_to_attr(key)
        if attr in PROTECTED_ATTRS or attr not in columns:
            continue
        if isinstance(value, dict):
            is_wrapper, value = unwrap_null_wrapper(value)
            if not is_wrapper:
                continue
        if isinstance(value, (dict, list)):
            continue
        setattr(entity, attr, value)
        written.append(attr)
    return written


# =============================================================================
# Appliers
# =============================================================================

ChangeApplier = Callable[[Any, dict, int, str | None, datetime], None]


def _apply_moderated(entity: Any, after: dict, moderator_id: int, note: str | None, now: datetime) -> None:
    apply_snapshot_fields(entity, after)
    entity.moderacio_estat = ModerationStatus.PUBLISHED.value
    entity.moderated_by = moderator_id
    entity.moderated_at = now
    entity.moderacio_motiu = note


def _apply_persona(entity: Persona, after: dict, moderator_id: int, note: str | None, now: datetime) -> None:
    apply_snapshot_fields(entity, after)
    entity.moderacio_estat = ModerationStatus.PUBLISHED.value
    entity.moderated_by = moderator_id
    entity.moderated_at = now


def _apply_cognom(entity: Cognom, after: dict, moderator_id: int, note: str | None, now: datetime) -> None:
    apply_snapshot_fields(entity, after)


WIKI_MODELS: Mapping[str, type] = {
    WikiObjectType.MUNICIPI.value: Municipi,
    WikiObjectType.ARXIU.value: Arxiu,
    WikiObjectType.LLIBRE.value: Llibre,
    WikiObjectType.PERSONA.value: Persona,
    WikiObjectType.COGNOM.value: Cognom,
    WikiObjectType.EVENT_HISTORIC.value: EventHistoric,
}

CHANGE_APPLIERS: Mapping[str, ChangeApplier] = {
    WikiObjectType.MUNICIPI.value: _apply_moderated,
    WikiObjectType.ARXIU.value: _apply_moderated,
    WikiObjectType.LLIBRE.value: _apply_moderated,
    WikiObjectType.PERSONA.value: _apply_persona,
    WikiObjectType.COGNOM.value: _apply_cognom,
    WikiObjectType.EVENT_HISTORIC.value: _apply_moderated,
}


def resolve_object_type(object_type: str) -> str:
    value = (object_type or "").strip().lower()
    if value not in WIKI_MODELS:
        raise WikiChangeError(f"Unknown object type: {object_type}")
    return value


def relink_book_archive(db: Session, llibre_id: int, arxiu_id: int) -> None:
    """Make ``arxiu_id`` the only archive the book is attached to."""
    db.execute(
        delete(ArxiuLlibre).where(
            ArxiuLlibre.llibre_id == llibre_id, ArxiuLlibre.arxiu_id != arxiu_id
        )
    )
    if db.get(ArxiuLlibre, (arxiu_id, llibre_id)) is None:
        db.add(ArxiuLlibre(arxiu_id=arxiu_id, llibre_id=llibre_id))
    db.commit()


def _after_apply(
    db: Session, change: WikiChange, meta: ChangeMetadata, targets: TargetResolver | None
) -> None:
    """Follow-up work once the canonical row is committed. Best-effort."""
    object_type = change.object_type
    try:
        if object_type == WikiObjectType.LLIBRE.value and meta.arxiu_id:
            relink_book_archive(db, change.object_id, meta.arxiu_id)
        elif object_type == WikiObjectType.MUNICIPI.value:
            closure_service.rebuild_for(db, change.object_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "Post-apply step failed for change %s: %s",
            change.id,
            e,
            extra=build_log_context(object_type=object_type, object_id=change.object_id),
        )
    if targets is None:
        return
    if object_type == WikiObjectType.MUNICIPI.value:
        targets.invalidate_municipality(change.object_id)
    elif object_type == WikiObjectType.ARXIU.value:
        targets.invalidate_archive(change.object_id)
    elif object_type == WikiObjectType.LLIBRE.value:
        targets.invalidate_book(change.object_id)


# =============================================================================
# Lifecycle
# =============================================================================

def get_change(db: Session, change_id: int) -> WikiChange | None:
    return db.get(WikiChange, change_id)


def _require_change(db: Session, change: WikiChange | int) -> WikiChange:
    if isinstance(change, WikiChange):
        return change
    row = get_change(db, change)
    if row is None:
        raise WikiChangeNotFoundError(f"Change {change} not found")
    return row


def count_pending(db: Session, object_type: str, object_id: int, changed_by: int | None = None) -> int:
    query = select(func.count(WikiChange.id)).where(
        WikiChange.object_type == object_type,
        WikiChange.object_id == object_id,
        WikiChange.moderacio_estat == ModerationStatus.PENDING.value,
    )
    if changed_by is not None:
        query = query.where(WikiChange.changed_by == changed_by)
    return db.scalar(query) or 0


def _prepare_change(
    db: Session,
    object_type: str,
    object_id: int,
    before: Any,
    after: Any,
    source_change_id: int,
    arxiu_id: int | None,
    reason: str | None = None,
) -> tuple[str, str]:
    object_type = resolve_object_type(object_type)
    if object_id <= 0:
        raise WikiChangeError("object id must be positive")
    try:
        if decode_snapshot(after) in (None, {}):
            raise WikiChangeError("change without data")
        metadata = build_change_metadata(before, after, source_change_id, arxiu_id, reason)
    except SnapshotDecodeError as e:
        raise WikiChangeError(str(e)) from e
    if len(metadata.encode("utf-8")) > settings.WIKI_MAX_METADATA_BYTES:
        raise WikiGuardrailError("change metadata too large")
    if source_change_id:
        source = get_change(db, source_change_id)
        if source is None or source.object_type != object_type or source.object_id != object_id:
            raise WikiChangeError("source change does not belong to this object")
    return object_type, metadata


def submit_change(
    db: Session,
    object_type: str,
    object_id: int,
    before: Any,
    after: Any,
    changed_by: int,
    source_change_id: int = 0,
    arxiu_id: int | None = None,
    change_type: str = WikiChangeType.EDIT.value,
    reason: str | None = None,
) -> WikiChange:
    """Queue a pending change for moderation."""
    object_type, metadata = _prepare_change(
        db, object_type, object_id, before, after, source_change_id, arxiu_id, reason
    )
    if count_pending(db, object_type, object_id) >= settings.WIKI_MAX_PENDING_PER_OBJECT:
        raise WikiGuardrailError("too many pending changes for this object")
    if (
        count_pending(db, object_type, object_id, changed_by)
        >= settings.WIKI_MAX_PENDING_PER_USER_OBJECT
    ):
        raise WikiGuardrailError("too many pending changes by this user for this object")

    change = WikiChange(
        object_type=object_type,
        object_id=object_id,
        change_type=change_type,
        changed_by=changed_by,
        moderacio_estat=ModerationStatus.PENDING.value,
        metadata_json=metadata,
    )
    db.add(change)
    db.commit()
    db.refresh(change)
    logger.info(
        "Wiki change %s submitted",
        change.id,
        extra=build_log_context(user_id=changed_by, object_type=object_type, object_id=object_id),
    )
    return change


def record_published_change(
    db: Session,
    object_type: str,
    object_id: int,
    before: Any,
    after: Any,
    changed_by: int,
    note: str | None = None,
    arxiu_id: int | None = None,
    targets: TargetResolver | None = None,
    source_change_id: int = 0,
    change_type: str = WikiChangeType.EDIT.value,
    reason: str | None = None,
) -> WikiChange:
    """Direct write by an actor with publish authority, kept as history."""
    object_type, metadata = _prepare_change(
        db, object_type, object_id, before, after, source_change_id, arxiu_id, reason
    )
    change = WikiChange(
        object_type=object_type,
        object_id=object_id,
        change_type=change_type,
        changed_by=changed_by,
        moderacio_estat=ModerationStatus.PENDING.value,
        metadata_json=metadata,
    )
    db.add(change)
    db.flush()
    try:
        return apply_change(db, change, changed_by, note, targets=targets)
    except WikiChangeError:
        db.rollback()
        raise


def revert_change(
    db: Session,
    source_change: WikiChange | int,
    actor_id: int,
    publish: bool = False,
    reason: str | None = None,
    targets: TargetResolver | None = None,
) -> WikiChange:
    """
    Restore the ``after`` snapshot of a published change.

    The new ``revert`` change records the object's current state as
    ``before`` and points back at the source. It goes through the same
    guardrails as any edit; with ``publish`` it is applied right away.
    """
    source = _require_change(db, source_change)
    if source.moderacio_estat != ModerationStatus.PUBLISHED.value:
        raise WikiChangeStateError(f"Change {source.id} is {source.moderacio_estat}")
    after = _safe_snapshot(parse_change_metadata(source.metadata_json).after)
    if not isinstance(after, dict) or not after:
        raise WikiChangeError(f"Change {source.id} cannot be reverted")
    entity = db.get(WIKI_MODELS[resolve_object_type(source.object_type)], source.object_id)
    if entity is None:
        raise WikiChangeNotFoundError(f"{source.object_type} {source.object_id} not found")

    before = snapshot_entity(entity)
    if publish:
        change = record_published_change(
            db,
            source.object_type,
            source.object_id,
            before,
            after,
            actor_id,
            note=reason,
            targets=targets,
            source_change_id=source.id,
            change_type=WikiChangeType.REVERT.value,
            reason=reason,
        )
    else:
        change = submit_change(
            db,
            source.object_type,
            source.object_id,
            before,
            after,
            actor_id,
            source_change_id=source.id,
            change_type=WikiChangeType.REVERT.value,
            reason=reason,
        )
    logger.info(
        "Wiki change %s reverts change %s",
        change.id,
        source.id,
        extra=build_log_context(
            user_id=actor_id, object_type=source.object_type, object_id=source.object_id
        ),
    )
    return change


def apply_change(
    db: Session,
    change: WikiChange | int,
    moderator_id: int,
    note: str | None = None,
    targets: TargetResolver | None = None,
) -> WikiChange:
    """
    Publish a change: write its ``after`` snapshot to the canonical row.

    Applying an already-published change is a no-op. Decode errors leave
    both the change and the canonical row untouched.
    """
    change = _require_change(db, change)
    if change.moderacio_estat == ModerationStatus.PUBLISHED.value:
        return change
    if change.moderacio_estat != ModerationStatus.PENDING.value:
        raise WikiChangeStateError(f"Change {change.id} is {change.moderacio_estat}")

    meta = parse_change_metadata(change.metadata_json)
    try:
        after = decode_snapshot(meta.after)
    except SnapshotDecodeError as e:
        raise WikiChangeError("invalid snapshot") from e
    if not after:
        raise WikiChangeError("change without data")
    if not isinstance(after, dict):
        raise WikiChangeError("invalid snapshot")

    applier = CHANGE_APPLIERS.get(change.object_type)
    model = WIKI_MODELS.get(change.object_type)
    if applier is None or model is None:
        raise WikiChangeError(f"Unknown object type: {change.object_type}")
    entity = db.get(model, change.object_id)
    if entity is None:
        raise WikiChangeNotFoundError(
            f"{change.object_type} {change.object_id} not found"
        )

    now = datetime.now(timezone.utc)
    applier(entity, after, moderator_id, note, now)
    change.moderacio_estat = ModerationStatus.PUBLISHED.value
    change.moderated_by = moderator_id
    change.moderated_at = now
    change.moderated_motiu = note
    db.commit()
    db.refresh(change)
    logger.info(
        "Wiki change %s published",
        change.id,
        extra=build_log_context(
            user_id=moderator_id, object_type=change.object_type, object_id=change.object_id
        ),
    )

    _after_apply(db, change, meta, targets)
    return change


def reject_change(
    db: Session, change: WikiChange | int, moderator_id: int, note: str | None = None
) -> WikiChange:
    """Mark a pending change rejected. The canonical row is not touched."""
    change = _require_change(db, change)
    if change.moderacio_estat == ModerationStatus.REJECTED.value:
        return change
    if change.moderacio_estat != ModerationStatus.PENDING.value:
        raise WikiChangeStateError(f"Change {change.id} is {change.moderacio_estat}")
    change.moderacio_estat = ModerationStatus.REJECTED.value
    change.moderated_by = moderator_id
    change.moderated_at = datetime.now(timezone.utc)
    change.moderated_motiu = note
    db.commit()
    db.refresh(change)
    logger.info(
        "Wiki change %s rejected",
        change.id,
        extra=build_log_context(
            user_id=moderator_id, object_type=change.object_type, object_id=change.object_id
        ),
    )
    return change


# =============================================================================
# Queries and visibility
# =============================================================================

def filter_visible(
    changes: list[WikiChange], user_id: int | None, can_moderate: bool
) -> list[WikiChange]:
    """Moderators see everything; others see published changes and their own."""
    if can_moderate:
        return list(changes)
    return [
        change
        for change in changes
        if change.moderacio_estat == ModerationStatus.PUBLISHED.value
        or (user_id is not None and change.changed_by == user_id)
    ]


def list_changes_for_object(db: Session, object_type: str, object_id: int) -> list[WikiChange]:
    return list(
        db.scalars(
            select(WikiChange)
            .where(
                WikiChange.object_type == resolve_object_type(object_type),
                WikiChange.object_id == object_id,
            )
            .order_by(WikiChange.id)
        )
    )


def list_pending(
    db: Session,
    object_type: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[WikiChange], int]:
    """Pending changes, oldest first, with the total count."""
    query = select(WikiChange).where(
        WikiChange.moderacio_estat == ModerationStatus.PENDING.value
    )
    if object_type:
        query = query.where(WikiChange.object_type == resolve_object_type(object_type))
    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    items = db.scalars(
        query.order_by(WikiChange.id).offset((page - 1) * per_page).limit(per_page)
    ).all()
    return list(items), total


def history_entries(changes: list[WikiChange]) -> list[VersionedSnapshot]:
    """
    Version chain of an object from its published changes.

    Version 0 is the state before the first published change; version N is
    the state after the N-th.
    """
    published = [
        change for change in sorted(changes, key=lambda c: c.id)
        if change.moderacio_estat == ModerationStatus.PUBLISHED.value
    ]
    if not published:
        return []
    entries = [VersionedSnapshot(0, _safe_snapshot(parse_change_metadata(published[0].metadata_json).before))]
    for version, change in enumerate(published, start=1):
        entries.append(
            VersionedSnapshot(version, _safe_snapshot(parse_change_metadata(change.metadata_json).after))
        )
    return entries


def build_history_diff(
    changes: list[WikiChange],
) -> tuple[list[VersionedFieldChange], list[FieldChange]]:
    """Structured per-version changes of an object plus their rendered rows."""
    structured = build_multi_version_diff(history_entries(changes))
    return structured, render_multi_version_diff(structured)


def _safe_snapshot(raw: Any) -> Any:
    try:
        return decode_snapshot(raw)
    except SnapshotDecodeError:
        return None


# =============================================================================
# Moderation authority
# =============================================================================

MODERATION_ANY_KIND = "admin.moderacio.manage"

MODERATION_ACTIONS: Mapping[str, str] = {
    WikiObjectType.MUNICIPI.value: "territori.municipis.edit",
    WikiObjectType.ARXIU.value: "documentals.arxius.edit",
    WikiObjectType.LLIBRE.value: "documentals.llibres.edit",
}


def target_for_object(
    db: Session, targets: TargetResolver, object_type: str, object_id: int
) -> PermissionTarget:
    if object_type == WikiObjectType.MUNICIPI.value:
        return targets.resolve_municipality(db, object_id)
    if object_type == WikiObjectType.ARXIU.value:
        return targets.resolve_archive(db, object_id)
    if object_type == WikiObjectType.LLIBRE.value:
        return targets.resolve_book(db, object_id)
    return PermissionTarget()


def can_moderate_object(
    db: Session,
    store: PermissionSnapshotStore,
    targets: TargetResolver,
    user_id: int,
    object_type: str,
    object_id: int,
) -> bool:
    actions = [MODERATION_ANY_KIND]
    if object_type in MODERATION_ACTIONS:
        actions.insert(0, MODERATION_ACTIONS[object_type])
    target = target_for_object(db, targets, object_type, object_id)
    return authorization_service.may_any(db, store, user_id, actions, target)


REVERT_ACTION = "wiki.revert"


def can_revert_change(
    db: Session,
    store: PermissionSnapshotStore,
    targets: TargetResolver,
    user_id: int,
    change: WikiChange,
) -> bool:
    """Revert needs ``wiki.revert`` on the object plus moderation authority or authorship."""
    target = target_for_object(db, targets, change.object_type, change.object_id)
    if not authorization_service.may(db, store, user_id, REVERT_ACTION, target):
        return False
    if change.changed_by == user_id:
        return True
    return can_moderate_object(db, store, targets, user_id, change.object_type, change.object_id)
