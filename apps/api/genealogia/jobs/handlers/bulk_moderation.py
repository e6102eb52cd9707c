"""Bulk moderation job: approve or reject many pending changes at once.

Tracked only in memory. Changes the moderator has no authority over are
left pending and do not count toward the total.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from genealogia.core.structured_logging import build_log_context
from genealogia.db.enums import ModerationStatus
from genealogia.db.models import WikiChange
from genealogia.services import wiki_service
from genealogia.services.progress_store import BulkModerationJob

if TYPE_CHECKING:
    from genealogia.core.container import AppContainer

logger = logging.getLogger(__name__)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
BULK_ACTIONS = (ACTION_APPROVE, ACTION_REJECT)

SCOPE_ALL = "all"
SCOPE_SELECTION = "selection"


def start_bulk_moderation(
    container: AppContainer,
    action: str,
    object_type: str,
    moderator_id: int,
    change_ids: list[int] | None = None,
    note: str | None = None,
) -> BulkModerationJob:
    """Register the in-memory job and schedule the run."""
    if action not in BULK_ACTIONS:
        raise wiki_service.WikiChangeError(f"Unknown bulk action: {action}")
    object_type = wiki_service.resolve_object_type(object_type)
    scope = SCOPE_SELECTION if change_ids else SCOPE_ALL
    job = container.bulk_jobs.new_job(action, scope, object_type)
    container.executor.submit(
        run_bulk_moderation,
        container,
        job.id,
        action,
        object_type,
        moderator_id,
        list(change_ids or []),
        note,
    )
    return job


def _pending_changes(db: Session, object_type: str, change_ids: list[int]) -> list[WikiChange]:
    query = select(WikiChange).where(
        WikiChange.object_type == object_type,
        WikiChange.moderacio_estat == ModerationStatus.PENDING.value,
    )
    if change_ids:
        query = query.where(WikiChange.id.in_(change_ids))
    return list(db.scalars(query.order_by(WikiChange.id)))


def run_bulk_moderation(
    container: AppContainer,
    job_id: str,
    action: str,
    object_type: str,
    moderator_id: int,
    change_ids: list[int],
    note: str | None,
) -> None:
    """Background entry point. The first failing change stops the job."""
    store = container.bulk_jobs
    with container.session_factory() as db:
        try:
            changes = [
                change
                for change in _pending_changes(db, object_type, change_ids)
                if wiki_service.can_moderate_object(
                    db,
                    container.permissions,
                    container.targets,
                    moderator_id,
                    change.object_type,
                    change.object_id,
                )
            ]
            store.set_total(job_id, len(changes))
            for processed, change in enumerate(changes, start=1):
                if action == ACTION_APPROVE:
                    wiki_service.apply_change(
                        db, change, moderator_id, note, targets=container.targets
                    )
                else:
                    wiki_service.reject_change(db, change, moderator_id, note)
                store.set_processed(job_id, processed)
        except Exception as e:
            db.rollback()
            logger.exception(
                "Bulk moderation %s failed",
                job_id,
                extra=build_log_context(user_id=moderator_id, job_id=job_id),
            )
            store.finish(job_id, str(e))
            return
    store.finish(job_id)
    logger.info(
        "Bulk moderation %s finished",
        job_id,
        extra=build_log_context(user_id=moderator_id, job_id=job_id, object_type=object_type),
    )
