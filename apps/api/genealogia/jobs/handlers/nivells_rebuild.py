"""Administrative level rebuild job.

Rebuilds the territorial closure once, then recomputes demographics
and/or surname statistics for each target level. Progress goes to both
the durable admin job and its in-memory mirror after every unit of work.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Callable

from sqlalchemy.orm import Session

from genealogia.core.structured_logging import build_log_context
from genealogia.db.enums import AdminJobKind, AdminJobStatus, RebuildKind
from genealogia.db.models import AdminJob
from genealogia.services import admin_job_service, closure_service, nivell_stats_service
from genealogia.services.admin_job_service import AdminJobError, RetryNotAllowedError
from genealogia.services.progress_store import RebuildProgressJob, RebuildProgressStore

if TYPE_CHECKING:
    from genealogia.core.container import AppContainer

logger = logging.getLogger(__name__)

RECOMPUTES: dict[str, Callable[[Session, int], object]] = {
    RebuildKind.DEMOGRAFIA.value: nivell_stats_service.rebuild_demografia,
    RebuildKind.STATS.value: nivell_stats_service.rebuild_cognom_stats,
}


def recompute_steps(kind: RebuildKind) -> list[str]:
    if kind == RebuildKind.ALL:
        return [RebuildKind.DEMOGRAFIA.value, RebuildKind.STATS.value]
    return [kind.value]


def build_payload(kind: RebuildKind, nivell_id: int | None, all: bool) -> dict:
    return {
        "kind": kind.value,
        "nivell_id": nivell_id or 0,
        "all": all,
        "job_source": "admin",
    }


def _launch(
    db: Session,
    container: AppContainer,
    payload_json: str,
    kind: RebuildKind,
    nivell_id: int | None,
    all: bool,
    created_by: int | None,
) -> tuple[AdminJob, RebuildProgressJob]:
    job = admin_job_service.create_job(
        db, AdminJobKind.NIVELLS_REBUILD, created_by=created_by, payload_json=payload_json
    )
    progress = container.rebuild_jobs.new_job(kind.value, nivell_id, all, job.id)
    container.executor.submit(
        run_nivells_rebuild,
        container.session_factory,
        container.rebuild_jobs,
        job.id,
        progress.id,
        kind,
        nivell_id,
        all,
    )
    return job, progress


def start_nivells_rebuild(
    db: Session,
    container: AppContainer,
    kind: RebuildKind | str,
    nivell_id: int | None = None,
    all: bool = False,
    created_by: int | None = None,
) -> tuple[AdminJob, RebuildProgressJob]:
    """Create the durable and in-memory jobs and schedule the run."""
    try:
        kind = RebuildKind(kind)
    except ValueError:
        raise AdminJobError(f"Unknown rebuild kind: {kind}") from None
    if not all and not (nivell_id and nivell_id > 0):
        raise AdminJobError("missing nivell id")
    payload_json = json.dumps(build_payload(kind, nivell_id, all), sort_keys=True)
    return _launch(db, container, payload_json, kind, nivell_id, all, created_by)


def retry_nivells_rebuild(
    db: Session, job: AdminJob, container: AppContainer, actor_id: int | None
) -> AdminJob:
    """Relaunch a failed rebuild with its original payload."""
    payload = admin_job_service.load_payload(job)
    try:
        kind = RebuildKind(str(payload.get("kind") or ""))
    except ValueError:
        raise RetryNotAllowedError(f"Job {job.id} payload has no rebuild kind") from None
    nivell_id = payload.get("nivell_id") if isinstance(payload.get("nivell_id"), int) else None
    all = bool(payload.get("all"))
    new_job, _ = _launch(
        db, container, job.payload_json or "", kind, nivell_id, all, actor_id or job.created_by
    )
    logger.info("Admin job %s retried as %s", job.id, new_job.id, extra=build_log_context(user_id=actor_id, job_id=new_job.id))
    return new_job


def collect_level_ids(db: Session, nivell_id: int | None, all: bool) -> list[int]:
    """A positive ``nivell_id`` wins over ``all``."""
    if nivell_id and nivell_id > 0:
        return [nivell_id]
    if all:
        return nivell_stats_service.list_level_ids(db)
    raise AdminJobError("missing nivell id")


def run_nivells_rebuild(
    session_factory: Callable[[], Session],
    progress_store: RebuildProgressStore,
    admin_job_id: int,
    progress_id: str,
    kind: RebuildKind,
    nivell_id: int | None,
    all: bool,
) -> None:
    """Background entry point. Never raises; failures end the job in error."""
    with session_factory() as db:
        try:
            result = _run(db, progress_store, admin_job_id, progress_id, kind, nivell_id, all)
        except Exception as e:
            db.rollback()
            logger.exception(
                "Level rebuild failed", extra=build_log_context(job_id=admin_job_id)
            )
            progress_store.log(progress_id, f"Error: {e}")
            progress_store.finish(progress_id, str(e))
            admin_job_service.finish_job(db, admin_job_id, AdminJobStatus.ERROR, error=str(e))
            return
        admin_job_service.finish_job(db, admin_job_id, AdminJobStatus.DONE, result=result)
        progress_store.finish(progress_id)


def _run(
    db: Session,
    progress_store: RebuildProgressStore,
    admin_job_id: int,
    progress_id: str,
    kind: RebuildKind,
    nivell_id: int | None,
    all: bool,
) -> dict:
    progress_store.log(progress_id, "Collecting administrative levels")
    level_ids = collect_level_ids(db, nivell_id, all)
    steps = recompute_steps(kind)
    total = len(level_ids) * len(steps)
    progress_store.set_total(progress_id, total)
    admin_job_service.update_progress(db, admin_job_id, 0, total)
    if not level_ids:
        progress_store.log(progress_id, "No levels to rebuild")
        return {"processed": 0, "kind": kind.value}

    progress_store.log(progress_id, "Rebuilding territorial closure")
    rebuilt, failed = closure_service.rebuild_all(db)
    progress_store.log(progress_id, f"Closure rebuilt: {rebuilt} municipalities, {len(failed)} failed")

    processed = 0
    for level_id in level_ids:
        for step in steps:
            RECOMPUTES[step](db, level_id)
            processed += 1
            progress_store.set_processed(progress_id, processed)
            admin_job_service.update_progress(db, admin_job_id, processed, total)
            progress_store.log(progress_id, f"{step} nivell {level_id} ({processed}/{total})")
    return {"processed": processed, "kind": kind.value}
