"""Tests for the administrative level rebuild job."""

import json

import pytest
from sqlalchemy import select

from genealogia.db.enums import AdminJobStatus, RebuildKind
from genealogia.db.models import NivellCognomStat, NivellDemografia
from genealogia.jobs.handlers import nivells_rebuild
from genealogia.services import admin_job_service, closure_service
from genealogia.services.admin_job_service import AdminJobError


@pytest.fixture
def populated(make):
    make.territory()
    make.persona("Joan", "Puig", "Soler", municipi_id=5)
    make.persona("Maria", "Puig", None, municipi_id=5)
    make.persona("Pere", "Vila", None)


def _finish(db, executor, job_id):
    executor.run_pending()
    db.expire_all()
    return admin_job_service.get_job(db, job_id)


def test_stats_rebuild_for_one_level(db, populated, container, executor):
    job, progress = nivells_rebuild.start_nivells_rebuild(
        db, container, RebuildKind.STATS, nivell_id=4, created_by=1
    )
    assert job.status == AdminJobStatus.RUNNING.value
    assert json.loads(job.payload_json) == {
        "all": False,
        "job_source": "admin",
        "kind": "stats",
        "nivell_id": 4,
    }
    assert progress.admin_job_id == job.id

    done = _finish(db, executor, job.id)

    assert done.status == AdminJobStatus.DONE.value
    assert (done.progress_done, done.progress_total) == (1, 1)
    stats = db.scalars(
        select(NivellCognomStat).where(NivellCognomStat.nivell_id == 4).order_by(NivellCognomStat.cognom)
    ).all()
    assert [(s.cognom, s.total) for s in stats] == [("Puig", 2), ("Soler", 1)]
    assert closure_service.get_entries(db, 5)[0] == ("municipi", 5)


def test_demografia_rebuild_counts_entities(db, populated, container, executor):
    job, _ = nivells_rebuild.start_nivells_rebuild(db, container, "demografia", nivell_id=1)
    _finish(db, executor, job.id)

    row = db.get(NivellDemografia, 1)
    assert (row.municipis_total, row.arxius_total, row.llibres_total, row.persones_total) == (1, 1, 1, 2)


def test_rebuild_all_levels_mirrors_progress(db, populated, container, executor):
    job, progress = nivells_rebuild.start_nivells_rebuild(db, container, RebuildKind.ALL, all=True)

    done = _finish(db, executor, job.id)
    mirror = container.rebuild_jobs.snapshot(progress.id)

    assert done.status == AdminJobStatus.DONE.value
    assert (done.progress_done, done.progress_total) == (8, 8)
    assert json.loads(done.result_json) == {"kind": "all", "processed": 8}
    assert mirror.status == "done"
    assert (mirror.processed, mirror.total) == (8, 8)
    assert any("Rebuilding territorial closure" in line for line in mirror.logs)
    assert db.get(NivellDemografia, 3) is not None


def test_level_id_takes_precedence_over_all(db, populated, container, executor):
    job, progress = nivells_rebuild.start_nivells_rebuild(
        db, container, RebuildKind.STATS, nivell_id=4, all=True
    )

    done = _finish(db, executor, job.id)

    assert (done.progress_done, done.progress_total) == (1, 1)
    assert container.rebuild_jobs.snapshot(progress.id).total == 1
    assert nivells_rebuild.collect_level_ids(db, 4, True) == [4]
    assert nivells_rebuild.collect_level_ids(db, None, True) == [1, 2, 3, 4]


def test_rebuild_with_no_levels(db, container, executor):
    job, progress = nivells_rebuild.start_nivells_rebuild(db, container, RebuildKind.STATS, all=True)

    done = _finish(db, executor, job.id)

    assert done.status == AdminJobStatus.DONE.value
    assert json.loads(done.result_json) == {"kind": "stats", "processed": 0}
    assert admin_job_service.progress_percent(done) == 100
    assert any("No levels to rebuild" in line for line in container.rebuild_jobs.snapshot(progress.id).logs)


def test_missing_level_fails_the_job(db, populated, container, executor):
    job, progress = nivells_rebuild.start_nivells_rebuild(db, container, RebuildKind.STATS, nivell_id=99)

    done = _finish(db, executor, job.id)
    mirror = container.rebuild_jobs.snapshot(progress.id)

    assert done.status == AdminJobStatus.ERROR.value
    assert "Nivell 99 not found" in done.error_text
    assert mirror.status == "error"
    assert any("Error: Nivell 99 not found" in line for line in mirror.logs)


@pytest.mark.parametrize("nivell_id", [None, 0, -3])
def test_start_requires_level_or_all(db, container, nivell_id):
    with pytest.raises(AdminJobError, match="missing nivell id"):
        nivells_rebuild.start_nivells_rebuild(db, container, RebuildKind.STATS, nivell_id=nivell_id)
    assert admin_job_service.count_jobs(db) == 0


def test_start_rejects_unknown_kind(db, container):
    with pytest.raises(AdminJobError, match="Unknown rebuild kind"):
        nivells_rebuild.start_nivells_rebuild(db, container, "poblacio", nivell_id=1)


def test_failed_rebuild_can_be_retried(db, make, populated, container, executor):
    job, _ = nivells_rebuild.start_nivells_rebuild(db, container, RebuildKind.STATS, nivell_id=99)
    _finish(db, executor, job.id)
    make.nivell(99, pais_id=1)

    retried = admin_job_service.retry_job(db, job.id, container, actor_id=5)
    done = _finish(db, executor, retried.id)

    assert done.status == AdminJobStatus.DONE.value
    assert json.loads(done.payload_json)["nivell_id"] == 99
    assert admin_job_service.get_job(db, job.id).status == AdminJobStatus.ERROR.value
    assert len(container.rebuild_jobs) == 2
