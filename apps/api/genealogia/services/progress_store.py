"""In-memory job handles for UI polling.

These mirror long-running work (bulk moderation, level rebuilds) with
sub-second granularity. They are not authoritative and are lost on
restart; durable state lives in ``admin_jobs``.
"""

from __future__ import annotations

import copy
import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, TypeVar


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProgressJob:
    id: str
    total: int = 0
    processed: int = 0
    done: bool = False
    error: str = ""
    started_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None

    @property
    def status(self) -> str:
        if not self.done:
            return "running"
        return "error" if self.error else "done"


@dataclass
class BulkModerationJob(ProgressJob):
    action: str = ""
    scope: str = ""
    object_type: str = ""


@dataclass
class RebuildProgressJob(ProgressJob):
    kind: str = ""
    nivell_id: int | None = None
    all: bool = False
    admin_job_id: int | None = None
    logs: deque[str] = field(default_factory=deque)


J = TypeVar("J", bound=ProgressJob)


class ProgressStore(Generic[J]):
    """
    Lock-guarded map of job handles.

    Progress never decreases and a finished job ignores further updates.
    Snapshots are copies.
    """

    id_prefix = "job"

    def __init__(self) -> None:
        self._jobs: dict[str, J] = {}
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self.id_prefix}-{time.time_ns()}-{next(self._seq)}"

    def _register(self, job: J) -> J:
        with self._lock:
            self._jobs[job.id] = job
            return copy.deepcopy(job)

    def set_total(self, job_id: str, total: int) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.done:
                return
            job.total = max(total, 0)
            job.updated_at = _now()

    def set_processed(self, job_id: str, processed: int) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.done or processed < job.processed:
                return
            job.processed = processed
            job.updated_at = _now()

    def finish(self, job_id: str, error: str | None = None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.done:
                return
            job.done = True
            job.error = error or ""
            job.finished_at = job.updated_at = _now()

    def snapshot(self, job_id: str) -> J | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class BulkModerationStore(ProgressStore[BulkModerationJob]):
    id_prefix = "moderacio-bulk"

    def new_job(self, action: str, scope: str, object_type: str) -> BulkModerationJob:
        return self._register(
            BulkModerationJob(
                id=self._next_id(), action=action, scope=scope, object_type=object_type
            )
        )


class RebuildProgressStore(ProgressStore[RebuildProgressJob]):
    id_prefix = "nivells-rebuild"

    def __init__(self, log_limit: int = 200) -> None:
        super().__init__()
        self._log_limit = log_limit

    def new_job(
        self,
        kind: str,
        nivell_id: int | None,
        all: bool,
        admin_job_id: int | None = None,
    ) -> RebuildProgressJob:
        return self._register(
            RebuildProgressJob(
                id=self._next_id(),
                kind=kind,
                nivell_id=nivell_id,
                all=all,
                admin_job_id=admin_job_id,
                logs=deque(maxlen=self._log_limit),
            )
        )

    def log(self, job_id: str, line: str) -> None:
        """Append a log line; the oldest lines drop past the limit."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.logs.append(f"{_now():%H:%M:%S} {line}")
            job.updated_at = _now()
