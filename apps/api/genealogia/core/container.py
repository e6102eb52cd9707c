"""Application container.

Owns the process-wide caches and in-memory job stores. Built once at
startup and stored on ``app.state``; tests build their own.
"""

from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from genealogia.core.config import Settings, settings as default_settings
from genealogia.services.permission_service import PermissionSnapshotStore
from genealogia.services.progress_store import BulkModerationStore, RebuildProgressStore
from genealogia.services.target_service import TargetResolver


@dataclass
class AppContainer:
    session_factory: Callable[[], Session]
    permissions: PermissionSnapshotStore
    targets: TargetResolver
    bulk_jobs: BulkModerationStore
    rebuild_jobs: RebuildProgressStore
    executor: Executor

    @classmethod
    def build(
        cls,
        session_factory: Callable[[], Session],
        executor: Executor | None = None,
        config: Settings | None = None,
    ) -> AppContainer:
        config = config or default_settings
        return cls(
            session_factory=session_factory,
            permissions=PermissionSnapshotStore(config.PERMISSION_CACHE_TTL_SECONDS),
            targets=TargetResolver(
                config.TARGET_CACHE_TTL_SECONDS,
                config.TARGET_CACHE_MAX_LLIBRES,
                config.TARGET_CACHE_MAX_ARXIUS,
                config.TARGET_CACHE_MAX_MUNICIPIS,
            ),
            bulk_jobs=BulkModerationStore(),
            rebuild_jobs=RebuildProgressStore(config.JOB_LOG_LIMIT),
            executor=executor
            or ThreadPoolExecutor(
                max_workers=config.BACKGROUND_WORKERS, thread_name_prefix="genealogia-job"
            ),
        )

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False)
