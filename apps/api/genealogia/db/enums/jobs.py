"""Admin job enums."""

from enum import Enum


class AdminJobKind(str, Enum):
    """Kinds of durable admin jobs."""

    NIVELLS_REBUILD = "nivells_rebuild"
    ADMIN_IMPORT = "admin_import"  # Opaque payload, no retry handler


class AdminJobStatus(str, Enum):
    """Status automaton: queued -> running -> done | error."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def is_final(self) -> bool:
        return self in (AdminJobStatus.DONE, AdminJobStatus.ERROR)


class RebuildKind(str, Enum):
    """Per-level recompute selection for nivells_rebuild jobs."""

    DEMOGRAFIA = "demografia"
    STATS = "stats"
    ALL = "all"
