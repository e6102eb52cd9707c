"""Retry handler registry for durable admin jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Mapping

from sqlalchemy.orm import Session

from genealogia.db.enums import AdminJobKind
from genealogia.jobs.handlers import nivells_rebuild

if TYPE_CHECKING:
    from genealogia.core.container import AppContainer
    from genealogia.db.models import AdminJob

RetryHandler = Callable[[Session, "AdminJob", "AppContainer", int | None], "AdminJob"]

RETRY_HANDLERS: Mapping[str, RetryHandler] = {
    AdminJobKind.NIVELLS_REBUILD.value: nivells_rebuild.retry_nivells_rebuild,
}


def resolve_retry_handler(kind: str) -> RetryHandler:
    handler = RETRY_HANDLERS.get(kind)
    if not handler:
        raise ValueError(f"No retry handler for job kind: {kind}")
    return handler
