"""Structured logging helpers.

Log lines carry identifiers only, never snapshot contents.
"""

import logging
from typing import Any


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    user_id: int | None = None,
    job_id: int | str | None = None,
    object_type: str | None = None,
    object_id: int | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict suitable for ``extra=``."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if job_id:
        context["job_id"] = job_id
    if object_type:
        context["object_type"] = object_type
    if object_id:
        context["object_id"] = object_id
    if route:
        context["route"] = route
    return context
