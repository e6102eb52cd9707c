"""Enum definitions for application constants."""

from genealogia.db.enums.jobs import AdminJobKind, AdminJobStatus, RebuildKind
from genealogia.db.enums.territory import ClosureAncestorType
from genealogia.db.enums.wiki import ModerationStatus, WikiChangeType, WikiObjectType

__all__ = [
    "AdminJobKind",
    "AdminJobStatus",
    "ClosureAncestorType",
    "ModerationStatus",
    "RebuildKind",
    "WikiChangeType",
    "WikiObjectType",
]
