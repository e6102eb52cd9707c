"""Wiki moderation enums."""

from enum import Enum


class ModerationStatus(str, Enum):
    """Moderation state shared by wiki changes and moderated entities."""

    PENDING = "pendent"
    PUBLISHED = "publicat"
    REJECTED = "rebutjat"


class WikiObjectType(str, Enum):
    """Entity kinds that accept wiki changes."""

    MUNICIPI = "municipi"
    ARXIU = "arxiu"
    LLIBRE = "llibre"
    PERSONA = "persona"
    COGNOM = "cognom"
    EVENT_HISTORIC = "event_historic"


class WikiChangeType(str, Enum):
    """Kind of wiki change: a regular edit or a restore of an older version."""

    EDIT = "edit"
    REVERT = "revert"
