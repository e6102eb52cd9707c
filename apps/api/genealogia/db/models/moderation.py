"""Moderation columns shared by wiki-editable entities."""

from datetime import datetime

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from genealogia.db.enums import ModerationStatus


class ModerationMixin:
    """Moderation state carried by canonical rows."""

    moderacio_estat: Mapped[str] = mapped_column(
        String(20), default=ModerationStatus.PENDING.value, nullable=False
    )
    moderacio_motiu: Mapped[str | None] = mapped_column(Text, nullable=True)
    moderated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    moderated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
