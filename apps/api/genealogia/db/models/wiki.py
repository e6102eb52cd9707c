"""Wiki change queue and the person-side entities it moderates."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from genealogia.db.base import Base
from genealogia.db.enums import ModerationStatus, WikiChangeType
from genealogia.db.models.moderation import ModerationMixin


class Persona(ModerationMixin, Base):
    """A person record."""

    __tablename__ = "persones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    cognom1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cognom2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data_naixement: Mapped[str | None] = mapped_column(String(40), nullable=True)
    municipi_naixement_id: Mapped[int | None] = mapped_column(
        ForeignKey("municipis.id", ondelete="SET NULL"), nullable=True
    )
    ofici: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Cognom(Base):
    """A surname entry. Carries no moderation state of its own."""

    __tablename__ = "cognoms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    forma: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    origen: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)


class EventHistoric(ModerationMixin, Base):
    """A historic event tied to a municipality."""

    __tablename__ = "events_historics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    titol: Mapped[str] = mapped_column(String(255), nullable=False)
    descripcio: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_inici: Mapped[str | None] = mapped_column(String(40), nullable=True)
    municipi_id: Mapped[int | None] = mapped_column(
        ForeignKey("municipis.id", ondelete="SET NULL"), nullable=True
    )


class WikiChange(Base):
    """
    A moderated mutation proposal.

    ``metadata_json`` holds ``{"before", "after", "source_change_id", "reason"}``.
    A ``revert`` change restores the ``after`` snapshot of an older one.
    The snapshot is kept as history after the change is resolved.
    """

    __tablename__ = "wiki_changes"
    __table_args__ = (
        Index("idx_wiki_changes_object", "object_type", "object_id"),
        Index("idx_wiki_changes_estat", "moderacio_estat"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    object_type: Mapped[str] = mapped_column(String(40), nullable=False)
    object_id: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(
        String(20), default=WikiChangeType.EDIT.value, server_default="edit", nullable=False
    )
    changed_by: Mapped[int | None] = mapped_column(
        ForeignKey("usuaris.id", ondelete="SET NULL"), nullable=True
    )
    moderacio_estat: Mapped[str] = mapped_column(
        String(20), default=ModerationStatus.PENDING.value, nullable=False
    )
    metadata_json: Mapped[str] = mapped_column("metadata", Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    moderated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    moderated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    moderated_motiu: Mapped[str | None] = mapped_column(Text, nullable=True)
