"""Durable admin job model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from genealogia.db.base import Base
from genealogia.db.enums import AdminJobStatus


class AdminJob(Base):
    """
    Long-running admin task record.

    Source of truth for progress polling across processes. In-memory
    progress handles only mirror it.
    """

    __tablename__ = "admin_jobs"
    __table_args__ = (
        Index("idx_admin_jobs_kind_status", "kind", "status"),
        Index("idx_admin_jobs_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AdminJobStatus.QUEUED.value, nullable=False
    )
    progress_done: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by: Mapped[int | None] = mapped_column(
        ForeignKey("usuaris.id", ondelete="SET NULL"), nullable=True
    )
