"""Per-level aggregates recomputed by the level rebuild job."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from genealogia.db.base import Base


class NivellDemografia(Base):
    """Counts of entities under an administrative level."""

    __tablename__ = "nivell_demografia"

    nivell_id: Mapped[int] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="CASCADE"), primary_key=True
    )
    municipis_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    arxius_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    llibres_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    persones_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )


class NivellCognomStat(Base):
    """Surname frequency among persons born under a level."""

    __tablename__ = "nivell_cognom_stats"
    __table_args__ = (
        UniqueConstraint("nivell_id", "cognom", name="uq_nivell_cognom_stats"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nivell_id: Mapped[int] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="CASCADE"), nullable=False
    )
    cognom: Mapped[str] = mapped_column(String(255), nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
