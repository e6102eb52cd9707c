"""Territorial, ecclesiastical and archival hierarchy models."""

from __future__ import annotations

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from genealogia.db.base import Base
from genealogia.db.models.moderation import ModerationMixin

# Municipalities reference up to seven administrative levels.
MUNICIPI_LEVEL_SLOTS = 7
PROVINCIA_SLOT = 3
COMARCA_SLOT = 4


class Pais(Base):
    """A country, root of the territorial hierarchy."""

    __tablename__ = "paisos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    codi_iso2: Mapped[str | None] = mapped_column(String(2), nullable=True)
    nom: Mapped[str] = mapped_column(String(255), nullable=False)


class NivellAdministratiu(ModerationMixin, Base):
    """
    An administrative level (region, province, comarca, ...).

    Every level belongs to a country; ``parent_id`` links it to the
    enclosing level.
    """

    __tablename__ = "nivells_administratius"
    __table_args__ = (Index("idx_nivells_pais", "pais_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pais_id: Mapped[int | None] = mapped_column(
        ForeignKey("paisos.id", ondelete="SET NULL"), nullable=True
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivel: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    tipus: Mapped[str | None] = mapped_column(String(100), nullable=True)


class Municipi(ModerationMixin, Base):
    """A municipality and its ordered chain of administrative levels."""

    __tablename__ = "municipis"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    tipus: Mapped[str | None] = mapped_column(String(100), nullable=True)
    codi_postal: Mapped[str | None] = mapped_column(String(20), nullable=True)
    nivell_administratiu_id_1: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivell_administratiu_id_2: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivell_administratiu_id_3: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivell_administratiu_id_4: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivell_administratiu_id_5: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivell_administratiu_id_6: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )
    nivell_administratiu_id_7: Mapped[int | None] = mapped_column(
        ForeignKey("nivells_administratius.id", ondelete="SET NULL"), nullable=True
    )

    @property
    def nivell_ids(self) -> list[int | None]:
        """Level slots in chain order (slot 1 first)."""
        return [
            getattr(self, f"nivell_administratiu_id_{slot}")
            for slot in range(1, MUNICIPI_LEVEL_SLOTS + 1)
        ]

    @property
    def provincia_id(self) -> int | None:
        return self.nivell_ids[PROVINCIA_SLOT - 1]

    @property
    def comarca_id(self) -> int | None:
        return self.nivell_ids[COMARCA_SLOT - 1]


class EntitatEclesiastica(ModerationMixin, Base):
    """Ecclesiastical entity (archdiocese, diocese, parish, ...)."""

    __tablename__ = "entitats_eclesiastiques"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    tipus: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pais_id: Mapped[int | None] = mapped_column(
        ForeignKey("paisos.id", ondelete="SET NULL"), nullable=True
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("entitats_eclesiastiques.id", ondelete="SET NULL"), nullable=True
    )


class Arxiu(ModerationMixin, Base):
    """An archive holding books."""

    __tablename__ = "arxius"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    tipus: Mapped[str | None] = mapped_column(String(100), nullable=True)
    adreca: Mapped[str | None] = mapped_column(Text, nullable=True)
    municipi_id: Mapped[int | None] = mapped_column(
        ForeignKey("municipis.id", ondelete="SET NULL"), nullable=True
    )
    entitat_eclesiastica_id: Mapped[int | None] = mapped_column(
        ForeignKey("entitats_eclesiastiques.id", ondelete="SET NULL"), nullable=True
    )


class Llibre(ModerationMixin, Base):
    """A register book. Belongs to one municipality, many archives."""

    __tablename__ = "llibres"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    titol: Mapped[str] = mapped_column(String(255), nullable=False)
    tipus_llibre: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cronologia: Mapped[str | None] = mapped_column(String(100), nullable=True)
    municipi_id: Mapped[int | None] = mapped_column(
        ForeignKey("municipis.id", ondelete="SET NULL"), nullable=True
    )
    arquebisbat_id: Mapped[int | None] = mapped_column(
        ForeignKey("entitats_eclesiastiques.id", ondelete="SET NULL"), nullable=True
    )


class ArxiuLlibre(Base):
    """Archive <-> book bridge."""

    __tablename__ = "arxius_llibres"

    arxiu_id: Mapped[int] = mapped_column(
        ForeignKey("arxius.id", ondelete="CASCADE"), primary_key=True
    )
    llibre_id: Mapped[int] = mapped_column(
        ForeignKey("llibres.id", ondelete="CASCADE"), primary_key=True
    )
    signatura: Mapped[str | None] = mapped_column(String(100), nullable=True)


class AdminClosure(Base):
    """
    Materialized ancestors of a municipality.

    Rows are owned by the municipality they describe and are replaced as a
    whole on rebuild.
    """

    __tablename__ = "admin_closure"
    __table_args__ = (
        UniqueConstraint(
            "descendant_municipi_id",
            "ancestor_type",
            "ancestor_id",
            name="uq_admin_closure_entry",
        ),
        Index("idx_admin_closure_ancestor", "ancestor_type", "ancestor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    descendant_municipi_id: Mapped[int] = mapped_column(
        ForeignKey("municipis.id", ondelete="CASCADE"), nullable=False
    )
    ancestor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    ancestor_id: Mapped[int] = mapped_column(Integer, nullable=False)
