"""Users, groups, policies and grants."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from genealogia.db.base import Base


class User(Base):
    """
    Platform user.

    ``permissions_version`` is bumped whenever a binding, policy or grant
    affecting the user changes; permission snapshots are cached by it.
    """

    __tablename__ = "usuaris"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    usuari: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actiu: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    permissions_version: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class Grup(Base):
    """A group of users sharing policies."""

    __tablename__ = "grups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nom: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    descripcio: Mapped[str | None] = mapped_column(Text, nullable=True)


class UsuariGrup(Base):
    __tablename__ = "usuaris_grups"

    usuari_id: Mapped[int] = mapped_column(
        ForeignKey("usuaris.id", ondelete="CASCADE"), primary_key=True
    )
    grup_id: Mapped[int] = mapped_column(
        ForeignKey("grups.id", ondelete="CASCADE"), primary_key=True
    )


class Politica(Base):
    """
    A named bag of grants.

    ``permisos`` stores the policy document (legacy flags plus statements)
    as JSON text.
    """

    __tablename__ = "politiques"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nom: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    descripcio: Mapped[str | None] = mapped_column(Text, nullable=True)
    permisos: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )


class PoliticaGrant(Base):
    """One (action, scope) grant owned by a policy."""

    __tablename__ = "politica_grants"
    __table_args__ = (
        Index("idx_politica_grants_politica", "politica_id"),
        Index("idx_politica_grants_perm", "perm_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    politica_id: Mapped[int] = mapped_column(
        ForeignKey("politiques.id", ondelete="CASCADE"), nullable=False
    )
    perm_key: Mapped[str] = mapped_column(String(100), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(40), nullable=False)
    scope_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    include_children: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )


class UsuariPolitica(Base):
    __tablename__ = "usuaris_politiques"

    usuari_id: Mapped[int] = mapped_column(
        ForeignKey("usuaris.id", ondelete="CASCADE"), primary_key=True
    )
    politica_id: Mapped[int] = mapped_column(
        ForeignKey("politiques.id", ondelete="CASCADE"), primary_key=True
    )


class GrupPolitica(Base):
    __tablename__ = "grups_politiques"

    grup_id: Mapped[int] = mapped_column(
        ForeignKey("grups.id", ondelete="CASCADE"), primary_key=True
    )
    politica_id: Mapped[int] = mapped_column(
        ForeignKey("politiques.id", ondelete="CASCADE"), primary_key=True
    )
