"""Target resolver.

Hydrates a partial target (book, archive or municipality id) into the
full hierarchical address used for grant matching. Each kind has its own
bounded TTL cache; cached targets are cloned on the way in and out.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, aliased

from genealogia.core.cache import TTLCache
from genealogia.core.targets import PermissionTarget
from genealogia.db.models import Arxiu, ArxiuLlibre, Llibre, Municipi, NivellAdministratiu
from genealogia.db.models.territory import COMARCA_SLOT, MUNICIPI_LEVEL_SLOTS, PROVINCIA_SLOT
from genealogia.services.closure_service import municipi_country_id

logger = logging.getLogger(__name__)

_SLOT_COLUMNS = [
    getattr(Municipi, f"nivell_administratiu_id_{slot}")
    for slot in range(1, MUNICIPI_LEVEL_SLOTS + 1)
]


def _with_level_countries(stmt: Select) -> Select:
    """Add the level slots and each slot's country to a statement joined to Municipi."""
    levels = [aliased(NivellAdministratiu) for _ in _SLOT_COLUMNS]
    for level, slot_column in zip(levels, _SLOT_COLUMNS):
        stmt = stmt.outerjoin(level, level.id == slot_column)
    return stmt.add_columns(*_SLOT_COLUMNS, *[level.pais_id for level in levels])


def fill_territory(
    target: PermissionTarget,
    municipi_id: int,
    slots: Sequence[int | None],
    countries: Sequence[int | None],
) -> None:
    """Populate municipality, levels, province, comarca and country."""
    target.municipi_id = municipi_id
    target.nivell_ids = [slot for slot in slots if slot and slot > 0]
    target.provincia_id = slots[PROVINCIA_SLOT - 1] or None
    target.comarca_id = slots[COMARCA_SLOT - 1] or None
    target.pais_id = None
    for slot, pais_id in zip(slots, countries):
        if slot and slot > 0 and pais_id and pais_id > 0:
            target.pais_id = pais_id
            break


class TargetResolver:
    """Resolves and caches permission targets per entity kind."""

    def __init__(
        self,
        ttl_seconds: float,
        max_llibres: int,
        max_arxius: int,
        max_municipis: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._llibres: TTLCache[int, PermissionTarget] = TTLCache(
            ttl_seconds, max_llibres, PermissionTarget.clone, clock
        )
        self._arxius: TTLCache[int, PermissionTarget] = TTLCache(
            ttl_seconds, max_arxius, PermissionTarget.clone, clock
        )
        self._municipis: TTLCache[int, PermissionTarget] = TTLCache(
            ttl_seconds, max_municipis, PermissionTarget.clone, clock
        )

    # -------------------------------------------------------------------------
    # Books
    # -------------------------------------------------------------------------

    def resolve_book(self, db: Session, llibre_id: int) -> PermissionTarget:
        if llibre_id <= 0:
            return PermissionTarget()
        cached = self._llibres.get(llibre_id)
        if cached is not None:
            return cached
        target = self._load_book(db, llibre_id)
        if target is None:
            target = self._load_book_fallback(db, llibre_id)
        self._llibres.set(llibre_id, target)
        return target

    def _load_book(self, db: Session, llibre_id: int) -> PermissionTarget | None:
        stmt = (
            select(Llibre.municipi_id, Llibre.arquebisbat_id, ArxiuLlibre.arxiu_id)
            .select_from(Llibre)
            .outerjoin(Municipi, Municipi.id == Llibre.municipi_id)
            .outerjoin(ArxiuLlibre, ArxiuLlibre.llibre_id == Llibre.id)
        )
        stmt = _with_level_countries(stmt).where(Llibre.id == llibre_id)
        rows = db.execute(stmt).all()
        if not rows:
            return None

        first = rows[0]
        slots = list(first[3 : 3 + MUNICIPI_LEVEL_SLOTS])
        countries = list(first[3 + MUNICIPI_LEVEL_SLOTS :])
        arxiu_ids = sorted({row.arxiu_id for row in rows if row.arxiu_id})
        target = PermissionTarget(llibre_id=llibre_id, ecles_id=first.arquebisbat_id)
        self._attach_archives(target, arxiu_ids)
        if first.municipi_id:
            fill_territory(target, first.municipi_id, slots, countries)
        else:
            self._inherit_from_archive(db, target)
        return target

    def _load_book_fallback(self, db: Session, llibre_id: int) -> PermissionTarget:
        target = PermissionTarget(llibre_id=llibre_id)
        llibre = db.get(Llibre, llibre_id)
        if llibre is None:
            return target
        target.ecles_id = llibre.arquebisbat_id
        arxiu_ids = sorted(
            db.scalars(select(ArxiuLlibre.arxiu_id).where(ArxiuLlibre.llibre_id == llibre_id))
        )
        self._attach_archives(target, arxiu_ids)
        if llibre.municipi_id:
            self._fill_from_municipi_row(db, target, llibre.municipi_id)
        else:
            self._inherit_from_archive(db, target)
        return target

    @staticmethod
    def _attach_archives(target: PermissionTarget, arxiu_ids: list[int]) -> None:
        target.arxiu_ids = arxiu_ids
        target.arxiu_id = arxiu_ids[0] if len(arxiu_ids) == 1 else None

    def _inherit_from_archive(self, db: Session, target: PermissionTarget) -> None:
        """Books without a municipality take the first archive's territory."""
        if not target.arxiu_ids:
            return
        archive = self.resolve_archive(db, target.arxiu_ids[0])
        target.municipi_id = archive.municipi_id
        target.nivell_ids = list(archive.nivell_ids)
        target.provincia_id = archive.provincia_id
        target.comarca_id = archive.comarca_id
        target.pais_id = archive.pais_id
        if not target.ecles_id:
            target.ecles_id = archive.ecles_id

    # -------------------------------------------------------------------------
    # Archives
    # -------------------------------------------------------------------------

    def resolve_archive(self, db: Session, arxiu_id: int) -> PermissionTarget:
        if arxiu_id <= 0:
            return PermissionTarget()
        cached = self._arxius.get(arxiu_id)
        if cached is not None:
            return cached
        target = self._load_archive(db, arxiu_id)
        if target is None:
            target = self._load_archive_fallback(db, arxiu_id)
        self._arxius.set(arxiu_id, target)
        return target

    def _load_archive(self, db: Session, arxiu_id: int) -> PermissionTarget | None:
        stmt = (
            select(Arxiu.municipi_id, Arxiu.entitat_eclesiastica_id)
            .select_from(Arxiu)
            .outerjoin(Municipi, Municipi.id == Arxiu.municipi_id)
        )
        row = db.execute(_with_level_countries(stmt).where(Arxiu.id == arxiu_id)).first()
        if row is None:
            return None
        target = PermissionTarget(
            arxiu_id=arxiu_id, arxiu_ids=[arxiu_id], ecles_id=row.entitat_eclesiastica_id
        )
        if row.municipi_id:
            fill_territory(
                target,
                row.municipi_id,
                list(row[2 : 2 + MUNICIPI_LEVEL_SLOTS]),
                list(row[2 + MUNICIPI_LEVEL_SLOTS :]),
            )
        return target

    def _load_archive_fallback(self, db: Session, arxiu_id: int) -> PermissionTarget:
        target = PermissionTarget(arxiu_id=arxiu_id, arxiu_ids=[arxiu_id])
        arxiu = db.get(Arxiu, arxiu_id)
        if arxiu is None:
            return target
        target.ecles_id = arxiu.entitat_eclesiastica_id
        if arxiu.municipi_id:
            self._fill_from_municipi_row(db, target, arxiu.municipi_id)
        return target

    # -------------------------------------------------------------------------
    # Municipalities
    # -------------------------------------------------------------------------

    def resolve_municipality(self, db: Session, municipi_id: int) -> PermissionTarget:
        if municipi_id <= 0:
            return PermissionTarget()
        cached = self._municipis.get(municipi_id)
        if cached is not None:
            return cached
        stmt = _with_level_countries(select(Municipi.id).select_from(Municipi))
        row = db.execute(stmt.where(Municipi.id == municipi_id)).first()
        target = PermissionTarget(municipi_id=municipi_id)
        if row is not None:
            fill_territory(
                target,
                municipi_id,
                list(row[1 : 1 + MUNICIPI_LEVEL_SLOTS]),
                list(row[1 + MUNICIPI_LEVEL_SLOTS :]),
            )
        else:
            self._fill_from_municipi_row(db, target, municipi_id)
        self._municipis.set(municipi_id, target)
        return target

    @staticmethod
    def _fill_from_municipi_row(db: Session, target: PermissionTarget, municipi_id: int) -> None:
        target.municipi_id = municipi_id
        municipi = db.get(Municipi, municipi_id)
        if municipi is None:
            return
        slots = municipi.nivell_ids
        target.nivell_ids = [slot for slot in slots if slot and slot > 0]
        target.provincia_id = municipi.provincia_id or None
        target.comarca_id = municipi.comarca_id or None
        target.pais_id = municipi_country_id(db, municipi)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate_book(self, llibre_id: int) -> None:
        self._llibres.delete(llibre_id)

    def invalidate_archive(self, arxiu_id: int) -> None:
        self._arxius.delete(arxiu_id)
        # Books inherit archive data; drop them all rather than track links.
        self._llibres.clear()

    def invalidate_municipality(self, municipi_id: int) -> None:
        self._municipis.delete(municipi_id)
        self._arxius.clear()
        self._llibres.clear()

    def clear(self) -> None:
        self._llibres.clear()
        self._arxius.clear()
        self._municipis.clear()
