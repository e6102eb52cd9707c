"""Per-level aggregates: demographics and surname statistics.

Both read the territorial closure, so the closure must be current before
they run. Each recompute replaces the level's previous rows.
"""

import logging
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from genealogia.db.enums import ClosureAncestorType
from genealogia.db.models import (
    Arxiu,
    Llibre,
    Municipi,
    NivellAdministratiu,
    NivellCognomStat,
    NivellDemografia,
    Persona,
)
from genealogia.services.closure_service import descendants_of

logger = logging.getLogger(__name__)


def _require_level(db: Session, nivell_id: int) -> NivellAdministratiu:
    nivell = db.get(NivellAdministratiu, nivell_id)
    if nivell is None:
        raise ValueError(f"Nivell {nivell_id} not found")
    return nivell


def list_level_ids(db: Session) -> list[int]:
    return list(db.scalars(select(NivellAdministratiu.id).order_by(NivellAdministratiu.id)))


def rebuild_demografia(db: Session, nivell_id: int) -> NivellDemografia:
    """Recount municipalities, archives, books and persons under a level."""
    _require_level(db, nivell_id)
    municipis = descendants_of(ClosureAncestorType.NIVELL, [nivell_id])

    def count(column) -> int:
        return db.scalar(select(func.count()).where(column.in_(municipis))) or 0

    row = db.get(NivellDemografia, nivell_id) or NivellDemografia(nivell_id=nivell_id)
    row.municipis_total = count(Municipi.id)
    row.arxius_total = count(Arxiu.municipi_id)
    row.llibres_total = count(Llibre.municipi_id)
    row.persones_total = count(Persona.municipi_naixement_id)
    row.updated_at = datetime.now(timezone.utc)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def rebuild_cognom_stats(db: Session, nivell_id: int) -> list[NivellCognomStat]:
    """Surname frequencies of persons born under a level (both surnames)."""
    _require_level(db, nivell_id)
    municipis = descendants_of(ClosureAncestorType.NIVELL, [nivell_id])
    rows = db.execute(
        select(Persona.cognom1, Persona.cognom2).where(
            Persona.municipi_naixement_id.in_(municipis)
        )
    ).all()
    counts: Counter[str] = Counter()
    for cognom1, cognom2 in rows:
        for cognom in (cognom1, cognom2):
            if cognom and cognom.strip():
                counts[cognom.strip()] += 1

    db.execute(delete(NivellCognomStat).where(NivellCognomStat.nivell_id == nivell_id))
    stats = [
        NivellCognomStat(nivell_id=nivell_id, cognom=cognom, total=total)
        for cognom, total in sorted(counts.items())
    ]
    db.add_all(stats)
    db.commit()
    return stats
