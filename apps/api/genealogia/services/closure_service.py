"""Territorial closure index.

Materializes each municipality's ancestors (itself, its administrative
levels, its country) into ``admin_closure`` so scope checks and list
filters can join on a single table.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genealogia.db.enums import ClosureAncestorType
from genealogia.db.models import AdminClosure, Municipi, NivellAdministratiu

logger = logging.getLogger(__name__)

ClosureEntry = tuple[str, int]


def municipi_country_id(db: Session, municipi: Municipi) -> int | None:
    """
    Country of a municipality.

    The first level in chain order that yields a positive country wins.
    """
    level_ids = [lid for lid in municipi.nivell_ids if lid and lid > 0]
    if not level_ids:
        return None
    countries = dict(
        db.execute(
            select(NivellAdministratiu.id, NivellAdministratiu.pais_id).where(
                NivellAdministratiu.id.in_(level_ids)
            )
        ).all()
    )
    for level_id in level_ids:
        pais_id = countries.get(level_id)
        if pais_id and pais_id > 0:
            return pais_id
    return None


def compute_entries(db: Session, municipi: Municipi) -> list[ClosureEntry]:
    """Ancestor set for a municipality, deduplicated, in chain order."""
    entries: list[ClosureEntry] = [(ClosureAncestorType.MUNICIPI.value, municipi.id)]
    for level_id in municipi.nivell_ids:
        if level_id and level_id > 0:
            entries.append((ClosureAncestorType.NIVELL.value, level_id))
    pais_id = municipi_country_id(db, municipi)
    if pais_id:
        entries.append((ClosureAncestorType.PAIS.value, pais_id))

    seen: set[ClosureEntry] = set()
    unique: list[ClosureEntry] = []
    for entry in entries:
        if entry in seen:
            continue
        seen.add(entry)
        unique.append(entry)
    return unique


def replace_entries(db: Session, municipi_id: int, entries: list[ClosureEntry]) -> None:
    """Replace every closure row for a municipality in one transaction."""
    try:
        db.execute(
            delete(AdminClosure).where(AdminClosure.descendant_municipi_id == municipi_id)
        )
        db.add_all(
            AdminClosure(
                descendant_municipi_id=municipi_id,
                ancestor_type=ancestor_type,
                ancestor_id=ancestor_id,
            )
            for ancestor_type, ancestor_id in entries
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def rebuild_for(db: Session, municipi: Municipi | int) -> list[ClosureEntry]:
    """Recompute and atomically replace closure rows for one municipality."""
    if isinstance(municipi, int):
        row = db.get(Municipi, municipi)
        if row is None:
            raise ValueError(f"Municipi {municipi} not found")
        municipi = row
    entries = compute_entries(db, municipi)
    replace_entries(db, municipi.id, entries)
    return entries


def rebuild_all(db: Session) -> tuple[int, list[int]]:
    """
    Rebuild closure for every municipality.

    Failures are logged and skipped; returns (rebuilt count, failed ids).
    """
    municipi_ids = db.scalars(select(Municipi.id).order_by(Municipi.id)).all()
    rebuilt = 0
    failed: list[int] = []
    for municipi_id in municipi_ids:
        try:
            rebuild_for(db, municipi_id)
            rebuilt += 1
        except (SQLAlchemyError, ValueError) as e:
            db.rollback()
            failed.append(municipi_id)
            logger.error("Closure rebuild failed for municipi %s: %s", municipi_id, e)
    logger.info("Closure rebuild finished: %s rebuilt, %s failed", rebuilt, len(failed))
    return rebuilt, failed


def delete_for(db: Session, municipi_id: int) -> None:
    """Drop closure rows owned by a municipality."""
    db.execute(
        delete(AdminClosure).where(AdminClosure.descendant_municipi_id == municipi_id)
    )
    db.commit()


def get_entries(db: Session, municipi_id: int) -> list[ClosureEntry]:
    rows = db.execute(
        select(AdminClosure.ancestor_type, AdminClosure.ancestor_id)
        .where(AdminClosure.descendant_municipi_id == municipi_id)
        .order_by(AdminClosure.id)
    ).all()
    return [(row.ancestor_type, row.ancestor_id) for row in rows]


def descendants_of(ancestor_type: ClosureAncestorType, ancestor_ids: list[int]):
    """Select of municipality ids under the given ancestors, for IN clauses."""
    return select(AdminClosure.descendant_municipi_id).where(
        AdminClosure.ancestor_type == ancestor_type.value,
        AdminClosure.ancestor_id.in_(ancestor_ids),
    )
