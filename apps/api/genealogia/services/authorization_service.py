"""Authorization evaluator.

Point queries answer "may user U perform action A on target T?". List
queries compile the grants for an action into a ``ListScopeFilter`` that the
SQL layer turns into a WHERE clause. Every row admitted by a list filter
passes the point query for that row's target.

Authorization never raises: a failure to build the snapshot denies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import ColumnElement, false, or_, select, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genealogia.core.permissions import ScopeType
from genealogia.core.targets import PermissionTarget
from genealogia.db.enums import ClosureAncestorType
from genealogia.db.models import Arxiu, ArxiuLlibre, Llibre, Municipi
from genealogia.services.closure_service import descendants_of
from genealogia.services.permission_service import (
    CompiledGrant,
    PermissionSnapshot,
    PermissionSnapshotStore,
    empty_snapshot,
)

logger = logging.getLogger(__name__)


# Kinds whose descendant grants constrain a list of the key kind.
LIST_SCOPE_PARENTS: dict[ScopeType, frozenset[ScopeType]] = {
    ScopeType.ARXIU: frozenset({
        ScopeType.PAIS, ScopeType.PROVINCIA, ScopeType.COMARCA,
        ScopeType.MUNICIPI, ScopeType.NIVELL, ScopeType.ECLES,
    }),
    ScopeType.LLIBRE: frozenset({
        ScopeType.PAIS, ScopeType.PROVINCIA, ScopeType.COMARCA,
        ScopeType.MUNICIPI, ScopeType.NIVELL, ScopeType.ECLES, ScopeType.ARXIU,
    }),
    ScopeType.MUNICIPI: frozenset({
        ScopeType.PAIS, ScopeType.PROVINCIA, ScopeType.COMARCA, ScopeType.NIVELL,
    }),
    ScopeType.COMARCA: frozenset({ScopeType.PAIS, ScopeType.PROVINCIA}),
    ScopeType.PROVINCIA: frozenset({ScopeType.PAIS}),
    ScopeType.ECLES: frozenset({ScopeType.PAIS}),
}


@dataclass
class ListScopeFilter:
    """Scope ids a user may browse for one action, bucketed by kind."""

    has_global: bool = False
    ids: dict[ScopeType, list[int]] = field(default_factory=dict)

    def add(self, scope: ScopeType, scope_id: int | None) -> None:
        if scope_id is None or scope_id <= 0:
            return
        bucket = self.ids.setdefault(scope, [])
        if scope_id not in bucket:
            bucket.append(scope_id)

    def ids_for(self, scope: ScopeType) -> list[int]:
        return list(self.ids.get(scope, []))

    def is_empty(self) -> bool:
        return not self.has_global and not any(self.ids.values())


# =============================================================================
# Grant matching
# =============================================================================

def grant_matches_target(grant: CompiledGrant, target: PermissionTarget) -> bool:
    """Whether a single grant authorizes an action on the target."""
    if grant.scope_type == ScopeType.GLOBAL:
        return True
    most_specific = target.most_specific_scope

    if grant.scope_type == ScopeType.NIVELL:
        if not target.nivell_ids:
            return False
        if not grant.include_children:
            return target.deepest_nivell_id == grant.scope_id
        return grant.scope_id in target.nivell_ids

    if grant.scope_type == ScopeType.ARXIU and target.arxiu_ids:
        if grant.scope_id in target.arxiu_ids:
            return grant.include_children or most_specific == ScopeType.ARXIU

    target_id = target.id_for_scope(grant.scope_type)
    if target_id is None:
        return False
    if not grant.include_children and grant.scope_type != most_specific:
        return False
    return target_id == grant.scope_id


def grant_applies_to_list_scope(grant: CompiledGrant, list_scope: ScopeType) -> bool:
    """Whether a grant can admit rows of a listing of ``list_scope`` kind."""
    if grant.scope_type == ScopeType.GLOBAL:
        return True
    if grant.scope_type == list_scope:
        return True
    if not grant.include_children:
        return False
    return grant.scope_type in LIST_SCOPE_PARENTS.get(list_scope, frozenset())


def snapshot_allows(
    snapshot: PermissionSnapshot, action: str, target: PermissionTarget
) -> bool:
    if snapshot.is_admin:
        return True
    return any(grant_matches_target(g, target) for g in snapshot.grants_for(action))


def snapshot_list_filter(
    snapshot: PermissionSnapshot, action: str, list_scope: ScopeType
) -> ListScopeFilter:
    scope_filter = ListScopeFilter()
    if snapshot.is_admin:
        scope_filter.has_global = True
        return scope_filter
    for grant in snapshot.grants_for(action):
        if not grant_applies_to_list_scope(grant, list_scope):
            continue
        if grant.scope_type == ScopeType.GLOBAL:
            return ListScopeFilter(has_global=True)
        scope_filter.add(grant.scope_type, grant.scope_id)
    return scope_filter


# =============================================================================
# Public contract
# =============================================================================

def _snapshot(db: Session, store: PermissionSnapshotStore, user_id: int) -> PermissionSnapshot:
    try:
        return store.snapshot_for(db, user_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Permission snapshot failed for user %s: %s", user_id, e)
        return empty_snapshot(user_id)


def may(
    db: Session,
    store: PermissionSnapshotStore,
    user_id: int,
    action: str,
    target: PermissionTarget,
) -> bool:
    """Point query. Denies on any error."""
    return snapshot_allows(_snapshot(db, store, user_id), action, target)


def may_any(
    db: Session,
    store: PermissionSnapshotStore,
    user_id: int,
    actions: list[str],
    target: PermissionTarget,
) -> bool:
    snapshot = _snapshot(db, store, user_id)
    return any(snapshot_allows(snapshot, action, target) for action in actions)


def has_any_grant_for(
    db: Session, store: PermissionSnapshotStore, user_id: int, action: str
) -> bool:
    """Whether the user holds the action anywhere (navigation gating)."""
    snapshot = _snapshot(db, store, user_id)
    return snapshot.is_admin or bool(snapshot.grants_for(action))


def is_admin(db: Session, store: PermissionSnapshotStore, user_id: int) -> bool:
    return _snapshot(db, store, user_id).is_admin


def list_scope_filter(
    db: Session,
    store: PermissionSnapshotStore,
    user_id: int,
    action: str,
    list_scope: ScopeType,
) -> ListScopeFilter:
    return snapshot_list_filter(_snapshot(db, store, user_id), action, list_scope)


def permission_keys_for_user(
    db: Session, store: PermissionSnapshotStore, user_id: int
) -> list[str]:
    return _snapshot(db, store, user_id).permission_keys()


# =============================================================================
# SQL predicates
# =============================================================================

def _territory_clause(scope_filter: ListScopeFilter, municipi_column) -> list[ColumnElement]:
    """Predicates on a municipality id column from territorial scopes."""
    clauses: list[ColumnElement] = []
    if ids := scope_filter.ids_for(ScopeType.MUNICIPI):
        clauses.append(municipi_column.in_(ids))
    if ids := scope_filter.ids_for(ScopeType.PAIS):
        clauses.append(municipi_column.in_(descendants_of(ClosureAncestorType.PAIS, ids)))
    if ids := scope_filter.ids_for(ScopeType.NIVELL):
        clauses.append(municipi_column.in_(descendants_of(ClosureAncestorType.NIVELL, ids)))
    if ids := scope_filter.ids_for(ScopeType.PROVINCIA):
        clauses.append(
            municipi_column.in_(
                select(Municipi.id).where(Municipi.nivell_administratiu_id_3.in_(ids))
            )
        )
    if ids := scope_filter.ids_for(ScopeType.COMARCA):
        clauses.append(
            municipi_column.in_(
                select(Municipi.id).where(Municipi.nivell_administratiu_id_4.in_(ids))
            )
        )
    return clauses


def scope_clause(scope_filter: ListScopeFilter, list_scope: ScopeType) -> ColumnElement[bool]:
    """
    SQL predicate restricting a listing to what the filter admits.

    Supports municipality, archive and book listings.
    """
    if scope_filter.has_global:
        return true()
    if list_scope == ScopeType.MUNICIPI:
        clauses = _territory_clause(scope_filter, Municipi.id)
    elif list_scope == ScopeType.ARXIU:
        clauses = _territory_clause(scope_filter, Arxiu.municipi_id)
        if ids := scope_filter.ids_for(ScopeType.ARXIU):
            clauses.append(Arxiu.id.in_(ids))
        if ids := scope_filter.ids_for(ScopeType.ECLES):
            clauses.append(Arxiu.entitat_eclesiastica_id.in_(ids))
    elif list_scope == ScopeType.LLIBRE:
        clauses = _territory_clause(scope_filter, Llibre.municipi_id)
        if ids := scope_filter.ids_for(ScopeType.LLIBRE):
            clauses.append(Llibre.id.in_(ids))
        if ids := scope_filter.ids_for(ScopeType.ARXIU):
            clauses.append(
                Llibre.id.in_(
                    select(ArxiuLlibre.llibre_id).where(ArxiuLlibre.arxiu_id.in_(ids))
                )
            )
        if ids := scope_filter.ids_for(ScopeType.ECLES):
            clauses.append(Llibre.arquebisbat_id.in_(ids))
    else:
        raise ValueError(f"Unsupported list scope: {list_scope.value}")
    if not clauses:
        return false()
    return or_(*clauses)
