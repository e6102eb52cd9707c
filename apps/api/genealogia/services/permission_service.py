"""Permission snapshot store and permission version bookkeeping.

A snapshot is the compiled set of grants reachable by a user, directly or
through groups. Snapshots are cached by ``(user_id, permissions_version)``
so any change that bumps the version makes the cached entry unreachable.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from genealogia.core.cache import TTLCache
from genealogia.core.permissions import (
    ADMIN_POLICY_NAME,
    ScopeType,
    get_all_permissions,
    legacy_permission_keys,
    parse_legacy_flags,
    parse_scope_type,
)
from genealogia.db.models import (
    GrupPolitica,
    Politica,
    PoliticaGrant,
    User,
    UsuariGrup,
    UsuariPolitica,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledGrant:
    """A validated grant ready for matching."""
    perm_key: str
    scope_type: ScopeType
    scope_id: int | None
    include_children: bool


@dataclass(frozen=True)
class PermissionSnapshot:
    """Immutable compiled permissions for one user at one version."""
    user_id: int
    version: int
    is_admin: bool
    grants: Mapping[str, tuple[CompiledGrant, ...]]

    def grants_for(self, perm_key: str) -> tuple[CompiledGrant, ...]:
        return self.grants.get(perm_key, ())

    def permission_keys(self) -> list[str]:
        """Every key granted at any scope (navigation gating)."""
        if self.is_admin:
            return get_all_permissions()
        return sorted(key for key, grants in self.grants.items() if grants)


def empty_snapshot(user_id: int, version: int = 0) -> PermissionSnapshot:
    return PermissionSnapshot(user_id, version, False, MappingProxyType({}))


# =============================================================================
# Snapshot building
# =============================================================================

def compile_grant(
    perm_key: str, scope_type: str, scope_id: int | None, include_children: bool
) -> CompiledGrant | None:
    """Validate a stored grant. Returns None for grants that cannot match."""
    scope = parse_scope_type(scope_type)
    if scope is None or not perm_key:
        return None
    if scope == ScopeType.GLOBAL:
        return CompiledGrant(perm_key, scope, None, bool(include_children))
    if scope_id is None or scope_id <= 0:
        return None
    return CompiledGrant(perm_key, scope, scope_id, bool(include_children))


def load_user_policies(db: Session, user_id: int) -> list[Politica]:
    """Direct policies plus policies reached through groups, by id."""
    direct = db.scalars(
        select(Politica)
        .join(UsuariPolitica, UsuariPolitica.politica_id == Politica.id)
        .where(UsuariPolitica.usuari_id == user_id)
    ).all()
    via_groups = db.scalars(
        select(Politica)
        .join(GrupPolitica, GrupPolitica.politica_id == Politica.id)
        .join(UsuariGrup, UsuariGrup.grup_id == GrupPolitica.grup_id)
        .where(UsuariGrup.usuari_id == user_id)
    ).all()
    by_id = {policy.id: policy for policy in [*direct, *via_groups]}
    return [by_id[policy_id] for policy_id in sorted(by_id)]


def build_snapshot(db: Session, user_id: int, version: int) -> PermissionSnapshot:
    policies = load_user_policies(db, user_id)
    if not policies:
        return empty_snapshot(user_id, version)

    grant_rows = db.scalars(
        select(PoliticaGrant)
        .where(PoliticaGrant.politica_id.in_([p.id for p in policies]))
        .order_by(PoliticaGrant.id)
    ).all()
    rows_by_policy: dict[int, list[PoliticaGrant]] = {}
    for row in grant_rows:
        rows_by_policy.setdefault(row.politica_id, []).append(row)

    is_admin = False
    grants: dict[str, list[CompiledGrant]] = {}
    for policy in policies:
        flags = parse_legacy_flags(policy.permisos)
        if policy.nom.strip().lower() == ADMIN_POLICY_NAME or (flags and flags.get("admin")):
            is_admin = True

        rows = rows_by_policy.get(policy.id)
        if rows:
            compiled = [
                compile_grant(r.perm_key, r.scope_type, r.scope_id, r.include_children)
                for r in rows
            ]
        elif flags:
            compiled = [
                CompiledGrant(key, ScopeType.GLOBAL, None, False)
                for key in legacy_permission_keys(flags)
            ]
        else:
            compiled = []

        for grant in compiled:
            if grant is None:
                continue
            bucket = grants.setdefault(grant.perm_key, [])
            if grant not in bucket:
                bucket.append(grant)

    return PermissionSnapshot(
        user_id=user_id,
        version=version,
        is_admin=is_admin,
        grants=MappingProxyType({key: tuple(value) for key, value in grants.items()}),
    )


class PermissionSnapshotStore:
    """
    Process-wide cache of permission snapshots.

    Staleness is bounded by the TTL: version bumps make old keys
    unreachable but nothing pushes invalidations.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._cache: TTLCache[tuple[int, int], PermissionSnapshot] = TTLCache(
            ttl_seconds, clock=clock
        )

    def snapshot_for(self, db: Session, user_id: int) -> PermissionSnapshot:
        """
        Compiled grants for a user.

        DB errors propagate; nothing is cached for a failed build.
        """
        if not user_id or user_id <= 0:
            return empty_snapshot(0)
        version = get_permissions_version(db, user_id)
        if version is None:
            return empty_snapshot(user_id)

        key = (user_id, version)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        snapshot = build_snapshot(db, user_id, version)
        logger.debug("Permission snapshot built for user %s at version %s", user_id, version)
        self._cache.delete_where(lambda k: k[0] == user_id and k != key)
        self._cache.set(key, snapshot)
        return snapshot

    def invalidate_user(self, user_id: int) -> None:
        self._cache.delete_where(lambda k: k[0] == user_id)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


# =============================================================================
# Permission versions
# =============================================================================

def get_permissions_version(db: Session, user_id: int) -> int | None:
    return db.scalar(select(User.permissions_version).where(User.id == user_id))


def bump_user_version(db: Session, user_id: int) -> None:
    """Increment one user's version. Caller commits."""
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(permissions_version=User.permissions_version + 1)
    )


def bump_users_version(db: Session, user_ids: list[int]) -> None:
    if not user_ids:
        return
    db.execute(
        update(User)
        .where(User.id.in_(sorted(set(user_ids))))
        .values(permissions_version=User.permissions_version + 1)
    )


def group_member_ids(db: Session, group_id: int) -> list[int]:
    return list(
        db.scalars(select(UsuariGrup.usuari_id).where(UsuariGrup.grup_id == group_id))
    )


def policy_user_ids(db: Session, policy_id: int) -> list[int]:
    """Users bound to a policy directly or through a group."""
    direct = db.scalars(
        select(UsuariPolitica.usuari_id).where(UsuariPolitica.politica_id == policy_id)
    ).all()
    via_groups = db.scalars(
        select(UsuariGrup.usuari_id)
        .join(GrupPolitica, GrupPolitica.grup_id == UsuariGrup.grup_id)
        .where(GrupPolitica.politica_id == policy_id)
    ).all()
    return sorted(set(direct) | set(via_groups))


def bump_group_version(db: Session, group_id: int) -> None:
    bump_users_version(db, group_member_ids(db, group_id))


def bump_policy_version(db: Session, policy_id: int) -> None:
    bump_users_version(db, policy_user_ids(db, policy_id))


# =============================================================================
# Bindings
# =============================================================================

def assign_policy_to_user(db: Session, user_id: int, policy_id: int) -> None:
    if db.get(UsuariPolitica, (user_id, policy_id)) is None:
        db.add(UsuariPolitica(usuari_id=user_id, politica_id=policy_id))
        db.flush()
    bump_user_version(db, user_id)
    db.commit()


def remove_policy_from_user(db: Session, user_id: int, policy_id: int) -> None:
    db.execute(
        delete(UsuariPolitica).where(
            UsuariPolitica.usuari_id == user_id,
            UsuariPolitica.politica_id == policy_id,
        )
    )
    bump_user_version(db, user_id)
    db.commit()


def assign_policy_to_group(db: Session, group_id: int, policy_id: int) -> None:
    if db.get(GrupPolitica, (group_id, policy_id)) is None:
        db.add(GrupPolitica(grup_id=group_id, politica_id=policy_id))
        db.flush()
    bump_group_version(db, group_id)
    db.commit()


def remove_policy_from_group(db: Session, group_id: int, policy_id: int) -> None:
    db.execute(
        delete(GrupPolitica).where(
            GrupPolitica.grup_id == group_id,
            GrupPolitica.politica_id == policy_id,
        )
    )
    bump_group_version(db, group_id)
    db.commit()


def add_user_to_group(db: Session, user_id: int, group_id: int) -> None:
    if db.get(UsuariGrup, (user_id, group_id)) is None:
        db.add(UsuariGrup(usuari_id=user_id, grup_id=group_id))
        db.flush()
    bump_user_version(db, user_id)
    db.commit()


def remove_user_from_group(db: Session, user_id: int, group_id: int) -> None:
    db.execute(
        delete(UsuariGrup).where(
            UsuariGrup.usuari_id == user_id,
            UsuariGrup.grup_id == group_id,
        )
    )
    bump_user_version(db, user_id)
    db.commit()
