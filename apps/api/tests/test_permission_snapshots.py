import json

from genealogia.core.permissions import ScopeType, get_all_permissions
from genealogia.services import permission_service
from genealogia.services.permission_service import CompiledGrant, PermissionSnapshotStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _store(clock=None) -> PermissionSnapshotStore:
    return PermissionSnapshotStore(600, clock=clock or FakeClock())


def test_snapshot_compiles_direct_and_group_policies(db, make):
    user = make.user("anna")
    direct = make.policy("editors", [("territori.municipis.edit", "municipi", 5, False)])
    shared = make.policy("archivists", [("documentals.arxius.view", "arxiu", 7, True)])
    group = make.group("arxivers")
    permission_service.assign_policy_to_user(db, user.id, direct.id)
    permission_service.assign_policy_to_group(db, group.id, shared.id)
    permission_service.add_user_to_group(db, user.id, group.id)

    snapshot = _store().snapshot_for(db, user.id)

    assert not snapshot.is_admin
    assert snapshot.grants_for("territori.municipis.edit") == (
        CompiledGrant("territori.municipis.edit", ScopeType.MUNICIPI, 5, False),
    )
    assert snapshot.grants_for("documentals.arxius.view") == (
        CompiledGrant("documentals.arxius.view", ScopeType.ARXIU, 7, True),
    )
    assert snapshot.permission_keys() == ["documentals.arxius.view", "territori.municipis.edit"]


def test_invalid_grants_are_skipped(db, make):
    user = make.user_with_grants("anna", [
        ("territori.municipis.view", "pais", None, True),
        ("territori.municipis.view", "planeta", 3, False),
        ("territori.municipis.view", " Entitat-Eclesiastica ", 4, False),
    ])

    snapshot = _store().snapshot_for(db, user.id)

    assert snapshot.grants_for("territori.municipis.view") == (
        CompiledGrant("territori.municipis.view", ScopeType.ECLES, 4, False),
    )


def test_admin_policy_name_makes_admin(db, make):
    user = make.admin("root")
    snapshot = _store().snapshot_for(db, user.id)
    assert snapshot.is_admin
    assert snapshot.permission_keys() == get_all_permissions()


def test_legacy_flags_expand_to_global_grants(db, make):
    user = make.user("arxiver")
    policy = make.policy("arxivers", permisos=json.dumps({"can_manage_archives": True}))
    permission_service.assign_policy_to_user(db, user.id, policy.id)

    snapshot = _store().snapshot_for(db, user.id)

    assert not snapshot.is_admin
    assert snapshot.grants_for("documentals.arxius.edit") == (
        CompiledGrant("documentals.arxius.edit", ScopeType.GLOBAL, None, False),
    )
    assert snapshot.grants_for("territori.municipis.edit") == ()


def test_moderation_flag_grants_nothing(db, make):
    user = make.user("mod")
    policy = make.policy("moderadors", permisos=json.dumps({"can_moderate": True}))
    permission_service.assign_policy_to_user(db, user.id, policy.id)

    snapshot = _store().snapshot_for(db, user.id)

    assert snapshot.permission_keys() == []
    assert snapshot.grants_for("admin.moderacio.manage") == ()


def test_legacy_admin_flag_makes_admin(db, make):
    user = make.user("old-admin")
    policy = make.policy("superusuaris", permisos=json.dumps({"admin": True}))
    permission_service.assign_policy_to_user(db, user.id, policy.id)

    assert _store().snapshot_for(db, user.id).is_admin


def test_structured_grants_win_over_legacy_flags(db, make):
    user = make.user("anna")
    policy = make.policy(
        "mixed",
        [("territori.municipis.view", "municipi", 5, False)],
        permisos=json.dumps({"can_moderate": True}),
    )
    permission_service.assign_policy_to_user(db, user.id, policy.id)

    snapshot = _store().snapshot_for(db, user.id)

    assert snapshot.permission_keys() == ["territori.municipis.view"]


def test_unknown_user_gets_empty_snapshot(db):
    snapshot = _store().snapshot_for(db, 404)
    assert snapshot.grants == {}
    assert not snapshot.is_admin


def test_cache_hit_returns_same_snapshot(db, make):
    user = make.user_with_grants("anna", [("home.view", "global", None, False)])
    store = _store()

    first = store.snapshot_for(db, user.id)
    second = store.snapshot_for(db, user.id)

    assert first is second
    assert len(store) == 1


def test_version_bump_rebuilds_and_evicts_old_version(db, make):
    user = make.user_with_grants("anna", [("home.view", "global", None, False)])
    store = _store()
    before = store.snapshot_for(db, user.id)

    policy = make.policy("extra", [("ranking.view", "global", None, False)])
    permission_service.assign_policy_to_user(db, user.id, policy.id)
    after = store.snapshot_for(db, user.id)

    assert after.version == before.version + 1
    assert after.permission_keys() == ["home.view", "ranking.view"]
    assert len(store) == 1


def test_policy_change_bumps_group_members(db, make):
    alice = make.user("alice")
    bob = make.user("bob")
    group = make.group("g")
    policy = make.policy("p")
    permission_service.add_user_to_group(db, alice.id, group.id)
    permission_service.assign_policy_to_group(db, group.id, policy.id)
    permission_service.assign_policy_to_user(db, bob.id, policy.id)
    versions = {
        uid: permission_service.get_permissions_version(db, uid) for uid in (alice.id, bob.id)
    }

    permission_service.bump_policy_version(db, policy.id)
    db.commit()

    for uid, version in versions.items():
        assert permission_service.get_permissions_version(db, uid) == version + 1


def test_snapshot_expires_after_ttl(db, make):
    user = make.user_with_grants("anna", [("home.view", "global", None, False)])
    clock = FakeClock()
    store = _store(clock)
    first = store.snapshot_for(db, user.id)

    clock.now += 599
    assert store.snapshot_for(db, user.id) is first

    clock.now += 2
    assert store.snapshot_for(db, user.id) is not first


def test_invalidate_user_drops_cached_snapshot(db, make):
    user = make.user_with_grants("anna", [("home.view", "global", None, False)])
    store = _store()
    store.snapshot_for(db, user.id)

    store.invalidate_user(user.id)

    assert len(store) == 0
