from genealogia.core.permissions import ScopeType
from genealogia.core.targets import PermissionTarget
from genealogia.db.models import Arxiu, Municipi
from genealogia.services.target_service import TargetResolver


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _resolver(clock=None, max_entries=100) -> TargetResolver:
    return TargetResolver(600, max_entries, max_entries, max_entries, clock=clock or FakeClock())


def test_resolve_book_fills_the_whole_address(db, make):
    make.territory()
    make.ecles(30)
    make.llibre(43, municipi_id=5, arxius=[7], arquebisbat_id=30)

    target = _resolver().resolve_book(db, 43)

    assert target == PermissionTarget(
        pais_id=1,
        provincia_id=3,
        comarca_id=4,
        municipi_id=5,
        nivell_ids=[1, 2, 3, 4],
        ecles_id=30,
        arxiu_id=7,
        arxiu_ids=[7],
        llibre_id=43,
    )
    assert target.most_specific_scope == ScopeType.LLIBRE


def test_book_with_several_archives_has_no_single_archive(db, make):
    make.territory()
    make.arxiu(8, municipi_id=5)
    make.llibre(43, municipi_id=5, arxius=[8, 7])

    target = _resolver().resolve_book(db, 43)

    assert target.arxiu_ids == [7, 8]
    assert target.arxiu_id is None


def test_book_without_municipality_inherits_first_archive(db, make):
    make.territory()
    make.ecles(30)
    make.arxiu(8, municipi_id=5, ecles_id=30)
    make.llibre(43, arxius=[8])

    target = _resolver().resolve_book(db, 43)

    assert target.municipi_id == 5
    assert target.pais_id == 1
    assert target.nivell_ids == [1, 2, 3, 4]
    assert target.ecles_id == 30


def test_resolve_archive(db, make):
    make.territory()

    target = _resolver().resolve_archive(db, 7)

    assert target.arxiu_id == 7
    assert target.arxiu_ids == [7]
    assert target.municipi_id == 5
    assert target.pais_id == 1
    assert target.most_specific_scope == ScopeType.ARXIU


def test_resolve_municipality_with_partial_chain(db, make):
    make.pais(2)
    make.nivell(20)
    make.nivell(21, pais_id=2)
    make.municipi(9, [20, 21])

    target = _resolver().resolve_municipality(db, 9)

    assert target.nivell_ids == [20, 21]
    assert target.pais_id == 2
    assert target.provincia_id is None
    assert target.comarca_id is None
    assert target.deepest_nivell_id == 21


def test_missing_rows_resolve_to_bare_targets(db):
    resolver = _resolver()
    assert resolver.resolve_book(db, 404) == PermissionTarget(llibre_id=404)
    assert resolver.resolve_archive(db, 404) == PermissionTarget(arxiu_id=404, arxiu_ids=[404])
    assert resolver.resolve_municipality(db, 404) == PermissionTarget(municipi_id=404)
    assert resolver.resolve_book(db, 0) == PermissionTarget()


def test_returned_targets_never_alias_the_cache(db, make):
    make.territory()
    resolver = _resolver()

    first = resolver.resolve_book(db, 42)
    first.nivell_ids.append(99)
    first.pais_id = 2
    second = resolver.resolve_book(db, 42)

    assert second.nivell_ids == [1, 2, 3, 4]
    assert second.pais_id == 1
    assert second is not first


def test_cached_target_survives_until_invalidated(db, make):
    make.territory()
    resolver = _resolver()
    assert resolver.resolve_archive(db, 7).municipi_id == 5

    make.municipi(6, [1])
    db.get(Arxiu, 7).municipi_id = 6
    db.commit()

    assert resolver.resolve_archive(db, 7).municipi_id == 5
    resolver.invalidate_archive(7)
    assert resolver.resolve_archive(db, 7).municipi_id == 6


def test_municipality_invalidation_drops_dependent_targets(db, make):
    make.territory()
    resolver = _resolver()
    resolver.resolve_book(db, 42)
    resolver.resolve_archive(db, 7)
    resolver.resolve_municipality(db, 5)

    db.get(Municipi, 5).nivell_administratiu_id_4 = None
    db.commit()
    resolver.invalidate_municipality(5)

    assert resolver.resolve_municipality(db, 5).comarca_id is None
    assert resolver.resolve_archive(db, 7).nivell_ids == [1, 2, 3]
    assert resolver.resolve_book(db, 42).nivell_ids == [1, 2, 3]


def test_targets_expire_after_ttl(db, make):
    make.territory()
    clock = FakeClock()
    resolver = _resolver(clock)
    resolver.resolve_municipality(db, 5)

    db.get(Municipi, 5).nivell_administratiu_id_4 = None
    db.commit()
    clock.now += 601

    assert resolver.resolve_municipality(db, 5).comarca_id is None


def test_cache_evicts_oldest_entry_when_full(db, make):
    make.territory()
    make.municipi(6, [1])
    make.municipi(8, [1])
    resolver = _resolver(max_entries=2)
    resolver.resolve_municipality(db, 5)
    resolver.resolve_municipality(db, 6)
    resolver.resolve_municipality(db, 8)

    db.get(Municipi, 5).nivell_administratiu_id_4 = None
    db.get(Municipi, 6).nivell_administratiu_id_1 = None
    db.commit()

    # 6 is still cached; 5 was evicted and reloads.
    assert resolver.resolve_municipality(db, 6).nivell_ids == [1]
    assert resolver.resolve_municipality(db, 5).comarca_id is None
