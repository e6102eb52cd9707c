"""
Test configuration and fixtures.

Provides:
- A file-backed SQLite database per test (schema from the ORM metadata)
- A fresh AppContainer with a deferred executor for background jobs
- Row factories for territory, archives, books, users and policies
- HTTPX AsyncClient wired to the test session and container
"""
import os
from concurrent.futures import Executor, Future
from typing import AsyncGenerator, Generator

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-session-tokens-000")
os.environ["ENV"] = "test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from genealogia.core.container import AppContainer
from genealogia.core.deps import get_container, get_db
from genealogia.core.security import create_session_token
from genealogia.db.base import Base
from genealogia.db.models import (
    Arxiu,
    ArxiuLlibre,
    Cognom,
    EntitatEclesiastica,
    Grup,
    Llibre,
    Municipi,
    NivellAdministratiu,
    Pais,
    Persona,
    Politica,
    PoliticaGrant,
    User,
)
from genealogia.main import app
from genealogia.services import permission_service


# =============================================================================
# Background executor
# =============================================================================

class DeferredExecutor(Executor):
    """Collects submitted work; tests run it explicitly with run_pending()."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self) -> int:
        ran = 0
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            future.set_result(fn(*args, **kwargs))
            ran += 1
        return ran

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.pending.clear()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'genealogia-test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def executor() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture(scope="function")
def container(session_factory, executor) -> AppContainer:
    return AppContainer.build(session_factory, executor=executor)


# =============================================================================
# Row factories
# =============================================================================

class Factory:
    """Creates committed rows with explicit ids where tests need them."""

    def __init__(self, db: Session):
        self.db = db

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def pais(self, id: int, nom: str | None = None) -> Pais:
        return self._save(Pais(id=id, nom=nom or f"Pais {id}"))

    def nivell(self, id: int, pais_id: int | None = None, parent_id: int | None = None, nivel: int = 1) -> NivellAdministratiu:
        return self._save(
            NivellAdministratiu(
                id=id, pais_id=pais_id, parent_id=parent_id, nivel=nivel, nom=f"Nivell {id}"
            )
        )

    def municipi(self, id: int, levels: list[int | None] | None = None, nom: str | None = None) -> Municipi:
        municipi = Municipi(id=id, nom=nom or f"Municipi {id}")
        for slot, level_id in enumerate(levels or [], start=1):
            setattr(municipi, f"nivell_administratiu_id_{slot}", level_id)
        return self._save(municipi)

    def ecles(self, id: int, pais_id: int | None = None) -> EntitatEclesiastica:
        return self._save(EntitatEclesiastica(id=id, nom=f"Bisbat {id}", pais_id=pais_id))

    def arxiu(self, id: int, municipi_id: int | None = None, ecles_id: int | None = None) -> Arxiu:
        return self._save(
            Arxiu(id=id, nom=f"Arxiu {id}", municipi_id=municipi_id, entitat_eclesiastica_id=ecles_id)
        )

    def llibre(
        self,
        id: int,
        municipi_id: int | None = None,
        arxius: list[int] | None = None,
        arquebisbat_id: int | None = None,
    ) -> Llibre:
        llibre = self._save(
            Llibre(id=id, titol=f"Llibre {id}", municipi_id=municipi_id, arquebisbat_id=arquebisbat_id)
        )
        for arxiu_id in arxius or []:
            self.db.add(ArxiuLlibre(arxiu_id=arxiu_id, llibre_id=llibre.id))
        self.db.commit()
        return llibre

    def persona(self, nom: str, cognom1: str | None = None, cognom2: str | None = None, municipi_id: int | None = None) -> Persona:
        return self._save(
            Persona(nom=nom, cognom1=cognom1, cognom2=cognom2, municipi_naixement_id=municipi_id)
        )

    def cognom(self, forma: str) -> Cognom:
        return self._save(Cognom(forma=forma))

    def user(self, usuari: str) -> User:
        return self._save(User(usuari=usuari, email=f"{usuari}@example.org"))

    def group(self, nom: str) -> Grup:
        return self._save(Grup(nom=nom))

    def policy(
        self,
        nom: str,
        grants: list[tuple[str, str, int | None, bool]] = (),
        permisos: str | None = None,
    ) -> Politica:
        policy = self._save(Politica(nom=nom, permisos=permisos))
        for perm_key, scope_type, scope_id, include_children in grants:
            self.db.add(
                PoliticaGrant(
                    politica_id=policy.id,
                    perm_key=perm_key,
                    scope_type=scope_type,
                    scope_id=scope_id,
                    include_children=include_children,
                )
            )
        self.db.commit()
        return policy

    def user_with_grants(self, usuari: str, grants: list[tuple[str, str, int | None, bool]]) -> User:
        user = self.user(usuari)
        policy = self.policy(f"policy-{usuari}", grants)
        permission_service.assign_policy_to_user(self.db, user.id, policy.id)
        self.db.refresh(user)
        return user

    def admin(self, usuari: str = "admin") -> User:
        user = self.user(usuari)
        policy = self.policy("admin")
        permission_service.assign_policy_to_user(self.db, user.id, policy.id)
        self.db.refresh(user)
        return user

    def territory(self) -> None:
        """
        Country 1 with levels 1 > 2 > 3 > 4, municipality 5 on all four.

        Archive 7 sits in municipality 5 and holds book 42.
        """
        self.pais(1)
        self.pais(2)
        for level_id in (1, 2, 3, 4):
            self.nivell(level_id, pais_id=1, parent_id=level_id - 1 or None, nivel=level_id)
        self.municipi(5, [1, 2, 3, 4])
        self.arxiu(7, municipi_id=5)
        self.llibre(42, municipi_id=5, arxius=[7])


@pytest.fixture(scope="function")
def make(db: Session) -> Factory:
    return Factory(db)


# =============================================================================
# Auth Fixtures
# =============================================================================

def _bearer(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user_id)}"}


@pytest.fixture(scope="function")
def auth_headers():
    """Build bearer headers for a user id."""
    return _bearer


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, container: AppContainer) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient bound to the test session and container."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_container] = lambda: container

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
