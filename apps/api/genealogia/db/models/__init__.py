"""SQLAlchemy ORM models."""

from genealogia.db.models.access import (
    Grup,
    GrupPolitica,
    Politica,
    PoliticaGrant,
    User,
    UsuariGrup,
    UsuariPolitica,
)
from genealogia.db.models.jobs import AdminJob
from genealogia.db.models.stats import NivellCognomStat, NivellDemografia
from genealogia.db.models.territory import (
    AdminClosure,
    Arxiu,
    ArxiuLlibre,
    EntitatEclesiastica,
    Llibre,
    Municipi,
    NivellAdministratiu,
    Pais,
)
from genealogia.db.models.wiki import Cognom, EventHistoric, Persona, WikiChange

__all__ = [
    "AdminClosure",
    "AdminJob",
    "Arxiu",
    "ArxiuLlibre",
    "Cognom",
    "EntitatEclesiastica",
    "EventHistoric",
    "Grup",
    "GrupPolitica",
    "Llibre",
    "Municipi",
    "NivellAdministratiu",
    "NivellCognomStat",
    "NivellDemografia",
    "Pais",
    "Persona",
    "Politica",
    "PoliticaGrant",
    "User",
    "UsuariGrup",
    "UsuariPolitica",
    "WikiChange",
]
