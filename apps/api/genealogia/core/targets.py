"""Permission targets: partial addresses in the hierarchy."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

from genealogia.core.permissions import ScopeType


@dataclass
class PermissionTarget:
    """
    A partial hierarchy address used to evaluate grants.

    Populated ids must be mutually consistent. ``nivell_ids`` is the
    municipality's level chain in slot order; ``arxiu_ids`` lists every
    archive a book is attached to.
    """

    pais_id: int | None = None
    provincia_id: int | None = None
    comarca_id: int | None = None
    municipi_id: int | None = None
    nivell_ids: list[int] = field(default_factory=list)
    ecles_id: int | None = None
    arxiu_id: int | None = None
    arxiu_ids: list[int] = field(default_factory=list)
    llibre_id: int | None = None

    def clone(self) -> PermissionTarget:
        return copy.deepcopy(self)

    @property
    def most_specific_scope(self) -> ScopeType | None:
        """Deepest populated scope kind, or None for an empty target."""
        if _positive(self.llibre_id):
            return ScopeType.LLIBRE
        if _positive(self.arxiu_id) or self.arxiu_ids:
            return ScopeType.ARXIU
        if _positive(self.municipi_id):
            return ScopeType.MUNICIPI
        if self.deepest_nivell_id is not None:
            return ScopeType.NIVELL
        if _positive(self.comarca_id):
            return ScopeType.COMARCA
        if _positive(self.provincia_id):
            return ScopeType.PROVINCIA
        if _positive(self.pais_id):
            return ScopeType.PAIS
        if _positive(self.ecles_id):
            return ScopeType.ECLES
        return None

    @property
    def deepest_nivell_id(self) -> int | None:
        """Last positive level of the chain."""
        for nivell_id in reversed(self.nivell_ids):
            if _positive(nivell_id):
                return nivell_id
        return None

    def id_for_scope(self, scope: ScopeType) -> int | None:
        """Single id held for a scope kind. Levels are multi-valued: None."""
        value = {
            ScopeType.PAIS: self.pais_id,
            ScopeType.PROVINCIA: self.provincia_id,
            ScopeType.COMARCA: self.comarca_id,
            ScopeType.MUNICIPI: self.municipi_id,
            ScopeType.ECLES: self.ecles_id,
            ScopeType.ARXIU: self.arxiu_id,
            ScopeType.LLIBRE: self.llibre_id,
        }.get(scope)
        return value if _positive(value) else None


def _positive(value: int | None) -> bool:
    return value is not None and value > 0
