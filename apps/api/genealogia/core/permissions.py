"""Permission catalog, scope kinds and legacy flag expansion.

The catalog is closed: policy documents naming an unknown key are rejected
at save time. Keys are dotted identifiers grouped by feature area.
"""

import json
from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class PermissionDef:
    """Permission definition with metadata."""
    key: str
    label: str
    category: str


class PermissionCategory(str, Enum):
    """Permission categories for UI grouping."""
    ADMIN = "Administration"
    NAVIGATION = "Navigation"
    TERRITORI = "Territory"
    MUNICIPIS = "Municipality content"
    DOCUMENTALS = "Archives and books"


class ScopeType(str, Enum):
    """Hierarchy node kinds a grant can attach to."""
    GLOBAL = "global"
    PAIS = "pais"
    PROVINCIA = "provincia"
    COMARCA = "comarca"
    NIVELL = "nivell"
    MUNICIPI = "municipi"
    ECLES = "entitat_eclesiastica"
    ARXIU = "arxiu"
    LLIBRE = "llibre"


_SCOPE_ALIASES = {
    "entitat-eclesiastica": ScopeType.ECLES,
    "ecles": ScopeType.ECLES,
}


def parse_scope_type(value: str | None) -> ScopeType | None:
    """Parse a scope kind (case-insensitive, trimmed). None if unknown."""
    if value is None:
        return None
    cleaned = value.strip().lower()
    if not cleaned:
        return None
    if cleaned in _SCOPE_ALIASES:
        return _SCOPE_ALIASES[cleaned]
    try:
        return ScopeType(cleaned)
    except ValueError:
        return None


# =============================================================================
# Permission Registry
# =============================================================================

_CATALOG: list[tuple[str, str, PermissionCategory]] = [
    # Administration
    ("admin.territori.import", "Import territory", PermissionCategory.ADMIN),
    ("admin.territori.export", "Export territory", PermissionCategory.ADMIN),
    ("admin.eclesiastic.import", "Import ecclesiastical entities", PermissionCategory.ADMIN),
    ("admin.eclesiastic.export", "Export ecclesiastical entities", PermissionCategory.ADMIN),
    ("admin.arxius.import", "Import archives", PermissionCategory.ADMIN),
    ("admin.arxius.export", "Export archives", PermissionCategory.ADMIN),
    ("admin.punts.regles.add", "Add point rules", PermissionCategory.ADMIN),
    ("admin.punts.regles.edit", "Edit point rules", PermissionCategory.ADMIN),
    ("admin.achievements.add", "Add achievements", PermissionCategory.ADMIN),
    ("admin.achievements.edit", "Edit achievements", PermissionCategory.ADMIN),
    ("admin.platform.settings.edit", "Edit platform settings", PermissionCategory.ADMIN),
    ("admin.maintenance.manage", "Manage maintenance windows", PermissionCategory.ADMIN),
    ("admin.analytics.view", "View analytics", PermissionCategory.ADMIN),
    ("admin.transparency.manage", "Manage transparency pages", PermissionCategory.ADMIN),
    ("admin.moderacio.manage", "Moderate wiki changes", PermissionCategory.ADMIN),
    # Navigation
    ("home.view", "View home", PermissionCategory.NAVIGATION),
    ("messages.view", "View messages", PermissionCategory.NAVIGATION),
    ("search.advanced.view", "Advanced search", PermissionCategory.NAVIGATION),
    ("ranking.view", "View ranking", PermissionCategory.NAVIGATION),
    ("persons.view", "View persons", PermissionCategory.NAVIGATION),
    ("cognoms.view", "View surnames", PermissionCategory.NAVIGATION),
    ("media.view", "View media", PermissionCategory.NAVIGATION),
    ("import.templates.view", "View import templates", PermissionCategory.NAVIGATION),
    ("events.view", "View historic events", PermissionCategory.NAVIGATION),
    ("wiki.revert", "Revert wiki changes", PermissionCategory.NAVIGATION),
    # Territory
    ("territori.paisos.view", "View countries", PermissionCategory.TERRITORI),
    ("territori.paisos.create", "Create countries", PermissionCategory.TERRITORI),
    ("territori.paisos.edit", "Edit countries", PermissionCategory.TERRITORI),
    ("territori.nivells.view", "View administrative levels", PermissionCategory.TERRITORI),
    ("territori.nivells.create", "Create administrative levels", PermissionCategory.TERRITORI),
    ("territori.nivells.edit", "Edit administrative levels", PermissionCategory.TERRITORI),
    ("territori.nivells.rebuild", "Rebuild level aggregates", PermissionCategory.TERRITORI),
    ("territori.municipis.view", "View municipalities", PermissionCategory.TERRITORI),
    ("territori.municipis.create", "Create municipalities", PermissionCategory.TERRITORI),
    ("territori.municipis.edit", "Edit municipalities", PermissionCategory.TERRITORI),
    ("territori.eclesiastic.view", "View ecclesiastical entities", PermissionCategory.TERRITORI),
    ("territori.eclesiastic.create", "Create ecclesiastical entities", PermissionCategory.TERRITORI),
    ("territori.eclesiastic.edit", "Edit ecclesiastical entities", PermissionCategory.TERRITORI),
    ("territori.eclesiastic.import_json", "Import ecclesiastical JSON", PermissionCategory.TERRITORI),
    # Municipality content
    ("municipis.mapes.view", "View maps", PermissionCategory.MUNICIPIS),
    ("municipis.mapes.create", "Create maps", PermissionCategory.MUNICIPIS),
    ("municipis.mapes.edit", "Edit maps", PermissionCategory.MUNICIPIS),
    ("municipis.mapes.submit", "Submit maps", PermissionCategory.MUNICIPIS),
    ("municipis.mapes.moderate", "Moderate maps", PermissionCategory.MUNICIPIS),
    ("municipis.historia.create", "Create history", PermissionCategory.MUNICIPIS),
    ("municipis.historia.edit", "Edit history", PermissionCategory.MUNICIPIS),
    ("municipis.historia.submit", "Submit history", PermissionCategory.MUNICIPIS),
    ("municipis.historia.moderate", "Moderate history", PermissionCategory.MUNICIPIS),
    ("municipis.anecdotes.create", "Create anecdotes", PermissionCategory.MUNICIPIS),
    ("municipis.anecdotes.edit", "Edit anecdotes", PermissionCategory.MUNICIPIS),
    ("municipis.anecdotes.submit", "Submit anecdotes", PermissionCategory.MUNICIPIS),
    ("municipis.anecdotes.comment", "Comment anecdotes", PermissionCategory.MUNICIPIS),
    ("municipis.anecdotes.moderate", "Moderate anecdotes", PermissionCategory.MUNICIPIS),
    # Archives and books
    ("documentals.arxius.view", "View archives", PermissionCategory.DOCUMENTALS),
    ("documentals.arxius.create", "Create archives", PermissionCategory.DOCUMENTALS),
    ("documentals.arxius.edit", "Edit archives", PermissionCategory.DOCUMENTALS),
    ("documentals.arxius.delete", "Delete archives", PermissionCategory.DOCUMENTALS),
    ("documentals.arxius.import", "Import archives", PermissionCategory.DOCUMENTALS),
    ("documentals.arxius.export", "Export archives", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.view", "View books", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.create", "Create books", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.edit", "Edit books", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.delete", "Delete books", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.import", "Import books", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.export", "Export books", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.mark_indexed", "Mark books indexed", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.recalc_index", "Recalculate book index", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.export_csv", "Export book CSV", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.import_csv", "Import book CSV", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.view_registres", "View book records", PermissionCategory.DOCUMENTALS),
    ("documentals.llibres.bulk_index", "Bulk index books", PermissionCategory.DOCUMENTALS),
    ("documentals.registres.edit", "Edit records", PermissionCategory.DOCUMENTALS),
    ("documentals.registres.edit_inline", "Inline edit records", PermissionCategory.DOCUMENTALS),
    ("documentals.registres.link_person", "Link records to persons", PermissionCategory.DOCUMENTALS),
    ("documentals.registres.convert_to_person", "Convert records to persons", PermissionCategory.DOCUMENTALS),
]

PERMISSION_REGISTRY: dict[str, PermissionDef] = {
    key: PermissionDef(key, label, category.value) for key, label, category in _CATALOG
}


def get_all_permissions() -> list[str]:
    """All catalog keys, sorted."""
    return sorted(PERMISSION_REGISTRY)


def is_valid_permission(key: str) -> bool:
    return key in PERMISSION_REGISTRY


def get_permissions_by_category() -> dict[str, list[PermissionDef]]:
    """Group permissions by category for UI display."""
    result: dict[str, list[PermissionDef]] = {}
    for perm in PERMISSION_REGISTRY.values():
        result.setdefault(perm.category, []).append(perm)
    return result


# =============================================================================
# Legacy flag document
# =============================================================================

LEGACY_FLAGS = (
    "admin",
    "can_manage_users",
    "can_manage_territory",
    "can_manage_eclesiastic",
    "can_manage_archives",
    "can_create_person",
    "can_edit_any_person",
    "can_moderate",
    "can_manage_policies",
)

ADMIN_POLICY_NAME = "admin"


def _keys_with_prefix(*prefixes: str) -> tuple[str, ...]:
    return tuple(
        key for key in get_all_permissions() if key.startswith(prefixes)
    )


LEGACY_TERRITORY_KEYS = _keys_with_prefix(
    "territori.paisos.",
    "territori.nivells.",
    "territori.municipis.",
    "municipis.",
) + ("admin.territori.import", "admin.territori.export")

LEGACY_ECLES_KEYS = _keys_with_prefix("territori.eclesiastic.") + (
    "admin.eclesiastic.import",
    "admin.eclesiastic.export",
)

LEGACY_ARCHIVE_KEYS = _keys_with_prefix("documentals.") + (
    "admin.arxius.import",
    "admin.arxius.export",
)

LEGACY_POLICY_KEYS = (
    "admin.punts.regles.add",
    "admin.punts.regles.edit",
    "admin.achievements.add",
    "admin.achievements.edit",
)

LEGACY_FLAG_KEYS: dict[str, tuple[str, ...]] = {
    "can_manage_territory": LEGACY_TERRITORY_KEYS,
    "can_manage_eclesiastic": LEGACY_ECLES_KEYS,
    "can_manage_archives": LEGACY_ARCHIVE_KEYS,
    "can_manage_policies": LEGACY_POLICY_KEYS,
}


def legacy_permission_keys(flags: dict[str, bool]) -> list[str]:
    """Expand a legacy flag document into catalog keys (granted globally)."""
    if flags.get("admin"):
        return get_all_permissions()
    keys: set[str] = set()
    for flag, flag_keys in LEGACY_FLAG_KEYS.items():
        if flags.get(flag):
            keys.update(flag_keys)
    return sorted(keys)


def parse_legacy_flags(raw: str | None) -> dict[str, bool] | None:
    """
    Legacy flags stored in a policy's ``permisos`` column.

    Returns None when the column is empty or not a JSON object.
    """
    if not raw or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return {flag: bool(data.get(flag)) for flag in LEGACY_FLAGS}
