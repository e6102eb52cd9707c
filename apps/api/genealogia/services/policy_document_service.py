"""Policy documents: IAM-like JSON exchanged with administrators.

A document carries the legacy boolean flags plus a list of ``Allow``
statements. Saving a document validates it completely before any write,
then replaces the policy's grants in one transaction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from genealogia.core.config import settings
from genealogia.core.permissions import (
    LEGACY_FLAGS,
    ScopeType,
    get_all_permissions,
    is_valid_permission,
    parse_scope_type,
)
from genealogia.db.models import Politica, PoliticaGrant
from genealogia.services.permission_service import bump_policy_version

logger = logging.getLogger(__name__)

GLOBAL_RESOURCES = ("", "*", "global")
CHILDREN_SUFFIX = "/*"


class PolicyDocumentError(ValueError):
    """Invalid policy document (bad JSON, effect, action or resource)."""


class PolicyNotFoundError(ValueError):
    pass


@dataclass
class PolicyStatement:
    effect: str
    actions: list[str]
    resources: list[str]


@dataclass
class PolicyDocument:
    version: str = settings.POLICY_DOCUMENT_VERSION
    legacy: dict[str, bool] = field(default_factory=dict)
    statements: list[PolicyStatement] = field(default_factory=list)


@dataclass(frozen=True)
class GrantSpec:
    """A grant parsed from a document, before it is stored."""
    perm_key: str
    scope_type: ScopeType
    scope_id: int | None
    include_children: bool


# =============================================================================
# Parsing
# =============================================================================

def _load_json(raw: str | bytes | dict | None) -> dict | None:
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    raw = raw.strip()
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PolicyDocumentError(f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise PolicyDocumentError("policy document must be a JSON object")
    return data


def _string_list(value: Any, label: str) -> list[str]:
    """Accept a string or a list of strings; blanks dropped."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.strip()
        return [value] if value else []
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return [item.strip() for item in value if item.strip()]
    raise PolicyDocumentError(f"{label} must be a string or a list of strings")


def _normalize_statement(raw: Any) -> PolicyStatement | None:
    if not isinstance(raw, dict):
        raise PolicyDocumentError("statement must be an object")
    effect = str(raw.get("Effect") or "").strip() or "Allow"
    if effect.lower() != "allow":
        raise PolicyDocumentError("unsupported effect")
    actions = _string_list(raw.get("Action"), "Action")
    if not actions:
        return None
    resources = _string_list(raw.get("Resource"), "Resource") or ["global"]
    return PolicyStatement(effect="Allow", actions=actions, resources=resources)


def parse_policy_document(raw: str | bytes | dict | None) -> PolicyDocument:
    """Parse and normalize a document. Statements without actions are dropped."""
    doc = PolicyDocument()
    data = _load_json(raw)
    if data is None:
        return doc
    doc.legacy = {flag: bool(data.get(flag)) for flag in LEGACY_FLAGS}
    version = str(data.get("Version") or "").strip()
    if version:
        doc.version = version
    statements = data.get("Statement") or []
    if isinstance(statements, dict):
        statements = [statements]
    if not isinstance(statements, list):
        raise PolicyDocumentError("Statement must be a list")
    for raw_statement in statements:
        statement = _normalize_statement(raw_statement)
        if statement is not None:
            doc.statements.append(statement)
    return doc


def parse_resource(resource: str) -> tuple[ScopeType, int | None, bool]:
    """Parse ``global``, ``*`` or ``kind:id[/*]``."""
    value = resource.strip()
    if value.lower() in GLOBAL_RESOURCES:
        return ScopeType.GLOBAL, None, False
    include_children = value.endswith(CHILDREN_SUFFIX)
    if include_children:
        value = value[: -len(CHILDREN_SUFFIX)]
    kind, sep, raw_id = value.partition(":")
    scope = parse_scope_type(kind)
    if not sep or scope is None or scope == ScopeType.GLOBAL:
        raise PolicyDocumentError(f"invalid resource: {resource}")
    try:
        scope_id = int(raw_id.strip())
    except ValueError:
        raise PolicyDocumentError(f"invalid resource: {resource}") from None
    if scope_id <= 0:
        raise PolicyDocumentError(f"invalid resource: {resource}")
    return scope, scope_id, include_children


def expand_actions(actions: list[str]) -> list[str]:
    """Expand ``*`` to the catalog; reject unknown keys. Sorted, unique."""
    expanded: set[str] = set()
    for action in actions:
        if action == "*":
            expanded.update(get_all_permissions())
            continue
        if not is_valid_permission(action):
            raise PolicyDocumentError(f"unknown action: {action}")
        expanded.add(action)
    return sorted(expanded)


def grants_from_document(doc: PolicyDocument) -> list[GrantSpec]:
    """Grants described by the statements, deduplicated, in document order."""
    grants: list[GrantSpec] = []
    seen: set[GrantSpec] = set()
    for statement in doc.statements:
        actions = expand_actions(statement.actions)
        resources = [parse_resource(resource) for resource in statement.resources]
        for action in actions:
            for scope, scope_id, include_children in resources:
                grant = GrantSpec(action, scope, scope_id, include_children)
                if grant in seen:
                    continue
                seen.add(grant)
                grants.append(grant)
    return grants


# =============================================================================
# Emitting
# =============================================================================

def resource_string(scope_type: str, scope_id: int | None, include_children: bool) -> str:
    scope = parse_scope_type(scope_type)
    if scope is None:
        return ""
    if scope == ScopeType.GLOBAL:
        return "global"
    if not scope_id or scope_id <= 0:
        return ""
    resource = f"{scope.value}:{scope_id}"
    if include_children:
        resource += CHILDREN_SUFFIX
    return resource


def statements_from_grants(grants: list[PoliticaGrant] | list[GrantSpec]) -> list[PolicyStatement]:
    """One statement per action key, keys and resources sorted."""
    by_key: dict[str, set[str]] = {}
    for grant in grants:
        perm_key = grant.perm_key.strip()
        scope_type = grant.scope_type.value if isinstance(grant.scope_type, ScopeType) else grant.scope_type
        resource = resource_string(scope_type, grant.scope_id, grant.include_children)
        if not perm_key or not resource:
            continue
        by_key.setdefault(perm_key, set()).add(resource)
    return [
        PolicyStatement(effect="Allow", actions=[key], resources=sorted(by_key[key]))
        for key in sorted(by_key)
    ]


def document_to_dict(doc: PolicyDocument) -> dict[str, Any]:
    data: dict[str, Any] = {flag: bool(doc.legacy.get(flag)) for flag in LEGACY_FLAGS}
    data["Version"] = doc.version or settings.POLICY_DOCUMENT_VERSION
    if doc.statements:
        data["Statement"] = [
            {"Effect": s.effect, "Action": s.actions, "Resource": s.resources}
            for s in doc.statements
        ]
    return data


def dump_policy_document(doc: PolicyDocument) -> str:
    return json.dumps(document_to_dict(doc), indent=2)


def document_from_grants(
    legacy: dict[str, bool], grants: list[PoliticaGrant] | list[GrantSpec], version: str = ""
) -> PolicyDocument:
    return PolicyDocument(
        version=version.strip() or settings.POLICY_DOCUMENT_VERSION,
        legacy=dict(legacy),
        statements=statements_from_grants(grants),
    )


# =============================================================================
# Persistence
# =============================================================================

def get_policy(db: Session, policy_id: int) -> Politica | None:
    return db.get(Politica, policy_id)


def list_policy_grants(db: Session, policy_id: int) -> list[PoliticaGrant]:
    return list(
        db.scalars(
            select(PoliticaGrant)
            .where(PoliticaGrant.politica_id == policy_id)
            .order_by(PoliticaGrant.id)
        )
    )


def get_policy_document_json(db: Session, policy_id: int) -> str:
    """Stored legacy flags merged with the current grants, as JSON."""
    policy = get_policy(db, policy_id)
    if policy is None:
        raise PolicyNotFoundError(f"Policy {policy_id} not found")
    try:
        stored = parse_policy_document(policy.permisos)
    except PolicyDocumentError:
        stored = PolicyDocument()
    doc = document_from_grants(stored.legacy, list_policy_grants(db, policy_id), stored.version)
    return dump_policy_document(doc)


def save_policy_document(
    db: Session,
    name: str,
    raw_document: str | dict,
    policy_id: int | None = None,
    description: str | None = None,
) -> Politica:
    """
    Create or replace a policy from a document.

    Validation happens before any write; grants are replaced and the
    permission versions of every affected user are bumped in the same
    transaction.
    """
    name = (name or "").strip()
    if not name:
        raise PolicyDocumentError("policy name is required")
    doc = parse_policy_document(raw_document)
    grants = grants_from_document(doc)

    if policy_id is not None:
        policy = get_policy(db, policy_id)
        if policy is None:
            raise PolicyNotFoundError(f"Policy {policy_id} not found")
        policy.nom = name
        if description is not None:
            policy.descripcio = description
    else:
        policy = Politica(nom=name, descripcio=description)
        db.add(policy)
        db.flush()

    db.execute(delete(PoliticaGrant).where(PoliticaGrant.politica_id == policy.id))
    db.add_all(
        PoliticaGrant(
            politica_id=policy.id,
            perm_key=grant.perm_key,
            scope_type=grant.scope_type.value,
            scope_id=grant.scope_id,
            include_children=grant.include_children,
        )
        for grant in grants
    )
    policy.permisos = dump_policy_document(document_from_grants(doc.legacy, grants, doc.version))
    db.flush()
    bump_policy_version(db, policy.id)
    db.commit()
    db.refresh(policy)
    logger.info("Policy %s saved with %s grants", policy.id, len(grants))
    return policy
