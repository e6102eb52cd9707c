"""Router for policy documents and their bindings to users and groups."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from genealogia.core.deps import get_db, require_admin
from genealogia.db.models import Grup, Politica, User
from genealogia.services import permission_service, policy_document_service
from genealogia.services.policy_document_service import (
    PolicyDocumentError,
    PolicyNotFoundError,
)


router = APIRouter(prefix="/admin/policies", tags=["Policies"])


# ============================================================================
# Schemas
# ============================================================================


class PolicySave(BaseModel):
    """Create or replace a policy from its JSON document."""

    name: str
    description: str | None = None
    document: dict[str, Any] | str


class PolicyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    descripcio: str | None
    permisos: str | None


class PolicyDocumentRead(BaseModel):
    policy_id: int
    document: str


# ============================================================================
# Helpers
# ============================================================================


def _require(db: Session, model, row_id: int, label: str):
    row = db.get(model, row_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=PolicyRead, status_code=201)
def create_policy(
    data: PolicySave,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    return _save(db, data, None)


@router.put("/{policy_id}", response_model=PolicyRead)
def replace_policy(
    policy_id: int,
    data: PolicySave,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    """Replace a policy's document. Nothing is written if the document is invalid."""
    return _save(db, data, policy_id)


def _save(db: Session, data: PolicySave, policy_id: int | None) -> Politica:
    try:
        return policy_document_service.save_policy_document(
            db, data.name, data.document, policy_id=policy_id, description=data.description
        )
    except PolicyNotFoundError:
        raise HTTPException(status_code=404, detail="Policy not found")
    except PolicyDocumentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Policy name already in use")


@router.get("/{policy_id}/document", response_model=PolicyDocumentRead)
def get_policy_document(
    policy_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    try:
        document = policy_document_service.get_policy_document_json(db, policy_id)
    except PolicyNotFoundError:
        raise HTTPException(status_code=404, detail="Policy not found")
    return PolicyDocumentRead(policy_id=policy_id, document=document)


@router.put("/{policy_id}/users/{target_user_id}", status_code=204)
def assign_to_user(
    policy_id: int,
    target_user_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    _require(db, Politica, policy_id, "Policy")
    _require(db, User, target_user_id, "User")
    permission_service.assign_policy_to_user(db, target_user_id, policy_id)


@router.delete("/{policy_id}/users/{target_user_id}", status_code=204)
def remove_from_user(
    policy_id: int,
    target_user_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    _require(db, User, target_user_id, "User")
    permission_service.remove_policy_from_user(db, target_user_id, policy_id)


@router.put("/{policy_id}/groups/{group_id}", status_code=204)
def assign_to_group(
    policy_id: int,
    group_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    _require(db, Politica, policy_id, "Policy")
    _require(db, Grup, group_id, "Group")
    permission_service.assign_policy_to_group(db, group_id, policy_id)


@router.delete("/{policy_id}/groups/{group_id}", status_code=204)
def remove_from_group(
    policy_id: int,
    group_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    _require(db, Grup, group_id, "Group")
    permission_service.remove_policy_from_group(db, group_id, policy_id)


@router.put("/groups/{group_id}/members/{target_user_id}", status_code=204)
def add_group_member(
    group_id: int,
    target_user_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    _require(db, Grup, group_id, "Group")
    _require(db, User, target_user_id, "User")
    permission_service.add_user_to_group(db, target_user_id, group_id)


@router.delete("/groups/{group_id}/members/{target_user_id}", status_code=204)
def remove_group_member(
    group_id: int,
    target_user_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_admin),
):
    _require(db, User, target_user_id, "User")
    permission_service.remove_user_from_group(db, target_user_id, group_id)
