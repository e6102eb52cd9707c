"""Current user router."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from genealogia.core.container import AppContainer
from genealogia.core.deps import get_container, get_current_user_id, get_db
from genealogia.services import authorization_service

router = APIRouter(prefix="/me", tags=["Me"])


class MyPermissions(BaseModel):
    user_id: int
    is_admin: bool
    permissions: list[str]


@router.get("/permissions", response_model=MyPermissions)
def get_my_permissions(
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
    user_id: int = Depends(get_current_user_id),
):
    """Permission keys held anywhere, for navigation gating."""
    return MyPermissions(
        user_id=user_id,
        is_admin=authorization_service.is_admin(db, container.permissions, user_id),
        permissions=authorization_service.permission_keys_for_user(
            db, container.permissions, user_id
        ),
    )
